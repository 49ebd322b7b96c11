# ai_inference/cli.py
"""
cli.py

Rich console CLI:
- inspect:  parse a .gguf file, run the layout and architecture checks and
            render them as tables (optionally as JSON).
- generate: load a .gguf model and continue a prompt.
- version:  show the package version.
"""
from __future__ import annotations

import argparse
import os
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from ai_inference import __version__
from ai_inference.analysis.model_inspector import inspect_model
from ai_inference.engine.llm_engine import LLMEngine
from ai_inference.engine.sampler import GenerationConfig
from ai_inference.logging import configure_logging
from ai_inference.observability import Timer
from ai_inference.reporting import model_reporter
from ai_inference.reporting.json_reporter import write_json

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="aiinf",
        description="AI Inference (Python): GGUF model inspection and CPU text generation.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    sub = p.add_subparsers(dest="cmd", title="Available Commands", metavar="<command>")

    sp_inspect = sub.add_parser("inspect", help="Inspect the layout of a local .gguf file")
    sp_inspect.add_argument("path", help="Path to model file (.gguf)")
    sp_inspect.add_argument("--debug", action="store_true", help="Enable debug logging")
    sp_inspect.add_argument("--json-out", type=str, default=None, help="Write JSON report to this path")
    sp_inspect.add_argument(
        "--no-tensors", action="store_true", help="Skip the per-tensor layout table"
    )

    sp_gen = sub.add_parser("generate", help="Load a .gguf model and generate a continuation")
    sp_gen.add_argument("path", help="Path to model file (.gguf)")
    sp_gen.add_argument(
        "--prompt",
        required=True,
        help=(
            "Prompt text. Models without a vocabulary take whitespace-separated\n"
            "token ids, e.g. --prompt '1 2 3'"
        ),
    )
    sp_gen.add_argument("--max-tokens", type=int, default=100, help="Maximum tokens to generate")
    sp_gen.add_argument("--temperature", type=float, default=1.0, help="Sampling temperature (<= 0: greedy)")
    sp_gen.add_argument("--top-p", type=float, default=1.0, help="Nucleus sampling mass (>= 1: off)")
    sp_gen.add_argument("--top-k", type=int, default=0, help="Keep the k most likely tokens (<= 0: off)")
    sp_gen.add_argument("--repetition-penalty", type=float, default=1.0, help="Penalty for repeated tokens")
    sp_gen.add_argument("--greedy", action="store_true", help="Always pick the most likely token")
    sp_gen.add_argument("--seed", type=int, default=None, help="Random seed for sampling")
    sp_gen.add_argument(
        "--stop-token", type=int, action="append", default=[], metavar="ID", help="Stop on this token id (repeatable)"
    )
    sp_gen.add_argument(
        "--no-cache", action="store_true", help="Recompute the full history every step instead of using the KV cache"
    )
    sp_gen.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub.add_parser("version", help="Show the version of ai-inference")

    return p


def _config_from_args(args: argparse.Namespace) -> GenerationConfig:
    return GenerationConfig(
        max_tokens=args.max_tokens,
        temperature=args.temperature,
        top_p=args.top_p,
        top_k=args.top_k,
        repetition_penalty=args.repetition_penalty,
        do_sample=not args.greedy,
        stop_tokens=list(args.stop_token),
        seed=args.seed,
    )


def _cmd_inspect(args: argparse.Namespace) -> int:
    rep = inspect_model(args.path)
    console.print(
        Panel(
            f"[bold]Result:[/bold] {'[green]OK[/green]' if rep.ok else '[red]FAILED[/red]'}",
            style="bold cyan",
        )
    )
    model_reporter.render_report(rep, show_tensors=not args.no_tensors)

    if args.json_out:
        write_json(rep, args.json_out)
        console.print(f"[dim]Wrote JSON report → {args.json_out}[/dim]")

    return 0 if rep.ok else 1


def _cmd_generate(args: argparse.Namespace) -> int:
    engine = LLMEngine(use_kv_cache=not args.no_cache)
    if not engine.load(args.path):
        console.print(f"[red]Failed to load model:[/red] {args.path}")
        return 1

    profile = engine.profile
    console.print(
        f"[dim]{profile.name}: {profile.n_layers} layers, {profile.n_head} heads "
        f"({profile.n_kv_head} kv), hidden {profile.hidden_size}, vocab {profile.vocab_size}[/dim]"
    )

    prompt_tokens = engine.tokenizer.encode(args.prompt)
    try:
        with Timer("generate") as t:
            tokens = engine.generate(prompt_tokens, _config_from_args(args))
    except ValueError as e:
        console.print(f"[red]Cannot generate:[/red] {e}")
        return 1

    console.print(Panel(engine.tokenizer.decode(tokens), title="Generated", style="bold cyan"))
    console.print(
        f"[dim]{len(tokens)} tokens in {t.duration_ms:.1f}ms ({t.rate(len(tokens)):.1f} tok/s)[/dim]"
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    if args.cmd == "version":
        console.print(f"AI Inference Version {__version__}")
        return 0

    configure_logging(debug=args.debug)
    if not os.path.exists(args.path):
        console.print(f"[red]File not found:[/red] {args.path}")
        return 2

    if args.cmd == "inspect":
        return _cmd_inspect(args)
    if args.cmd == "generate":
        return _cmd_generate(args)

    parser.print_help()
    return 1
