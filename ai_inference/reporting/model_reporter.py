# ai_inference/reporting/model_reporter.py
"""
Console rendering of model inspection reports.
"""
from __future__ import annotations

from collections import defaultdict
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from ai_inference.analysis.base import Finding, InspectionReport

console = Console()

PASS = "[green]PASS[/green]"
FAIL = "[bold red]FAIL[/bold red]"


def _status(ok: bool) -> str:
    return PASS if ok else FAIL


def _render_summary(con: Console, rep: InspectionReport) -> None:
    t = Table(title="Model Summary", box=box.SIMPLE_HEAVY)
    t.add_column("Field", style="bold")
    t.add_column("Value")
    t.add_row("Path", rep.file_path)
    t.add_row("Size (bytes)", str(rep.file_size))
    t.add_row("GGUF Version", str(rep.version))
    t.add_row("Alignment", str(rep.alignment))
    t.add_row("Data Offset", str(rep.data_offset))
    if rep.architecture:
        for k, v in rep.architecture.items():
            t.add_row(k, str(v))
    con.print(t)


def _render_metadata(con: Console, rep: InspectionReport) -> None:
    if not rep.metadata:
        return
    t = Table(title="Metadata", box=box.ROUNDED, title_style="bold magenta")
    t.add_column("Key", style="cyan", no_wrap=True)
    t.add_column("Value", style="white")
    for key, value in rep.metadata.items():
        t.add_row(key, value)
    con.print(t)


def _render_tensor_table(con: Console, findings: List[Finding]) -> None:
    table = Table(title="Tensor Layout", box=box.ROUNDED, show_lines=False, title_style="bold magenta")
    table.add_column("Status", justify="center", width=8)
    table.add_column("Index", justify="right", style="dim")
    table.add_column("Tensor Name", style="cyan", no_wrap=True)
    table.add_column("Start Address", justify="right", style="white")
    table.add_column("End Address", justify="right", style="white")
    table.add_column("GGML Type", justify="left", style="yellow")
    table.add_column("Decodable", justify="center")
    table.add_column("Dimensions", justify="left", style="green")

    for index, f in enumerate(sorted(findings, key=lambda f: f.context.get("start", 0)), start=1):
        ctx = f.context
        table.add_row(
            _status(f.ok),
            str(index),
            f.name.split(":", 1)[1],
            str(ctx.get("start", "N/A")),
            str(ctx.get("end", "N/A")),
            ctx.get("type", "N/A"),
            "yes" if ctx.get("decodable") else "[yellow]no[/yellow]",
            ctx.get("dims", "N/A"),
        )
    con.print(table)


def _render_checks(con: Console, title: str, findings: List[Finding]) -> None:
    table = Table(title=title, box=box.ROUNDED, show_lines=False, title_style="bold magenta")
    table.add_column("Status", justify="center", width=8)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Details", style="white")
    for f in findings:
        check_name = f.name.split(":", 1)[-1].replace("_", " ").title()
        table.add_row(_status(f.ok), check_name, f.details)
    con.print(table)


def render_report(rep: InspectionReport, *, show_tensors: bool = True, out: Optional[Console] = None) -> None:
    """Render the full inspection report."""
    con = out if out is not None else console

    _render_summary(con, rep)
    _render_metadata(con, rep)

    groups = defaultdict(list)
    for f in rep.findings:
        groups[f.name.split(":", 1)[0] if ":" in f.name else "general"].append(f)

    if "general" in groups:
        _render_checks(con, "Parse", groups["general"])
    if "structural_integrity" in groups:
        _render_checks(con, "Structural Integrity Checks", groups["structural_integrity"])
    if "architecture" in groups:
        _render_checks(con, "Architecture Checks", groups["architecture"])
    if show_tensors and "tensor_layout" in groups:
        _render_tensor_table(con, groups["tensor_layout"])
