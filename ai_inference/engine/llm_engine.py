# ai_inference/engine/llm_engine.py
"""
LLM engine: load a GGUF model file and run the autoregressive decode loop.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
from loguru import logger

from ai_inference.engine.architecture import ArchitectureProfile, resolve_architecture
from ai_inference.engine.forward import TransformerModel
from ai_inference.engine.sampler import GenerationConfig, sample_token
from ai_inference.engine.tokenizer import Tokenizer
from ai_inference.engine.weights import load_weights
from ai_inference.errors import ModelLoadError
from ai_inference.io.file_reader import LocalFileSource
from ai_inference.model_formats.gguf.gguf_versions import parse_gguf
from ai_inference.observability import Timer


class LLMEngine:
    """Loads a model once and generates token sequences from it.

    Args:
        use_kv_cache: Feed only the newest token after the first step, reusing
            cached keys/values. When False every step re-runs the full history.
    """

    def __init__(self, *, use_kv_cache: bool = True):
        self.use_kv_cache = use_kv_cache
        self._model: Optional[TransformerModel] = None
        self._tokenizer: Optional[Tokenizer] = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> TransformerModel:
        if self._model is None:
            raise RuntimeError("No model loaded")
        return self._model

    @property
    def profile(self) -> ArchitectureProfile:
        return self.model.profile

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            raise RuntimeError("No model loaded")
        return self._tokenizer

    def load(self, path: str) -> bool:
        """Load ``path``; on any failure the engine is left empty and False is returned."""
        self._model = None
        self._tokenizer = None
        try:
            with Timer("load") as t:
                with LocalFileSource(path).open() as mf:
                    model, tokenizer = self._build(mf.view)
        except (ModelLoadError, OSError) as e:
            logger.error("Failed to load {path}: {kind}: {error}", path=path, kind=type(e).__name__, error=e)
            return False

        self._model = model
        self._tokenizer = tokenizer
        logger.info("Loaded {path} in {ms:.2f}ms", path=path, ms=t.duration_ms)
        return True

    def _build(self, buf) -> tuple[TransformerModel, Tokenizer]:
        gguf = parse_gguf(buf)
        metadata = gguf.metadata
        profile = resolve_architecture(metadata, gguf.tensor_map.keys())
        weights = load_weights(gguf, buf, profile)
        return TransformerModel(profile, weights), Tokenizer.from_metadata(metadata)

    def generate(self, prompt_tokens: Sequence[int], config: Optional[GenerationConfig] = None) -> List[int]:
        """Generate up to ``config.max_tokens`` tokens after ``prompt_tokens``.

        Returns only the generated tokens. Stops early on a stop token or EOS.
        """
        config = config or GenerationConfig()
        model = self.model
        tokenizer = self.tokenizer

        history = list(prompt_tokens)
        if tokenizer.bos_token_id >= 0:
            history.insert(0, tokenizer.bos_token_id)
        if not history:
            raise ValueError("Cannot generate from an empty prompt")

        stop = set(config.stop_tokens)
        rng = np.random.default_rng(config.seed)
        cache = model.new_cache() if self.use_kv_cache else None
        generated: List[int] = []

        with Timer("generate") as total:
            for step in range(config.max_tokens):
                with Timer("step") as t:
                    if cache is None:
                        logits = model.forward(history)
                    else:
                        pending = history[cache.length :]
                        logits = model.forward_step(pending, cache)
                    token = sample_token(logits[-1], config, history, rng)
                logger.debug(
                    "step {step}: token={token} ({ms:.2f}ms)", step=step, token=token, ms=t.duration_ms
                )

                generated.append(token)
                history.append(token)
                if token in stop or (tokenizer.eos_token_id >= 0 and token == tokenizer.eos_token_id):
                    break

        logger.debug(
            "Generated {n} tokens in {ms:.2f}ms ({rate:.1f} tok/s)",
            n=len(generated),
            ms=total.duration_ms,
            rate=total.rate(len(generated)),
        )
        return generated

    def generate_text(self, prompt: str, config: Optional[GenerationConfig] = None) -> str:
        """Encode ``prompt``, generate and decode the continuation."""
        tokens = self.generate(self.tokenizer.encode(prompt), config)
        return self.tokenizer.decode(tokens)
