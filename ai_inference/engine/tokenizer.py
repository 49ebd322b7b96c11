# ai_inference/engine/tokenizer.py
"""
Minimal tokenizer backed by GGUF tokenizer metadata.

Two modes:
- vocabulary: when tokenizer.ggml.model is "gpt2" or merges are present.
  Whitespace-separated words are split into characters and each character is
  looked up in tokenizer.ggml.tokens (BPE merging is not applied).
- numeric: text is whitespace-separated integer ids.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger

NO_TOKEN = -1


def _token_id(metadata: Mapping[str, Any], key: str) -> int:
    value = metadata.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return NO_TOKEN
    return value


class Tokenizer:
    """Text ↔ token id conversion with optional BOS/EOS ids (-1 means none)."""

    def __init__(
        self,
        tokens: Optional[Sequence[str]] = None,
        *,
        model_type: str = "",
        merges: Optional[Sequence[str]] = None,
        bos_token_id: int = NO_TOKEN,
        eos_token_id: int = NO_TOKEN,
        unk_token_id: int = NO_TOKEN,
        pad_token_id: int = NO_TOKEN,
    ):
        self.id_to_token: List[str] = list(tokens or [])
        self.vocab: Dict[str, int] = {tok: i for i, tok in enumerate(self.id_to_token)}
        self.model_type = model_type
        self.merges: List[str] = list(merges or [])
        self.bos_token_id = bos_token_id
        self.eos_token_id = eos_token_id
        self.unk_token_id = unk_token_id
        self.pad_token_id = pad_token_id

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any]) -> "Tokenizer":
        model_type = metadata.get("tokenizer.ggml.model")
        if not isinstance(model_type, str):
            logger.debug("No tokenizer.ggml.model; using numeric token input")
            return cls()
        tok = cls(
            metadata.get("tokenizer.ggml.tokens") or [],
            model_type=model_type,
            merges=metadata.get("tokenizer.ggml.merges") or [],
            bos_token_id=_token_id(metadata, "tokenizer.ggml.bos_token_id"),
            eos_token_id=_token_id(metadata, "tokenizer.ggml.eos_token_id"),
            unk_token_id=_token_id(metadata, "tokenizer.ggml.unknown_token_id"),
            pad_token_id=_token_id(metadata, "tokenizer.ggml.padding_token_id"),
        )
        logger.debug(
            "Tokenizer {model}: {n} tokens, bos={bos} eos={eos}",
            model=model_type,
            n=len(tok.id_to_token),
            bos=tok.bos_token_id,
            eos=tok.eos_token_id,
        )
        return tok

    @property
    def uses_vocabulary(self) -> bool:
        return self.model_type == "gpt2" or bool(self.merges)

    def encode(self, text: str) -> List[int]:
        ids: List[int] = []
        if not self.uses_vocabulary:
            for part in text.split():
                # Reading stops at the first field that is not an integer.
                try:
                    ids.append(int(part))
                except ValueError:
                    break
            return ids
        for word in text.split():
            for ch in word:
                idx = self.vocab.get(ch)
                if idx is not None:
                    ids.append(idx)
                elif self.unk_token_id >= 0:
                    ids.append(self.unk_token_id)
        return ids

    def decode(self, ids: Sequence[int]) -> str:
        if not self.uses_vocabulary:
            return " ".join(str(i) for i in ids)
        n = len(self.id_to_token)
        return "".join(self.id_to_token[i] for i in ids if 0 <= i < n)
