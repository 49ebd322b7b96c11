# ai_inference/analysis/model_inspector.py
"""
Model inspection: parse a GGUF file and verify its tensor layout and
architecture without materializing any weights.
"""

from __future__ import annotations

from typing import List, Tuple

from loguru import logger

from ai_inference.analysis.base import InspectionReport, TensorSummary
from ai_inference.engine.architecture import referenced_weights, resolve_architecture
from ai_inference.errors import ModelLoadError
from ai_inference.io.file_reader import LocalFileSource
from ai_inference.model_formats.gguf.gguf import GGUFKV, GGUFModel
from ai_inference.model_formats.gguf.gguf_dequant import is_supported
from ai_inference.model_formats.gguf.gguf_versions import TYPE_NAMES, parse_gguf
from ai_inference.observability import Timer

MAX_VALUE_WIDTH = 70


def _format_kv(kv: GGUFKV) -> str:
    type_name = TYPE_NAMES.get(kv.type, str(kv.type))
    if kv.is_array:
        count = len(kv.value)
        preview = ", ".join(map(str, kv.value[:3]))
        text = f"Array[{type_name}], Count={count}, Preview=[{preview}{', ...' if count > 3 else ''}]"
    elif isinstance(kv.value, float):
        text = f"{kv.value:.6f}"
    else:
        text = str(kv.value)
    # Truncate long strings to keep the table clean
    if len(text) > MAX_VALUE_WIDTH:
        text = text[: MAX_VALUE_WIDTH - 3] + "..."
    return text


def _check_layout(model: GGUFModel, report: InspectionReport) -> None:
    file_size = model.file_size
    report.add(
        "structural_integrity:data_offset_bounds",
        model.data_offset <= file_size,
        f"Region: [{model.data_offset}, {file_size})",
    )

    extents: List[Tuple[str, int, int]] = []
    for ti in sorted(model.tensors, key=lambda t: t.offset):
        nbytes = ti.nbytes
        end = ti.data_start + nbytes if nbytes is not None else None
        report.tensors.append(
            TensorSummary(
                name=ti.name,
                type=ti.type_name,
                dims=list(ti.dims),
                start=ti.data_start,
                end=end,
                nbytes=nbytes,
            )
        )
        in_file = end is not None and end <= file_size
        decodable = is_supported(ti.ggml_type)
        report.add(
            f"tensor_layout:{ti.name}",
            in_file,
            "" if in_file else ("unknown size rule" if end is None else "extends beyond EOF"),
            start=ti.data_start,
            end=end if end is not None else "N/A",
            type=ti.type_name,
            dims=str(ti.dims),
            decodable=decodable,
        )
        if end is not None:
            extents.append((ti.name, ti.data_start, end))

    non_overlap = all(extents[i][2] <= extents[i + 1][1] for i in range(len(extents) - 1))
    report.add(
        "structural_integrity:tensor_non_overlap",
        non_overlap,
        "no overlapping tensor data regions",
    )

    # Writers may pad each tensor up to the alignment; any larger gap is
    # unaccounted data.
    covered = sum(e - s for _, s, e in extents)
    segment = file_size - model.data_offset
    cursor = model.data_offset
    gaps_ok = True
    for _, start, end in extents:
        if not 0 <= start - cursor < model.alignment:
            gaps_ok = False
        cursor = max(cursor, end)
    report.add(
        "structural_integrity:data_coverage",
        len(extents) == len(model.tensors) and gaps_ok and cursor <= file_size,
        f"{covered} of {segment} data bytes accounted for by tensors",
        padding=cursor - model.data_offset - covered,
    )

    undecodable = sorted({t.type_name for t in model.tensors if not is_supported(t.ggml_type)})
    report.add(
        "structural_integrity:encodings_supported",
        not undecodable,
        "all encodings decodable" if not undecodable else f"no decoder for {', '.join(undecodable)}",
    )


def _check_architecture(model: GGUFModel, report: InspectionReport) -> None:
    names = model.tensor_map
    try:
        profile = resolve_architecture(model.metadata, names.keys())
    except ModelLoadError as e:
        report.add("architecture:resolve", False, f"{type(e).__name__}: {e}")
        return

    report.architecture = {
        "name": profile.name,
        "n_layers": profile.n_layers,
        "n_head": profile.n_head,
        "n_kv_head": profile.n_kv_head,
        "hidden_size": profile.hidden_size,
        "vocab_size": profile.vocab_size,
        "context_length": profile.context_length,
    }
    report.add("architecture:resolve", True, profile.name)

    embedding = profile.family.token_embedding
    missing = [
        f"{prefix}.weight"
        for prefix in referenced_weights(profile)
        if f"{prefix}.weight" not in names
    ]
    if embedding not in names and f"{embedding}.weight" not in names:
        missing.insert(0, embedding)
    details = "all referenced weights present"
    if missing:
        details = f"missing: {', '.join(missing[:5])}"
        if len(missing) > 5:
            details += f" (+{len(missing) - 5} more)"
    report.add("architecture:weights_present", not missing, details)


def inspect_buffer(buf, file_path: str = "<buffer>") -> InspectionReport:
    """Inspect an in-memory GGUF container."""
    report = InspectionReport(file_path=file_path, file_size=len(buf))
    try:
        model = parse_gguf(buf)
    except ModelLoadError as e:
        report.add("parse", False, f"{type(e).__name__}: {e}")
        return report

    report.version = model.version
    report.alignment = model.alignment
    report.data_offset = model.data_offset
    report.metadata = {key: _format_kv(kv) for key, kv in sorted(model.kv.items())}
    report.add("parse", True, f"GGUF v{model.version}, {model.n_kv} kv, {model.n_tensors} tensors")

    _check_layout(model, report)
    _check_architecture(model, report)
    return report


def inspect_model(path: str) -> InspectionReport:
    """Inspect the GGUF file at ``path``."""
    with Timer("inspect") as t:
        with LocalFileSource(path).open() as mf:
            report = inspect_buffer(mf.view, path)
    logger.debug("Inspection of {path} completed in {ms:.2f}ms", path=path, ms=t.duration_ms)
    return report
