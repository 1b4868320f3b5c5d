from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .contracts import ExtractionResult


def serialize_extraction_result(result: ExtractionResult) -> str:
    """
    Stable JSON serialization for audit artifacts.
    """

    payload: dict[str, Any] = result.to_dict()
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2, default=str) + "\n"


def write_extraction_json_artifact(*, result: ExtractionResult, out_file: Path) -> None:
    """
    Write a job summary (what ran, metadata, diagnostics) to a JSON file.

    The extracted text is not part of it; that goes to the content sink.
    """

    out_file.parent.mkdir(parents=True, exist_ok=True)
    out_file.write_text(serialize_extraction_result(result), encoding="utf-8")
