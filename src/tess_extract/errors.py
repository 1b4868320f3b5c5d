from __future__ import annotations

from typing import Any

from .contracts import OcrError


class OcrExtractionError(Exception):
    """
    Base class for OCR job failures.

    `code` is stable and machine-readable; it is what ends up in JSON artifacts.
    """

    code = "OCR_EXTRACTION_ERROR"

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_error(self) -> OcrError:
        return OcrError(code=self.code, message=self.message, detail=self.detail)


class EngineUnavailable(OcrExtractionError):
    code = "OCR_BACKEND_NOT_INSTALLED"


class PreprocessToolUnavailable(OcrExtractionError):
    code = "OCR_PREPROCESS_TOOL_NOT_INSTALLED"


class OcrTimeout(OcrExtractionError):
    code = "OCR_TIMEOUT"


class OcrInterrupted(OcrExtractionError):
    code = "OCR_INTERRUPTED"


class MalformedOutput(OcrExtractionError):
    code = "OCR_MALFORMED_OUTPUT"
