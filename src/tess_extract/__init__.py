"""
OCR text extraction through the Tesseract command line.

Pipeline per job:
- Gate: is the engine binary runnable at the configured path (memoized probe)?
- Size policy: inputs outside [min_file_size_to_ocr, max_file_size_to_ocr] are skipped.
- Optional ImageMagick pre-processing of a copy of the input.
- Tesseract run under a deadline, with stdout/stderr drained concurrently.
- Reassembly of the txt / hOCR output into sink events inside <div class="ocr">.

Skips are results, not errors. Timeouts, interruption and malformed hOCR
raise `OcrExtractionError` subclasses.
"""

from .contracts import (
    EngineConfig,
    ExtractionResult,
    OcrEngineName,
    OcrError,
    OcrJob,
    OutputFormat,
    RunOutcome,
    RunStatus,
)
from .errors import (
    EngineUnavailable,
    MalformedOutput,
    OcrExtractionError,
    OcrInterrupted,
    OcrTimeout,
    PreprocessToolUnavailable,
)
from .module import OcrOrchestrator, run_ocr_on_image_file
from .probe import AvailabilityProbe
from .process import ProcessRunner
from .reassemble import OutputReassembler
from .sink import ContentSink, EventRecorder, StructuredEvent, XhtmlWriter

__all__ = [
    "AvailabilityProbe",
    "ContentSink",
    "EngineConfig",
    "EngineUnavailable",
    "EventRecorder",
    "ExtractionResult",
    "MalformedOutput",
    "OcrEngineName",
    "OcrError",
    "OcrExtractionError",
    "OcrInterrupted",
    "OcrJob",
    "OcrOrchestrator",
    "OcrTimeout",
    "OutputFormat",
    "OutputReassembler",
    "PreprocessToolUnavailable",
    "ProcessRunner",
    "RunOutcome",
    "RunStatus",
    "StructuredEvent",
    "XhtmlWriter",
    "run_ocr_on_image_file",
]
