from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, BinaryIO, Callable

from loguru import logger

from .contracts import EngineConfig, ExtractionResult, OcrEngineName, RunStatus
from .engines.base import OcrEngine
from .engines.tesseract_cli import TesseractCliEngine
from .errors import OcrInterrupted, OcrTimeout, PreprocessToolUnavailable
from .preprocess import ImagePreprocessor
from .probe import AvailabilityProbe
from .process import ProcessRunner
from .reassemble import OutputReassembler
from .sink import ContentSink
from .temporary import TemporaryResources

TESS_META = "tess:"
IMAGE_ROTATION = TESS_META + "rotation"
IMAGE_MAGICK = TESS_META + "image_magick_processed"

SKIP_ENGINE_UNAVAILABLE = "engine_unavailable"
SKIP_SIZE_OUT_OF_RANGE = "size_out_of_range"

_OCR_PREFIX = "ocr-"
SUPPORTED_TYPES = frozenset(
    {
        f"image/{_OCR_PREFIX}png",
        f"image/{_OCR_PREFIX}jpeg",
        f"image/{_OCR_PREFIX}tiff",
        f"image/{_OCR_PREFIX}bmp",
        f"image/{_OCR_PREFIX}gif",
        # Not covered by other image parsers.
        "image/jp2",
        "image/jpx",
        "image/x-portable-pixmap",
        f"image/{_OCR_PREFIX}jp2",
        f"image/{_OCR_PREFIX}jpx",
        f"image/{_OCR_PREFIX}x-portable-pixmap",
    }
)

RotationEstimator = Callable[[Path], float]


class FirstUseNotice:
    """Logs the "OCR is slow" notice once per process."""

    def __init__(self) -> None:
        self._warned = False
        self._lock = threading.Lock()

    @property
    def warned(self) -> bool:
        return self._warned

    def warn_once(self) -> None:
        if self._warned:
            return
        with self._lock:
            if self._warned:
                return
            logger.info(
                "Tesseract is installed and is being invoked. This can add greatly to "
                "processing time. Disable OCR in your configuration if you do not want it "
                "applied to your files."
            )
            self._warned = True


OCR_NOTICE = FirstUseNotice()


def _get_engine(engine: OcrEngineName) -> OcrEngine:
    if engine == OcrEngineName.TESSERACT_CLI:
        return TesseractCliEngine()
    raise ValueError(f"Unsupported OCR engine: {engine}")


def _suffix_of(image_file: Path) -> str:
    return image_file.suffix or ".img"


class OcrOrchestrator:
    """
    Runs one OCR job per call:

    GATE (engine available?) -> SIZE_CHECK -> optional PREPROCESS -> OCR_RUN
    -> LOCATE_OUTPUT -> REASSEMBLE.

    Failing the gate or the size check is not an error; the returned
    `ExtractionResult` says why nothing was extracted. Timeouts, interruption
    and malformed engine output raise `OcrExtractionError` subclasses.

    Collaborators default to the process-wide probes and notice so probe
    results are shared across orchestrators; pass your own to isolate them.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        engine: OcrEngine | None = None,
        probe: AvailabilityProbe | None = None,
        runner: ProcessRunner | None = None,
        preprocessor: ImagePreprocessor | None = None,
        reassembler: OutputReassembler | None = None,
        notice: FirstUseNotice | None = None,
        rotation_estimator: RotationEstimator | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.engine = engine or _get_engine(OcrEngineName.TESSERACT_CLI)
        self.probe = probe or self.engine.default_probe()
        self.runner = runner or ProcessRunner()
        self.preprocessor = preprocessor or ImagePreprocessor(runner=self.runner)
        self.reassembler = reassembler or OutputReassembler()
        self.notice = notice or OCR_NOTICE
        self.rotation_estimator = rotation_estimator
        self.temp_dir = temp_dir

    def is_available(self) -> bool:
        return self.probe.is_available(self.config.tesseract_path)

    def ensure_available(self) -> str:
        return self.probe.require(self.config.tesseract_path)

    def supported_types(self) -> frozenset[str]:
        if self.is_available():
            return SUPPORTED_TYPES
        # Advertise nothing so other parsers get selected instead.
        return frozenset()

    def parse(
        self,
        image_file: Path,
        sink: ContentSink,
        metadata: dict[str, Any] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExtractionResult:
        """
        Full-document entry point: start_document, the OCR container (when OCR
        runs), end_document. Nothing at all is emitted when the engine is
        unavailable.
        """

        if not self.is_available():
            return self._skipped(SKIP_ENGINE_UNAVAILABLE, metadata)

        sink.start_document()
        result = self._run(image_file, sink, metadata, cancel_event)
        sink.end_document()
        return result

    def parse_stream(
        self,
        stream: BinaryIO,
        sink: ContentSink,
        metadata: dict[str, Any] | None = None,
        *,
        suffix: str = ".img",
        cancel_event: threading.Event | None = None,
    ) -> ExtractionResult:
        """Spool `stream` to a temporary file, then behave like `parse`."""

        if not self.is_available():
            return self._skipped(SKIP_ENGINE_UNAVAILABLE, metadata)

        with TemporaryResources(base_dir=self.temp_dir) as tmp:
            image_file = tmp.spool(stream, f"input{suffix}")
            sink.start_document()
            result = self._run(image_file, sink, metadata, cancel_event)
            sink.end_document()
        return result

    def run_job(
        self,
        image_file: Path,
        sink: ContentSink,
        metadata: dict[str, Any] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ExtractionResult:
        """
        Emit only the OCR container into a document the caller is already
        building.
        """

        if not self.is_available():
            return self._skipped(SKIP_ENGINE_UNAVAILABLE, metadata)
        return self._run(image_file, sink, metadata, cancel_event)

    def _skipped(self, reason: str, metadata: dict[str, Any] | None) -> ExtractionResult:
        return ExtractionResult(
            ocr_ran=False,
            output_format=self.config.output_format,
            skipped_reason=reason,
            metadata=dict(metadata or {}),
        )

    def _run(
        self,
        image_file: Path,
        sink: ContentSink,
        metadata: dict[str, Any] | None,
        cancel_event: threading.Event | None,
    ) -> ExtractionResult:
        config = self.config
        if metadata is None:
            metadata = {}
        self.notice.warn_once()

        size = image_file.stat().st_size
        if not (config.min_file_size_to_ocr <= size <= config.max_file_size_to_ocr):
            logger.debug(
                "Skipping OCR of {} ({} bytes outside [{}, {}])",
                image_file,
                size,
                config.min_file_size_to_ocr,
                config.max_file_size_to_ocr,
            )
            return self._skipped(SKIP_SIZE_OUT_OF_RANGE, metadata)

        with TemporaryResources(base_dir=self.temp_dir) as tmp:
            ocr_input = image_file
            processed = False
            if config.wants_preprocessing:
                ocr_input, processed = self._preprocess(image_file, tmp, metadata, cancel_event)

            job = self.engine.build_job(
                config=config, image_file=ocr_input, output_stem=tmp.path("ocr-output")
            )
            outcome = self.runner.run(
                job.command,
                env_overrides=self.engine.build_env(config),
                timeout_s=config.timeout_s,
                cancel_event=cancel_event,
                label="tesseract",
            )
            if outcome.status is RunStatus.TIMED_OUT:
                raise OcrTimeout(
                    "Tesseract OCR timed out",
                    detail={"timeout_s": config.timeout_s, "stderr": outcome.stderr},
                )
            if outcome.status is RunStatus.INTERRUPTED:
                raise OcrInterrupted("Tesseract OCR interrupted")

            # The exit code is not inspected; the output file is the signal.
            found = self.reassembler.reassemble_file(job.output_file, config.output_format, sink)
            if not found:
                logger.debug(
                    "No {} output from tesseract (returncode={})",
                    config.output_format.value,
                    outcome.returncode,
                )

        return ExtractionResult(
            ocr_ran=True,
            output_format=config.output_format,
            output_found=found,
            image_processed=processed,
            metadata=dict(metadata),
            outcome=outcome,
        )

    def _preprocess(
        self,
        image_file: Path,
        tmp: TemporaryResources,
        metadata: dict[str, Any],
        cancel_event: threading.Event | None,
    ) -> tuple[Path, bool]:
        config = self.config
        suffix = _suffix_of(image_file)
        input_copy = tmp.copy_of(image_file, f"preprocess-input{suffix}")
        angle = 0.0
        if config.apply_rotation and self.rotation_estimator is not None:
            angle = float(self.rotation_estimator(input_copy))

        output_path = tmp.path(f"preprocess-output{suffix}")
        try:
            processed = self.preprocessor.preprocess(
                input_copy, output_path, config, angle=angle, cancel_event=cancel_event
            )
        except PreprocessToolUnavailable as e:
            logger.warning(
                "Image pre-processing was requested, but ImageMagick could not be found ({}). "
                "Backing off to the original file.",
                (e.detail or {}).get("expected_command"),
            )
            return image_file, False
        metadata[IMAGE_MAGICK] = processed
        if not processed:
            return image_file, False
        if config.apply_rotation:
            metadata[IMAGE_ROTATION] = angle
        return output_path, True


def run_ocr_on_image_file(
    *,
    config: EngineConfig,
    image_file: Path,
    sink: ContentSink,
    metadata: dict[str, Any] | None = None,
) -> ExtractionResult:
    """
    Run OCR on an explicit image file path with the default collaborators.
    """

    return OcrOrchestrator(config).parse(image_file, sink, metadata)
