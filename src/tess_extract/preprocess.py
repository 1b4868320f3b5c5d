from __future__ import annotations

import threading
from pathlib import Path

from loguru import logger

from .contracts import EngineConfig, RunStatus
from .errors import OcrInterrupted, OcrTimeout, PreprocessToolUnavailable
from .probe import DEFAULT_IMAGEMAGICK_PROBE, AvailabilityProbe
from .process import ProcessRunner


def _format_angle(angle: float) -> str:
    return f"{angle:g}"


class ImagePreprocessor:
    """
    Runs ImageMagick on a copy of the input so Tesseract sees a cleaner image.

    Only the invocation is handled here. The rotation angle is decided by the
    caller; this class just passes it through as `-rotate`.
    """

    def __init__(
        self, *, probe: AvailabilityProbe | None = None, runner: ProcessRunner | None = None
    ) -> None:
        self.probe = probe or DEFAULT_IMAGEMAGICK_PROBE
        self._runner = runner or ProcessRunner()

    def is_available(self, config: EngineConfig) -> bool:
        return self.probe.is_available(config.imagemagick_path)

    def build_command(
        self, *, input_copy: Path, output_path: Path, config: EngineConfig, angle: float = 0.0
    ) -> list[str]:
        return [
            self.probe.resolve(config.imagemagick_path),
            "-density",
            str(config.density),
            "-depth",
            str(config.depth),
            "-colorspace",
            config.colorspace,
            "-filter",
            config.filter,
            "-resize",
            f"{config.resize}%",
            "-rotate",
            _format_angle(angle),
            str(input_copy),
            str(output_path),
        ]

    def preprocess(
        self,
        input_copy: Path,
        output_path: Path,
        config: EngineConfig,
        *,
        angle: float = 0.0,
        cancel_event: threading.Event | None = None,
    ) -> bool:
        """
        Write the processed image to `output_path`.

        Returns False (after logging) when the tool ran but produced nothing, so
        the caller can OCR the unprocessed image instead.
        """

        if not self.is_available(config):
            raise PreprocessToolUnavailable(
                "ImageMagick was requested but could not be found",
                detail={"expected_command": self.probe.resolve(config.imagemagick_path)},
            )

        cmd = self.build_command(
            input_copy=input_copy, output_path=output_path, config=config, angle=angle
        )
        outcome = self._runner.run(
            cmd, timeout_s=config.timeout_s, cancel_event=cancel_event, label="imagemagick"
        )
        if outcome.status is RunStatus.TIMED_OUT:
            raise OcrTimeout(
                "ImageMagick pre-processing timed out", detail={"timeout_s": config.timeout_s}
            )
        if outcome.status is RunStatus.INTERRUPTED:
            raise OcrInterrupted("ImageMagick pre-processing interrupted")

        if not output_path.exists():
            logger.warning(
                "ImageMagick produced no output (returncode={}); using the original image. {}",
                outcome.returncode,
                outcome.stderr[-500:],
            )
            return False
        return True
