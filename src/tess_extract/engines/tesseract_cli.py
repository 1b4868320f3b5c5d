from __future__ import annotations

from pathlib import Path

from ..contracts import EngineConfig, OcrJob
from ..probe import DEFAULT_TESSERACT_PROBE, AvailabilityProbe
from .base import OcrEngine

TESSDATA_ENV = "TESSDATA_PREFIX"


class TesseractCliEngine(OcrEngine):
    """
    Tesseract OCR via the `tesseract` CLI, writing `<stem>.txt` or `<stem>.hocr`.

    Argument order matters to Tesseract: image, output stem, then options, with
    the output config name last.
    """

    def __init__(self, probe: AvailabilityProbe | None = None) -> None:
        self._probe = probe or DEFAULT_TESSERACT_PROBE

    def default_probe(self) -> AvailabilityProbe:
        return self._probe

    def build_job(self, *, config: EngineConfig, image_file: Path, output_stem: Path) -> OcrJob:
        cmd = [
            self._probe.resolve(config.tesseract_path),
            str(image_file),
            str(output_stem),
            "-l",
            config.language,
            "--psm",
            str(config.page_seg_mode),
        ]
        for key, value in config.extra_options:
            cmd.extend(["-c", f"{key}={value}"])
        cmd.extend(
            [
                "-c",
                f"page_separator={config.page_separator}",
                "-c",
                f"preserve_interword_spaces={1 if config.preserve_interword_spacing else 0}",
                config.output_format.value,
            ]
        )
        return OcrJob(
            image_file=image_file,
            output_stem=output_stem,
            config=config,
            command=tuple(cmd),
        )

    def build_env(self, config: EngineConfig) -> dict[str, str]:
        prefix = config.tessdata_prefix()
        if not prefix:
            return {}
        return {TESSDATA_ENV: prefix}
