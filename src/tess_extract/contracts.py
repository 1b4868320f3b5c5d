from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class OcrEngineName(str, Enum):
    """
    OCR backends supported by this package.
    """

    TESSERACT_CLI = "tesseract_cli"


class OutputFormat(str, Enum):
    """
    Engine output formats. The value is both the Tesseract config name passed
    as the last argument and the suffix the engine appends to the output stem.
    """

    PLAIN_TEXT = "txt"
    STRUCTURED_MARKUP = "hocr"

    @property
    def suffix(self) -> str:
        return self.value


class RunStatus(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    INTERRUPTED = "interrupted"


_LANGUAGE_RE = re.compile(r"^[A-Za-z_]{3,}(\+[A-Za-z_]{3,})*$")
_OPTION_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_OPTION_VALUE_RE = re.compile(r"^\S*$")

IMAGEMAGICK_FILTERS = frozenset(
    {"point", "hermite", "cubic", "box", "gaussian", "catrom", "triangle", "quadratic", "mitchell"}
)
IMAGEMAGICK_DEPTHS = frozenset({2, 4, 8, 16, 32, 64, 256, 4096})


@dataclass(frozen=True, slots=True)
class OcrError:
    code: str
    message: str
    detail: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Per-run configuration for the Tesseract engine and the optional ImageMagick
    pre-processing step.

    Callers build this explicitly (or via `config.load_engine_config`); no
    module in this package reads environment variables to configure itself.
    Empty `tesseract_path` / `imagemagick_path` mean "look the binary up on PATH".
    """

    tesseract_path: str = ""
    tessdata_path: str = ""
    language: str = "eng"
    page_seg_mode: int = 1
    output_format: OutputFormat = OutputFormat.PLAIN_TEXT
    page_separator: str = ""
    preserve_interword_spacing: bool = False
    # Ordered (key, value) pairs passed as `-c key=value`; keys may repeat.
    extra_options: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    min_file_size_to_ocr: int = 0
    max_file_size_to_ocr: int = 2147483647
    timeout_s: float = 120.0

    enable_image_processing: bool = False
    apply_rotation: bool = False
    imagemagick_path: str = ""
    density: int = 300
    depth: int = 4
    colorspace: str = "gray"
    filter: str = "triangle"
    resize: int = 200  # percent

    def __post_init__(self) -> None:
        if not isinstance(self.output_format, OutputFormat):
            raise TypeError("output_format must be an OutputFormat")
        if not _LANGUAGE_RE.match(self.language):
            raise ValueError(f"invalid language code: {self.language!r}")
        if not (0 <= self.page_seg_mode <= 13):
            raise ValueError("page_seg_mode must be within [0, 13]")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if self.min_file_size_to_ocr < 0 or self.max_file_size_to_ocr < 0:
            raise ValueError("file size thresholds must be >= 0")
        if self.min_file_size_to_ocr > self.max_file_size_to_ocr:
            raise ValueError("min_file_size_to_ocr must be <= max_file_size_to_ocr")

        for pair in self.extra_options:
            if not (isinstance(pair, tuple) and len(pair) == 2):
                raise TypeError("extra_options must be a tuple of (key, value) pairs")
            key, value = pair
            if not _OPTION_KEY_RE.match(key):
                raise ValueError(f"invalid engine option key: {key!r}")
            if not _OPTION_VALUE_RE.match(value):
                raise ValueError(f"engine option value must not contain whitespace: {value!r}")

        if not (150 <= self.density <= 1200):
            raise ValueError("density must be within [150, 1200]")
        if self.depth not in IMAGEMAGICK_DEPTHS:
            raise ValueError(f"depth must be one of {sorted(IMAGEMAGICK_DEPTHS)}")
        if not self.colorspace.strip():
            raise ValueError("colorspace must not be empty")
        if self.filter.lower() not in IMAGEMAGICK_FILTERS:
            raise ValueError(f"filter must be one of {sorted(IMAGEMAGICK_FILTERS)}")
        if not (100 <= self.resize <= 900) or self.resize % 100 != 0:
            raise ValueError("resize must be a multiple of 100 within [100, 900]")

    @property
    def wants_preprocessing(self) -> bool:
        return self.enable_image_processing or self.apply_rotation

    def tessdata_prefix(self) -> str:
        """Value for TESSDATA_PREFIX, or "" when neither path is configured."""

        return self.tessdata_path or self.tesseract_path

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["output_format"] = self.output_format.value
        d["extra_options"] = [list(p) for p in self.extra_options]
        return d


@dataclass(frozen=True, slots=True)
class OcrJob:
    """
    One engine invocation: which image, where the engine writes, and the argv
    derived from the config.
    """

    image_file: Path
    output_stem: Path
    config: EngineConfig
    command: tuple[str, ...]

    @property
    def output_file(self) -> Path:
        # Tesseract appends ".<format>" to the stem it is given.
        return self.output_stem.with_name(f"{self.output_stem.name}.{self.config.output_format.suffix}")


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """
    Result of a supervised external process run.

    `stdout` / `stderr` hold bounded tails for diagnostics only. `returncode`
    is None when the process had to be killed before it was reaped.
    """

    status: RunStatus
    returncode: int | None
    elapsed_s: float
    stdout: str = ""
    stderr: str = ""

    @property
    def completed(self) -> bool:
        return self.status is RunStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """
    What one OCR job did. The extracted content itself went to the sink.

    `skipped_reason` is set when the job stopped before running the engine
    ("engine_unavailable" or "size_out_of_range"); that is not an error.
    """

    ocr_ran: bool
    output_format: OutputFormat
    skipped_reason: str | None = None
    output_found: bool = False
    image_processed: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    outcome: RunOutcome | None = None
    errors: list[OcrError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """
        Stable JSON-serializable representation (dataclasses -> primitives).
        """

        d = asdict(self)
        d["output_format"] = self.output_format.value
        if self.outcome is not None:
            d["outcome"]["status"] = self.outcome.status.value
        return d
