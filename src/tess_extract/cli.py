from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from .artifacts import write_extraction_json_artifact
from .config import engine_config_from_dict, load_engine_config, parse_extra_option
from .contracts import EngineConfig, ExtractionResult, OutputFormat
from .errors import EngineUnavailable, OcrExtractionError
from .module import OcrOrchestrator
from .sink import XhtmlWriter

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tess-extract",
        description="Run Tesseract on an image and write the text as XHTML.",
    )
    p.add_argument("image", type=Path, help="Input image file.")
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON engine config (keys are EngineConfig field names). Flags override it.",
    )
    p.add_argument("--out", type=Path, default=None, help="Output XHTML file (default: stdout).")
    p.add_argument(
        "--meta-out",
        type=Path,
        default=None,
        help="Optional JSON artifact describing the run (metadata, diagnostics, errors).",
    )

    eng = p.add_argument_group("engine")
    eng.add_argument("--tesseract-path", default=None, help="Directory containing the tesseract binary.")
    eng.add_argument("--tessdata-path", default=None, help="Directory exported as TESSDATA_PREFIX.")
    eng.add_argument("--language", default=None, help="Tesseract language(s), e.g. eng or eng+fra.")
    eng.add_argument("--psm", dest="page_seg_mode", type=int, default=None, help="Page segmentation mode.")
    eng.add_argument(
        "--output-format",
        choices=[f.value for f in OutputFormat],
        default=None,
        help="txt (plain text) or hocr (structured markup).",
    )
    eng.add_argument("--page-separator", default=None)
    eng.add_argument(
        "--preserve-interword-spacing",
        action="store_const",
        const=True,
        default=None,
    )
    eng.add_argument(
        "-c",
        dest="extra_options",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Extra Tesseract config variable (repeatable).",
    )
    eng.add_argument("--min-file-size", dest="min_file_size_to_ocr", type=int, default=None)
    eng.add_argument("--max-file-size", dest="max_file_size_to_ocr", type=int, default=None)
    eng.add_argument("--timeout-s", type=float, default=None, help="Engine timeout in seconds.")

    pre = p.add_argument_group("image pre-processing")
    pre.add_argument("--enable-image-processing", action="store_const", const=True, default=None)
    pre.add_argument("--apply-rotation", action="store_const", const=True, default=None)
    pre.add_argument("--imagemagick-path", default=None, help="Directory containing ImageMagick convert.")
    pre.add_argument("--density", type=int, default=None)
    pre.add_argument("--depth", type=int, default=None)
    pre.add_argument("--colorspace", default=None)
    pre.add_argument("--filter", default=None)
    pre.add_argument("--resize", type=int, default=None, help="Resize percentage (100..900).")

    p.add_argument(
        "--require-engine",
        action="store_true",
        help="Exit with status 3 instead of skipping when tesseract is missing.",
    )
    p.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="WARNING",
        help="Log level for stderr (default: WARNING).",
    )
    return p


_CONFIG_FLAGS = (
    "tesseract_path",
    "tessdata_path",
    "language",
    "page_seg_mode",
    "output_format",
    "page_separator",
    "preserve_interword_spacing",
    "min_file_size_to_ocr",
    "max_file_size_to_ocr",
    "timeout_s",
    "enable_image_processing",
    "apply_rotation",
    "imagemagick_path",
    "density",
    "depth",
    "colorspace",
    "filter",
    "resize",
)


def config_from_args(args: argparse.Namespace) -> EngineConfig:
    base = load_engine_config(args.config) if args.config is not None else EngineConfig()
    overrides: dict[str, Any] = {
        name: getattr(args, name) for name in _CONFIG_FLAGS if getattr(args, name) is not None
    }
    if args.extra_options is not None:
        overrides["extra_options"] = [parse_extra_option(o) for o in args.extra_options]
    return engine_config_from_dict(overrides, base=base)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    try:
        config = config_from_args(args)
    except (TypeError, ValueError) as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return 2

    orchestrator = OcrOrchestrator(config)
    if args.require_engine:
        try:
            orchestrator.ensure_available()
        except EngineUnavailable as e:
            print(e.message, file=sys.stderr)
            return 3

    out = args.out.open("w", encoding="utf-8") if args.out is not None else sys.stdout
    try:
        result = orchestrator.parse(args.image, XhtmlWriter(out))
        status = 0
    except OcrExtractionError as e:
        logger.error("OCR failed for {}: {}", args.image, e.message)
        result = ExtractionResult(
            ocr_ran=True, output_format=config.output_format, errors=[e.to_error()]
        )
        status = 2
    finally:
        if out is not sys.stdout:
            out.close()

    if args.meta_out is not None:
        write_extraction_json_artifact(result=result, out_file=args.meta_out)
    if result.skipped_reason:
        print(f"OCR skipped: {result.skipped_reason}", file=sys.stderr)
    return status


if __name__ == "__main__":
    raise SystemExit(main())
