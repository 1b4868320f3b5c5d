from __future__ import annotations

import contextlib
import io
import json
import os
import stat
import sys
import tempfile
import time
import unittest
from pathlib import Path

from tess_extract.cli import build_arg_parser, main
from tess_extract.contracts import EngineConfig, OutputFormat
from tess_extract.engines.tesseract_cli import TesseractCliEngine
from tess_extract.errors import OcrTimeout
from tess_extract.module import FirstUseNotice, OcrOrchestrator
from tess_extract.probe import AvailabilityProbe
from tess_extract.sink import EventRecorder, XhtmlWriter

# Stand-in for the tesseract CLI. Run bare (as the availability check does) it
# exits at once; with arguments it writes "<stem>.<format>".
_FAKE_TESSERACT = """\
import os
import sys
import time

if len(sys.argv) < 3:
    sys.exit(1)
stem, fmt = sys.argv[2], sys.argv[-1]
if os.environ.get("FAKE_TESSERACT_SLEEP"):
    with open(os.path.join(os.environ["TESSDATA_PREFIX"], "pid"), "w") as f:
        f.write(str(os.getpid()))
    time.sleep(60)
body = "Hello World"
if fmt == "hocr":
    body = "<html><head><title>t</title></head><body><p class='ocr_par'>Hello World</p></body></html>"
with open(stem + "." + fmt, "w", encoding="utf-8") as f:
    f.write(body)
"""


def _install_fake_tesseract(bin_dir: Path) -> None:
    script = bin_dir / "tesseract"
    script.write_text(f"#!{sys.executable}\n" + _FAKE_TESSERACT, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@unittest.skipUnless(os.name == "posix", "fake engine is a shebang script")
class TestEndToEnd(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir()
        _install_fake_tesseract(self.bin_dir)
        self.scratch = root / "scratch"
        self.scratch.mkdir()
        self.image = root / "scan.png"
        self.image.write_bytes(b"\x89PNG" + b"\x00" * 4096)

    def tearDown(self) -> None:
        os.environ.pop("FAKE_TESSERACT_SLEEP", None)
        self._tmp.cleanup()

    def orchestrator(self, **overrides) -> OcrOrchestrator:
        config = EngineConfig(tesseract_path=str(self.bin_dir), **overrides)
        probe = AvailabilityProbe(program="tesseract", windows_program="tesseract.exe")
        return OcrOrchestrator(
            config,
            engine=TesseractCliEngine(probe),
            notice=FirstUseNotice(),
            temp_dir=self.scratch,
        )

    def test_plain_text(self) -> None:
        orch = self.orchestrator()
        self.assertTrue(orch.is_available())

        buf = io.StringIO()
        result = orch.parse(self.image, XhtmlWriter(buf))

        self.assertTrue(result.output_found)
        self.assertIn('<div class="ocr">Hello World</div>', buf.getvalue())
        self.assertEqual(list(self.scratch.iterdir()), [])

    def test_hocr(self) -> None:
        rec = EventRecorder()
        self.orchestrator(output_format=OutputFormat.STRUCTURED_MARKUP).parse(self.image, rec)
        self.assertEqual(rec.started_elements(), ["div", "p"])
        self.assertIn("Hello World", rec.text())

    def test_timeout_leaves_no_process_or_files(self) -> None:
        os.environ["FAKE_TESSERACT_SLEEP"] = "1"
        orch = self.orchestrator(timeout_s=1.0, tessdata_path=str(self.scratch.parent))

        started = time.monotonic()
        with self.assertRaises(OcrTimeout):
            orch.parse(self.image, EventRecorder())
        self.assertLess(time.monotonic() - started, 15)

        pid_file = self.scratch.parent / "pid"
        if pid_file.exists():
            self.assertFalse(_pid_alive(int(pid_file.read_text())))
        self.assertEqual(list(self.scratch.iterdir()), [])


@unittest.skipUnless(os.name == "posix", "fake engine is a shebang script")
class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.bin_dir = self.root / "bin"
        self.bin_dir.mkdir()
        _install_fake_tesseract(self.bin_dir)
        self.image = self.root / "scan.png"
        self.image.write_bytes(b"\x89PNG" + b"\x00" * 4096)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_writes_xhtml_and_meta(self) -> None:
        out = self.root / "out" / "scan.xhtml"
        out.parent.mkdir()
        meta = self.root / "out" / "scan.json"

        code = main(
            [
                str(self.image),
                "--tesseract-path",
                str(self.bin_dir),
                "--out",
                str(out),
                "--meta-out",
                str(meta),
            ]
        )

        self.assertEqual(code, 0)
        self.assertIn('<div class="ocr">Hello World</div>', out.read_text(encoding="utf-8"))
        payload = json.loads(meta.read_text(encoding="utf-8"))
        self.assertTrue(payload["ocr_ran"])
        self.assertTrue(payload["output_found"])
        self.assertEqual(payload["output_format"], "txt")
        self.assertEqual(payload["outcome"]["status"], "completed")
        self.assertEqual(payload["errors"], [])

    def test_missing_engine_skips(self) -> None:
        out = self.root / "scan.xhtml"
        meta = self.root / "scan.json"
        code = main(
            [
                str(self.image),
                "--tesseract-path",
                str(self.root / "nowhere"),
                "--out",
                str(out),
                "--meta-out",
                str(meta),
            ]
        )
        self.assertEqual(code, 0)
        self.assertEqual(out.read_text(encoding="utf-8"), "")
        self.assertEqual(json.loads(meta.read_text(encoding="utf-8"))["skipped_reason"], "engine_unavailable")

    def test_require_engine(self) -> None:
        code = main(
            [str(self.image), "--tesseract-path", str(self.root / "nowhere"), "--require-engine"]
        )
        self.assertEqual(code, 3)

    def test_log_level(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                main([str(self.image), "--log-level", "LOUD"])
        self.assertEqual(ctx.exception.code, 2)

        args = build_arg_parser().parse_args([str(self.image), "--log-level", "debug"])
        self.assertEqual(args.log_level, "DEBUG")

    def test_invalid_config(self) -> None:
        self.assertEqual(main([str(self.image), "--psm", "42"]), 2)
        self.assertEqual(main([str(self.image), "-c", "no_equals_sign"]), 2)


if __name__ == "__main__":
    unittest.main()
