from __future__ import annotations

import os
import sys
import tempfile
import threading
import unittest
from pathlib import Path

from loguru import logger

from tess_extract.contracts import RunOutcome, RunStatus
from tess_extract.errors import EngineUnavailable
from tess_extract.probe import AvailabilityProbe


class _CountingRunner:
    def __init__(self, *, status: RunStatus = RunStatus.COMPLETED, raises: BaseException | None = None) -> None:
        self.status = status
        self.raises = raises
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def run(self, command, **kwargs) -> RunOutcome:
        with self._lock:
            self.calls.append(list(command))
        if self.raises is not None:
            raise self.raises
        return RunOutcome(status=self.status, returncode=1, elapsed_s=0.01)


def _probe(runner: _CountingRunner) -> AvailabilityProbe:
    return AvailabilityProbe(program="tesseract", windows_program="tesseract.exe", runner=runner)


class TestAvailabilityProbe(unittest.TestCase):
    def test_result_is_memoized_per_resolved_path(self) -> None:
        runner = _CountingRunner()
        probe = _probe(runner)

        self.assertTrue(probe.is_available(""))
        self.assertTrue(probe.is_available(""))
        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(runner.calls[0], [probe.resolve("")])

        with tempfile.TemporaryDirectory() as d:
            self.assertTrue(probe.is_available(d))
            self.assertEqual(runner.calls[-1], [os.path.join(d, probe.executable_name())])
        self.assertEqual(len(runner.calls), 2)

    def test_missing_root_directory_short_circuits(self) -> None:
        runner = _CountingRunner()
        probe = _probe(runner)
        messages: list[str] = []
        handler_id = logger.add(messages.append, level="WARNING")
        try:
            self.assertFalse(probe.is_available("/definitely/not/a/dir"))
            self.assertFalse(probe.is_available("/definitely/not/a/dir"))
        finally:
            logger.remove(handler_id)

        self.assertEqual(runner.calls, [])
        self.assertEqual(len(messages), 1)
        self.assertIn("/definitely/not/a/dir", messages[0])

    def test_spawn_failure_means_unavailable(self) -> None:
        probe = _probe(_CountingRunner(raises=FileNotFoundError("tesseract")))
        self.assertFalse(probe.is_available(""))

    def test_probe_that_hangs_means_unavailable(self) -> None:
        probe = _probe(_CountingRunner(status=RunStatus.TIMED_OUT))
        self.assertFalse(probe.is_available(""))

    def test_cache_is_cleared_after_exceeding_capacity(self) -> None:
        runner = _CountingRunner()
        probe = AvailabilityProbe(
            program="tesseract", windows_program="tesseract.exe", runner=runner, max_entries=3
        )
        with tempfile.TemporaryDirectory() as d:
            roots = []
            for i in range(5):
                root = Path(d) / f"r{i}"
                root.mkdir()
                roots.append(str(root))

            for root in roots[:4]:
                probe.is_available(root)
            self.assertEqual(probe.cache_size(), 4)
            self.assertEqual(len(runner.calls), 4)

            # Still cached: no new probe.
            probe.is_available(roots[0])
            self.assertEqual(len(runner.calls), 4)

            # Fifth path overflows the bound: cache is reset, then refilled.
            probe.is_available(roots[4])
            self.assertEqual(probe.cache_size(), 1)
            probe.is_available(roots[0])
            self.assertEqual(len(runner.calls), 6)

    def test_default_capacity_is_one_hundred(self) -> None:
        runner = _CountingRunner()
        probe = _probe(runner)
        self.assertEqual(probe.max_entries, 100)

    def test_reset(self) -> None:
        runner = _CountingRunner()
        probe = _probe(runner)
        probe.is_available("")
        probe.reset()
        probe.is_available("")
        self.assertEqual(len(runner.calls), 2)

    def test_require(self) -> None:
        probe = _probe(_CountingRunner(raises=FileNotFoundError("x")))
        with self.assertRaises(EngineUnavailable) as ctx:
            probe.require("")
        self.assertEqual(ctx.exception.code, "OCR_BACKEND_NOT_INSTALLED")
        self.assertEqual(ctx.exception.to_error().detail, {"expected_command": probe.resolve("")})

    def test_concurrent_probes_agree(self) -> None:
        runner = _CountingRunner()
        probe = _probe(runner)
        results: list[bool] = []

        def _worker() -> None:
            results.append(probe.is_available(""))

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results, [True] * 8)
        self.assertEqual(probe.cache_size(), 1)

    def test_real_binary(self) -> None:
        # The Python interpreter stands in for an engine binary: run bare with a
        # closed stdin it starts and exits.
        exe = Path(sys.executable)
        probe = AvailabilityProbe(program=exe.name, windows_program=exe.name)
        self.assertTrue(probe.is_available(str(exe.parent)))

        missing = AvailabilityProbe(program="no-such-ocr-binary", windows_program="no-such-ocr-binary.exe")
        self.assertFalse(missing.is_available(str(exe.parent)))


if __name__ == "__main__":
    unittest.main()
