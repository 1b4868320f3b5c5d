from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

from loguru import logger

from .errors import EngineUnavailable
from .process import ProcessRunner


def is_windows() -> bool:
    return sys.platform.startswith("win")


class AvailabilityProbe:
    """
    Memoized "can this external binary be run from here?" check.

    The cache maps the resolved executable path to the probe result and is
    shared by every job using this probe instance. When it holds more than
    `max_entries` paths it is emptied before the next insert.
    """

    def __init__(
        self,
        *,
        program: str,
        windows_program: str,
        runner: ProcessRunner | None = None,
        check_timeout_s: float = 10.0,
        max_entries: int = 100,
    ) -> None:
        self.program = program
        self.windows_program = windows_program
        self.check_timeout_s = check_timeout_s
        self.max_entries = max_entries
        self._runner = runner or ProcessRunner(grace_period_s=1.0)
        self._cache: dict[str, bool] = {}
        self._lock = threading.Lock()

    def executable_name(self) -> str:
        return self.windows_program if is_windows() else self.program

    def resolve(self, root_dir: str) -> str:
        name = self.executable_name()
        if not root_dir:
            return name
        return os.path.join(root_dir, name)

    def is_available(self, root_dir: str = "") -> bool:
        executable = self.resolve(root_dir)
        with self._lock:
            cached = self._cache.get(executable)
        if cached is not None:
            return cached

        if root_dir and not Path(root_dir).is_dir():
            logger.warning(
                "No existing directory configured for the {} binary (path: {})",
                self.program,
                root_dir,
            )
            result = False
        else:
            result = self._check(executable)
            logger.debug("probe {}: {}", executable, result)

        self._store(executable, result)
        return result

    def require(self, root_dir: str = "") -> str:
        """Return the resolved executable, or raise EngineUnavailable."""

        executable = self.resolve(root_dir)
        if not self.is_available(root_dir):
            raise EngineUnavailable(
                f"{self.program} binary is not available",
                detail={"expected_command": executable},
            )
        return executable

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def _store(self, executable: str, result: bool) -> None:
        with self._lock:
            if len(self._cache) > self.max_entries:
                self._cache.clear()
            self._cache[executable] = result

    def _check(self, executable: str) -> bool:
        # Running the bare binary is enough: it either starts (and prints usage)
        # or fails to spawn. The exit code does not matter.
        try:
            outcome = self._runner.run(
                [executable], timeout_s=self.check_timeout_s, label=f"probe {self.program}"
            )
        except OSError as e:
            logger.debug("probe {} failed to start: {}", executable, e)
            return False
        return outcome.completed


DEFAULT_TESSERACT_PROBE = AvailabilityProbe(program="tesseract", windows_program="tesseract.exe")
DEFAULT_IMAGEMAGICK_PROBE = AvailabilityProbe(program="convert", windows_program="convert.exe")
