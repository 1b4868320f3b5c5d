from __future__ import annotations

import shutil
import sys
import tempfile
from pathlib import Path
from typing import BinaryIO

from loguru import logger


class TemporaryResources:
    """
    Per-job scratch directory. Everything created through it is removed by
    `close()`.

    Cleanup is best-effort: a file that cannot be deleted is logged and left
    behind, it never fails the job.
    """

    def __init__(self, *, base_dir: Path | None = None, prefix: str = "tess-extract-") -> None:
        self._base_dir = base_dir
        self._prefix = prefix
        self._root: Path | None = None

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._base_dir))
        return self._root

    def path(self, name: str) -> Path:
        """A path inside the scratch directory; the file is not created."""

        return self.root / name

    def copy_of(self, source: Path, name: str) -> Path:
        target = self.path(name)
        shutil.copyfile(source, target)
        return target

    def spool(self, stream: BinaryIO, name: str) -> Path:
        target = self.path(name)
        with target.open("wb") as f:
            shutil.copyfileobj(stream, f, 1024 * 1024)
        return target

    def close(self) -> None:
        if self._root is None:
            return
        root, self._root = self._root, None

        def _log_failure(func, path, exc) -> None:
            if isinstance(exc, tuple):
                exc = exc[1]
            logger.warning("Could not delete temporary file {}: {}", path, exc)

        if sys.version_info >= (3, 12):
            shutil.rmtree(root, onexc=_log_failure)
        else:
            shutil.rmtree(root, onerror=_log_failure)

    def __enter__(self) -> TemporaryResources:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
