from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ..contracts import EngineConfig, OcrJob
from ..probe import AvailabilityProbe


class OcrEngine(ABC):
    """
    Interface for external OCR engines driven through a command line.

    An engine only knows how to describe a run (argv, environment, where the
    result lands). Spawning, supervision and reassembly live elsewhere.
    """

    @abstractmethod
    def default_probe(self) -> AvailabilityProbe:
        raise NotImplementedError

    @abstractmethod
    def build_job(self, *, config: EngineConfig, image_file: Path, output_stem: Path) -> OcrJob:
        raise NotImplementedError

    @abstractmethod
    def build_env(self, config: EngineConfig) -> dict[str, str]:
        raise NotImplementedError
