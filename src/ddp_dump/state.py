from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .completion import IdleCompletionDetector
from .config import DumpConfig
from .io.destinations import DestinationMapping


@dataclass
class DumpSession:
    config: DumpConfig
    mapping: DestinationMapping
    detector: IdleCompletionDetector

    # explicitly requested first, discovered ones appended after completion
    collections: List[str] = field(default_factory=list)

    @property
    def capture_all(self) -> bool:
        return self.config.capture_all

    @classmethod
    def from_config(cls, cfg: DumpConfig, detector: IdleCompletionDetector | None = None) -> "DumpSession":
        """Build the session; raises ConfigError for ambiguous outputs."""
        mapping = DestinationMapping.build(cfg.collections, cfg.outputs)
        return cls(
            config=cfg,
            mapping=mapping,
            detector=detector or IdleCompletionDetector(cfg.timeout_ms),
            collections=list(cfg.collections),
        )
