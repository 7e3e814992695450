"""Data structures for the readings collected in one sampling tick."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class CPUSample:
    """CPU usage percentages, overall and per logical core."""
    overall: float
    per_core: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class MemorySample:
    """Virtual memory usage."""
    used_percent: float
    available_bytes: float
    total_bytes: float


@dataclass(frozen=True)
class DiskSample:
    """
    Usage of one mounted partition.

    When the usage lookup for the partition failed, ``error`` holds the
    exception and the numeric fields are ``None``.
    """
    mountpoint: str
    device: str
    used_percent: Optional[float] = None
    total_bytes: Optional[float] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def label_values(self) -> List[str]:
        """Label values in ``(mount, device)`` order."""
        return [self.mountpoint, self.device]
