"""Data models for hostpulse."""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

TOP_PROCESSES = 4


@dataclass(slots=True, frozen=True)
class CoreReading:
    """Usage and optional temperature of one logical core."""

    usage: float  # 0.0 - 100.0
    temperature: float | None = None

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-compatible wire shape."""
        return {"usage": self.usage, "temp": self.temperature}


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Immutable snapshot of per-core CPU state."""

    cores: tuple[CoreReading, ...]
    temperature: float = 0.0  # Package / SoC temperature, 0.0 if unavailable
    core_temp: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-compatible wire shape."""
        return {
            "cores": [core.to_payload() for core in self.cores],
            "temp": self.temperature,
            "core_temp": self.core_temp,
        }


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """Immutable snapshot of physical memory, in bytes."""

    total: int
    used: int

    @property
    def is_consistent(self) -> bool:
        """Check that used memory does not exceed the total."""
        return 0 <= self.used <= self.total

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-compatible wire shape."""
        return {"total": self.total, "used": self.used}


@dataclass(slots=True, frozen=True)
class ProcessEntry:
    """A process name with its CPU usage truncated to a whole percent."""

    name: str
    cpu_usage: int

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-compatible wire shape."""
        return {"name": self.name, "cpu_usage": self.cpu_usage}


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """The busiest processes, sorted by descending CPU usage."""

    entries: tuple[ProcessEntry, ...]

    def __len__(self) -> int:
        """Get the number of ranked processes."""
        return len(self.entries)

    def to_payload(self) -> list[dict[str, Any]]:
        """Return the JSON-compatible wire shape."""
        return [entry.to_payload() for entry in self.entries]


def rank_processes(
    entries: Iterable[ProcessEntry],
    limit: int = TOP_PROCESSES,
) -> ProcessSnapshot:
    """
    Rank processes by CPU usage and keep the first ``limit``.

    The sort is stable, so processes with equal usage keep the order in
    which the OS enumerated them.
    """
    ranked = sorted(entries, key=lambda entry: entry.cpu_usage, reverse=True)
    return ProcessSnapshot(entries=tuple(ranked[: max(0, limit)]))
