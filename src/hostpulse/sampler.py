"""Sampling engine for hostpulse."""

import logging
import threading

import psutil

from hostpulse.broadcast import Channels
from hostpulse.config import DEFAULT_DECIMATION, DEFAULT_INTERVAL
from hostpulse.models import (
    TOP_PROCESSES,
    CoreReading,
    CpuSnapshot,
    MemorySnapshot,
    ProcessEntry,
    ProcessSnapshot,
    rank_processes,
)
from hostpulse.sensors import TemperatureProbe

logger = logging.getLogger(__name__)

# Errors that mean "this metric could not be read this cycle"
QUERY_ERRORS = (psutil.Error, OSError)


class Sampler:
    """
    Sampler that polls the OS with psutil and publishes snapshots.

    Runs in a separate daemon thread so that blocking OS queries never delay
    the event loop serving viewers. CPU usage is published every cycle;
    memory and the process ranking only once every ``decimation`` cycles.
    """

    def __init__(
        self,
        channels: Channels,
        interval: float = DEFAULT_INTERVAL,
        decimation: int = DEFAULT_DECIMATION,
        top_processes: int = TOP_PROCESSES,
        probe: TemperatureProbe | None = None,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            channels: Channels to publish snapshots to.
            interval: Seconds between cycles. Default 0.6s.
            decimation: Memory and processes are refreshed every Nth cycle.
            top_processes: How many processes to keep in the ranking.
            probe: Temperature capability; detected from the host if omitted.
        """
        self._channels = channels
        self._interval = interval
        self._decimation = max(1, decimation)
        self._top_processes = top_processes
        self._counter = 0
        self._cycles = 0
        self._failing: set[str] = set()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # Initialize CPU percent (first call returns 0.0)
        first = psutil.cpu_percent(percpu=True)
        self._probe = probe if probe is not None else TemperatureProbe.detect(len(first))

    @property
    def interval(self) -> float:
        """Get the seconds between sampling cycles."""
        return self._interval

    @property
    def decimation(self) -> int:
        """Get how many cycles pass between memory and process refreshes."""
        return self._decimation

    @property
    def probe(self) -> TemperatureProbe:
        """Get the resolved temperature capability."""
        return self._probe

    @property
    def cycles(self) -> int:
        """Number of completed sampling cycles."""
        return self._cycles

    @property
    def is_running(self) -> bool:
        """Check if the sampler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="Sampler",
        )
        self._thread.start()
        logger.info(
            "Sampler started (interval %.2fs, memory/processes every %d cycles)",
            self._interval,
            self._decimation,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread and close the channels.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._channels.close()
        logger.info("Sampler stopped after %d cycles", self._cycles)

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Unexpected error in sampling cycle")

            self._stop_event.wait(timeout=self._interval)

    def tick(self) -> None:
        """Run one sampling cycle."""
        try:
            self._run_guarded("cpu", self.sample_cpu, self._channels.cpus.publish)
            if self._counter == 0:
                self._run_guarded("memory", self.sample_memory, self._channels.ram.publish)
                self._run_guarded(
                    "processes", self.sample_processes, self._channels.processes.publish
                )
        finally:
            self._counter += 1
            if self._counter >= self._decimation:
                self._counter = 0
            self._cycles += 1

    def _run_guarded(self, kind: str, sample, publish) -> None:
        """Sample one metric kind and publish it, skipping it on query errors."""
        try:
            snapshot = sample()
        except QUERY_ERRORS as exc:
            if kind not in self._failing:
                logger.warning("Could not read %s stats: %s", kind, exc)
                self._failing.add(kind)
            else:
                logger.debug("Could not read %s stats: %s", kind, exc)
            return
        except Exception:
            logger.exception("Unexpected error reading %s stats", kind)
            return

        if kind in self._failing:
            logger.info("Reading %s stats again", kind)
            self._failing.discard(kind)
        publish(snapshot)

    def sample_cpu(self) -> CpuSnapshot:
        """Collect per-core usage enriched with temperatures."""
        # Non-blocking, uses previous call's data
        usages = psutil.cpu_percent(percpu=True)
        temps, package = self._probe.read(len(usages))
        return CpuSnapshot(
            cores=tuple(
                CoreReading(usage=float(usage), temperature=temp)
                for usage, temp in zip(usages, temps)
            ),
            temperature=float(package),
            core_temp=self._probe.has_core_temps,
        )

    def sample_memory(self) -> MemorySnapshot:
        """Collect physical memory totals."""
        mem = psutil.virtual_memory()
        snapshot = MemorySnapshot(total=int(mem.total), used=int(mem.used))
        if not snapshot.is_consistent:
            logger.warning(
                "Inconsistent memory reading: used %d > total %d",
                snapshot.used,
                snapshot.total,
            )
        return snapshot

    def sample_processes(self) -> ProcessSnapshot:
        """
        Rank running processes by CPU usage.

        Processes that exit mid-iteration or deny access are skipped.
        """
        entries: list[ProcessEntry] = []

        for proc in psutil.process_iter(attrs=["name", "cpu_percent"]):
            try:
                info = proc.info
                entries.append(
                    ProcessEntry(
                        name=info.get("name") or "",
                        cpu_usage=int(info.get("cpu_percent") or 0.0),
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return rank_processes(entries, self._top_processes)
