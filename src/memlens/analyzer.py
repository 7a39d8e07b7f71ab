"""Memory analysis for memlens.

Turns raw snapshots into per-process statistics with sample-to-sample PSS
deltas, system totals, sharing statistics and a physical memory map whose
categories add up to MemTotal.
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from memlens.models import MemorySnapshot, NumaNode, ProcessMemory, SystemMemory


@dataclass(slots=True, frozen=True)
class ProcessStats:
    """Derived statistics of a single process."""

    pid: int
    name: str
    pss_kb: int
    rss_kb: int
    shared_kb: int
    private_kb: int
    swap_kb: int
    pss_delta_kb: int  # Signed change since the previous analysis


@dataclass(slots=True, frozen=True)
class SystemStats:
    """Derived system-wide statistics."""

    total_kb: int
    used_kb: int  # total - available
    available_kb: int
    cached_kb: int
    buffers_kb: int
    swap_total_kb: int
    swap_used_kb: int
    total_process_pss_kb: int
    total_process_rss_kb: int


@dataclass(slots=True, frozen=True)
class SharedMemoryStats:
    """How much memory is shared between processes."""

    total_shared_kb: int
    total_shared_clean_kb: int
    total_shared_dirty_kb: int
    sharing_efficiency: float  # Percent of summed RSS not in summed PSS


@dataclass(slots=True, frozen=True)
class MemoryMap:
    """
    Breakdown of physical memory into mutually exclusive categories.

    kernel_kb is whatever MemTotal leaves after the measured categories, so
    the additive categories sum to MemTotal. process_shared_kb overlaps
    with cache and is reported for information only.
    """

    kernel_kb: int
    process_private_kb: int
    process_shared_kb: int
    cache_kb: int
    buffers_kb: int
    free_kb: int
    slab_kb: int
    page_tables_kb: int

    def categories(self) -> Iterator[tuple[str, int]]:
        """Yield (label, kB) for the additive categories in display order."""
        yield "Kernel", self.kernel_kb
        yield "Process Private", self.process_private_kb
        yield "Page Cache", self.cache_kb
        yield "Buffers", self.buffers_kb
        yield "Slab", self.slab_kb
        yield "Page Tables", self.page_tables_kb
        yield "Free", self.free_kb


@dataclass(slots=True, frozen=True)
class AnalyzedState:
    """Everything the presentation layer needs for one refresh."""

    processes: tuple[ProcessStats, ...]
    system: SystemStats
    shared_memory: SharedMemoryStats
    numa_nodes: tuple[NumaNode, ...]
    memory_map: MemoryMap

    @classmethod
    def empty(cls) -> "AnalyzedState":
        """All-zero state shown before the first sample arrives."""
        return cls(
            processes=(),
            system=SystemStats(0, 0, 0, 0, 0, 0, 0, 0, 0),
            shared_memory=SharedMemoryStats(0, 0, 0, 0.0),
            numa_nodes=(),
            memory_map=MemoryMap(0, 0, 0, 0, 0, 0, 0, 0),
        )


class Analyzer:
    """
    Stateful analyzer fed one snapshot per sampling cycle.

    PSS deltas are computed against the previous analysis. The history is
    rebuilt from scratch every time, so a pid missing from one cycle starts
    over with a delta of 0 when it shows up again.
    """

    def __init__(self) -> None:
        self._last_snapshot: MemorySnapshot | None = None
        self._process_history: dict[int, int] = {}

    @property
    def is_ready(self) -> bool:
        """True once at least one snapshot has been supplied."""
        return self._last_snapshot is not None

    @property
    def process_history(self) -> dict[int, int]:
        """Copy of the pid -> PSS mapping from the last analysis."""
        return dict(self._process_history)

    def update(self, snapshot: MemorySnapshot) -> None:
        """Replace the snapshot used by the next get_state() call."""
        self._last_snapshot = snapshot

    def get_state(self) -> AnalyzedState:
        """Analyze the latest snapshot and advance the PSS history."""
        snapshot = self._last_snapshot
        if snapshot is None:
            return AnalyzedState.empty()

        return AnalyzedState(
            processes=self._analyze_processes(snapshot.processes),
            system=analyze_system(snapshot.system, snapshot.processes),
            shared_memory=analyze_shared_memory(snapshot.processes),
            numa_nodes=snapshot.numa_nodes,
            memory_map=build_memory_map(snapshot.system, snapshot.processes),
        )

    def _analyze_processes(self, processes: Sequence[ProcessMemory]) -> tuple[ProcessStats, ...]:
        stats: list[ProcessStats] = []
        new_history: dict[int, int] = {}

        for proc in processes:
            last_pss = self._process_history.get(proc.pid, proc.pss_kb)
            stats.append(
                ProcessStats(
                    pid=proc.pid,
                    name=proc.name,
                    pss_kb=proc.pss_kb,
                    rss_kb=proc.rss_kb,
                    shared_kb=proc.shared_clean_kb + proc.shared_dirty_kb,
                    private_kb=proc.private_clean_kb + proc.private_dirty_kb,
                    swap_kb=proc.swap_kb,
                    pss_delta_kb=proc.pss_kb - last_pss,
                )
            )
            new_history[proc.pid] = proc.pss_kb

        self._process_history = new_history
        return tuple(stats)


def analyze_system(system: SystemMemory, processes: Sequence[ProcessMemory]) -> SystemStats:
    """Compute system-wide statistics."""
    return SystemStats(
        total_kb=system.total_kb,
        # MemAvailable already accounts for reclaimable cache and buffers
        used_kb=max(system.total_kb - system.available_kb, 0),
        available_kb=system.available_kb,
        cached_kb=system.cached_kb,
        buffers_kb=system.buffers_kb,
        swap_total_kb=system.swap_total_kb,
        swap_used_kb=max(system.swap_total_kb - system.swap_free_kb, 0),
        total_process_pss_kb=sum(p.pss_kb for p in processes),
        total_process_rss_kb=sum(p.rss_kb for p in processes),
    )


def analyze_shared_memory(processes: Sequence[ProcessMemory]) -> SharedMemoryStats:
    """Compute sharing statistics across all processes."""
    total_shared_clean = sum(p.shared_clean_kb for p in processes)
    total_shared_dirty = sum(p.shared_dirty_kb for p in processes)
    total_rss = sum(p.rss_kb for p in processes)
    total_pss = sum(p.pss_kb for p in processes)

    if total_rss > 0:
        efficiency = (total_rss - total_pss) / total_rss * 100.0
    else:
        efficiency = 0.0

    return SharedMemoryStats(
        total_shared_kb=total_shared_clean + total_shared_dirty,
        total_shared_clean_kb=total_shared_clean,
        total_shared_dirty_kb=total_shared_dirty,
        sharing_efficiency=efficiency,
    )


def build_memory_map(system: SystemMemory, processes: Sequence[ProcessMemory]) -> MemoryMap:
    """Split MemTotal into mutually exclusive categories."""
    total_private = sum(p.private_clean_kb + p.private_dirty_kb for p in processes)
    total_shared = sum(p.shared_clean_kb + p.shared_dirty_kb for p in processes)

    accounted = (
        total_private
        + system.cached_kb
        + system.buffers_kb
        + system.free_kb
        + system.slab_kb
        + system.page_tables_kb
    )

    return MemoryMap(
        # Clamped, not reported, when the measured categories exceed MemTotal
        kernel_kb=max(system.total_kb - accounted, 0),
        process_private_kb=total_private,
        process_shared_kb=total_shared,
        cache_kb=system.cached_kb,
        buffers_kb=system.buffers_kb,
        free_kb=system.free_kb,
        slab_kb=system.slab_kb,
        page_tables_kb=system.page_tables_kb,
    )
