"""Data models for memlens.

Raw records produced by the collector. All sizes are in kB.
"""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ProcessMemory:
    """Memory breakdown of a single process, read from smaps_rollup."""

    pid: int
    name: str
    rss_kb: int
    pss_kb: int
    shared_clean_kb: int
    shared_dirty_kb: int
    private_clean_kb: int
    private_dirty_kb: int
    swap_kb: int


@dataclass(slots=True, frozen=True)
class SystemMemory:
    """System-wide counters from /proc/meminfo."""

    total_kb: int
    free_kb: int
    available_kb: int
    buffers_kb: int
    cached_kb: int
    swap_total_kb: int
    swap_free_kb: int
    slab_kb: int
    page_tables_kb: int


@dataclass(slots=True, frozen=True)
class NumaNode:
    """Counters of one NUMA node."""

    node_id: int
    mem_total_kb: int
    mem_free_kb: int
    mem_used_kb: int


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """Point-in-time result of one collection pass."""

    processes: tuple[ProcessMemory, ...]
    system: SystemMemory
    numa_nodes: tuple[NumaNode, ...]  # Ascending by node_id
