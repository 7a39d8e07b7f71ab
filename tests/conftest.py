"""Shared test fixtures for memlens."""

from pathlib import Path

import pytest

from memlens.models import MemorySnapshot, NumaNode, ProcessMemory, SystemMemory

MEMINFO = """\
MemTotal:       16000000 kB
MemFree:         2000000 kB
MemAvailable:    9000000 kB
Buffers:          500000 kB
Cached:          6000000 kB
SwapCached:            0 kB
Active:          7000000 kB
SwapTotal:       4000000 kB
SwapFree:        3000000 kB
Slab:             800000 kB
SReclaimable:     600000 kB
PageTables:        60000 kB
HugePages_Total:       0
"""


def smaps_rollup_text(
    rss: int = 0,
    pss: int = 0,
    shared_clean: int = 0,
    shared_dirty: int = 0,
    private_clean: int = 0,
    private_dirty: int = 0,
    swap: int = 0,
) -> str:
    """Render smaps_rollup contents the way the kernel lays them out."""
    return (
        "55d4a3a00000-7ffd5e9fe000 ---p 00000000 00:00 0                          [rollup]\n"
        f"Rss:             {rss} kB\n"
        f"Pss:             {pss} kB\n"
        f"Pss_Anon:        {pss} kB\n"
        f"Shared_Clean:    {shared_clean} kB\n"
        f"Shared_Dirty:    {shared_dirty} kB\n"
        f"Private_Clean:   {private_clean} kB\n"
        f"Private_Dirty:   {private_dirty} kB\n"
        "Referenced:      0 kB\n"
        f"Swap:            {swap} kB\n"
        "SwapPss:         0 kB\n"
        "Locked:          0 kB\n"
    )


def node_meminfo_text(node_id: int, total: int, free: int, used: int | None = None) -> str:
    """Render a per-node meminfo file."""
    lines = [
        f"Node {node_id} MemTotal:       {total} kB",
        f"Node {node_id} MemFree:        {free} kB",
    ]
    if used is not None:
        lines.append(f"Node {node_id} MemUsed:        {used} kB")
    lines.append(f"Node {node_id} Active:         0 kB")
    return "\n".join(lines) + "\n"


@pytest.fixture
def meminfo_text() -> str:
    """Contents of a 16GB host's /proc/meminfo."""
    return MEMINFO


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """Fake /proc with a meminfo file and no processes."""
    root = tmp_path / "proc"
    root.mkdir()
    (root / "meminfo").write_text(MEMINFO)
    return root


@pytest.fixture
def node_root(tmp_path: Path) -> Path:
    """Empty fake /sys/devices/system/node."""
    root = tmp_path / "node"
    root.mkdir()
    return root


@pytest.fixture
def add_process(proc_root: Path):
    """Create a /proc/<pid> directory with smaps_rollup and, optionally, comm."""

    def _add(pid: int, name: str | None = "proc", **sizes: int) -> Path:
        process_dir = proc_root / str(pid)
        process_dir.mkdir()
        (process_dir / "smaps_rollup").write_text(smaps_rollup_text(**sizes))
        if name is not None:
            (process_dir / "comm").write_text(f"{name}\n")
        return process_dir

    return _add


@pytest.fixture
def add_node(node_root: Path):
    """Create a node<N> directory with a meminfo file."""

    def _add(node_id: int, total: int, free: int, used: int | None = None) -> Path:
        node_dir = node_root / f"node{node_id}"
        node_dir.mkdir()
        (node_dir / "meminfo").write_text(node_meminfo_text(node_id, total, free, used))
        return node_dir

    return _add


def _make_process(
    pid: int = 100,
    name: str = "test_proc",
    rss_kb: int = 0,
    pss_kb: int = 0,
    shared_clean_kb: int = 0,
    shared_dirty_kb: int = 0,
    private_clean_kb: int = 0,
    private_dirty_kb: int = 0,
    swap_kb: int = 0,
) -> ProcessMemory:
    return ProcessMemory(
        pid=pid,
        name=name,
        rss_kb=rss_kb,
        pss_kb=pss_kb,
        shared_clean_kb=shared_clean_kb,
        shared_dirty_kb=shared_dirty_kb,
        private_clean_kb=private_clean_kb,
        private_dirty_kb=private_dirty_kb,
        swap_kb=swap_kb,
    )


def _make_system(
    total_kb: int = 16_000_000,
    free_kb: int = 2_000_000,
    available_kb: int = 9_000_000,
    buffers_kb: int = 500_000,
    cached_kb: int = 6_000_000,
    swap_total_kb: int = 4_000_000,
    swap_free_kb: int = 3_000_000,
    slab_kb: int = 800_000,
    page_tables_kb: int = 60_000,
) -> SystemMemory:
    return SystemMemory(
        total_kb=total_kb,
        free_kb=free_kb,
        available_kb=available_kb,
        buffers_kb=buffers_kb,
        cached_kb=cached_kb,
        swap_total_kb=swap_total_kb,
        swap_free_kb=swap_free_kb,
        slab_kb=slab_kb,
        page_tables_kb=page_tables_kb,
    )


@pytest.fixture
def make_process():
    """Factory for ProcessMemory records with zeroed defaults."""
    return _make_process


@pytest.fixture
def make_system():
    """Factory for SystemMemory records with a 16GB host's defaults."""
    return _make_system


@pytest.fixture
def make_snapshot():
    """Factory for MemorySnapshot records."""

    def _make(
        processes: list[ProcessMemory] | tuple[ProcessMemory, ...] = (),
        system: SystemMemory | None = None,
        numa_nodes: list[NumaNode] | tuple[NumaNode, ...] = (),
    ) -> MemorySnapshot:
        return MemorySnapshot(
            processes=tuple(processes),
            system=system or _make_system(),
            numa_nodes=tuple(numa_nodes),
        )

    return _make
