"""Memory collector for memlens.

Reads the kernel's text interfaces under /proc and /sys and turns them into
a MemorySnapshot. Parsing is permissive: unknown lines are ignored and values
that fail to parse become 0. Only an unreadable /proc/meminfo or an
unlistable /proc aborts a collection pass.
"""

import os
import re
from pathlib import Path

import structlog

from memlens.models import MemorySnapshot, NumaNode, ProcessMemory, SystemMemory

log = structlog.get_logger()

DEFAULT_PROC_ROOT = Path("/proc")
DEFAULT_NODE_ROOT = Path("/sys/devices/system/node")

_NODE_DIR = re.compile(r"node([0-9]+)")

# meminfo label -> SystemMemory field
_MEMINFO_FIELDS = {
    "MemTotal:": "total_kb",
    "MemFree:": "free_kb",
    "MemAvailable:": "available_kb",
    "Buffers:": "buffers_kb",
    "Cached:": "cached_kb",
    "SwapTotal:": "swap_total_kb",
    "SwapFree:": "swap_free_kb",
    "Slab:": "slab_kb",
    "PageTables:": "page_tables_kb",
}

# smaps_rollup label -> ProcessMemory field
_SMAPS_FIELDS = {
    "Rss:": "rss_kb",
    "Pss:": "pss_kb",
    "Shared_Clean:": "shared_clean_kb",
    "Shared_Dirty:": "shared_dirty_kb",
    "Private_Clean:": "private_clean_kb",
    "Private_Dirty:": "private_dirty_kb",
    "Swap:": "swap_kb",
}

# Substring matched anywhere in a node meminfo line -> NumaNode field
_NODE_FIELDS = (
    ("MemTotal:", "mem_total_kb"),
    ("MemFree:", "mem_free_kb"),
    ("MemUsed:", "mem_used_kb"),
)


class CollectionError(Exception):
    """A collection pass could not produce a snapshot."""


def parse_kb(token: str) -> int:
    """Parse an unsigned decimal counter, returning 0 for anything else."""
    if token.isascii() and token.isdigit():
        return int(token)
    return 0


def _parse_labelled(text: str, labels: dict[str, str]) -> dict[str, int]:
    """Parse `<Label>: <value> kB` lines into a field -> value mapping."""
    values = dict.fromkeys(labels.values(), 0)
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        field = labels.get(parts[0])
        if field is not None:
            values[field] = parse_kb(parts[1])
    return values


def parse_meminfo(text: str) -> SystemMemory:
    """Parse the contents of /proc/meminfo."""
    return SystemMemory(**_parse_labelled(text, _MEMINFO_FIELDS))


def parse_smaps_rollup(pid: int, name: str, text: str) -> ProcessMemory:
    """Parse the contents of /proc/<pid>/smaps_rollup."""
    return ProcessMemory(pid=pid, name=name, **_parse_labelled(text, _SMAPS_FIELDS))


def parse_node_meminfo(node_id: int, text: str) -> NumaNode:
    """
    Parse a per-node meminfo file.

    Lines look like ``Node 0 MemTotal:  16314444 kB``, so the value is the
    fourth token rather than the one following the label. When the kernel
    does not report MemUsed it is derived from total and free.
    """
    values = {field: 0 for _, field in _NODE_FIELDS}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        for label, field in _NODE_FIELDS:
            if label in line:
                values[field] = parse_kb(parts[3])
                break

    if values["mem_used_kb"] == 0:
        values["mem_used_kb"] = max(values["mem_total_kb"] - values["mem_free_kb"], 0)

    return NumaNode(node_id=node_id, **values)


class Collector:
    """
    Collects memory snapshots from the kernel's /proc and /sys interfaces.

    Each call to collect() reads system counters, then NUMA nodes, then every
    visible process, sequentially on the caller's thread.
    """

    def __init__(
        self,
        proc_root: str | os.PathLike[str] = DEFAULT_PROC_ROOT,
        node_root: str | os.PathLike[str] = DEFAULT_NODE_ROOT,
    ) -> None:
        """
        Initialize the Collector.

        Args:
            proc_root: Root of the process filesystem. Default /proc.
            node_root: Directory holding node<N> entries. Default /sys/devices/system/node.
        """
        self._proc_root = Path(proc_root)
        self._node_root = Path(node_root)

    @property
    def proc_root(self) -> Path:
        """Root of the process filesystem."""
        return self._proc_root

    @property
    def node_root(self) -> Path:
        """Directory holding the NUMA node entries."""
        return self._node_root

    def collect(self) -> MemorySnapshot:
        """
        Collect one snapshot.

        Raises:
            CollectionError: If /proc/meminfo is unreadable or the process
                directory cannot be listed.
        """
        system = self._collect_system_memory()
        numa_nodes = self._collect_numa_nodes()
        processes = self._collect_processes()

        log.debug(
            "snapshot_collected",
            processes=len(processes),
            numa_nodes=len(numa_nodes),
        )
        return MemorySnapshot(
            processes=tuple(processes),
            system=system,
            numa_nodes=tuple(numa_nodes),
        )

    def _collect_system_memory(self) -> SystemMemory:
        path = self._proc_root / "meminfo"
        try:
            content = path.read_text()
        except OSError as e:
            raise CollectionError(f"Failed to read {path}: {e}") from e
        return parse_meminfo(content)

    def _collect_numa_nodes(self) -> list[NumaNode]:
        """Read every node<N>/meminfo, skipping nodes that cannot be read."""
        try:
            with os.scandir(self._node_root) as it:
                entries = list(it)
        except FileNotFoundError:
            return []
        except OSError as e:
            log.warning("numa_root_unreadable", path=str(self._node_root), error=str(e))
            return []

        nodes: list[NumaNode] = []
        for entry in entries:
            match = _NODE_DIR.fullmatch(entry.name)
            if match is None:
                continue

            node_id = int(match.group(1))
            meminfo_path = Path(entry.path) / "meminfo"
            try:
                content = meminfo_path.read_text()
            except OSError as e:
                log.debug("numa_node_skipped", node_id=node_id, error=str(e))
                continue

            nodes.append(parse_node_meminfo(node_id, content))

        # Directory order is unspecified
        nodes.sort(key=lambda node: node.node_id)
        return nodes

    def _collect_processes(self) -> list[ProcessMemory]:
        """
        Read smaps_rollup for every numeric entry under the process root.

        Processes that exit mid-scan or deny access are skipped.
        """
        try:
            with os.scandir(self._proc_root) as it:
                entries = list(it)
        except OSError as e:
            raise CollectionError(f"Failed to list {self._proc_root}: {e}") from e

        processes: list[ProcessMemory] = []
        for entry in entries:
            if not (entry.name.isascii() and entry.name.isdigit()):
                continue

            pid = int(entry.name)
            process_dir = Path(entry.path)
            try:
                content = (process_dir / "smaps_rollup").read_text()
            except OSError as e:
                log.debug("process_skipped", pid=pid, error=str(e))
                continue

            name = self._read_process_name(pid, process_dir)
            processes.append(parse_smaps_rollup(pid, name, content))

        return processes

    @staticmethod
    def _read_process_name(pid: int, process_dir: Path) -> str:
        """Return the short command name, or ``[<pid>]`` when unavailable."""
        try:
            return (process_dir / "comm").read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return f"[{pid}]"
