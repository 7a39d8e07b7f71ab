"""memlens - Main Textual application."""

from collections.abc import Sequence
from enum import Enum

import structlog
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import ContentSwitcher, DataTable, Footer, Static
from textual.widgets.data_table import RowDoesNotExist

from memlens.analyzer import (
    AnalyzedState,
    Analyzer,
    MemoryMap,
    ProcessStats,
    SharedMemoryStats,
    SystemStats,
)
from memlens.collector import CollectionError, Collector
from memlens.config import Config
from memlens.models import NumaNode

log = structlog.get_logger()

KB_PER_GIB = 1024 * 1024
BAR_WIDTH = 50


class SortKey(Enum):
    """Sort keys for the process table."""

    PSS = "pss"
    RSS = "rss"
    SHARED = "shared"
    PID = "pid"


class ViewMode(Enum):
    """Views shown below the system stats. Values are widget ids."""

    PROCESSES = "processes"
    MEMORY_MAP = "memory-map"
    SHARED = "shared"


def _next_member(member: Enum) -> Enum:
    members = list(type(member))
    return members[(members.index(member) + 1) % len(members)]


def format_mib(size_kb: int) -> str:
    """Format a kB value as whole MiB."""
    return f"{size_kb // 1024} M"


def format_gib(size_kb: int) -> str:
    """Format a kB value as GiB with one decimal."""
    return f"{size_kb / KB_PER_GIB:.1f} GiB"


def format_delta(delta_kb: int) -> str:
    """Format a signed PSS delta in MiB, or "-" when unchanged."""
    if delta_kb == 0:
        return "-"
    # Truncate toward zero so a small change shows as +0, not -1
    return f"{int(delta_kb / 1024):+d}"


def percent(part: int, whole: int) -> float:
    """Return part as a percentage of whole, 0.0 when whole is 0."""
    if whole <= 0:
        return 0.0
    return part / whole * 100.0


def usage_bar(pct: float, width: int = BAR_WIDTH) -> str:
    """Render a percentage as a run of '#' characters."""
    return "#" * max(int(pct / 100.0 * width), 0)


class SystemStatsPanel(Static):
    """Header widget showing system memory statistics."""

    DEFAULT_CSS = """
    SystemStatsPanel {
        height: auto;
        min-height: 7;
        padding: 0 1;
        border: solid $primary;
        border-title-color: $text;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SystemStatsPanel."""
        super().__init__("Loading memory info...", *args, **kwargs)
        self.border_title = "System Memory"
        self._system: SystemStats | None = None

    def update_stats(self, system: SystemStats) -> None:
        """Update the statistics from derived system stats."""
        self._system = system
        self.update(self._get_stats_text())

    def _get_stats_text(self) -> str:
        """Get system stats display."""
        stats = self._system
        if stats is None or stats.total_kb == 0:
            return "Loading memory info..."

        used_pct = percent(stats.used_kb, stats.total_kb)
        swap_pct = percent(stats.swap_used_kb, stats.swap_total_kb)
        return (
            f"[yellow]Memory:[/yellow] {stats.used_kb / KB_PER_GIB:.1f} / "
            f"{format_gib(stats.total_kb)} ({used_pct:.1f}%)\n"
            f"[yellow]Available:[/yellow] {format_gib(stats.available_kb)}\n"
            f"[yellow]Cache/Buffers:[/yellow] {format_gib(stats.cached_kb + stats.buffers_kb)}\n"
            f"[yellow]Swap:[/yellow] {stats.swap_used_kb / KB_PER_GIB:.1f} / "
            f"{format_gib(stats.swap_total_kb)} ({swap_pct:.1f}%)\n"
            f"[yellow]Process PSS:[/yellow] {format_gib(stats.total_process_pss_kb)} (accurate) "
            f"| RSS: {format_gib(stats.total_process_rss_kb)} (overcounted)"
        )


class ProcessTable(Container):
    """Container for the per-process memory table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    COLUMNS = (
        ("PID", "pid", 7),
        ("Name", "name", 20),
        ("PSS", "pss", 9),
        ("RSS", "rss", 9),
        ("Shared", "shared", 9),
        ("Private", "private", 10),
        ("Swap", "swap", 8),
        ("Delta", "delta", 8),
    )

    def __init__(
        self,
        *args,
        sort_key: SortKey = SortKey.PSS,
        delta_highlight_kb: int = 10240,
        **kwargs,
    ) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._stats: dict[int, ProcessStats] = {}
        self._sort_key = sort_key
        self._delta_highlight_kb = delta_highlight_kb

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key, re-sort and return it."""
        self._sort_key = _next_member(self._sort_key)
        if self.is_mounted:
            table = self.query_one("#process-table", DataTable)
            self._apply_sort(table)
            self._update_title()
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        self._ensure_columns(table)
        self._update_title()

    def _ensure_columns(self, table: DataTable) -> None:
        if table.columns:
            return
        for label, key, width in self.COLUMNS:
            table.add_column(label, key=key, width=width)

    def update_processes(self, processes: Sequence[ProcessStats]) -> None:
        """
        Update the process table with new data.

        Uses update_cell for existing rows to avoid re-rendering the whole table.
        """
        table = self.query_one("#process-table", DataTable)
        self._ensure_columns(table)

        new_stats = {proc.pid: proc for proc in processes}

        # Remove rows for processes that no longer exist
        for pid in self._current_pids - new_stats.keys():
            try:
                table.remove_row(str(pid))
            except RowDoesNotExist:
                log.debug("process_row_missing", pid=pid)

        for proc in processes:
            row_key = str(proc.pid)
            cells = self._row_cells(proc)
            if proc.pid in self._current_pids:
                for (_, column_key, _), value in zip(self.COLUMNS, cells, strict=True):
                    table.update_cell(row_key, column_key, value)
            else:
                table.add_row(*cells, key=row_key)

        self._current_pids = set(new_stats)
        self._stats = new_stats
        self._apply_sort(table)
        self._update_title()

    def _row_cells(self, proc: ProcessStats) -> list[str | Text]:
        """Build the cells of one row; large PSS movers are bold."""
        style = "bold" if abs(proc.pss_delta_kb) > self._delta_highlight_kb else ""
        return [
            str(proc.pid),
            Text(proc.name, style=style),
            Text(format_mib(proc.pss_kb), style=style),
            Text(format_mib(proc.rss_kb), style=style),
            Text(format_mib(proc.shared_kb), style=style),
            Text(format_mib(proc.private_kb), style=style),
            Text(format_mib(proc.swap_kb), style=style),
            Text(format_delta(proc.pss_delta_kb), style=style),
        ]

    def _sort_value(self, pid: int) -> int:
        stats = self._stats[pid]
        if self._sort_key is SortKey.PSS:
            return stats.pss_kb
        if self._sort_key is SortKey.RSS:
            return stats.rss_kb
        if self._sort_key is SortKey.SHARED:
            return stats.shared_kb
        return stats.pid

    def _apply_sort(self, table: DataTable) -> None:
        """Sort rows by the current key; PID ascending, sizes descending."""
        if not self._stats:
            return
        table.sort(
            "pid",
            key=lambda pid: self._sort_value(int(pid)),
            reverse=self._sort_key is not SortKey.PID,
        )

    def _update_title(self) -> None:
        self.border_title = (
            f"Processes ({len(self._current_pids)}) [Sort: {self._sort_key.name.title()}]"
        )


class MemoryMapView(Static):
    """Physical memory distribution and NUMA node usage."""

    DEFAULT_CSS = """
    MemoryMapView {
        height: 1fr;
        padding: 0 1;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize MemoryMapView."""
        super().__init__(*args, **kwargs)
        self.border_title = "Physical Memory Map"

    def update_map(
        self,
        memory_map: MemoryMap,
        total_kb: int,
        numa_nodes: Sequence[NumaNode],
    ) -> None:
        """Render the memory map against MemTotal."""
        lines = ["[bold yellow]Physical Memory Distribution:[/bold yellow]", ""]
        for label, size_kb in memory_map.categories():
            pct = percent(size_kb, total_kb)
            lines.append(
                f"{label:16} {size_kb / KB_PER_GIB:7.1f} GiB ({pct:5.1f}%) {usage_bar(pct)}"
            )

        shared_pct = percent(memory_map.process_shared_kb, total_kb)
        lines.append(
            f"[dim]{'Process Shared':16} {memory_map.process_shared_kb / KB_PER_GIB:7.1f} GiB "
            f"({shared_pct:5.1f}%) overlaps page cache[/dim]"
        )
        lines.append("")
        lines.append(f"[yellow]Total:[/yellow] {format_gib(total_kb)}")

        if numa_nodes:
            lines.append("")
            lines.append("[bold yellow]NUMA Nodes:[/bold yellow]")
            for node in numa_nodes:
                used_pct = percent(node.mem_used_kb, node.mem_total_kb)
                lines.append(
                    f"  Node {node.node_id}: {node.mem_used_kb / KB_PER_GIB:.1f} / "
                    f"{format_gib(node.mem_total_kb)} ({used_pct:.1f}%)"
                )

        self.update("\n".join(lines))


class SharedMemoryView(Static):
    """Totals of memory shared between processes."""

    DEFAULT_CSS = """
    SharedMemoryView {
        height: 1fr;
        padding: 0 1;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SharedMemoryView."""
        super().__init__(*args, **kwargs)
        self.border_title = "Shared Memory Analysis"

    def update_shared(self, shared: SharedMemoryStats) -> None:
        """Render the sharing statistics."""
        self.update(
            f"[yellow]Total Shared Memory:[/yellow] {format_gib(shared.total_shared_kb)}\n"
            f"  Clean: {format_gib(shared.total_shared_clean_kb)}\n"
            f"  Dirty: {format_gib(shared.total_shared_dirty_kb)}\n"
            f"[yellow]Sharing Efficiency:[/yellow] {shared.sharing_efficiency:.1f}%\n"
            "\n"
            "Memory saved by sharing pages across processes"
        )


class MemlensApp(App):
    """Main memlens application."""

    TITLE = "memlens"
    SUB_TITLE = "Physical Memory Analyzer"

    CSS = """
    Screen {
        layout: vertical;
    }

    #system-stats {
        dock: top;
    }

    #views {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("n", "cycle_sort", "Sort"),
        ("v", "cycle_view", "View"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        collector: Collector | None = None,
        analyzer: Analyzer | None = None,
    ) -> None:
        """
        Initialize the MemlensApp.

        Args:
            config: Application config. Defaults are used when omitted.
            collector: Snapshot source. Built from config.sampling when omitted.
            analyzer: Analyzer holding the PSS history. A new one when omitted.
        """
        super().__init__()
        self._config = config or Config()
        sampling = self._config.sampling
        self._collector = collector or Collector(sampling.proc_root, sampling.node_root)
        self._analyzer = analyzer or Analyzer()
        self._view_mode = ViewMode(self._config.display.default_view)
        self._state = AnalyzedState.empty()

    @property
    def state(self) -> AnalyzedState:
        """The most recently displayed state."""
        return self._state

    @property
    def view_mode(self) -> ViewMode:
        """Get the current view."""
        return self._view_mode

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        display = self._config.display
        yield SystemStatsPanel(id="system-stats")
        with ContentSwitcher(initial=self._view_mode.value, id="views"):
            yield ProcessTable(
                id=ViewMode.PROCESSES.value,
                sort_key=SortKey(display.default_sort),
                delta_highlight_kb=display.delta_highlight_kb,
            )
            yield MemoryMapView(id=ViewMode.MEMORY_MAP.value)
            yield SharedMemoryView(id=ViewMode.SHARED.value)
        yield Footer()

    def on_mount(self) -> None:
        """Show the empty baseline, then start sampling."""
        self._update_ui(self._analyzer.get_state())
        self.call_after_refresh(self.sample)
        self.set_interval(self._config.sampling.interval, self.sample)

    def sample(self) -> bool:
        """
        Run one collect/update/analyze cycle and refresh the UI.

        Returns False when collection failed; the previous state stays on screen.
        """
        try:
            snapshot = self._collector.collect()
        except CollectionError as e:
            log.error("collection_failed", error=str(e))
            self.notify(str(e), title="Collection failed", severity="error")
            return False

        self._analyzer.update(snapshot)
        self._update_ui(self._analyzer.get_state())
        return True

    def _update_ui(self, state: AnalyzedState) -> None:
        """Push a new analyzed state into every view."""
        self._state = state
        self.query_one("#system-stats", SystemStatsPanel).update_stats(state.system)
        self.query_one(ProcessTable).update_processes(state.processes)
        self.query_one(MemoryMapView).update_map(
            state.memory_map, state.system.total_kb, state.numa_nodes
        )
        self.query_one(SharedMemoryView).update_shared(state.shared_memory)

    def action_cycle_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.name}")

    def action_cycle_view(self) -> None:
        """Handle view action - cycle through views."""
        self._view_mode = _next_member(self._view_mode)
        self.query_one("#views", ContentSwitcher).current = self._view_mode.value
