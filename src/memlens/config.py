"""Configuration system for memlens."""

from dataclasses import dataclass, field, fields
from pathlib import Path

import tomlkit

SORT_KEYS = ("pss", "rss", "shared", "pid")
VIEW_MODES = ("processes", "memory-map", "shared")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass
class SamplingConfig:
    """Where and how often memory is sampled."""

    interval: float = 1.0  # Seconds between samples
    proc_root: str = "/proc"
    node_root: str = "/sys/devices/system/node"


@dataclass
class DisplayConfig:
    """TUI display configuration."""

    default_sort: str = "pss"  # One of SORT_KEYS
    default_view: str = "processes"  # One of VIEW_MODES
    delta_highlight_kb: int = 10240  # Rows whose PSS moved more than this are bold


@dataclass
class LoggingConfig:
    """Log file configuration."""

    level: str = "warning"
    max_bytes: int = 1024 * 1024  # Rotate after 1MB
    backup_count: int = 3


def _section_to_table(section: object) -> tomlkit.items.Table:
    """Convert a config section dataclass to a tomlkit Table."""
    table = tomlkit.table()
    for f in fields(section):  # type: ignore[arg-type]
        table.add(f.name, getattr(section, f.name))
    return table


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "memlens"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "memlens"

    @property
    def log_path(self) -> Path:
        """Log file path."""
        return self.state_dir / "memlens.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "display", "logging"):
            doc.add(name, _section_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds an invalid value.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            sampling=_load_sampling_config(_section(data, "sampling")),
            display=_load_display_config(_section(data, "display")),
            logging=_load_logging_config(_section(data, "logging")),
        )


def _section(data: dict, name: str) -> dict:
    """Return a config section, which must be a table when present."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table, got {section!r}")
    return section


def _is_int(value: object) -> bool:
    # bool is an int subclass, but `true` is not a count
    return isinstance(value, int) and not isinstance(value, bool)


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config, using dataclass defaults for missing fields."""
    defaults = SamplingConfig()

    interval = data.get("interval", defaults.interval)
    if isinstance(interval, bool) or not isinstance(interval, int | float) or interval <= 0:
        raise ValueError(f"sampling.interval must be > 0, got {interval!r}")

    return SamplingConfig(
        interval=float(interval),
        proc_root=str(data.get("proc_root", defaults.proc_root)),
        node_root=str(data.get("node_root", defaults.node_root)),
    )


def _load_display_config(data: dict) -> DisplayConfig:
    """Load display config, using dataclass defaults for missing fields."""
    defaults = DisplayConfig()

    default_sort = data.get("default_sort", defaults.default_sort)
    default_view = data.get("default_view", defaults.default_view)
    delta_highlight_kb = data.get("delta_highlight_kb", defaults.delta_highlight_kb)

    if default_sort not in SORT_KEYS:
        raise ValueError(f"Invalid default_sort: {default_sort!r}. Must be one of {SORT_KEYS}")
    if default_view not in VIEW_MODES:
        raise ValueError(f"Invalid default_view: {default_view!r}. Must be one of {VIEW_MODES}")
    if not _is_int(delta_highlight_kb) or delta_highlight_kb < 0:
        raise ValueError(f"delta_highlight_kb must be >= 0, got {delta_highlight_kb!r}")

    return DisplayConfig(
        default_sort=default_sort,
        default_view=default_view,
        delta_highlight_kb=delta_highlight_kb,
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config, using dataclass defaults for missing fields."""
    defaults = LoggingConfig()

    level = str(data.get("level", defaults.level)).lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid logging level: {level!r}. Must be one of {LOG_LEVELS}")

    max_bytes = data.get("max_bytes", defaults.max_bytes)
    backup_count = data.get("backup_count", defaults.backup_count)
    if not _is_int(max_bytes) or max_bytes < 1:
        raise ValueError(f"max_bytes must be an integer >= 1, got {max_bytes!r}")
    if not _is_int(backup_count) or backup_count < 0:
        raise ValueError(f"backup_count must be an integer >= 0, got {backup_count!r}")

    return LoggingConfig(level=level, max_bytes=max_bytes, backup_count=backup_count)
