"""
Configuration file support for nlplace.

Provides hierarchical configuration loading from:
1. Project config: .nlplace.toml or nlplace.toml in the project root
2. User config: ~/.config/nlplace/config.toml

Project config overrides user config, and both override the defaults.
Values passed programmatically (e.g. ``Config(placer=PlacerConfig(alpha=0.5))``)
bypass the files entirely.
"""

import sys
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]

# Config file names to search for in project directories
CONFIG_FILENAMES = [".nlplace.toml", "nlplace.toml"]

# User-level config path
USER_CONFIG_PATH = Path.home() / ".config" / "nlplace" / "config.toml"


@dataclass
class PlacerConfig:
    """Kernel options."""

    alpha: float = 1.0
    first_order: bool = True
    multi_sym_group: bool = True
    executor: str = "thread"
    max_workers: int | None = None
    chunk_size: int = 64
    seed: int = 6
    init_place: str = "random"
    max_iterations: int = 100


@dataclass
class PenaltyConfig:
    """Initial penalty multipliers and the schedule that grows them."""

    hpwl: float = 1.0
    overlap: float = 1.0
    oob: float = 1.0
    asym: float = 1.0
    cos: float = 1.0
    overlap_threshold: float = 0.05
    oob_threshold: float = 0.05
    asym_threshold: float = 0.05
    growth: float = 2.0
    max_lambda: float = 1e6


@dataclass
class DriverConfig:
    """Line-search options of the reference gradient-descent driver."""

    initial_step: float = 1.0
    shrink: float = 0.5
    armijo: float = 1e-4
    min_step: float = 1e-10
    gradient_tolerance: float = 1e-6
    max_outer_iterations: int = 10000


# All known config keys for validation
KNOWN_KEYS = {
    "placer": {f.name for f in fields(PlacerConfig)},
    "penalty": {f.name for f in fields(PenaltyConfig)},
    "driver": {f.name for f in fields(DriverConfig)},
}


@dataclass
class Config:
    """Merged configuration from all sources."""

    placer: PlacerConfig = field(default_factory=PlacerConfig)
    penalty: PenaltyConfig = field(default_factory=PenaltyConfig)
    driver: DriverConfig = field(default_factory=DriverConfig)

    # Track which file each setting came from
    _sources: dict = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, start_dir: Path | None = None) -> "Config":
        """
        Load configuration with precedence: project > user > defaults.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Merged configuration object
        """
        if start_dir is None:
            start_dir = Path.cwd()

        config = cls()
        sources: dict[str, str] = {}

        # Load user config first (lower precedence)
        if USER_CONFIG_PATH.exists():
            user_data = _load_toml_file(USER_CONFIG_PATH)
            if user_data:
                _merge_config(config, user_data, str(USER_CONFIG_PATH), sources)

        # Load project config (higher precedence)
        project_config = _find_project_config(start_dir)
        if project_config:
            project_data = _load_toml_file(project_config)
            if project_data:
                _merge_config(config, project_data, str(project_config), sources)

        config._sources = sources
        return config

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load a single config file on top of the defaults."""
        config = cls()
        data = _load_toml_file(path)
        if data:
            _merge_config(config, data, str(path), config._sources)
        return config

    def get_source(self, key: str) -> str:
        """Get the source file for a config key, e.g. ``"placer.alpha"``."""
        return self._sources.get(key, "default")


class ConfigError(Exception):
    """Configuration-related errors."""

    pass


def _find_project_config(start_dir: Path) -> Path | None:
    """
    Find project config by walking up the directory tree.

    Stops at .git directory or filesystem root.
    """
    current = start_dir.resolve()

    while True:
        for filename in CONFIG_FILENAMES:
            config_path = current / filename
            if config_path.is_file():
                return config_path

        # Stop at .git directory (project root)
        if (current / ".git").exists():
            break

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _load_toml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a TOML file safely.

    Returns:
        Parsed TOML data or None if TOML support is unavailable

    Raises:
        ConfigError: If TOML is invalid or the file cannot be read
    """
    if tomllib is None:
        warnings.warn(
            "tomli package not installed. Config file support requires 'pip install tomli' for Python < 3.11.",
            stacklevel=2,
        )
        return None

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e


def _merge_config(
    config: Config, data: dict[str, Any], source: str, sources: dict[str, str]
) -> None:
    """
    Merge loaded config data into a Config object.

    Args:
        config: Config object to update
        data: Raw config data from TOML
        source: Source file path (for tracking)
        sources: Dict to update with source info
    """
    for key in data:
        if key not in KNOWN_KEYS:
            warnings.warn(f"Unknown config key '{key}' in {source}", stacklevel=3)

    for section_name, known in KNOWN_KEYS.items():
        if section_name not in data:
            continue
        section_data = data[section_name]
        _warn_unknown_keys(section_data, known, section_name, source)

        section = getattr(config, section_name)
        for key in known:
            if key in section_data:
                value = section_data[key]
                # TOML integers are accepted where floats are expected
                if isinstance(getattr(section, key), float) and isinstance(value, int):
                    value = float(value)
                setattr(section, key, value)
                sources[f"{section_name}.{key}"] = source


def _warn_unknown_keys(data: dict[str, Any], known: set[str], section: str, source: str) -> None:
    """Warn about unknown keys in a config section."""
    for key in data:
        if key not in known:
            warnings.warn(f"Unknown config key '{section}.{key}' in {source}", stacklevel=4)


def generate_template() -> str:
    """
    Generate a template config file with all options documented.

    Returns:
        Template TOML string
    """
    return """# nlplace configuration file
# Place as .nlplace.toml in project root or ~/.config/nlplace/config.toml for user defaults

[placer]
# Smoothing coefficient for log-sum-exp wirelength and penalty ramps
# alpha = 1.0

# Compute gradients and run the iterative driver (false: evaluate once)
# first_order = true

# One symmetry axis per group (false: a single shared axis)
# multi_sym_group = true

# Task graph executor: serial, thread
# executor = "thread"
# max_workers = 4

# Operators handled by one task
# chunk_size = 64

# Initial placement: random, normal
# init_place = "random"
# seed = 6

# Outer iteration budget of the default stop condition
# max_iterations = 100

[penalty]
# Initial penalty multipliers per family
# hpwl = 1.0
# overlap = 1.0
# oob = 1.0
# asym = 1.0
# cos = 1.0

# Multipliers grow by `growth` while their family exceeds the threshold
# overlap_threshold = 0.05
# oob_threshold = 0.05
# asym_threshold = 0.05
# growth = 2.0

# Upper limit for a grown multiplier
# max_lambda = 1e6

[driver]
# Backtracking line search
# initial_step = 1.0
# shrink = 0.5
# armijo = 1e-4
# min_step = 1e-10
# gradient_tolerance = 1e-6

# Hard iteration cap, independent of the stop condition
# max_outer_iterations = 10000
"""
