"""Configuration management for heartbeat-rollup.

Settings live in a YAML file and are loaded into one dataclass per section.
Missing keys fall back to dataclass defaults and unknown keys are ignored, so
old config files keep working as settings are added.

Configuration Sections:
- aggregation: how heartbeats are turned into durations
- cache: freshness rules for cached summaries
- storage: event store location and read deadline

Example:
    >>> from rollup.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.aggregation.max_heartbeat_seconds)
    120
    >>> config_mgr.update('aggregation', 'merge_gap_seconds', 15)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from pathlib import Path
from typing import Optional
import yaml

from .models import DIMENSIONS

logger = logging.getLogger(__name__)


@dataclass
class AggregationConfig:
    """Heartbeat to duration conversion settings.

    Attributes:
        merge_gap_seconds: Same-context heartbeats closer than this are
            collapsed into one span (default: 30). Never larger than
            max_heartbeat_seconds.
        max_heartbeat_seconds: Most time a single heartbeat can account for
            (default: 120)
        dimensions: Heartbeat fields to break durations down by
    """
    merge_gap_seconds: float = 30.0
    max_heartbeat_seconds: float = 120.0
    dimensions: list[str] = field(default_factory=lambda: list(DIMENSIONS))

    def __post_init__(self):
        if self.max_heartbeat_seconds <= 0:
            raise ValueError("max_heartbeat_seconds must be positive")
        if self.merge_gap_seconds < 0:
            raise ValueError("merge_gap_seconds must not be negative")
        if self.merge_gap_seconds > self.max_heartbeat_seconds:
            logger.warning(
                f"merge_gap_seconds ({self.merge_gap_seconds}) exceeds max_heartbeat_seconds "
                f"({self.max_heartbeat_seconds}), clamping"
            )
            self.merge_gap_seconds = self.max_heartbeat_seconds
        unknown = set(self.dimensions) - set(DIMENSIONS)
        if unknown:
            raise ValueError(f"Unknown dimensions: {sorted(unknown)}")

    @property
    def merge_gap(self) -> timedelta:
        return timedelta(seconds=self.merge_gap_seconds)

    @property
    def max_heartbeat(self) -> timedelta:
        return timedelta(seconds=self.max_heartbeat_seconds)


@dataclass
class CacheConfig:
    """Summary cache settings.

    Attributes:
        bounded_ttl_seconds: How long a bounded summary stays fresh when its
            window had not yet ended at computation time (default: 300).
            Summaries of windows that were already over never expire.
        refresh_interval_seconds: Minimum age before an open-ended summary is
            extended again; 0 extends on every query (default: 0)
        wait_timeout_seconds: How long a caller waits on another caller's
            in-flight computation; None waits indefinitely (default: None)
    """
    bounded_ttl_seconds: float = 300.0
    refresh_interval_seconds: float = 0.0
    wait_timeout_seconds: Optional[float] = None


@dataclass
class StorageConfig:
    """Event store settings.

    Attributes:
        db_path: SQLite database file (default: ~/heartbeat-rollup-data/heartbeats.db)
        read_timeout_seconds: Deadline for a single event read (default: 10)
    """
    db_path: str = "~/heartbeat-rollup-data/heartbeats.db"
    read_timeout_seconds: Optional[float] = 10.0


@dataclass
class Config:
    """Top-level configuration container."""
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


class ConfigManager:
    """Loads, saves and updates the YAML configuration file.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Actual configuration file path being used
        config: Current configuration object
    """

    DEFAULT_PATH = Path("~/.config/heartbeat-rollup/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        """Initialize ConfigManager.

        Args:
            path: Custom config file path (uses DEFAULT_PATH if None)
        """
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from YAML file.

        Returns:
            Config object with loaded or default values. Invalid YAML or
            invalid values fall back to the defaults.
        """
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = yaml.safe_load(f) or {}
                config = self._dict_to_config(data)
                logger.info(f"Loaded configuration from {self.path}")
                return config
            except (yaml.YAMLError, OSError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config from {self.path}: {e}")
                logger.info("Using default configuration")
                return Config()
        else:
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

    def _dict_to_config(self, data: dict) -> Config:
        """Construct Config from a dictionary, ignoring unknown keys."""
        def filter_known_fields(data_dict: dict, dataclass_type) -> dict:
            known_fields = {f.name for f in dataclasses.fields(dataclass_type)}
            filtered = {k: v for k, v in data_dict.items() if k in known_fields}
            unknown = set(data_dict.keys()) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown config fields: {unknown}")
            return filtered

        aggregation_data = filter_known_fields(data.get('aggregation') or {}, AggregationConfig)
        cache_data = filter_known_fields(data.get('cache') or {}, CacheConfig)
        storage_data = filter_known_fields(data.get('storage') or {}, StorageConfig)

        return Config(
            aggregation=AggregationConfig(**aggregation_data),
            cache=CacheConfig(**cache_data),
            storage=StorageConfig(**storage_data),
        )

    def save(self) -> None:
        """Save current configuration to the YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(
                    asdict(self.config),
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single configuration value and save.

        Args:
            section: Config section name (e.g., 'aggregation', 'cache')
            key: Setting name within section (e.g., 'merge_gap_seconds')
            value: New value to set

        Returns:
            True if value was changed and saved, False if unchanged or invalid
        """
        section_obj = getattr(self.config, section, None)
        if section_obj is None:
            logger.warning(f"Invalid config section: {section}")
            return False

        if not hasattr(section_obj, key):
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value == value:
            logger.debug(f"No change for {section}.{key} (already {value})")
            return False

        # Rebuild the section so its validation runs on the new value
        try:
            updated = dataclasses.replace(section_obj, **{key: value})
        except (TypeError, ValueError) as e:
            logger.warning(f"Rejected {section}.{key}={value!r}: {e}")
            return False

        setattr(self.config, section, updated)
        self.save()
        logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
        return True

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self.config)

    def reload(self) -> None:
        """Reload configuration from file."""
        self.config = self._load()
        logger.info("Configuration reloaded")

    def create_default_file(self) -> None:
        """Create the config file with default values if it doesn't exist."""
        if not self.path.exists():
            self.save()
            logger.info(f"Created default configuration at {self.path}")
        else:
            logger.warning(f"Configuration file already exists at {self.path}")
