"""
Tracker Configuration
Centralized configuration for the checkpoint tracker client.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Union
import logging
import os

import yaml

from shared.constants import Defaults, Timing

logger = logging.getLogger(__name__)


@dataclass
class AuthorityConfig:
    """Race authority connection configuration."""
    url: str = Defaults.AUTHORITY_URL.value
    connect_timeout: float = Defaults.CONNECT_TIMEOUT.value  # Opening handshake only
    ping_interval: Optional[float] = 20.0  # None disables keepalive pings
    ping_timeout: Optional[float] = 60.0


@dataclass
class TrackingConfig:
    """Checkpoint detection configuration."""
    cooldown_ms: float = Timing.CHECKPOINT_COOLDOWN_MS.value


@dataclass
class StorageConfig:
    """Region persistence configuration."""
    config_dir: str = Defaults.CONFIG_DIR.value
    autosave: bool = True  # Save after every mutating operator action


@dataclass
class TrackerConfig:
    """Main configuration for the tracker client."""
    authority: AuthorityConfig = field(default_factory=AuthorityConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Debug settings
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        """Load configuration from environment variables."""
        ping_interval = os.getenv("AUTHORITY_PING_INTERVAL", "20.0")
        return cls(
            authority=AuthorityConfig(
                url=os.getenv("AUTHORITY_URL", Defaults.AUTHORITY_URL.value),
                connect_timeout=float(os.getenv("AUTHORITY_CONNECT_TIMEOUT", str(Defaults.CONNECT_TIMEOUT.value))),
                ping_interval=None if ping_interval.lower() == "none" else float(ping_interval),
                ping_timeout=float(os.getenv("AUTHORITY_PING_TIMEOUT", "60.0"))
            ),
            tracking=TrackingConfig(
                cooldown_ms=float(os.getenv("TRACKER_COOLDOWN_MS", str(Timing.CHECKPOINT_COOLDOWN_MS.value)))
            ),
            storage=StorageConfig(
                config_dir=os.getenv("TRACKER_CONFIG_DIR", Defaults.CONFIG_DIR.value),
                autosave=os.getenv("TRACKER_AUTOSAVE", "true").lower() == "true"
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper()
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["TrackerConfig"] = None) -> "TrackerConfig":
        """
        Overlay a nested mapping onto a base configuration.

        Unknown sections and keys are ignored with a warning.
        """
        config = base or cls()
        sections = {
            "authority": config.authority,
            "tracking": config.tracking,
            "storage": config.storage
        }

        for section_name, values in (data or {}).items():
            if section_name == "log_level":
                config.log_level = str(values).upper()
                continue
            section = sections.get(section_name)
            if section is None or not isinstance(values, dict):
                logger.warning(f"[CONFIG] Ignoring unknown section: {section_name}")
                continue
            for key, value in values.items():
                if not hasattr(section, key):
                    logger.warning(f"[CONFIG] Ignoring unknown key: {section_name}.{key}")
                    continue
                setattr(section, key, value)

        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path], base: Optional["TrackerConfig"] = None) -> "TrackerConfig":
        """Load configuration from a YAML file on top of base (defaults if None)."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"[CONFIG] Loaded configuration from {path}")
        return cls.from_dict(data, base=base)


def get_config(yaml_path: Optional[Union[str, Path]] = None) -> TrackerConfig:
    """
    Get configuration: environment first, then the optional YAML file on top.

    Falls back to defaults when the environment holds unparsable values.
    """
    try:
        config = TrackerConfig.from_env()
    except ValueError as e:
        logger.warning(f"[CONFIG] Invalid environment value ({e}), using defaults")
        config = TrackerConfig()

    if yaml_path is not None and Path(yaml_path).exists():
        config = TrackerConfig.from_yaml(yaml_path, base=config)
    return config


def configure_logging(config: TrackerConfig, level: Optional[str] = None):
    """Set up root logging; an explicit level wins over config.log_level."""
    logging.basicConfig(
        level=(level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
