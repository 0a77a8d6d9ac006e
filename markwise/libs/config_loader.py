"""Configuration loading utilities for markwise."""

import copy
import os
from pathlib import Path
from typing import Any, List
import logging

import yaml

LOG = logging.getLogger(__name__)

ConfigType = dict[str, Any]

_MISSING = object()

# libs -> markwise -> project root
PROJECT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


def _merge(orig_conf: Any, new_conf: Any) -> Any:
    """Recursively merge configuration dictionaries; non-dict values are replaced."""
    if not (isinstance(orig_conf, dict) and isinstance(new_conf, dict)):
        return copy.deepcopy(new_conf)
    result = copy.deepcopy(orig_conf)
    for k, v in new_conf.items():
        result[k] = _merge(orig_conf[k], v) if k in orig_conf else v
    return result


def load_configs(*path_configs: str) -> ConfigType:
    """Load and merge YAML configuration files.

    Args:
        *path_configs: Paths to YAML configuration files; later files win

    Returns:
        Merged configuration dictionary

    Raises:
        TypeError: If a config file doesn't contain a dict
        ValueError: If no configs are loaded
    """
    result: ConfigType = {}
    for path in path_configs:
        if not os.path.isfile(path):
            LOG.warning("Skipping missing config file %s", repr(path))
            continue
        LOG.info("loading config from %s", path)
        with open(path, "r") as f:
            c = yaml.safe_load(f) or {}
        if not isinstance(c, dict):
            raise TypeError(f"YAML config file {path} must be a dict")
        result = _merge(result, c)
    if not result:
        raise ValueError("No configs loaded")
    return result


def config_dir() -> Path:
    """The config directory: $MARKWISE_CONFIG_DIR, else config/ at the project root."""
    override = os.environ.get("MARKWISE_CONFIG_DIR")
    return Path(override) if override else PROJECT_CONFIG_DIR


def _yaml_files(directory: Path) -> List[str]:
    return [str(p) for p in sorted(directory.iterdir()) if p.suffix in ('.yaml', '.yml')]


def load_default_configs() -> ConfigType:
    """Load config/default.yaml and the uncommitted config/local.yaml overrides."""
    directory = config_dir()
    return load_configs(str(directory / "default.yaml"), str(directory / "local.yaml"))


def load_all_configs() -> ConfigType:
    """Load and merge every .yaml/.yml file in the config directory, in name order."""
    directory = config_dir()
    if not directory.is_dir():
        raise ValueError(f"Config directory not found: {directory}")

    yaml_files = _yaml_files(directory)
    if not yaml_files:
        raise ValueError("No YAML files found in config directory")

    LOG.info("Loading configs from: %s", yaml_files)
    return load_configs(*yaml_files)


def get_config(key: str, config: ConfigType = None, default: Any = _MISSING) -> Any:
    """Get a configuration value by dot-separated key.

    Args:
        key: Dot-separated path to config value (e.g., "grading.marks_policy")
        config: Configuration dict (if None, loads default configs)
        default: Value returned when the key is absent (if omitted, KeyError is raised)

    Raises:
        KeyError: If key not found in configuration and no default was given
    """
    if config is None:
        config = load_default_configs()

    value = config
    for k in key.split('.'):
        if not isinstance(value, dict) or k not in value:
            if default is not _MISSING:
                return default
            raise KeyError(f"Key {key} not found in configuration")
        value = value[k]
    return value
