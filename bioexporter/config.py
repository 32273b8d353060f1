from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import Any, Dict

import yaml

from bioexporter.schema import DEFAULT_MAX_ENTRIES, DEFAULT_SCHEMA, get_schema
from bioexporter.utils import maybe_bool_parse

DEFAULT_INTERVAL_SEC = 5.0


class ConfigError(Exception):
    """Raised when a config file cannot be used"""
    pass


@dataclass
class RuntimeSettings:
    interval: float = DEFAULT_INTERVAL_SEC
    schema: str = DEFAULT_SCHEMA
    max_entries: int = DEFAULT_MAX_ENTRIES
    debug: bool = False


def _safe_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Load YAML config if present; return {} if file is absent.

    Raises ConfigError if the file cannot be read or is not a mapping.
    """
    if not path or not os.path.isfile(path):
        return {}

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a YAML mapping/object")

    return data


def build_runtime_settings(args: argparse.Namespace, cfg: Dict[str, Any]) -> RuntimeSettings:
    """
    Merge defaults -> config -> CLI overrides into a RuntimeSettings object.
    """
    settings = RuntimeSettings()

    if isinstance(cfg, dict):
        settings.interval = _safe_float(cfg.get("interval"), settings.interval)
        settings.schema = str(cfg.get("schema") or settings.schema)
        settings.max_entries = _safe_int(cfg.get("max_entries"), settings.max_entries)
        if "debug" in cfg:
            settings.debug = maybe_bool_parse(cfg["debug"])

    # CLI overrides have final say
    if getattr(args, "interval", None) is not None:
        settings.interval = args.interval
    if getattr(args, "schema", None):
        settings.schema = args.schema
    if getattr(args, "max_entries", None) is not None:
        settings.max_entries = args.max_entries
    if getattr(args, "debug", False):
        settings.debug = True

    if settings.interval <= 0:
        settings.interval = DEFAULT_INTERVAL_SEC
    if settings.max_entries <= 0:
        settings.max_entries = DEFAULT_MAX_ENTRIES

    # Unknown schema names raise InvalidArgument
    get_schema(settings.schema)

    return settings
