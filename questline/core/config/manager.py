"""
ConfigManager: progression balance configuration for Questline.

Purpose
-------
Serve hierarchical, dot-notation configuration for progression balance
(scoring tables, level curve, leaderboard limits, job tuning). Values come
from YAML defaults packaged with the engine, optionally deep-merged with
operator YAML files from `Config.CONFIG_DIR`, plus in-process overrides.

Responsibilities
----------------
- Load packaged YAML defaults with `yaml.safe_load`
- Deep-merge operator YAML overrides on top of the defaults
- Provide dot-notation lookups with a caller-supplied default
- Allow explicit in-process overrides (tests, runtime tuning)

Non-Responsibilities
--------------------
- Environment / connection settings (handled by Config)
- Persisting configuration changes

Design Notes
------------
- Class-level state; services receive the class itself as their
  `config_manager` and call `get(key, default)`.
- Lookups never raise: a missing key yields the default.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional

import yaml

from questline.core.config.config import Config
from questline.core.logging.logger import get_logger

logger = get_logger(__name__)

DEFAULTS_DIR = Path(__file__).resolve().parent / "defaults"


class ConfigManager:
    """
    Hierarchical configuration with YAML defaults and overrides.

    Precedence: packaged YAML < operator YAML (CONFIG_DIR) < set_override().

    Examples
    --------
    >>> ConfigManager.initialize()
    >>> ConfigManager.get("scoring.task.priority_multipliers.high", 1.0)
    1.2
    """

    _defaults: Dict[str, Any] = {}
    _cache: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _initialized: bool = False

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_dir(cls, config_dir: Path, target: Dict[str, Any]) -> int:
        """Load every YAML file under `config_dir` into `target`; returns file count."""
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; skipping",
                extra={"config_dir": str(config_dir)},
            )
            return 0

        yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue

            if isinstance(data, dict):
                cls._deep_merge_dict(target, data)
                loaded_count += 1
                logger.debug("Loaded YAML config", extra={"file": str(yaml_file)})
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": str(yaml_file), "root_type": type(data).__name__},
                )

        return loaded_count

    @classmethod
    def _rebuild_cache(cls) -> None:
        cache = copy.deepcopy(cls._defaults)
        if Config.CONFIG_DIR is not None:
            cls._load_yaml_dir(Config.CONFIG_DIR, cache)
        for key, value in cls._overrides.items():
            cls._assign(cache, key, value)
        cls._cache = cache

    @staticmethod
    def _assign(target: Dict[str, Any], key: str, value: Any) -> None:
        parts = key.split(".")
        node = target
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def initialize(cls, extra_dirs: Optional[List[Path]] = None) -> None:
        """(Re)load packaged defaults, operator YAML and any extra directories."""
        defaults: Dict[str, Any] = {}
        file_count = cls._load_yaml_dir(DEFAULTS_DIR, defaults)
        for extra in extra_dirs or []:
            file_count += cls._load_yaml_dir(extra, defaults)

        cls._defaults = defaults
        cls._rebuild_cache()
        cls._initialized = True

        logger.info(
            "ConfigManager initialized",
            extra={
                "yaml_file_count": file_count,
                "top_level_keys": sorted(cls._cache.keys()),
                "override_count": len(cls._overrides),
            },
        )

    @classmethod
    def reset(cls) -> None:
        """Clear overrides and force a reload on next access."""
        cls._overrides.clear()
        cls._cache = {}
        cls._defaults = {}
        cls._initialized = False

    # =========================================================================
    # READ / WRITE API
    # =========================================================================

    @classmethod
    def _get_from(cls, source: Dict[str, Any], key: str) -> Any:
        value: Any = source
        for part in key.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Falls back to packaged defaults, then to `default`.
        """
        if not cls._initialized:
            cls.initialize()

        value = cls._get_from(cls._cache, key)
        if value is None:
            value = cls._get_from(cls._defaults, key)
        return default if value is None else value

    @classmethod
    def set_override(cls, key: str, value: Any) -> None:
        """Override a single dot-notation key in-process."""
        if not cls._initialized:
            cls.initialize()
        cls._overrides[key] = value
        cls._assign(cls._cache, key, value)
        logger.info("Configuration override applied", extra={"config_key": key})

    @classmethod
    def clear_overrides(cls) -> None:
        cls._overrides.clear()
        if cls._initialized:
            cls._rebuild_cache()

    @classmethod
    def get_all_keys(cls) -> List[str]:
        if not cls._initialized:
            cls.initialize()
        return list(cls._cache.keys())
