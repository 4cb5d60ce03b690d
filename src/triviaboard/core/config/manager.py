"""
ConfigManager: layered, dot-notation access to leaderboard tunables.

Purpose
-------
- Provide hierarchical, dot-notation access to tunable configuration values
  (feed limit, poll interval, raw field names, dispatch pool size).
- Back configuration with built-in defaults overlaid by YAML files and then
  by runtime overrides.

Responsibilities
----------------
- Load and deep-merge every YAML file found under the configured directory.
- Serve reads through an in-memory cache of resolved keys, with metrics.
- Apply runtime overrides (`set`) after running any registered validator.

Key Design Decisions
--------------------
- Precedence: built-in defaults < YAML files < runtime overrides.
- Instance-based, so independent leaderboard services can run with
  different settings side by side (and tests get a clean manager each).
- Missing directories and unreadable files degrade to defaults with a
  warning instead of failing startup.

Dependencies
------------
- PyYAML (`yaml.safe_load`) for the files under ``config/``.
- `triviaboard.core.logging.logger.get_logger` for structured logging.
"""

from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional, Union

import yaml

from triviaboard.core.config.config import Config
from triviaboard.core.exceptions import ConfigurationError
from triviaboard.core.logging.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigManager", "BUILTIN_DEFAULTS"]

_MISSING = object()

# Last-resort defaults; config/leaderboard.yaml normally repeats these.
BUILTIN_DEFAULTS: Dict[str, Any] = {
    "leaderboard": {
        "feed": {
            "limit": 25,
            "poll_interval_seconds": 2.0,
        },
        "fields": {
            "user_id": "id",
            "display_name": "fullname",
            "location": "ciudad",
            "score": "accumulatedPuntuacion",
            "achieved_at": "scoreAchievedAt",
        },
        "dispatch": {
            "max_workers": 4,
            "join_timeout_seconds": 5.0,
        },
    },
}


class ConfigManager:
    """
    Layered configuration with dot-notation lookups.

    Features
    --------
    - Hierarchical config access with dot notation (e.g. `"leaderboard.feed.limit"`).
    - YAML defaults deep-merged over built-in defaults.
    - Runtime overrides with optional per-key validators.
    - Hit/miss counters for the resolved-key cache.

    Examples
    --------
    >>> manager = ConfigManager.load()
    >>> manager.get("leaderboard.feed.limit")
    25
    >>> manager.set("leaderboard.feed.limit", 10)
    >>> manager.get("leaderboard.feed.limit")
    10
    """

    def __init__(
        self,
        defaults: Optional[Mapping[str, Any]] = None,
        *,
        validators: Optional[Mapping[str, Callable[[Any], Any]]] = None,
    ) -> None:
        self._values: Dict[str, Any] = copy.deepcopy(BUILTIN_DEFAULTS)
        if defaults:
            self._deep_merge_dict(self._values, copy.deepcopy(dict(defaults)))

        self._overrides: Dict[str, Any] = {}
        self._cache: Dict[str, Any] = {}
        self._validators: Dict[str, Callable[[Any], Any]] = dict(validators or {})
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._files_loaded: list[str] = []

    # =========================================================================
    # YAML LOADING & DEFAULTS
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = value

    @classmethod
    def load(
        cls,
        config_dir: Optional[Union[str, Path]] = None,
        *,
        validators: Optional[Mapping[str, Callable[[Any], Any]]] = None,
    ) -> "ConfigManager":
        """
        Build a manager from every YAML file under `config_dir`.

        Parameters
        ----------
        config_dir:
            Directory to scan recursively for ``*.yaml`` / ``*.yml``.
            Defaults to ``Config.CONFIG_DIR``.
        validators:
            Optional mapping of full dot keys to validator callables.
        """
        manager = cls(validators=validators)
        manager._load_yaml_configs(Path(config_dir or Config.CONFIG_DIR))
        return manager

    def _load_yaml_configs(self, config_dir: Path) -> None:
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
        if not yaml_files:
            logger.info(
                "No YAML config files discovered; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        for yaml_file in yaml_files:
            relative = str(yaml_file.relative_to(config_dir))
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": relative,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                continue

            if isinstance(data, dict):
                self._deep_merge_dict(self._values, data)
                self._files_loaded.append(relative)
                logger.debug("Loaded YAML config", extra={"file": relative})
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": relative, "root_type": type(data).__name__},
                )

        self._cache.clear()
        logger.info(
            "Configuration defaults loaded",
            extra={"config_dir": str(config_dir), "files": list(self._files_loaded)},
        )

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def _lookup(tree: Mapping[str, Any], key: str) -> Any:
        node: Any = tree
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get(self, key: str, default: Any = None) -> Any:
        """
        Resolve a dot-notation key.

        Runtime overrides win over YAML, YAML wins over built-in defaults.
        Returns `default` if the key is unknown.
        """
        with self._lock:
            if key in self._cache:
                self._hits += 1
                return self._cache[key]

            self._misses += 1
            value = self._overrides.get(key, _MISSING)
            if value is _MISSING:
                value = self._lookup(self._values, key)
            if value is _MISSING:
                return default

            self._cache[key] = value
            return value

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(key, f"expected a number, got {value!r}")
        return int(value)

    def get_float(self, key: str, default: float) -> float:
        value = self.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(key, f"expected a number, got {value!r}")
        return float(value)

    def section(self, key: str) -> Dict[str, Any]:
        """Return a copy of a nested mapping, with overrides applied to its leaves."""
        node = self._lookup(self._values, key)
        result: Dict[str, Any] = copy.deepcopy(node) if isinstance(node, dict) else {}
        prefix = f"{key}."
        with self._lock:
            for full_key, value in self._overrides.items():
                if full_key.startswith(prefix):
                    leaf = full_key[len(prefix):]
                    if "." not in leaf:
                        result[leaf] = value
        return result

    # =========================================================================
    # WRITES
    # =========================================================================

    def set(self, key: str, value: Any) -> None:
        """
        Apply a runtime override.

        Raises
        ------
        ConfigurationError:
            If a registered validator rejects the value.
        """
        validator = self._validators.get(key)
        if validator is not None:
            try:
                value = validator(value)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(key, str(exc)) from exc

        with self._lock:
            self._overrides[key] = value
            self._cache.clear()

        logger.info("Configuration override applied", extra={"config_key": key})

    def reset(self, key: Optional[str] = None) -> None:
        """Drop one runtime override, or all of them."""
        with self._lock:
            if key is None:
                self._overrides.clear()
            else:
                self._overrides.pop(key, None)
            self._cache.clear()

    # =========================================================================
    # METRICS
    # =========================================================================

    def get_metrics_summary(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "cache_hits": self._hits,
                "cache_misses": self._misses,
                "hit_rate": round(self._hits / max(1, total) * 100.0, 2),
                "overrides": len(self._overrides),
                "files_loaded": list(self._files_loaded),
            }
