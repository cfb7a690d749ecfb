"""
Configuration file loading.

Loads ``shareflow.yaml`` and an optional ``shareflow.<env>.yaml`` overlay,
merges both over the built-in defaults and substitutes environment
variables.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from shareflow.config.defaults import default_config
from shareflow.config.resolver import resolve_config
from shareflow.exceptions import ConfigurationError

CONFIG_FILENAME = "shareflow.yaml"

_CHOICES = {
    "queues.backend": ("redis", "memory"),
    "queues.delivery": ("at_most_once", "at_least_once"),
    "storage.backend": ("s3", "filesystem"),
    "catalog.backend": ("duckdb", "postgres", "mysql"),
    "logging.format": ("rich", "plain", "json"),
}

_POSITIVE_NUMBERS = (
    "queues.pop_timeout",
    "queues.visibility_timeout",
    "queues.reclaim_interval",
    "retry.task.max_attempts",
    "retry.catalog.max_attempts",
)

_NON_NEGATIVE_NUMBERS = (
    "queues.reconnect_delay",
    "retry.task.initial_delay",
    "retry.catalog.initial_delay",
)


class Config:
    """shareflow configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any], source: Path | None = None):
        self.data = data
        self.source = source

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def section(self, key: str) -> dict[str, Any]:
        """A nested section as a plain dict (empty when absent)."""
        value = self.get(key)
        return value if isinstance(value, dict) else {}

    def __getitem__(self, key: str) -> Any:
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def keys(self):
        return self.data.keys()

    def items(self):
        return self.data.items()

    def validate(self) -> None:
        """Validate configuration structure and content."""
        errors = []

        for key, choices in _CHOICES.items():
            value = self.get(key)
            if value not in choices:
                errors.append(f"'{key}' must be one of {', '.join(choices)}, got {value!r}")

        for key in _POSITIVE_NUMBERS + _NON_NEGATIVE_NUMBERS:
            value = self.get(key)
            try:
                number = float(value)
            except (TypeError, ValueError):
                errors.append(f"'{key}' must be a number, got {value!r}")
                continue
            if key in _POSITIVE_NUMBERS and number <= 0:
                errors.append(f"'{key}' must be > 0, got {value!r}")
            elif number < 0:
                errors.append(f"'{key}' must be >= 0, got {value!r}")

        budget = self.get("retry.task_attempt_budget")
        if budget not in (None, ""):
            try:
                if int(budget) < 1:
                    errors.append(f"'retry.task_attempt_budget' must be >= 1, got {budget!r}")
            except (TypeError, ValueError):
                errors.append(f"'retry.task_attempt_budget' must be an integer, got {budget!r}")

        if not self.get("storage.bucket"):
            errors.append("'storage.bucket' is required")

        if self.get("catalog.backend") in ("postgres", "mysql") and not self.get("catalog.database"):
            errors.append(f"'catalog.database' is required for the {self.get('catalog.backend')} catalog")

        if errors:
            raise ConfigurationError(
                "Invalid configuration:\n  " + "\n  ".join(errors),
                details={"source": str(self.source) if self.source else None},
            )

    def __repr__(self) -> str:
        return f"Config(source={str(self.source) if self.source else None!r})"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        if hasattr(e, "problem_mark"):
            mark = e.problem_mark
            raise ConfigurationError(
                f"Error parsing {path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                f"  {e}\n"
                f"  File: {path}\n"
                f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes"
            ) from e
        raise ConfigurationError(f"Error parsing {path.name}: {e}\n  File: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__} in {path}")
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value


def load_config(path: Path | str | None = None, env: str | None = None) -> Config:
    """
    Load shareflow configuration.

    Args:
        path: Config file, or a directory holding ``shareflow.yaml``
            (default: current directory). A missing file is an error only
            when a file path is given explicitly.
        env: Environment name; ``shareflow.<env>.yaml`` next to the base
            file is merged over it when present

    Returns:
        Validated Config

    Raises:
        ConfigurationError: Unreadable, unparsable or invalid configuration
    """
    if path is None:
        path = Path.cwd()
    path = Path(path)

    if path.is_dir():
        base_path = path / CONFIG_FILENAME
        explicit = False
    else:
        base_path = path
        explicit = True

    config_data = default_config()
    source: Path | None = None

    if base_path.is_file():
        _merge_dict(config_data, _read_yaml(base_path))
        source = base_path
    elif explicit:
        raise ConfigurationError(
            f"Configuration file not found: {base_path}\n"
            f"  Suggestion: Create a {CONFIG_FILENAME} file or pass --config"
        )

    if env:
        env_path = base_path.with_name(f"{base_path.stem}.{env}{base_path.suffix or '.yaml'}")
        if env_path.is_file():
            _merge_dict(config_data, _read_yaml(env_path))

    config = Config(resolve_config(config_data, env or "dev"), source=source)
    config.validate()
    return config
