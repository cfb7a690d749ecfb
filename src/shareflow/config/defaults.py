"""
Built-in configuration defaults.

A config file only needs the keys it changes; everything else comes from
here.
"""

import copy
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "redis": {
        "url": "redis://localhost:6379/0",
    },
    "queues": {
        "backend": "redis",
        "jobs": "folder_import_queue",
        "tasks": "image_task_queue",
        "pop_timeout": 5,
        "reconnect_delay": 5,
        "delivery": "at_most_once",
        "visibility_timeout": 300,
        "reclaim_interval": 30,
    },
    "retry": {
        "task": {"max_attempts": 3, "initial_delay": 5, "exponential_base": 2},
        "catalog": {"max_attempts": 3, "initial_delay": 5, "exponential_base": 1},
        "task_attempt_budget": None,
    },
    "providers": {
        "google_drive": {"api_key": "${GOOGLE_DRIVE_API_KEY:-}"},
        "dropbox": {"access_token": "${DROPBOX_ACCESS_TOKEN:-}"},
        "timeout": 120,
        "rate_limit": None,
    },
    "storage": {
        "backend": "s3",
        "bucket": "images",
        "endpoint_url": None,
        "region": None,
        "access_key_id": None,
        "secret_access_key": None,
        "session_token": None,
        "root_path": "data/storage",
    },
    "catalog": {
        "backend": "duckdb",
        "path": "data/catalog.duckdb",
        "host": None,
        "port": None,
        "user": None,
        "password": None,
        "database": None,
    },
    "failed_tasks": {
        "queue": "image_task_failed",
    },
    "metrics": {
        "enabled": False,
        "port": 9100,
    },
    "logging": {
        "level": "INFO",
        "format": "rich",
        "file": None,
    },
}


def default_config() -> dict[str, Any]:
    """A fresh, mutable copy of the defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)
