"""Shared utilities for the Ghostfolio stack tools."""

from utils.common import format_bytes, elapsed, path_size, is_empty_dir

from utils.http import (
    RetryStrategy,
    SessionManager,
    probe_session,
    api_session,
)

from utils.config import Config, StackConfig

__all__ = [
    # Common
    "format_bytes",
    "elapsed",
    "path_size",
    "is_empty_dir",
    # HTTP
    "RetryStrategy",
    "SessionManager",
    "probe_session",
    "api_session",
    # Config
    "Config",
    "StackConfig",
]
