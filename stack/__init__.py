"""
Stack package -- operations on the Ghostfolio compose bundle.

Re-exports the pieces the command-line tools share::

    from stack import ComposeRunner, CommandError, create_data_tree
"""

from stack.compose import ComposeRunner, CommandError, ServiceStatus
from stack.envfile import parse_env_file, set_env_value, ensure_env_file
from stack.layout import create_data_tree, ensure_dir
from stack.archive import create_archive, extract_archive, prune_backups

__all__ = [
    "ComposeRunner",
    "CommandError",
    "ServiceStatus",
    "parse_env_file",
    "set_env_value",
    "ensure_env_file",
    "create_data_tree",
    "ensure_dir",
    "create_archive",
    "extract_archive",
    "prune_backups",
]
