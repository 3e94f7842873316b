"""Configuration management utilities for the stack tools.

Provides:
- Config: base class that lists its settings as a dict
- StackConfig: deployment settings resolved from the bundle's .env file
"""

import os as _os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from stack.envfile import parse_env_file


class Config:
    """Base configuration class for organizing application settings."""

    def __init__(self):
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary of all config attributes
        """
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}


def _int_setting(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


class StackConfig(Config):
    """Deployment settings for the Ghostfolio compose bundle.

    Values resolve with the precedence defaults < process environment <
    bundle ``.env`` file, so the file that compose reads is also the one the
    tools obey.

    Environment variables:
        PROJECT_NAME: Container name prefix (default: ghostfolio)
        DATA_BASE_PATH: Root of the bind-mounted data tree (default: /srv/ghostfolio)
        EXTERNAL_PORT: Host port published for the app (default: 8061)
        PORT: App port inside the container (default: 3333)
        BASE_DOMAIN: Public domain served by the reverse proxy (default: localhost)
        GHOSTFOLIO_VERSION / POSTGRES_VERSION / REDIS_VERSION: image tags
        GHOSTFOLIO_IMAGE: App image repository (default: ghostfolio/ghostfolio)
        GHOSTFOLIO_REPO: GitHub repository for release lookups
        BACKUP_DIR: Where backups are written (default: /var/backups/ghostfolio)
        KEEP_BACKUPS: Number of backups retained (default: 30)
        BUNDLE_DIR: Bundle directory when --bundle-dir is not given (default: cwd)
    """

    def __init__(self) -> None:
        super().__init__()
        self.bundle_dir = Path(".")
        self.project_name = "ghostfolio"
        self.data_base_path = Path("/srv/ghostfolio")
        self.external_port = 8061
        self.port = 3333
        self.base_domain = "localhost"
        self.ghostfolio_version = "latest"
        self.postgres_version = "15"
        self.redis_version = "7"
        self.image_repo = "ghostfolio/ghostfolio"
        self.github_repo = "ghostfolio/ghostfolio"
        self.backup_dir = Path("/var/backups/ghostfolio")
        self.keep_backups = 30
        self.app_service = "ghostfolio"
        self.db_service = "postgres"
        self.cache_service = "redis"
        self._env: Dict[str, str] = {}

    @classmethod
    def from_env(cls, bundle_dir: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None) -> "StackConfig":
        """Resolve settings for the bundle in *bundle_dir*.

        Args:
            bundle_dir: Directory holding docker-compose.yml and the env files.
                        Defaults to $BUNDLE_DIR, then the working directory.
            environ: Process environment to layer under the .env file
                     (default: os.environ).  References inside .env itself
                     are expanded by python-dotenv against os.environ.
        """
        environ = _os.environ if environ is None else environ
        cfg = cls()
        cfg.bundle_dir = Path(bundle_dir or environ.get("BUNDLE_DIR") or Path.cwd())

        values: Dict[str, str] = dict(environ)
        if cfg.env_file.exists():
            values.update(parse_env_file(cfg.env_file))
        cfg._env = values

        cfg.project_name = values.get("PROJECT_NAME") or cfg.project_name
        cfg.data_base_path = Path(values.get("DATA_BASE_PATH") or cfg.data_base_path)
        cfg.external_port = _int_setting(values, "EXTERNAL_PORT", cfg.external_port)
        cfg.port = _int_setting(values, "PORT", cfg.port)
        cfg.base_domain = values.get("BASE_DOMAIN") or cfg.base_domain
        cfg.ghostfolio_version = values.get("GHOSTFOLIO_VERSION") or cfg.ghostfolio_version
        cfg.postgres_version = values.get("POSTGRES_VERSION") or cfg.postgres_version
        cfg.redis_version = values.get("REDIS_VERSION") or cfg.redis_version
        cfg.image_repo = values.get("GHOSTFOLIO_IMAGE") or cfg.image_repo
        cfg.github_repo = values.get("GHOSTFOLIO_REPO") or cfg.github_repo
        cfg.backup_dir = Path(values.get("BACKUP_DIR") or cfg.backup_dir)
        cfg.keep_backups = _int_setting(values, "KEEP_BACKUPS", cfg.keep_backups)
        return cfg

    # ── Bundle paths ─────────────────────────────────────────────────────

    @property
    def compose_file(self) -> Path:
        return self.bundle_dir / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.bundle_dir / ".env"

    @property
    def db_env_file(self) -> Path:
        return self.bundle_dir / ".db.env"

    @property
    def env_backup_file(self) -> Path:
        return self.bundle_dir / ".env.backup"

    @property
    def version_file(self) -> Path:
        return self.bundle_dir / "VERSION"

    @property
    def update_log(self) -> Path:
        return self.bundle_dir / "update.log"

    @property
    def rollback_file(self) -> Path:
        return self.bundle_dir / ".rollback_version"

    @property
    def history_file(self) -> Path:
        return self.bundle_dir / "update_history.jsonl"

    # ── Derived values ───────────────────────────────────────────────────

    @property
    def env(self) -> Dict[str, str]:
        """Resolved variables, as compose will see them for interpolation."""
        return dict(self._env)

    @property
    def display_name(self) -> str:
        return self.project_name[:1].upper() + self.project_name[1:]

    @property
    def app_url(self) -> str:
        return f"http://localhost:{self.external_port}"

    @property
    def health_url(self) -> str:
        return f"{self.app_url}/api/v1/health"

    @property
    def backup_prefix(self) -> str:
        return f"{self.project_name}_backup"

    @property
    def services(self) -> Tuple[str, str, str]:
        return (self.app_service, self.db_service, self.cache_service)

    def db_settings(self) -> Dict[str, str]:
        """Database credentials from ``.db.env``.

        Raises:
            FileNotFoundError: If the bundle has no .db.env yet.
        """
        return parse_env_file(self.db_env_file)

    def redis_password(self) -> str:
        password = self._env.get("REDIS_PASSWORD", "")
        if not password and self.db_env_file.exists():
            password = self.db_settings().get("REDIS_PASSWORD", "")
        return password

    def project_version(self) -> str:
        """Version of this tooling from the bundle's VERSION file."""
        if not self.version_file.exists():
            return "unknown"
        return parse_env_file(self.version_file).get("PROJECT_VERSION", "unknown")
