"""Configuration loading: db.toml profiles and environment accessors.

Usage:
    from cargo_db.config.loader import env, load_db_config

    config = load_db_config()              # ./db.toml or DATABASE_URL
    debug = env.get_bool("CARGO_DEBUG")    # "1", "true", "yes", "on"
    depth = env.get_int("CARGO_MAX_DEPTH", 8)
"""

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path

from cargo_db.config.models import DatabaseConfig, DatabaseProfile

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class Env:
    """Environment variable accessors with typed coercion.

    Reads from ``os.environ`` unless a mapping is supplied, which keeps
    tests free of global state.

    Example:
        >>> env = Env({"PORT": "8080", "DEBUG": "yes", "BAD": "x"})
        >>> env.get_int("PORT")
        8080
        >>> env.get_bool("DEBUG")
        True
        >>> env.get_int("BAD", 3)
        3
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def get(self, name: str, default: str | None = None) -> str | None:
        """Raw lookup."""
        return self.environ.get(name, default)

    def get_bool(self, name: str, default: bool = False) -> bool:
        """Boolean lookup; unrecognized values fall back to ``default``."""
        raw = self.environ.get(name)
        if raw is None:
            return default
        value = raw.strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        logger.warning("Ignoring non-boolean value for %s: %r", name, raw)
        return default

    def get_int(self, name: str, default: int = 0) -> int:
        """Integer lookup; unparsable values fall back to ``default``."""
        raw = self.environ.get(name)
        if raw is None:
            return default
        try:
            return int(raw.strip())
        except ValueError:
            logger.warning("Ignoring non-integer value for %s: %r", name, raw)
            return default


env = Env()


def load_db_config(config_path: Path | None = None, environ: Env | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Falls back to a single ``default`` profile built from ``DATABASE_URL``
    when no config file exists.  ``CARGO_LOG_SQL`` and ``CARGO_MAX_DEPTH``
    override the file settings.

    Args:
        config_path: Path to db.toml (default: ./db.toml)
        environ: Environment accessor (default: process environment)

    Returns:
        DatabaseConfig with all profiles

    Raises:
        FileNotFoundError: If neither the config file nor DATABASE_URL exists

    Example:
        # db.toml
        # [profiles.local]
        # url = "sqlite:///content.db"
        #
        # [schema]
        # dir = "schemas"
        # log_sql = true
        config = load_db_config(Path("db.toml"))
    """
    environ = environ or env
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if config_path.exists():
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    else:
        database_url = environ.get("DATABASE_URL")
        if not database_url:
            raise FileNotFoundError(
                f"Database config not found: {config_path}\n"
                f"Create db.toml with a [profiles.<name>] table or set DATABASE_URL."
            )
        data = {"profiles": {"default": {"url": database_url}}}

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    # Parse schema settings
    schema_settings = data.get("schema", {})

    return DatabaseConfig(
        profiles=profiles,
        schema_dir=schema_settings.get("dir", "schemas"),
        log_sql=environ.get_bool("CARGO_LOG_SQL", schema_settings.get("log_sql", False)),
        max_depth=environ.get_int("CARGO_MAX_DEPTH", schema_settings.get("max_depth", 8)),
    )
