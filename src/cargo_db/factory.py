"""Adapter and store factory.

Resolves a database profile from ``db.toml`` (or ``DATABASE_URL``) and
opens an adapter, or a full ``ContentStore`` with its schema directory
loaded and its tables migrated.

Profile selection:
1. ``profile_name`` argument
2. ``{env_prefix}DB_PROFILE`` environment variable
3. The only profile, or the one named ``default``

Usage:
    from cargo_db.factory import open_store

    store = await open_store()
    rows = await store.get("restaurant", "*")
    await store.close()
"""

import logging
from collections.abc import Callable
from pathlib import Path
from urllib.parse import quote

from cargo_db.adapters.sql import AsyncSQLAdapter
from cargo_db.config.loader import Env, env, load_db_config
from cargo_db.config.models import DatabaseConfig, DatabaseProfile
from cargo_db.errors import CargoError
from cargo_db.schema.loader import build_registry, load_schema_directory
from cargo_db.store import ContentStore

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "CARGO_"


class ProfileNotFoundError(CargoError):
    """Raised when no database profile can be selected."""


def get_active_profile_name(
    config: DatabaseConfig,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    environ: Env | None = None,
) -> str:
    """Select the profile to connect to.

    Raises:
        ProfileNotFoundError: If no profile is selected or the selected one
            does not exist.
    """
    environ = environ or env
    name = environ.get(f"{env_prefix}DB_PROFILE")
    if not name:
        if len(config.profiles) == 1:
            name = next(iter(config.profiles))
        elif "default" in config.profiles:
            name = "default"
        else:
            raise ProfileNotFoundError(
                "No database profile selected.\n"
                f"Set {env_prefix}DB_PROFILE to one of: {', '.join(config.profiles) or '(none)'}"
            )
    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles) or '(none)'}"
        )
    return name


def resolve_url(profile: DatabaseProfile) -> str:
    """Profile URL with the ``[YOUR-PASSWORD]`` placeholder substituted.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    config_path: Path | None = None,
    sql_logger: Callable[[str], None] | None = None,
    config: DatabaseConfig | None = None,
) -> AsyncSQLAdapter:
    """Create an adapter for a configured profile.

    Args:
        profile_name: Profile to use (default: see module docstring).
        env_prefix: Prefix of the profile environment variable.
        config_path: Path to db.toml (default: ./db.toml).
        sql_logger: Receives the SQL text of every statement.  When absent
            and ``log_sql`` is configured, statements go to this module's
            logger at INFO.
        config: Already loaded configuration.

    Raises:
        FileNotFoundError: If no configuration exists.
        ProfileNotFoundError: If the profile cannot be selected.
    """
    config = config or load_db_config(config_path)
    if profile_name is None:
        profile_name = get_active_profile_name(config, env_prefix)
    elif profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. Available: {', '.join(config.profiles)}"
        )
    profile = config.profiles[profile_name]

    if sql_logger is None and config.log_sql:

        def sql_logger(sql: str) -> None:
            logger.info("SQL: %s", sql)

    engine_kwargs: dict = {"echo": profile.echo}
    if profile.pool_size is not None:
        engine_kwargs["pool_size"] = profile.pool_size

    logger.debug("Opening adapter for profile %s", profile_name)
    return AsyncSQLAdapter(resolve_url(profile), sql_logger=sql_logger, **engine_kwargs)


async def open_store(
    schema_dir: Path | None = None,
    profile_name: str | None = None,
    migrate: bool = True,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    config_path: Path | None = None,
    sql_logger: Callable[[str], None] | None = None,
) -> ContentStore:
    """Load schemas, open an adapter and (optionally) migrate its tables.

    Args:
        schema_dir: Directory of schema files (default: ``schema_dir`` from
            the configuration, relative to the working directory).
        profile_name: Profile to use.
        migrate: Create and alter tables before returning.

    Raises:
        SchemaError: If the schema files are invalid.
        MigrationError: If the migration fails.
    """
    config = load_db_config(config_path)
    registry = build_registry(load_schema_directory(schema_dir or Path(config.schema_dir)))
    adapter = get_adapter(
        profile_name,
        env_prefix=env_prefix,
        sql_logger=sql_logger,
        config=config,
    )
    store = ContentStore(adapter, registry, max_depth=config.max_depth)
    if migrate:
        try:
            await store.construct_tables()
        except Exception:
            await store.close()
            raise
    return store
