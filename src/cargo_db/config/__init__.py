"""Configuration management: profiles, TOML loading, env accessors and models.

Usage:
    >>> from cargo_db.config import load_db_config, env, DatabaseProfile, DatabaseConfig
"""

from cargo_db.config.loader import Env, env, load_db_config
from cargo_db.config.models import DatabaseConfig, DatabaseProfile

__all__ = ["Env", "env", "load_db_config", "DatabaseConfig", "DatabaseProfile"]
