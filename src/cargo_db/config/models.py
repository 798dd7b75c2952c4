"""Pydantic models for database configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    pool_size: int | None = None
    echo: bool = False


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml.

    Example:
        >>> config = DatabaseConfig(profiles={"local": DatabaseProfile(url="sqlite:///c.db")})
        >>> config.schema_dir
        'schemas'
    """

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    schema_dir: str = "schemas"
    log_sql: bool = False
    max_depth: int = 8
