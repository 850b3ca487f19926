"""Configuration models for the Sluice engine.

This module defines Pydantic models for every configuration object used by
the engine. The models validate values, resolve environment variables and
load from YAML or JSON files.

Classes:
    BaseConfig: Base configuration class
    BackendConfig: Backing store configuration
    PoolConfig: Connection pool configuration
    CacheConfig: Query cache configuration
    CatalogConfig: Schema catalog configuration
    SearchConfig: Search and pagination configuration
    AdvisorConfig: Index advisor configuration
    LoggingConfig: Logging configuration
    EngineConfig: Top-level engine configuration

Example:
    >>> config = EngineConfig(
    ...     backend=BackendConfig(id="main", database="/var/lib/app/data.db"),
    ...     pool=PoolConfig(max_size=8),
    ... )
    >>> config.search.unindexed_range_policy
    'degrade'
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from sluice.core.exceptions import ConfigurationError, ErrorCodes
from sluice.core.utils import ValidationUtils

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _resolve_env(value: Any) -> Any:
    """Resolve ``${VAR}`` and ``${VAR:default}`` references recursively."""
    if isinstance(value, str):
        def replace_env_var(match: "re.Match[str]") -> str:
            var_spec = match.group(1)
            if ":" in var_spec:
                var_name, default = var_spec.split(":", 1)
            else:
                var_name, default = var_spec, ""
            return os.getenv(var_name, default)

        return _ENV_PATTERN.sub(replace_env_var, value)
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(item) for item in value]
    return value


class BaseConfig(BaseModel):
    """Base configuration class with common functionality.

    Unknown fields are rejected, assignments are validated, and string
    values may reference environment variables with ``${VAR}`` or
    ``${VAR:default}``.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def resolve_environment_variables(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: _resolve_env(value) for key, value in data.items()}
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def update_from_dict(self, data: Dict[str, Any]) -> "BaseConfig":
        """Return a new configuration with ``data`` merged over this one."""
        current = self.model_dump()
        current.update(data)
        return self.__class__(**current)


class BackendConfig(BaseConfig):
    """Backing store configuration.

    Attributes:
        id: Unique backing store identifier, used in logger names
        platform: Backing store implementation to load from the registry
        database: Database file path
        create_if_missing: Create the database file when it does not exist
        connect_timeout: Seconds to wait when opening a connection
        statement_timeout: Seconds a single statement may run
        pragmas: Session settings applied to every new connection
    """

    id: str = Field("default", min_length=1, description="Backing store identifier")
    platform: Literal["sqlite"] = Field("sqlite", description="Backing store platform")
    database: str = Field(..., min_length=1, description="Database file path")
    create_if_missing: bool = Field(True, description="Create database file if missing")
    connect_timeout: PositiveFloat = Field(5.0, description="Connect timeout in seconds")
    statement_timeout: PositiveFloat = Field(30.0, description="Statement timeout in seconds")
    pragmas: Dict[str, Union[str, int]] = Field(
        default_factory=lambda: {"foreign_keys": "ON", "busy_timeout": 5000},
        description="Per-connection session settings",
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not ValidationUtils.validate_identifier(v):
            raise ValueError(f"Invalid backend id format: {v}")
        return v

    @field_validator("pragmas")
    @classmethod
    def validate_pragmas(cls, v: Dict[str, Union[str, int]]) -> Dict[str, Union[str, int]]:
        for name, value in v.items():
            if not ValidationUtils.validate_identifier(name):
                raise ValueError(f"Invalid pragma name: {name}")
            if isinstance(value, str) and not ValidationUtils.validate_identifier(value):
                raise ValueError(f"Invalid value for pragma {name}: {value}")
        return v

    @property
    def connection_string(self) -> str:
        return f"{self.platform}:///{self.database}"


class PoolConfig(BaseConfig):
    """Connection pool configuration.

    Attributes:
        min_size: Connections opened at startup and kept by the health check
        max_size: Upper bound on connections leased plus idle
        acquire_timeout: Seconds a caller waits for a connection
        idle_timeout: Seconds an idle connection is kept before being reaped
        max_lifetime: Seconds after which a connection is retired
        health_check_interval: Seconds between health check passes
        max_errors_per_connection: Errors after which a connection is discarded
        drain_timeout: Seconds shutdown waits for leased connections
    """

    min_size: NonNegativeInt = Field(1, description="Minimum pool size")
    max_size: PositiveInt = Field(10, description="Maximum pool size")
    acquire_timeout: PositiveFloat = Field(10.0, description="Acquire timeout in seconds")
    idle_timeout: PositiveFloat = Field(300.0, description="Idle timeout in seconds")
    max_lifetime: PositiveFloat = Field(3600.0, description="Connection lifetime in seconds")
    health_check_interval: PositiveFloat = Field(30.0, description="Health check interval")
    max_errors_per_connection: PositiveInt = Field(3, description="Errors before discard")
    drain_timeout: NonNegativeFloat = Field(10.0, description="Shutdown drain timeout")

    @model_validator(mode="after")
    def validate_sizes(self) -> "PoolConfig":
        if self.max_size < self.min_size:
            raise ValueError(
                f"max_size ({self.max_size}) must be >= min_size ({self.min_size})"
            )
        return self


class CacheConfig(BaseConfig):
    """Query cache configuration.

    Attributes:
        enabled: Whether read results are cached
        capacity: Maximum number of entries before LRU eviction
        default_ttl: TTL in seconds applied when a request does not give one
        max_ttl: Upper bound on any requested TTL
    """

    enabled: bool = Field(True, description="Enable result caching")
    capacity: PositiveInt = Field(1024, description="Maximum cached entries")
    default_ttl: PositiveFloat = Field(60.0, description="Default TTL in seconds")
    max_ttl: PositiveFloat = Field(3600.0, description="Maximum TTL in seconds")

    @model_validator(mode="after")
    def validate_ttls(self) -> "CacheConfig":
        if self.default_ttl > self.max_ttl:
            raise ValueError("default_ttl must not exceed max_ttl")
        return self


class CatalogConfig(BaseConfig):
    """Schema catalog configuration.

    Attributes:
        metadata_ttl: Seconds table metadata is trusted before reloading
        stats_ttl: Seconds cardinality statistics are trusted
    """

    metadata_ttl: PositiveFloat = Field(300.0, description="Metadata TTL in seconds")
    stats_ttl: PositiveFloat = Field(600.0, description="Statistics TTL in seconds")


class SearchConfig(BaseConfig):
    """Search and pagination configuration.

    Attributes:
        default_page_size: Page size used when a request omits one
        max_page_size: Largest accepted page size
        unindexed_range_policy: ``degrade`` runs a flagged full scan,
            ``fail`` rejects ordered range searches on unindexed columns
        stream_batch_size: Default batch size for streamed results
    """

    default_page_size: PositiveInt = Field(50, description="Default page size")
    max_page_size: PositiveInt = Field(1000, description="Maximum page size")
    unindexed_range_policy: Literal["degrade", "fail"] = Field(
        "degrade", description="Behaviour for range searches on unindexed columns"
    )
    stream_batch_size: PositiveInt = Field(500, description="Default stream batch size")

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "SearchConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self


class AdvisorConfig(BaseConfig):
    """Index advisor configuration.

    Attributes:
        max_recommendations: Upper bound on returned recommendations
        min_benefit: Recommendations scoring below this are dropped
        workload_capacity: Distinct column sets tracked per table
    """

    max_recommendations: PositiveInt = Field(10, description="Maximum recommendations")
    min_benefit: NonNegativeFloat = Field(0.0, description="Minimum estimated benefit")
    workload_capacity: PositiveInt = Field(256, description="Tracked column sets per table")


class LoggingConfig(BaseConfig):
    """Logging configuration.

    Attributes:
        level: Log level
        format: Log format (json, text)
        file_path: Log file path
        max_file_size: Maximum log file size in bytes
        backup_count: Number of rotated files to keep
        console_output: Enable console output
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )
    format: Literal["json", "text"] = Field("json", description="Log format")
    file_path: Optional[Path] = Field(None, description="Log file path")
    max_file_size: PositiveInt = Field(10485760, description="Max file size in bytes (10MB)")
    backup_count: NonNegativeInt = Field(5, description="Number of backup files")
    console_output: bool = Field(True, description="Enable console output")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class EngineConfig(BaseConfig):
    """Top-level engine configuration.

    Example:
        >>> config = EngineConfig.from_file("sluice.yaml")
        >>> config.pool.max_size
        10
    """

    name: str = Field("sluice", min_length=1, description="Engine instance name")
    backend: BackendConfig = Field(..., description="Backing store configuration")
    pool: PoolConfig = Field(default_factory=PoolConfig, description="Pool configuration")
    cache: CacheConfig = Field(default_factory=CacheConfig, description="Cache configuration")
    catalog: CatalogConfig = Field(default_factory=CatalogConfig, description="Catalog configuration")
    search: SearchConfig = Field(default_factory=SearchConfig, description="Search configuration")
    advisor: AdvisorConfig = Field(default_factory=AdvisorConfig, description="Advisor configuration")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build configuration from a mapping.

        Raises:
            ConfigurationError: If the mapping fails validation
        """
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid engine configuration: {e.error_count()} error(s)",
                code=ErrorCodes.CONFIG_INVALID,
                context={"errors": e.errors(include_url=False, include_context=False)},
                cause=e,
            ) from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load configuration from a YAML or JSON file.

        Args:
            path: File path; ``.json`` files are parsed as JSON, anything
                else as YAML

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                code=ErrorCodes.CONFIG_NOT_FOUND,
                context={"path": str(file_path)},
            )

        text = file_path.read_text(encoding="utf-8")
        try:
            if file_path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot parse configuration file: {file_path}",
                code=ErrorCodes.CONFIG_INVALID,
                context={"path": str(file_path)},
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a mapping",
                code=ErrorCodes.CONFIG_INVALID,
                context={"path": str(file_path)},
            )
        return cls.from_dict(data)
