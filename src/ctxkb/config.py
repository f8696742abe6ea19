"""
Configuration module for ctxkb.

Settings are pydantic models loaded from a config file and overridden by
CTXKB_ environment variables.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctxkb.errors import ConfigurationError


class ProviderKind(str, Enum):
    """Supported embedding providers."""

    HASH = "hash"
    OPENAI = "openai"


class StorageConfig(BaseModel):
    """SQLite settings."""

    db_name: str = Field(
        default="index.db",
        description="SQLite database file name inside the data directory",
    )
    wal_mode: bool = Field(
        default=True,
        description="Use write-ahead journaling",
    )


class IndexingConfig(BaseModel):
    """File discovery and indexing configuration."""

    concurrency: int = Field(
        default=5,
        ge=1,
        le=64,
        description="Files processed concurrently per group",
    )
    file_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Files per streaming batch",
    )
    checkpoint_interval: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Processed files between checkpoint writes",
    )
    max_file_size_kb: int = Field(
        default=500,
        ge=1,
        le=100000,
        description="Files above this size are skipped in streaming mode",
    )
    max_entities_per_file: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Symbols kept per file in streaming mode",
    )
    extra_exclude: list[str] = Field(
        default_factory=list,
        description="Additional exclude globs appended after ignore files",
    )
    use_gitignore: bool = Field(
        default=True,
        description="Honor .gitignore patterns",
    )
    use_ctxignore: bool = Field(
        default=True,
        description="Honor .ctxignore patterns",
    )


class EmbeddingConfig(BaseModel):
    """Provider, batching and chunking settings for embeddings."""

    provider: ProviderKind = Field(
        default=ProviderKind.HASH,
        description="Embedding provider to use",
    )
    model_id: str = Field(
        default="hash-embedding-v1",
        description="Model identifier recorded with every stored vector",
    )
    dimension: int = Field(
        default=384,
        ge=8,
        le=8192,
        description="Vector length produced by the provider",
    )
    batch_size: int = Field(
        default=50,
        ge=1,
        le=2048,
        description="Entities per provider batch",
    )
    max_chars: int = Field(
        default=4000,
        ge=100,
        le=100000,
        description="Character ceiling before content is chunked",
    )
    overlap_chars: int = Field(
        default=200,
        ge=0,
        le=10000,
        description="Characters shared by consecutive chunks",
    )
    min_chunk_chars: int = Field(
        default=100,
        ge=0,
        le=10000,
        description="Trailing chunks below this size are merged into the previous one",
    )


class GraphConfig(BaseModel):
    """Relationship graph configuration."""

    include_external: bool = Field(
        default=True,
        description="Keep import edges to external packages",
    )
    types: list[str] | None = Field(
        default=None,
        description="Relationship types to keep (all when unset)",
    )
    hub_limit: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Number of hub nodes reported in statistics",
    )


class NetworkConfig(BaseModel):
    """Remote provider access."""

    enabled: bool = Field(
        default=False,
        description="Allow remote embedding providers",
    )
    api_base_url: str | None = Field(
        default=None,
        description="Override for the remote embedding endpoint",
    )
    api_key: str | None = Field(
        default=None,
        description="Key sent to the remote embedding API",
    )
    timeout_seconds: int = Field(
        default=30,
        ge=5,
        le=300,
        description="Remote call timeout in seconds",
    )


class Config(BaseSettings):
    """
    Main ctxkb configuration.

    Can be configured via:
    1. Configuration file (ctxkb.toml, ctxkb.yaml or JSON)
    2. Environment variables with CTXKB_ prefix
    3. Programmatic overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="CTXKB_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    project_root: Path = Field(
        default_factory=lambda: Path.cwd(),
        description="Root of the indexed source tree",
    )
    data_dir: Path = Field(
        default=Path(".ctxkb"),
        description="Data directory (relative to project_root)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)

    @field_validator("project_root", mode="before")
    @classmethod
    def resolve_project_root(cls, v: Path | str) -> Path:
        """Store the project root as an absolute path."""
        path = Path(v) if isinstance(v, str) else v
        return path.resolve()

    @property
    def absolute_data_dir(self) -> Path:
        """Data directory, anchored at the project root when relative."""
        if self.data_dir.is_absolute():
            return self.data_dir
        return self.project_root / self.data_dir

    @property
    def db_path(self) -> Path:
        """SQLite database shared by all stores."""
        return self.absolute_data_dir / self.storage.db_name

    @property
    def checkpoint_path(self) -> Path:
        """Get absolute path to the streaming checkpoint file."""
        return self.absolute_data_dir / "indexing-state.json"

    def ensure_directories(self) -> None:
        """Create the data directory if missing."""
        self.absolute_data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML, YAML or JSON file."""
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        content = path.read_text()

        if suffix == ".toml":
            try:
                import tomllib
            except ImportError:
                import tomli as tomllib  # type: ignore
            data = tomllib.loads(content)
        elif suffix in (".yaml", ".yml"):
            import yaml

            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigurationError(f"Unsupported config format: {suffix}")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    def to_dict(self) -> dict:
        """Plain-dict view of the settings."""
        return self.model_dump()


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
) -> Config:
    """
    Load settings, searching the project for a config file.

    Priority:
    1. config_path, when given and present
    2. ctxkb.toml in project_root
    3. .ctxkb/config.toml in project_root
    4. ctxkb.yaml / .ctxkb/config.yaml in project_root
    5. Default configuration
    """
    root = project_root or Path.cwd()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)
        # The file's project_root stands unless the caller passed one
        if project_root is None:
            return config
        return config.model_copy(update={"project_root": project_root.resolve()})

    candidates = [
        root / "ctxkb.toml",
        root / ".ctxkb" / "config.toml",
        root / "ctxkb.yaml",
        root / ".ctxkb" / "config.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            config = Config.from_file(candidate)
            return config.model_copy(update={"project_root": root.resolve()})

    return Config(project_root=root)
