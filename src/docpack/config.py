"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

LOCAL_MODEL = "local"


class Settings(BaseSettings):
    """Build and serving settings, populated from env vars or a .env file.

    Construct once at the entry point and pass the instance (or the values
    it carries) into each component.  Nothing below ``docpack.config``
    reads the environment on its own.
    """

    # Embedding
    embedding_model: str | None = Field(
        default=None,
        description=(
            "Embedding model identifier. Unset falls back to the pack "
            "manifest's model, then to the in-process 'local' model."
        ),
    )
    embed_batch_size: int = Field(default=64, gt=0)
    embed_concurrency: int = Field(default=4, gt=0)
    embed_max_attempts: int = Field(default=5, gt=0)
    embed_timeout: float = Field(default=30.0, gt=0, description="Seconds per remote call")
    embed_backoff: float = Field(default=1.0, ge=0, description="Base retry delay in seconds")

    # Remote embedding host (OpenAI-compatible)
    openai_host: str = "https://api.openai.com/v1"
    openai_key: str = ""

    # Build artifacts
    build_dir: str = Field(default=".build", description="Artifact directory, relative to cwd")
    retain_snapshots: int = Field(default=2, gt=0)
    chunk_workers: int = Field(default=4, gt=0)

    # Release / fetch
    github_repo: str = "https://github.com/cblanquera/mcp"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cwd(self) -> Path:
        """Directory the process was started from."""
        return Path.cwd()

    @property
    def project_root(self) -> Path:
        """Directory holding the installed ``docpack`` package sources."""
        return Path(__file__).resolve().parent.parent

    @property
    def build_path(self) -> Path:
        return self.cwd / self.build_dir

    def resolve_model(self, manifest_model: str | None = None) -> str:
        """Pick the embedding model: explicit setting, then manifest, then local."""
        return self.embedding_model or manifest_model or LOCAL_MODEL
