"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

MIN_CHUNK_SIZE = 1024  # 1 KB
MAX_CHUNK_SIZE = 1048576  # 1 MB


class CacheConfig(BaseModel):
    """A validated configuration model for the file cache."""

    # Storage Settings
    cache_size_mb: int = 512
    songs_to_preload: int = 5

    # Download Settings
    download_rate_kbps: int = 0  # 0 means unlimited
    chunk_size: int = 8192
    progress_interval_ms: int = 500
    connect_timeout: float = 10.0
    read_timeout: float = 10.0

    # Authentication
    auth_token: str = Field(default="", repr=False)

    # Internal fields not loaded from INI file
    cache_dir: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("cache_size_mb")
    @classmethod
    def validate_cache_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Cache size must be at least 1 MB.")
        return v

    @field_validator("download_rate_kbps")
    @classmethod
    def validate_download_rate(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Download rate cannot be negative (use 0 for unlimited).")
        return v

    @field_validator("songs_to_preload")
    @classmethod
    def validate_songs_to_preload(cls, v: int) -> int:
        if v < 0 or v > 50:
            raise ValueError("Songs to preload must be between 0 and 50.")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < MIN_CHUNK_SIZE or v > MAX_CHUNK_SIZE:
            raise ValueError(
                f"Chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE} bytes."
            )
        return v

    @field_validator("progress_interval_ms")
    @classmethod
    def validate_progress_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Progress interval cannot be negative.")
        return v

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, v: str) -> str:
        if not v:
            raise ValueError("Cache directory cannot be empty.")
        return v

    @property
    def max_cache_bytes(self) -> int:
        return self.cache_size_mb * 1024 * 1024

    @property
    def max_bytes_per_second(self) -> int:
        """Download rate limit in bytes per second, or 0 if unlimited."""
        return self.download_rate_kbps * 1024

    @property
    def music_dir(self) -> Path:
        return Path(self.cache_dir) / "music"

    @property
    def db_path(self) -> Path:
        return Path(self.cache_dir) / "file_cache.sqlite"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"cache_dir"}
        return {key for key in cls.model_fields if key not in internal_fields}
