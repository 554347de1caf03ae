"""
Configuration management for the Storyloom story service
"""

from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_file: Optional[str] = Field(
        default=None, description="Optional log file path in addition to stdout"
    )

    # Database Configuration
    database_path: str = Field(
        default="data/storyloom.db",
        description="SQLite database file path for stories, nodes and versions",
    )

    # Publishing Configuration
    publish_lock_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds a publish waits for another publish of the same story",
    )
    enforce_single_start_node: bool = Field(
        default=True,
        description="Reject node writes that would flag a second start node",
    )


# Global settings instance
settings = Settings()
