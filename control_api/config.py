"""Configuration management for the control API."""

from typing import List

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """HTTP API settings loaded from environment variables."""

    # Application
    app_name: str = "LAN Stream Control API"
    app_version: str = "1.0.0"
    api_prefix: str = "/api"
    debug: bool = False

    # Server
    host: str = Field(default="0.0.0.0", description="Address uvicorn binds to")
    port: int = Field(default=3001, description="Port uvicorn listens on", ge=1, le=65535)

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = ConfigDict(
        env_prefix="API_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> ApiSettings:
    """
    Get API configuration from environment variables.

    Returns:
        ApiSettings: Configuration instance
    """
    return ApiSettings()
