"""
Canvas Configuration
====================

This module handles configuration loading for the image server.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    CANVAS_UPLOAD_DIR           -> storage.upload_dir
    CANVAS_FILE_SIZE_LIMIT_KB   -> server.file_size_limit_kb
    CANVAS_PORT                 -> server.port
    CANVAS_ALLOWED_ORIGINS      -> server.allowed_origins (space separated)
    CANVAS_ENABLE_TRACING       -> server.enable_tracing
    CANVAS_REDIS_URL            -> cache.redis_url
    CANVAS_CACHE_TTL_SECONDS    -> cache.ttl_seconds
    CANVAS_WATERMARK_FILE_PATH  -> watermark.path
    CANVAS_WORKERS              -> workers.count
    CANVAS_LOG_LEVEL            -> logging.level
    PORT                        -> server.port (container platforms)

Example:
    from canvas.config import settings

    print(settings.storage.upload_dir)
    print(settings.cache.redis_url)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification."""

    name: str = Field(default="canvas", description="Service name")
    version: str = Field(default="0.1.0", description="Service version")


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    file_size_limit_kb: int = Field(
        default=4096,
        ge=1,
        description="Maximum accepted upload size in kilobytes",
    )
    allowed_origins: Optional[List[str]] = Field(
        default=None,
        description="Values for Access-Control-Allow-Origin (None = any origin)",
    )
    enable_tracing: bool = Field(
        default=False,
        description="Log every request with status and latency",
    )


class StorageConfig(BaseModel):
    """Content store configuration."""

    upload_dir: str = Field(
        default="uploads",
        description="Directory where uploaded originals are saved",
    )


class CacheConfig(BaseModel):
    """Redis cache configuration."""

    redis_url: str = Field(
        default="redis://127.0.0.1/",
        description="Redis connection URL",
    )
    max_connections: Optional[int] = Field(
        default=None,
        ge=1,
        description="Connection pool size (None = CPU count)",
    )
    pool_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Time to wait for a free pooled connection before degrading to a miss",
    )
    socket_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Socket connect/read timeout for Redis commands",
    )
    ttl_seconds: Optional[int] = Field(
        default=None,
        ge=1,
        description="Expiry for cached renders (None = rely on Redis eviction)",
    )


class WorkersConfig(BaseModel):
    """CPU work pool configuration."""

    count: Optional[int] = Field(
        default=None,
        ge=1,
        description="Number of transform workers (None = CPU count)",
    )
    queue_size: int = Field(
        default=64,
        ge=0,
        description="Jobs allowed to wait for a free worker",
    )


class WatermarkConfig(BaseModel):
    """Watermark overlay configuration."""

    path: Optional[str] = Field(
        default=None,
        description="Watermark image path (example: '/app/watermark.png')",
    )
    opacity: float = Field(default=0.5, gt=0, le=1.0, description="Blend opacity")
    margin: int = Field(default=10, ge=0, description="Distance from the bottom-right corner in pixels")
    max_ratio: float = Field(
        default=0.25,
        gt=0,
        le=1.0,
        description="Largest fraction of each image dimension the watermark may cover",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for Canvas.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    watermark: WatermarkConfig = Field(default_factory=WatermarkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Storage
    if env_dir := os.environ.get("CANVAS_UPLOAD_DIR"):
        config_data.setdefault("storage", {})["upload_dir"] = env_dir

    # Server (container platforms use PORT)
    if env_limit := os.environ.get("CANVAS_FILE_SIZE_LIMIT_KB"):
        config_data.setdefault("server", {})["file_size_limit_kb"] = int(env_limit)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("CANVAS_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    if env_origins := os.environ.get("CANVAS_ALLOWED_ORIGINS"):
        config_data.setdefault("server", {})["allowed_origins"] = env_origins.split()
    if env_tracing := os.environ.get("CANVAS_ENABLE_TRACING"):
        config_data.setdefault("server", {})["enable_tracing"] = _parse_bool(env_tracing)

    # Cache
    if env_redis := os.environ.get("CANVAS_REDIS_URL"):
        config_data.setdefault("cache", {})["redis_url"] = env_redis
    if env_ttl := os.environ.get("CANVAS_CACHE_TTL_SECONDS"):
        config_data.setdefault("cache", {})["ttl_seconds"] = int(env_ttl)

    # Watermark
    if env_wm := os.environ.get("CANVAS_WATERMARK_FILE_PATH"):
        config_data.setdefault("watermark", {})["path"] = env_wm

    # Workers
    if env_workers := os.environ.get("CANVAS_WORKERS"):
        config_data.setdefault("workers", {})["count"] = int(env_workers)

    # Logging
    if env_log := os.environ.get("CANVAS_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
