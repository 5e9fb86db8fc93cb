"""
Configuration management for VideoReview
"""

import os
import yaml
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001


class StorageConfig(BaseModel):
    endpoint: Optional[str] = None  # e.g., "https://s3.eu-central-1.wasabisys.com"
    region: Optional[str] = None
    bucket: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    force_path_style: bool = True
    signed_url_expiry: int = 3600  # Seconds


class CacheConfig(BaseModel):
    local_cache_enabled: bool = True
    local_cache_dir: str = "/tmp/videoreview"
    max_local_cache_bytes: int = 10 * 1024 * 1024 * 1024  # 10GB
    eviction_target_ratio: float = 0.8  # Evict down to 80% of the maximum
    download_timeout: float = 300.0  # 5 minutes
    segment_ttl_seconds: float = 1800.0  # Fixed expiry, not LRU
    metadata_ttl_seconds: float = 3600.0
    cleanup_interval_seconds: float = 60.0


class TranscodingConfig(BaseModel):
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"
    segment_duration: int = 10
    output_width: int = 1280
    output_height: int = 720
    output_fps: int = 25
    probe_timeout: float = 30.0
    default_seek_duration: float = 30.0
    # Look-ahead tuning
    lookahead_window: int = 3
    lookahead_max_window: int = 6
    lookahead_margin: int = 2
    max_background_encodes: int = 2


class HardwareConfig(BaseModel):
    prefer_hw_accel: bool = True
    accel: Optional[str] = None  # Explicit override: nvenc, qsv, amf, videotoolbox, software


class SecurityConfig(BaseModel):
    api_key: Optional[str] = None
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # text or json
    file: Optional[str] = None


class VideoReviewConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VIDEOREVIEW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values loaded from the YAML file
        return env_settings, init_settings, file_secret_settings


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off", "")


# Deployment variables understood by earlier releases of the service
LEGACY_ENV_VARS: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "PORT": ("server", "port", int),
    "S3_ENDPOINT": ("storage", "endpoint", str),
    "S3_REGION": ("storage", "region", str),
    "S3_BUCKET": ("storage", "bucket", str),
    "S3_ACCESS_KEY_ID": ("storage", "access_key_id", str),
    "S3_SECRET_ACCESS_KEY": ("storage", "secret_access_key", str),
    "LOCAL_CACHE_DIR": ("cache", "local_cache_dir", str),
    "MAX_LOCAL_CACHE_SIZE": ("cache", "max_local_cache_bytes", int),
    "ENABLE_LOCAL_CACHE": ("cache", "local_cache_enabled", _parse_bool),
    "CHUNK_DURATION": ("transcoding", "segment_duration", int),
    "FFMPEG_PATH": ("transcoding", "ffmpeg_path", str),
    "FFPROBE_PATH": ("transcoding", "ffprobe_path", str),
}


def apply_legacy_env(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Merge legacy deployment variables into raw config data."""
    environ = os.environ if environ is None else environ
    for name, (section, field, cast) in LEGACY_ENV_VARS.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError:
            continue
        data.setdefault(section, {})[field] = value
    return data


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "videoreview.yaml",
        Path.cwd() / "videoreview.yml",
        Path.cwd() / "config" / "videoreview.yaml",
        Path.home() / ".config" / "videoreview" / "videoreview.yaml",
        Path("/etc/videoreview/videoreview.yaml"),
    ]
    
    for path in search_paths:
        if path.exists():
            return path
    
    return None


def load_config(config_path: Optional[str] = None) -> VideoReviewConfig:
    """Load configuration from YAML file, legacy variables and environment."""
    config_file = Path(config_path) if config_path else find_config_file()
    
    yaml_data: Dict[str, Any] = {}
    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
    
    return VideoReviewConfig(**apply_legacy_env(yaml_data))


# Global config instance, used by the CLI entry point
_config: Optional[VideoReviewConfig] = None


def get_config() -> VideoReviewConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: VideoReviewConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
