"""Configuration management for the interop client."""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, validator


class TLSSettings(BaseModel):
    """TLS settings shared by every connection of a run."""

    insecure_skip_verify: bool = True
    session_cache_size: int = 1

    @validator('session_cache_size')
    def check_cache_size(cls, v):
        if v < 1:
            raise ValueError("session_cache_size must be at least 1")
        return v


class QuicSettings(BaseModel):
    """QUIC transport settings."""

    idle_timeout: float = 30.0
    default_port: int = 443
    # Reserved version used to force a version negotiation failure.
    unsupported_version: int = 0x1a2a3a4a

    @validator('unsupported_version', pre=True)
    def parse_version(cls, v):
        if isinstance(v, str):
            return int(v, 0)
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_file: Optional[str] = "/logs/log.txt"
    keylog_file: Optional[str] = "/logs/keylogfile.txt"
    history_file: Optional[str] = None


class Config(BaseModel):
    """Main configuration."""

    download_dir: str = "/downloads"

    tls: TLSSettings = Field(default_factory=TLSSettings)
    quic: QuicSettings = Field(default_factory=QuicSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @validator('download_dir', pre=True)
    def normalize_download_dir(cls, v):
        return str(v)


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """Load configuration from file, falling back to defaults."""
    if config_path is None:
        return Config()

    config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    return Config(**data)


def save_config(config: Config, config_path: Union[str, Path]) -> None:
    """Save configuration to file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.dict(exclude_none=True)
    # Versions read better in hex.
    data['quic']['unsupported_version'] = hex(config.quic.unsupported_version)

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
