"""Configuration dataclasses for the Google Drive upload pipeline.

This module defines the configuration structure for the pipeline, including
authentication, transport retry, rate limiting and upload target settings.
Configuration is usually loaded from a YAML file with ``load_config``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml  # type: ignore[import-untyped]

logger = structlog.get_logger()

# Environment variables that override file-based settings
ENV_FOLDER_ID = "CLIPDRIVE_FOLDER_ID"
ENV_TOKEN = "CLIPDRIVE_TOKEN"


@dataclass
class AuthConfig:
    """OAuth2 authentication configuration."""

    client_secrets_path: Path = field(default_factory=lambda: Path("client_secrets.json"))
    token_path: Path = field(default_factory=lambda: Path(".clipdrive_token.json"))
    scopes: List[str] = field(default_factory=lambda: [
        "https://www.googleapis.com/auth/drive.file",
    ])
    # Fixed bearer token, bypasses the OAuth2 flow (CI, scripted uploads)
    static_token: Optional[str] = None


@dataclass
class TransportConfig:
    """HTTP transport configuration."""

    max_attempts: int = 3
    timeout_seconds: float = 30.0


@dataclass
class RateLimitConfig:
    """Rate limiting configuration."""

    enabled: bool = False
    requests_per_100_seconds: int = 900  # Under Google's 1000/100s limit


@dataclass
class UploadTargetConfig:
    """Where and whether documents are uploaded.

    ``fallback_to_download`` is read by the caller of the pipeline, never by
    the pipeline itself.
    """

    enabled: bool = True
    folder_id: str = ""  # raw folder id or a drive.google.com sharing URL
    fallback_to_download: bool = True


@dataclass
class DriveConfig:
    """Main configuration for the Google Drive upload pipeline.

    Example:
        config = DriveConfig()
        config.target.folder_id = "https://drive.google.com/drive/folders/XYZ123"
        config.transport.max_attempts = 5
    """

    auth: AuthConfig = field(default_factory=AuthConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    target: UploadTargetConfig = field(default_factory=UploadTargetConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DriveConfig":
        """Create a DriveConfig from a dictionary (e.g., from YAML).

        Args:
            data: Dictionary with configuration values.

        Returns:
            DriveConfig instance with values from the dictionary.
        """
        config = cls()

        if "auth" in data:
            auth_data = data["auth"] or {}
            if "client_secrets_path" in auth_data:
                config.auth.client_secrets_path = Path(auth_data["client_secrets_path"])
            if "token_path" in auth_data:
                config.auth.token_path = Path(auth_data["token_path"])
            if "scopes" in auth_data:
                config.auth.scopes = list(auth_data["scopes"])
            config.auth.static_token = auth_data.get("static_token", config.auth.static_token)

        if "transport" in data:
            transport_data = data["transport"] or {}
            config.transport.max_attempts = int(
                transport_data.get("max_attempts", config.transport.max_attempts)
            )
            config.transport.timeout_seconds = float(
                transport_data.get("timeout_seconds", config.transport.timeout_seconds)
            )

        if "rate_limit" in data:
            rate_data = data["rate_limit"] or {}
            config.rate_limit.enabled = bool(rate_data.get("enabled", config.rate_limit.enabled))
            config.rate_limit.requests_per_100_seconds = rate_data.get(
                "requests_per_100_seconds", config.rate_limit.requests_per_100_seconds
            )

        if "target" in data:
            target_data = data["target"] or {}
            config.target.enabled = bool(target_data.get("enabled", config.target.enabled))
            config.target.folder_id = str(target_data.get("folder_id", config.target.folder_id) or "")
            config.target.fallback_to_download = bool(
                target_data.get("fallback_to_download", config.target.fallback_to_download)
            )

        return config


def load_config(config_path: Optional[Path] = None) -> DriveConfig:
    """Load configuration from YAML, then apply environment overrides.

    Args:
        config_path: Path to a YAML settings file. Missing files fall back
            to defaults.

    Returns:
        Populated DriveConfig.
    """
    data: Dict[str, Any] = {}

    if config_path is not None and config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        logger.info("config_loaded", path=str(config_path))
    else:
        logger.debug("using_default_config")

    config = DriveConfig.from_dict(data)

    folder_id = os.environ.get(ENV_FOLDER_ID)
    if folder_id:
        config.target.folder_id = folder_id

    token = os.environ.get(ENV_TOKEN)
    if token:
        config.auth.static_token = token

    return config
