"""Configuration loading and Pydantic models for s3wire."""

from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_TIMEOUT = 300.0  # 5 minutes, applied to connect, write and read
DEFAULT_PRESIGN_EXPIRY = 604800  # 7 days in seconds


class ClientConfig(BaseModel):
    """Endpoint, credentials and transport settings of one S3Client.

    ``virtual_style`` None means the addressing style is derived from the
    endpoint host. ``transport`` replaces the default httpx transports for
    every request, e.g. an ``httpx.MockTransport`` in tests.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    endpoint: str
    region: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    virtual_style: bool | None = None
    accelerate: bool = False
    dual_stack: bool = False
    connect_timeout: float = DEFAULT_TIMEOUT
    write_timeout: float = DEFAULT_TIMEOUT
    read_timeout: float = DEFAULT_TIMEOUT
    transport: httpx.BaseTransport | None = None
    app_name: str | None = None
    app_version: str | None = None

    @field_validator("region")
    @classmethod
    def _region_not_empty(cls, value: str | None) -> str | None:
        if value is not None and not value:
            raise ValueError("region must be a non-empty string")
        return value

    @field_validator("connect_timeout", "write_timeout", "read_timeout")
    @classmethod
    def _timeout_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be greater than zero")
        return value

    @model_validator(mode="after")
    def _credentials_paired(self) -> "ClientConfig":
        if bool(self.access_key) != bool(self.secret_key):
            raise ValueError("access_key and secret_key must be given together")
        return self

    @property
    def anonymous(self) -> bool:
        return not self.access_key


class ServiceConfig(BaseModel):
    """Settings of the storage service adapter."""

    bucket: str = ""
    public_endpoint: str | None = None
    presign_expiry: int = DEFAULT_PRESIGN_EXPIRY


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus metrics toggle."""

    enabled: bool = False


class AppConfig(BaseModel):
    """Top-level s3wire configuration."""

    client: ClientConfig
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_client(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the client section from YAML data into a dict for Pydantic.

    Handles nested structure: client.credentials.access_key -> access_key,
    client.timeouts.connect -> connect_timeout, etc.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {
        "endpoint": data.get("endpoint", ""),
        "region": data.get("region"),
        "virtual_style": data.get("virtual_style"),
        "accelerate": data.get("accelerate", False),
        "dual_stack": data.get("dual_stack", False),
    }

    credentials = data.get("credentials")
    if isinstance(credentials, dict):
        result["access_key"] = credentials.get("access_key")
        result["secret_key"] = credentials.get("secret_key")

    timeouts = data.get("timeouts")
    if isinstance(timeouts, dict):
        for name in ("connect", "write", "read"):
            if name in timeouts:
                result[f"{name}_timeout"] = timeouts[name]

    app = data.get("app")
    if isinstance(app, dict):
        result["app_name"] = app.get("name")
        result["app_version"] = app.get("version")

    return result


def _parse_service(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the service section from YAML data."""
    if data is None:
        return {}
    return {
        "bucket": data.get("bucket", ""),
        "public_endpoint": data.get("public_endpoint"),
        "presign_expiry": data.get("presign_expiry", DEFAULT_PRESIGN_EXPIRY),
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metrics section from YAML data."""
    if data is None:
        return {}
    return {"enabled": data.get("enabled", False)}


def load_config(path: Path) -> AppConfig:
    """Load an AppConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated AppConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a section holds invalid values.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return AppConfig(
        client=ClientConfig(**_parse_client(raw.get("client"))),
        service=ServiceConfig(**_parse_service(raw.get("service"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )
