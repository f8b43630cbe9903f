"""Configuration loading and Pydantic models for s3courier."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from s3courier.planner import MAX_SINGLE_PUT_SIZE, MIN_PART_SIZE


class EndpointConfig(BaseModel):
    """Service endpoint the client talks to."""

    url: str = "http://127.0.0.1:9000"
    region: str = "us-east-1"


class CredentialsConfig(BaseModel):
    """Static credentials used to sign requests."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""


class TransferConfig(BaseModel):
    """Tuning knobs for the transfer engine.

    Attributes:
        multipart_threshold: Largest object sent with a single PUT.  Bounded
            by the service's single-request maximum.
        max_concurrency: Upper bound on parts in flight per transfer.
        timeout: Per-request timeout in seconds.
    """

    multipart_threshold: int = MAX_SINGLE_PUT_SIZE
    max_concurrency: int = 4
    timeout: float = 60.0

    @field_validator("multipart_threshold")
    @classmethod
    def _check_threshold(cls, value: int) -> int:
        if not MIN_PART_SIZE <= value <= MAX_SINGLE_PUT_SIZE:
            raise ValueError(
                f"multipart_threshold must be between {MIN_PART_SIZE} and {MAX_SINGLE_PUT_SIZE}"
            )
        return value

    @field_validator("max_concurrency")
    @classmethod
    def _check_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_concurrency must be at least 1")
        return value


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Opt-in Prometheus instrumentation."""

    metrics: bool = False


class S3CourierConfig(BaseModel):
    """Top-level s3courier configuration."""

    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_endpoint(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the endpoint section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "url": data.get("url", "http://127.0.0.1:9000"),
        "region": data.get("region", "us-east-1"),
    }


def _parse_credentials(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the credentials section from YAML data."""
    if data is None:
        return {}
    return {
        "access_key": data.get("access_key", ""),
        "secret_key": data.get("secret_key", ""),
        "session_token": data.get("session_token", ""),
    }


def _parse_transfer(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the transfer section from YAML data.

    Handles nested structure: transfer.multipart.threshold -> multipart_threshold
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        "max_concurrency": data.get("max_concurrency", 4),
        "timeout": data.get("timeout", 60.0),
    }
    multipart_section = data.get("multipart")
    if isinstance(multipart_section, dict):
        result["multipart_threshold"] = multipart_section.get("threshold", MAX_SINGLE_PUT_SIZE)
    return result


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    if data is None:
        return {}
    return {"metrics": bool(data.get("metrics", False))}


def load_config(path: Path) -> S3CourierConfig:
    """Load client configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A populated S3CourierConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        pydantic.ValidationError: If a value is out of range.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return S3CourierConfig(
        endpoint=EndpointConfig(**_parse_endpoint(raw.get("endpoint"))),
        credentials=CredentialsConfig(**_parse_credentials(raw.get("credentials"))),
        transfer=TransferConfig(**_parse_transfer(raw.get("transfer"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
