from __future__ import annotations

import enum
import json
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from uptime_archive.core.exceptions import ConfigurationError

DEFAULT_EXPECTED_CODES = (200, 301, 302)

_SCHEMES = {
    "http": {"http", "https"},
    "tcp": {"tcp"},
    "ws": {"ws", "wss"},
}


class CheckType(str, enum.Enum):
    HTTP = "http"
    TCP = "tcp"
    WS = "ws"


class EndpointSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=255, validation_alias=AliasChoices("name", "system"))
    url: str = Field(..., min_length=1, validation_alias=AliasChoices("url", "address"))
    type: CheckType = CheckType.HTTP
    method: str = "GET"
    timeout_ms: int = Field(default=10_000, ge=1, validation_alias=AliasChoices("timeout_ms", "timeout"))
    expected_codes: tuple[int, ...] = Field(
        default=DEFAULT_EXPECTED_CODES,
        min_length=1,
        validation_alias=AliasChoices("expected_codes", "expectedCodes"),
    )
    max_response_time_ms: int = Field(
        default=30_000,
        ge=1,
        validation_alias=AliasChoices("max_response_time_ms", "maxResponseTime"),
    )

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_address(self) -> EndpointSpec:
        parts = urlsplit(self.url)
        if parts.scheme not in _SCHEMES[self.type.value]:
            raise ValueError(f"{self.type.value} check cannot use address {self.url!r}")
        if not parts.hostname:
            raise ValueError(f"address {self.url!r} has no host")
        if self.type is CheckType.TCP and parts.port is None:
            raise ValueError(f"tcp address {self.url!r} needs a port")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class EndpointFile(BaseModel):
    systems: list[EndpointSpec] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_names(self) -> EndpointFile:
        seen: set[str] = set()
        for spec in self.systems:
            if spec.name in seen:
                raise ValueError(f"duplicate system name {spec.name!r}")
            seen.add(spec.name)
        return self


def read_json_file(path: Path, what: str) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"{what} file not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"failed to read {what} file {path}: {exc}") from exc


def load_endpoints(path: Path) -> list[EndpointSpec]:
    """Load ``{"systems": [...]}`` from a JSON config file.

    Accepts both snake_case keys and the camelCase keys written by the site
    configuration (``system``, ``expectedCodes``, ``maxResponseTime``).
    """
    raw = read_json_file(path, "endpoint config")
    try:
        return EndpointFile.model_validate(raw).systems
    except ValidationError as exc:
        raise ConfigurationError(f"invalid endpoint config {path}: {exc}") from exc
