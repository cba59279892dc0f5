"""Pydantic models for the lifecycle API the host calls."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class Parameter(BaseModel):
    """A single documented parameter (subscription-time or boot-time)."""

    key: str
    required: bool = False
    documentation: str = ""


class Documentation(BaseModel):
    """What an extension tells users about itself."""

    body: str = ""
    pipeline_subscription_params: list[Parameter] = []
    config_params: list[Parameter] = []


class InfoResponse(BaseModel):
    extension_id: str
    documentation: Documentation


class DebugResponse(BaseModel):
    """Opaque snapshot for operators. Never carries secrets."""

    registered_pipelines: list[str]
    config: dict[str, Any]


class SubscriptionRequest(BaseModel):
    namespace_id: str = Field(min_length=1)
    pipeline_id: str = Field(min_length=1)
    pipeline_subscription_id: str = Field(min_length=1)
    pipeline_subscription_params: dict[str, str] = {}


class UnsubscriptionRequest(BaseModel):
    namespace_id: str = Field(min_length=1)
    pipeline_id: str = Field(min_length=1)
    pipeline_subscription_id: str = Field(min_length=1)


class ExternalEventRequest(BaseModel):
    """An HTTP request received by the host and forwarded verbatim.

    ``body`` arrives either as an array of byte values or as a string.
    """

    headers: dict[str, str] = {}
    body: bytes = b""

    @field_validator("body", mode="before")
    @classmethod
    def coerce_body(cls, v: Any) -> Any:
        if isinstance(v, list):
            try:
                return bytes(v)
            except (TypeError, ValueError) as e:
                raise ValueError("body must be a list of byte values (0-255)") from e
        if isinstance(v, str):
            return v.encode()
        return v


class ErrorResponse(BaseModel):
    message: str
    request_id: str
