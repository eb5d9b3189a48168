"""Pydantic models for the Alertmanager webhook payload and the messages built from it."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Alertmanager emits nanosecond timestamps; datetime holds microseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class BadRequest(ValueError):
    """Raised when a webhook body is missing, malformed or does not match the schema."""
    pass


class Alert(BaseModel):
    """Individual alert within an Alertmanager notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    starts_at: Optional[datetime] = Field(default=None, alias="startsAt")
    ends_at: Optional[datetime] = Field(default=None, alias="endsAt")
    generator_url: str = Field(default="", alias="generatorURL")
    fingerprint: Optional[str] = None

    @field_validator("starts_at", "ends_at", mode="before")
    @classmethod
    def truncate_fraction(cls, value):
        if isinstance(value, str):
            return _FRACTION_RE.sub(r"\1", value)
        return value


class AlertGroup(BaseModel):
    """Alertmanager webhook payload: a batch of alerts delivered in one call."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: str = "4"
    group_key: str = Field(default="", alias="groupKey")
    truncated_alerts: int = Field(default=0, alias="truncatedAlerts")
    status: str
    receiver: str = ""
    group_labels: Dict[str, str] = Field(default_factory=dict, alias="groupLabels")
    common_labels: Dict[str, str] = Field(default_factory=dict, alias="commonLabels")
    common_annotations: Dict[str, str] = Field(default_factory=dict, alias="commonAnnotations")
    external_url: str = Field(default="", alias="externalURL")
    alerts: List[Alert]

    def to_json_bytes(self) -> bytes:
        """Serialize with the original Alertmanager field names, omitting fields the sender left out."""
        return self.model_dump_json(by_alias=True, exclude_unset=True).encode("utf-8")


@dataclass(frozen=True)
class OutboundMessage:
    """One record to write to the topic. The broker client assigns the timestamp."""

    value: bytes
    key: Optional[bytes] = None


def decode_alert_group(body: Optional[bytes]) -> AlertGroup:
    """
    Decode a webhook body into an AlertGroup.

    Raises:
        BadRequest: empty body, invalid JSON, or a payload that does not
            validate completely against the schema. Values of the wrong JSON
            type are rejected, not coerced.
    """
    if not body or not body.strip():
        raise BadRequest("Empty or null payload")
    try:
        return AlertGroup.model_validate_json(body, strict=True)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        if errors and errors[0]["type"] == "json_invalid":
            raise BadRequest(f"Invalid JSON: {errors[0]['msg']}") from e
        if errors and errors[0]["type"] == "model_type" and not errors[0]["loc"]:
            raise BadRequest("Payload must be a JSON object") from e
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in errors})
        raise BadRequest(f"Payload does not match schema: {fields}") from e


def _key(value: Optional[str]) -> Optional[bytes]:
    return value.encode("utf-8") if value else None


def build_messages(group: AlertGroup, granularity: str = "group", key_by_group: bool = False) -> List[OutboundMessage]:
    """
    Map an AlertGroup to outbound messages.

    "group" keeps the batch the router chose: one message per AlertGroup.
    "alert" emits one message per alert, each a copy of the group holding
    only that alert, so every message has the same shape for consumers.
    """
    if granularity == "group":
        return [OutboundMessage(
            value=group.to_json_bytes(),
            key=_key(group.group_key) if key_by_group else None,
        )]

    if granularity != "alert":
        raise ValueError(f"Unknown message granularity: {granularity}")

    messages = []
    for alert in group.alerts:
        single = group.model_copy(update={"alerts": [alert]})
        key = None
        if key_by_group:
            key = _key(alert.fingerprint) or _key(group.group_key)
        messages.append(OutboundMessage(value=single.to_json_bytes(), key=key))
    return messages
