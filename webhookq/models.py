"""
Notification model.

Validated value objects describing one webhook delivery request, the result
of delivering it, and the JSON message that carries it through the queue.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import MessageDecodeError, ValidationError

DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 30

_ALLOWED_SCHEMES = ("http", "https")


class HttpMethod(str, Enum):
    """HTTP methods a webhook may be sent with."""

    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"

    @classmethod
    def parse(cls, value: Union[str, "HttpMethod", None]) -> "HttpMethod":
        """Map any input to a member; unknown or missing values become POST."""
        if isinstance(value, HttpMethod):
            return value
        if not value:
            return cls.POST
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.POST


@dataclass(frozen=True)
class WebhookUrl:
    """Absolute http(s) URL, kept exactly as it was given."""

    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValidationError("Webhook URL cannot be empty", field="url")

        try:
            parts = urlsplit(self.value)
            # Accessing port validates it
            parts.port
        except ValueError as e:
            raise ValidationError(f"Invalid URL format: {e}", field="url") from e

        if not parts.scheme or not parts.hostname:
            raise ValidationError("Invalid URL format", field="url")

        if parts.scheme not in _ALLOWED_SCHEMES:
            raise ValidationError("URL must use HTTP or HTTPS", field="url")

    @classmethod
    def create(cls, value: str) -> "WebhookUrl":
        return cls(value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class WebhookPayload:
    """Request body and its content type."""

    content: str
    content_type: str = DEFAULT_CONTENT_TYPE

    def __post_init__(self):
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValidationError("Payload content cannot be empty", field="payload")
        if not self.content_type or not str(self.content_type).strip():
            object.__setattr__(self, "content_type", DEFAULT_CONTENT_TYPE)

    @classmethod
    def create(
        cls, content: str, content_type: Optional[str] = DEFAULT_CONTENT_TYPE
    ) -> "WebhookPayload":
        return cls(content, content_type or DEFAULT_CONTENT_TYPE)

    @property
    def body(self) -> bytes:
        """Exact bytes sent on the wire and covered by the signature."""
        return self.content.encode("utf-8")


@dataclass(frozen=True)
class Notification:
    """
    One validated webhook delivery request.

    Instances are immutable and validated on construction; use
    ``Notification.create`` to build one from raw values.
    """

    id: uuid.UUID
    url: WebhookUrl
    method: HttpMethod
    payload: WebhookPayload
    headers: Mapping[str, str] = field(default_factory=dict)
    secret: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not isinstance(self.id, uuid.UUID):
            raise ValidationError("Notification id must be a UUID", field="id")
        if not isinstance(self.url, WebhookUrl):
            raise ValidationError("url must be a WebhookUrl", field="url")
        if not isinstance(self.payload, WebhookPayload):
            raise ValidationError("payload must be a WebhookPayload", field="payload")
        if not isinstance(self.method, HttpMethod):
            raise ValidationError("method must be an HttpMethod", field="method")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ValidationError("max_retries must be an integer", field="max_retries")
        if self.max_retries < 0:
            raise ValidationError("max_retries cannot be negative", field="max_retries")
        if isinstance(self.timeout_seconds, bool) or not isinstance(
            self.timeout_seconds, int
        ):
            raise ValidationError(
                "timeout_seconds must be an integer", field="timeout_seconds"
            )
        if self.timeout_seconds <= 0:
            raise ValidationError(
                "timeout_seconds must be positive", field="timeout_seconds"
            )

        object.__setattr__(
            self, "headers", MappingProxyType(dict(self.headers or {}))
        )

    @classmethod
    def create(
        cls,
        id: Union[uuid.UUID, str],
        url: Union[WebhookUrl, str],
        payload: Union[WebhookPayload, str],
        *,
        method: Union[HttpMethod, str, None] = HttpMethod.POST,
        content_type: Optional[str] = DEFAULT_CONTENT_TYPE,
        headers: Optional[Mapping[str, str]] = None,
        secret: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> "Notification":
        """Validate raw values and build a Notification."""
        if not isinstance(id, uuid.UUID):
            try:
                id = uuid.UUID(str(id))
            except ValueError as e:
                raise ValidationError(f"Invalid notification id: {id}", field="id") from e

        if not isinstance(url, WebhookUrl):
            url = WebhookUrl.create(url)

        if not isinstance(payload, WebhookPayload):
            payload = WebhookPayload.create(payload, content_type)

        return cls(
            id=id,
            url=url,
            method=HttpMethod.parse(method),
            payload=payload,
            headers=headers or {},
            secret=secret or None,
            max_retries=max_retries,
            timeout_seconds=timeout_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering one notification."""

    success: bool
    status_code: int = 0
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    duration: float = 0.0
    attempts: int = 0

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0


class NotificationMessage(BaseModel):
    """JSON message consumed from the queue."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    notification_id: uuid.UUID = Field(alias="notificationId")
    webhook_url: str = Field(alias="webhookUrl")
    http_method: Optional[str] = Field(default=HttpMethod.POST.value, alias="httpMethod")
    payload: str
    content_type: Optional[str] = Field(
        default=DEFAULT_CONTENT_TYPE, alias="contentType"
    )
    headers: Optional[Dict[str, str]] = None
    secret: Optional[str] = None
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, alias="maxRetries")
    timeout_seconds: int = Field(
        default=DEFAULT_TIMEOUT_SECONDS, gt=0, alias="timeoutSeconds"
    )

    @classmethod
    def decode(cls, raw: Union[bytes, str]) -> "NotificationMessage":
        """Parse a queue body, raising MessageDecodeError on bad JSON or schema."""
        try:
            return cls.model_validate_json(raw)
        except (PydanticValidationError, ValueError) as e:
            raise MessageDecodeError(f"Invalid notification message: {e}") from e

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_notification(self) -> Notification:
        """Build the validated Notification this message describes."""
        return Notification.create(
            self.notification_id,
            self.webhook_url,
            self.payload,
            method=self.http_method,
            content_type=self.content_type,
            headers=self.headers,
            secret=self.secret,
            max_retries=self.max_retries,
            timeout_seconds=self.timeout_seconds,
        )
