"""
webhookq error types.

Transient delivery failures are never raised; they are reported through
``DeliveryResult``. Everything raised from a message handler causes the
queue transport to requeue the message.
"""

from typing import Optional


class WebhookQError(Exception):
    """Base error for webhookq with a machine readable code."""

    def __init__(self, message: str, error_code: str = "WEBHOOKQ_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        return self.message


class ValidationError(WebhookQError, ValueError):
    """A notification field failed validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "WEBHOOKQ_VALIDATION_ERROR")
        self.field = field


class MessageDecodeError(WebhookQError):
    """A queue message body is not valid JSON or does not match the schema."""

    def __init__(self, message: str):
        super().__init__(message, "WEBHOOKQ_DECODE_ERROR")


class ConfigurationError(WebhookQError):
    def __init__(self, message: str):
        super().__init__(message, "WEBHOOKQ_CONFIG_ERROR")


class TransportError(WebhookQError):
    def __init__(self, message: str):
        super().__init__(message, "WEBHOOKQ_TRANSPORT_ERROR")
