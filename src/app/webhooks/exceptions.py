"""Webhook error taxonomy.

Every error here is raised *before* the platform is acknowledged; the
gateway maps ``status_code`` straight onto the HTTP response so the
platform's own retry cadence kicks in. Anything that goes wrong after
acknowledgement is logged, never raised.
"""

from __future__ import annotations


class WebhookError(Exception):
    """Base class for webhook rejections."""

    status_code: int = 400

    def __init__(self, message: str, *, platform: str = "TENCENT_MEETING") -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform


class ConfigurationMissingError(WebhookError):
    """A required webhook secret is not configured."""

    status_code = 500


class MissingHeadersError(WebhookError):
    """timestamp / nonce / signature header absent."""

    status_code = 400


class SignatureMismatchError(WebhookError):
    """SHA-1 signature over the request does not match."""

    status_code = 401

    def __init__(self, message: str = "Webhook signature verification failed", **kwargs) -> None:
        super().__init__(message, **kwargs)


class DecryptionError(WebhookError):
    """AES payload could not be decrypted."""

    status_code = 400


class UrlVerificationError(WebhookError):
    """The one-time URL ownership challenge failed."""

    status_code = 400


class EnvelopeParseError(WebhookError):
    """Decrypted payload is not a valid event envelope."""

    status_code = 400
