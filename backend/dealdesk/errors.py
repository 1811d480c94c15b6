from __future__ import annotations

from typing import Any


class ServiceError(RuntimeError):
    """Base class for failures that surface to the caller as a JSON error body."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "detail": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ConfigurationError(ServiceError):
    error_code = "configuration_error"


class Unauthenticated(ServiceError):
    status_code = 401
    error_code = "unauthenticated"


class NotFound(ServiceError):
    status_code = 404
    error_code = "not_found"


class InvalidRequest(ServiceError):
    status_code = 400
    error_code = "validation_error"


class PayloadTooLarge(ServiceError):
    status_code = 413
    error_code = "payload_too_large"


class NoInputs(ServiceError):
    status_code = 400
    error_code = "no_inputs"


class InsufficientCorpus(ServiceError):
    status_code = 400
    error_code = "insufficient_corpus"


class GenerationFailed(ServiceError):
    error_code = "generation_failed"


class StorageError(ServiceError):
    """Raised when object storage read/write fails."""

    error_code = "storage_error"


class StorageConflict(StorageError):
    status_code = 409
    error_code = "storage_conflict"


class PersistenceError(ServiceError):
    error_code = "persistence_error"


class ReferenceConflict(ServiceError):
    status_code = 409
    error_code = "conflict"


class GatewayTimeout(ServiceError):
    status_code = 504
    error_code = "gateway_timeout"


class UpstreamError(ServiceError):
    status_code = 502
    error_code = "upstream_error"

    def __init__(self, message: str, *, upstream_status: int | None = None, details: Any = None) -> None:
        super().__init__(message, details=details)
        self.upstream_status = upstream_status


class RateLimited(UpstreamError):
    status_code = 429
    error_code = "rate_limited"


class PaymentRequired(UpstreamError):
    status_code = 402
    error_code = "payment_required"


class WebhookUnavailable(ServiceError):
    error_code = "webhook_unavailable"


class WebhookRejected(UpstreamError):
    """The webhook answered with a non-2xx status, which is passed through."""

    error_code = "webhook_error"

    def __init__(self, message: str, *, upstream_status: int, details: Any = None) -> None:
        super().__init__(message, upstream_status=upstream_status, details=details)
        self.status_code = upstream_status if 400 <= upstream_status < 600 else 502


class InvalidWebhookResponse(ServiceError):
    status_code = 400
    error_code = "invalid_webhook_response"


class DeliveryFailed(ServiceError):
    error_code = "delivery_failed"


class InvalidSignature(ServiceError):
    status_code = 403
    error_code = "invalid_signature"
