"""Error taxonomy shared by the evaluator, the model client and the API."""
from __future__ import annotations


class PitchReviewError(Exception):
    """Base class for every failure the API maps to a response."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PitchReviewError):
    status_code = 404
    error_type = "not_found"


class InputValidationError(PitchReviewError):
    status_code = 400
    error_type = "validation_error"


class LLMCallError(PitchReviewError):
    """LLM call failed. ``retryable`` marks transient failures."""

    status_code = 502
    error_type = "upstream_error"

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class UpstreamRateLimited(LLMCallError):
    status_code = 429
    error_type = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, retryable=False)


class UpstreamPaymentRequired(LLMCallError):
    status_code = 402
    error_type = "payment_required"

    def __init__(self, message: str = "Payment required. Please add credits to the model provider account."):
        super().__init__(message, retryable=False)


class UpstreamError(LLMCallError):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Model provider returned HTTP {status}: {body[:300]}", retryable=status >= 500)
        self.status = status
        self.body = body


class UpstreamTimeout(LLMCallError):
    status_code = 504
    error_type = "timeout"

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class TransportError(LLMCallError):
    error_type = "transport_error"

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class EmptyCompletion(LLMCallError):
    def __init__(self, message: str = "Model provider returned an empty response"):
        super().__init__(message, retryable=False)


class ParseError(PitchReviewError):
    """The model reply held no usable JSON object. Keeps the raw reply."""

    status_code = 422
    error_type = "parse_error"

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceError(PitchReviewError):
    status_code = 503
    error_type = "persistence_error"


class StaleEvaluation(PitchReviewError):
    """A run that started later already stored its result."""

    status_code = 409
    error_type = "stale_evaluation"
