"""
Error taxonomy for generation orchestration.

InsufficientCredits  - pre-check failed, no external call was made
ProviderError        - external call failed or was rejected (one subclass per kind)
ParseFailure         - call succeeded but its text could not be turned into a scene/story
ChainInterrupted     - a multi-segment story stopped partway through
LedgerError          - the ledger/balance collaborator could not be reached
"""

# Provider error kinds
TIMEOUT = "timeout"
RATE_LIMITED = "rate_limited"
SAFETY_FILTERED = "safety_filtered"
AUTH_INVALID = "auth_invalid"
UNAVAILABLE = "unavailable"
UNKNOWN = "unknown"

ERROR_KINDS = (TIMEOUT, RATE_LIMITED, SAFETY_FILTERED, AUTH_INVALID, UNAVAILABLE, UNKNOWN)

# Retrying an identical request cannot change these outcomes
NON_RETRYABLE_KINDS = frozenset({AUTH_INVALID, SAFETY_FILTERED})

_KIND_MESSAGES = {
    TIMEOUT: "The provider did not finish in time. Please try again.",
    RATE_LIMITED: "Rate limit exceeded. Wait a moment and try again.",
    SAFETY_FILTERED: "Your prompt was flagged by content safety filters. Please modify your description.",
    AUTH_INVALID: "Invalid API key or insufficient permissions. Check your credentials.",
    UNAVAILABLE: "The provider is temporarily unavailable. Please try again later.",
}


class GenerationError(Exception):
    """Base class for every error raised by the orchestration core."""


class InsufficientCredits(GenerationError):
    def __init__(self, required: float, available: float, currency: str = "MXN"):
        self.required = required
        self.available = available
        self.currency = currency
        super().__init__(
            f"Insufficient credits. Required: ${required:.2f} {currency}, "
            f"Available: ${available:.2f} {currency}"
        )


class ProviderError(GenerationError):
    """An external provider call failed. `kind` is one of ERROR_KINDS."""

    kind = UNKNOWN

    def __init__(self, message: str | None = None, kind: str | None = None):
        if kind is not None:
            self.kind = kind
        self.detail = message or ""
        super().__init__(self.user_message())

    def user_message(self) -> str:
        if self.kind == UNKNOWN:
            return self.detail or "Generation failed"
        base = _KIND_MESSAGES[self.kind]
        return f"{base} ({self.detail})" if self.detail else base

    @property
    def retryable(self) -> bool:
        return self.kind not in NON_RETRYABLE_KINDS


class ProviderTimeout(ProviderError):
    kind = TIMEOUT


class RateLimited(ProviderError):
    kind = RATE_LIMITED


class SafetyFiltered(ProviderError):
    kind = SAFETY_FILTERED


class AuthInvalid(ProviderError):
    kind = AUTH_INVALID


class ProviderUnavailable(ProviderError):
    kind = UNAVAILABLE


class UnknownProviderError(ProviderError):
    kind = UNKNOWN


_ERROR_CLASSES = {
    TIMEOUT: ProviderTimeout,
    RATE_LIMITED: RateLimited,
    SAFETY_FILTERED: SafetyFiltered,
    AUTH_INVALID: AuthInvalid,
    UNAVAILABLE: ProviderUnavailable,
    UNKNOWN: UnknownProviderError,
}


def provider_error(kind: str, message: str | None = None) -> ProviderError:
    """Build the ProviderError subclass matching `kind`."""
    if kind not in _ERROR_CLASSES:
        raise ValueError(f"Unknown provider error kind: {kind}")
    return _ERROR_CLASSES[kind](message)


class ParseFailure(GenerationError):
    """The model's response could not be recovered into a structured value."""

    def __init__(self, message: str, context: str = "scene", preview: str = ""):
        self.context = context
        self.preview = preview
        super().__init__(message)


class ChainInterrupted(GenerationError):
    """A story chain stopped at `at_segment` (1-based); `partial_result` keeps earlier segments."""

    def __init__(self, at_segment: int, partial_result, cause: Exception):
        self.at_segment = at_segment
        self.partial_result = partial_result
        self.cause = cause
        completed = len(partial_result.segments)
        super().__init__(
            f"Story chain interrupted at segment {at_segment} "
            f"({completed} segment(s) completed): {cause}"
        )


class LedgerError(GenerationError):
    """The ledger or balance collaborator rejected a request or could not be reached."""


class LedgerStateError(LedgerError):
    """A completed or failed generation record cannot change state again."""
