"""
Error taxonomy for the curator.

Oracle adapters translate provider exceptions into exactly one of the
``ProviderError`` kinds before they reach the retry policy, so nothing above
``services/llm.py`` ever inspects a raw provider error.
"""
from typing import Optional


class CuratorError(Exception):
    """Base error for everything raised by kaspa_curator."""


class MalformedResponseError(CuratorError):
    """The judge replied but broke the output-format contract."""

    def __init__(self, message: str, raw_response: str, call_handle: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response
        self.call_handle = call_handle


class ProviderError(CuratorError):
    """Oracle failure that is neither a rate limit nor quota exhaustion."""


class TransientProviderError(ProviderError):
    """Rate limited by the oracle. Safe to retry after ``retry_after`` seconds."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class FatalProviderError(ProviderError):
    """Quota or billing exhausted. Retrying cannot help."""


class InvalidInputError(CuratorError):
    """Caller-supplied value outside the recognised enumerations."""


class InvalidTransitionError(CuratorError):
    """Requested judging transition is not allowed for the post's current state."""


class ReevaluationRejectedError(CuratorError):
    """Re-evaluating an approved post came back rejected; nothing was persisted."""

    def __init__(self, post_id: str, quote: str):
        super().__init__(f"Re-evaluation of approved post {post_id} came back rejected")
        self.post_id = post_id
        self.quote = quote
