"""
Gateway Error Types - Structured Error Handling

Provides the structured result returned by every gateway call and the
exception taxonomy used by the relay to decide between recovery,
fallback and logging.
"""

from dataclasses import dataclass
from typing import Any, Optional


# Upper-cased fragments of Bot API descriptions meaning the topic is gone
THREAD_MISSING_MARKERS = (
    "MESSAGE THREAD NOT FOUND",
    "MESSAGE_THREAD_NOT_FOUND",
    "THREAD_NOT_FOUND",
    "TOPIC_NOT_FOUND",
    "FORUM_TOPIC_NOT_FOUND",
)


@dataclass
class GatewayResult:
    """
    Outcome of a single messaging gateway call.

    Attributes:
        ok: True if the remote API accepted the call
        result: Decoded API payload on success
        error_code: Numeric error code on failure, if any
        description: Machine-readable failure reason
    """
    ok: bool
    result: Any = None
    error_code: Optional[int] = None
    description: str = ""

    @classmethod
    def success(cls, result: Any = None) -> 'GatewayResult':
        return cls(ok=True, result=result)

    @classmethod
    def failure(cls, description: str, error_code: Optional[int] = None) -> 'GatewayResult':
        return cls(ok=False, error_code=error_code, description=description or "")

    @classmethod
    def from_response(cls, payload: Any) -> 'GatewayResult':
        """
        Converts a decoded Bot API response body into a GatewayResult.

        Args:
            payload: Decoded JSON body

        Returns:
            GatewayResult, failed if the body is not a proper API envelope
        """
        if not isinstance(payload, dict):
            return cls.failure("invalid response from messaging API")
        if payload.get("ok"):
            return cls.success(payload.get("result"))
        return cls.failure(payload.get("description", ""), payload.get("error_code"))

    def to_detailed_string(self) -> str:
        """
        Returns detailed error string in format: 'Code: description'

        Returns:
            Formatted error string for logs
        """
        if self.ok:
            return "OK"
        return f"{self.error_code or 'Error'}: {self.description}"


def is_thread_missing(result: Optional[GatewayResult]) -> bool:
    """
    Checks whether a failed call means the target thread no longer exists.

    Args:
        result: Gateway call outcome

    Returns:
        True only for failures whose description names a missing thread/topic
    """
    if result is None or result.ok:
        return False
    description = (result.description or "").upper()
    return any(marker in description for marker in THREAD_MISSING_MARKERS)


class RelayError(Exception):
    """Base class for relay failures."""


class ThreadCreationFailed(RelayError):
    """The gateway refused to allocate a thread. Fatal for the current event."""

    def __init__(self, user_id: int, result: GatewayResult):
        super().__init__(f"thread creation failed for user {user_id}: {result.to_detailed_string()}")
        self.user_id = user_id
        self.result = result


class GatewayCallError(RelayError):
    """A gateway call returned a failed result."""

    def __init__(self, operation: str, result: GatewayResult):
        super().__init__(f"{operation} failed: {result.to_detailed_string()}")
        self.operation = operation
        self.result = result


class ThreadMissing(GatewayCallError):
    """A delivery call failed because its target thread is gone. Recoverable once."""


class DeliveryFailed(GatewayCallError):
    """A delivery call failed for a reason other than a missing thread."""


class GroupFlushRaced(RelayError):
    """A flush found its buffer already flushed or advanced. Benign no-op."""

    def __init__(self, key: str):
        super().__init__(f"buffer {key} was already handled")
        self.key = key


def raise_for_result(operation: str, result: GatewayResult) -> GatewayResult:
    """
    Raises the matching relay error for a failed result.

    Args:
        operation: Name of the gateway call, for logs
        result: Gateway call outcome

    Returns:
        The result unchanged when it succeeded

    Raises:
        ThreadMissing: If the failure names a missing thread
        DeliveryFailed: For any other failure
    """
    if result.ok:
        return result
    if is_thread_missing(result):
        raise ThreadMissing(operation, result)
    raise DeliveryFailed(operation, result)
