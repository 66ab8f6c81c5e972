"""
Application errors for clean API error handling.

Use ServiceUnavailableError when the LLM is misconfigured or unreachable so the
API can return 503 with a user-facing message. AgentInvocationError and
ConcurrentSubmitError come out of the session dispatcher and are surfaced to
whoever started the turn.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. the chat LLM) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AgentInvocationError(Exception):
    """Raised when the agent fails mid-turn. Messages already delivered for the turn stand."""

    def __init__(self, thread_id: str, message: str) -> None:
        self.thread_id = thread_id
        self.message = message
        super().__init__(f"Agent turn failed for thread {thread_id!r}: {message}")


class ConcurrentSubmitError(Exception):
    """Raised when a turn is submitted for a thread that already has one in flight."""

    def __init__(self, thread_id: str) -> None:
        self.thread_id = thread_id
        self.message = f"A turn is already in progress for thread {thread_id!r}"
        super().__init__(self.message)
