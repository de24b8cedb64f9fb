"""
Engine Exception Hierarchy
Policy violations are never raised; they surface as ValidationIssues.
"""


class EngineError(Exception):
    """Base class for every error raised by the engine."""
    pass


class GenerationError(EngineError):
    """Recoverable generation failure (retries exhausted, malformed output)."""
    pass


class GenerationCriticalError(EngineError):
    """Non-recoverable generation failure (auth failure, invalid request)."""
    pass


class VersionConflictError(EngineError):
    """Optimistic-lock retries exhausted while updating a record."""

    def __init__(self, session_id: str, attempts: int):
        self.session_id = session_id
        self.attempts = attempts
        super().__init__(
            f"Version conflict for session {session_id} after {attempts} attempts"
        )
