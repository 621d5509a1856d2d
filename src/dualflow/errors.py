"""Error types raised by dualflow sequences and stages."""

from typing import Optional


class UsageError(Exception):
    """Raised when a caller breaks the pull contract of a sequence.

    Examples are iterating a deferred sequence synchronously, pulling a stage
    again after its transition failed, or issuing a second pull on a push
    source while the first one is still parked. These are never retried.
    """


class TransitionError(Exception):
    """Exception raised when a user-supplied transition function fails."""

    def __init__(
        self,
        message: str,
        original_error: Exception,
        step_name: Optional[str] = None,
        pull_index: Optional[int] = None,
    ):
        """Create a transition error with contextual metadata.

        Args:
            message: Human-readable description of the failure.
            original_error: The original exception that was raised.
            step_name: Optional name of the stage where the error occurred.
            pull_index: Optional zero-based index of the upstream pull that
                was being transformed.

        """
        self.original_error = original_error
        self.step_name = step_name
        self.pull_index = pull_index
        super().__init__(f"{message}: {original_error}")
