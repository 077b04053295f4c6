"""Process execution exceptions."""

from repokit.process.models import ExecutionResult


class ProcessError(Exception):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, result: ExecutionResult) -> None:
        """Initialize the error.

        Args:
            result: Full captured outcome of the failed command
        """
        super().__init__(f"Unexpected exit code\n{result}")
        self.result = result

    @property
    def status(self) -> int:
        """Exit status of the failed command."""
        return self.result.status
