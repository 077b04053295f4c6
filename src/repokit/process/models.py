"""Result types for executed commands."""

from typing import NamedTuple


class ExecutionResult(NamedTuple):
    """Outcome of an external command."""

    command: list[str]
    status: int
    stdout: list[str]
    stderr: list[str]
    exception: OSError | None = None

    @property
    def success(self) -> bool:
        """Check if the command exited with status 0.

        Returns:
            True if the command succeeded
        """
        return self.status == 0

    def __str__(self) -> str:
        parts = [
            f"command: {' '.join(self.command)}",
            f"status: {self.status}",
            "stdout:",
            *(f"  {line}" for line in self.stdout),
            "stderr:",
            *(f"  {line}" for line in self.stderr),
        ]
        if self.exception is not None:
            parts.append(f"exception: {self.exception}")
        return "\n".join(parts)
