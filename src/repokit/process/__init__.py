"""Subprocess execution for native VCS tools."""

from repokit.process.exceptions import ProcessError
from repokit.process.executor import Execution, ProcessExecutor, StreamingExecution
from repokit.process.models import ExecutionResult

__all__ = [
    "Execution",
    "ExecutionResult",
    "ProcessError",
    "ProcessExecutor",
    "StreamingExecution",
]
