"""Execution of native VCS binaries.

Two capability shapes are offered:

* buffered (:meth:`ProcessExecutor.capture`): the command runs to completion
  and its whole output is collected, used for short introspection commands.
* streaming (:meth:`ProcessExecutor.stream`): stdout is read incrementally
  while the process is still running, used for history traversal and diff
  export. The consumer must drain the output before the process can exit and
  the handle must be reaped afterwards, which the context manager guarantees.

All environment handling for wrapped tools lives here.
"""

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import TracebackType
from typing import IO

from repokit.process.exceptions import ProcessError
from repokit.process.models import ExecutionResult

logger = logging.getLogger(__name__)

SPAWN_FAILED = -1


def _decode_lines(data: bytes) -> list[str]:
    """Split raw output on newlines only.

    Carriage returns are part of the line content, never separators.
    """
    if not data:
        return []
    text = data.decode("utf-8", errors="surrogateescape")
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


class Execution:
    """Handle on a buffered command.

    The process is spawned on construction; :meth:`wait` collects all of its
    output.
    """

    def __init__(self, command: list[str], workdir: Path, env: dict[str, str]) -> None:
        self.command = command
        self._result: ExecutionResult | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._spawn_error: OSError | None = None

        try:
            self._process = subprocess.Popen(
                command,
                cwd=workdir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.debug("Failed to spawn %s: %s", command[0], e)
            self._spawn_error = e

    def wait(self) -> ExecutionResult:
        """Wait for the command to finish without raising on failure.

        Returns:
            The collected result; a spawn failure is reported with status -1
        """
        if self._result is not None:
            return self._result

        if self._process is None:
            self._result = ExecutionResult(self.command, SPAWN_FAILED, [], [], self._spawn_error)
            return self._result

        stdout, stderr = self._process.communicate()
        self._result = ExecutionResult(
            self.command,
            self._process.returncode,
            _decode_lines(stdout),
            _decode_lines(stderr),
        )
        return self._result

    def check(self) -> ExecutionResult:
        """Wait for the command and require a zero exit status.

        Returns:
            The collected result

        Raises:
            ProcessError: If the command failed or could not be spawned
        """
        result = self.wait()
        if result.status != 0:
            raise ProcessError(result) from result.exception
        return result

    def __enter__(self) -> "Execution":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.wait()


class StreamingExecution:
    """Handle on a running command whose stdout is consumed incrementally.

    Stderr is spooled to an anonymous temporary file so that only stdout can
    ever block the producer.
    """

    def __init__(self, command: list[str], workdir: Path, env: dict[str, str]) -> None:
        self.command = command
        self._result: ExecutionResult | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._spawn_error: OSError | None = None
        self._stderr: IO[bytes] = tempfile.TemporaryFile()

        try:
            self._process = subprocess.Popen(
                command,
                cwd=workdir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
            )
        except OSError as e:
            logger.debug("Failed to spawn %s: %s", command[0], e)
            self._spawn_error = e

    @property
    def finished(self) -> bool:
        """True once the process has been reaped."""
        return self._result is not None

    def lines(self) -> Iterator[str]:
        """Yield stdout lines as the process produces them.

        Yields:
            Decoded lines without their trailing newline
        """
        if self._process is None or self._process.stdout is None or self.finished:
            return
        for raw in self._process.stdout:
            line = raw[:-1] if raw.endswith(b"\n") else raw
            yield line.decode("utf-8", errors="surrogateescape")

    def wait(self) -> ExecutionResult:
        """Drain unread output, then reap the process.

        Returns:
            The result; stdout holds only lines that were never consumed
        """
        if self._result is not None:
            return self._result

        remaining: list[str] = []
        if self._process is not None and self._process.stdout is not None:
            remaining = _decode_lines(self._process.stdout.read())
        return self._reap(remaining)

    def abort(self) -> ExecutionResult:
        """Terminate the process without reading the rest of its output.

        Returns:
            The result of the terminated process
        """
        if self._result is not None:
            return self._result

        if self._process is not None and self._process.poll() is None:
            logger.debug("Terminating %s", " ".join(self.command))
            self._process.terminate()
        return self._reap([])

    def check(self) -> ExecutionResult:
        """Reap the process and require a zero exit status.

        Returns:
            The result

        Raises:
            ProcessError: If the command failed or could not be spawned
        """
        result = self.wait()
        if result.status != 0:
            raise ProcessError(result) from result.exception
        return result

    def _reap(self, stdout: list[str]) -> ExecutionResult:
        try:
            if self._process is None:
                self._result = ExecutionResult(self.command, SPAWN_FAILED, [], [], self._spawn_error)
                return self._result

            if self._process.stdout is not None:
                self._process.stdout.close()
            status = self._process.wait()
            self._stderr.seek(0)
            self._result = ExecutionResult(self.command, status, stdout, _decode_lines(self._stderr.read()))
            return self._result
        finally:
            self._stderr.close()

    def __enter__(self) -> "StreamingExecution":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is GeneratorExit:
            self.abort()
        else:
            self.wait()


class ProcessExecutor:
    """Runs commands in a fixed working directory with a fixed environment.

    Args:
        workdir: Directory the commands run in
        environ: Variables overriding the inherited environment
    """

    def __init__(self, workdir: str | Path, environ: Mapping[str, str] | None = None) -> None:
        self.workdir = Path(workdir)
        self.environ = dict(environ or {})

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self.environ)
        return env

    def capture(self, *command: str) -> Execution:
        """Start a buffered command.

        Args:
            command: Executable followed by its arguments

        Returns:
            Handle whose wait()/check() collect the output
        """
        logger.debug("Executing %s", " ".join(command))
        return Execution(list(command), self.workdir, self._environment())

    def stream(self, *command: str) -> StreamingExecution:
        """Start a streaming command.

        Args:
            command: Executable followed by its arguments

        Returns:
            Live handle; use it as a context manager so it is always reaped
        """
        logger.debug("Streaming %s", " ".join(command))
        return StreamingExecution(list(command), self.workdir, self._environment())
