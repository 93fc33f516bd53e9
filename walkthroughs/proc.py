from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Literal

ErrorCategory = Literal["retryable", "fatal"]
CommandRunner = Callable[[list[str], "str | None"], Awaitable["CommandResult"]]
StreamRunner = Callable[[list[str]], "ProcessStream"]

_RETRYABLE_PATTERNS = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection refused",
    "connection reset",
    "i/o timeout",
    "tls handshake timeout",
    "context deadline exceeded",
    "unable to connect",
    "too many requests",
    "rate limit",
    "etcdserver: leader changed",
)


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str


class AdapterCommandError(RuntimeError):
    def __init__(
        self,
        *,
        message: str,
        result: CommandResult,
        category: ErrorCategory,
    ) -> None:
        self.result = result
        self.category = category
        super().__init__(self._build_message(message))

    @property
    def retryable(self) -> bool:
        return self.category == "retryable"

    @property
    def text(self) -> str:
        return f"{self.result.stderr}\n{self.result.stdout}".lower()

    def _build_message(self, message: str) -> str:
        detail = (self.result.stderr or self.result.stdout).strip()
        if len(detail) > 400:
            detail = f"{detail[:397]}..."
        cmd = " ".join(self.result.command)
        return (
            f"{message} (category={self.category}, returncode={self.result.returncode}, "
            f"command={cmd!r}, detail={detail!r})"
        )


async def default_runner(command: list[str], stdin: str | None = None) -> CommandResult:
    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate(stdin.encode("utf-8") if stdin is not None else None)
    return CommandResult(
        command=command,
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def classify_error(*, returncode: int, stderr: str, stdout: str) -> ErrorCategory:
    if returncode < 0:
        return "retryable"
    text = f"{stderr}\n{stdout}".lower()
    if any(pattern in text for pattern in _RETRYABLE_PATTERNS):
        return "retryable"
    return "fatal"


async def run_command(
    command: list[str],
    *,
    runner: CommandRunner | None = None,
    stdin: str | None = None,
    error_message: str,
) -> CommandResult:
    active_runner = runner or default_runner
    completed = await active_runner(command, stdin)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if result.returncode != 0:
        raise AdapterCommandError(
            message=error_message,
            result=result,
            category=classify_error(
                returncode=result.returncode,
                stderr=result.stderr,
                stdout=result.stdout,
            ),
        )
    return result


class ProcessStream:
    """Line-oriented stdout stream of a long-running command such as ``kubectl --watch``."""

    def __init__(self, command: list[str]) -> None:
        self.command = command
        self._process: asyncio.subprocess.Process | None = None

    async def lines(self) -> AsyncIterator[str]:
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert self._process.stdout is not None
        async for raw in self._process.stdout:
            yield raw.decode("utf-8", errors="replace")

    async def wait(self) -> CommandResult:
        assert self._process is not None
        stderr = b""
        if self._process.stderr is not None:
            stderr = await self._process.stderr.read()
        returncode = await self._process.wait()
        return CommandResult(
            command=self.command,
            returncode=returncode,
            stdout="",
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def terminate(self) -> None:
        if self._process is not None and self._process.returncode is None:
            self._process.terminate()


def default_stream_runner(command: list[str]) -> ProcessStream:
    return ProcessStream(command)
