"""Start and stop actions for service units.

An action is any awaitable callable that raises ``StartActionError`` (or any
other exception) on failure. Two adapters are provided: external commands
such as ``docker start jenkins`` and plain Python callables.
"""

import asyncio
import contextlib
import inspect
import logging
import shlex
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from stackup.utils.errors import StartActionError, truncate_error

logger = logging.getLogger(__name__)

# Lines of stderr kept in a failed command's error message
STDERR_TAIL_LINES = 5


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill ``proc`` and reap it."""
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


class CommandAction:
    """Runs an external command; a non-zero exit status is a failure."""

    def __init__(
        self,
        argv: Sequence[str] | str,
        timeout_seconds: float | None = None,
        env: dict[str, str] | None = None,
    ):
        if isinstance(argv, str):
            argv = shlex.split(argv)
        if not argv:
            raise ValueError("Command must not be empty")
        self.argv = list(argv)
        self.timeout_seconds = timeout_seconds
        self.env = env
        # Process of the latest invocation
        self.process: asyncio.subprocess.Process | None = None

    def __repr__(self) -> str:
        return f"CommandAction({shlex.join(self.argv)!r})"

    async def __call__(self) -> None:
        command = shlex.join(self.argv)
        logger.info(f"Running: {command}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            raise StartActionError(
                f"Cannot run '{command}': {e}", {"command": command}
            ) from e
        self.process = proc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), self.timeout_seconds)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise StartActionError(
                f"'{command}' did not finish within {self.timeout_seconds}s",
                {"command": command},
            ) from None
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        if proc.returncode != 0:
            tail = stderr.decode(errors="replace").strip().splitlines()[-STDERR_TAIL_LINES:]
            message = f"'{command}' exited with status {proc.returncode}"
            if tail:
                message += ": " + " | ".join(tail)
            raise StartActionError(
                truncate_error(message),
                {"command": command, "returncode": proc.returncode},
            )


class CallableAction:
    """Adapts a sync or async callable. Returning ``False`` means failure.

    Sync callables run in a worker thread so a blocking call cannot stall the
    event loop, the run deadline, or cancellation.
    """

    def __init__(self, func: Callable[[], Any], name: str | None = None):
        self.func = func
        self.name = name or getattr(func, "__name__", repr(func))

    def __repr__(self) -> str:
        return f"CallableAction({self.name!r})"

    async def __call__(self) -> None:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func()
        else:
            result = await asyncio.to_thread(self.func)
        if inspect.isawaitable(result):
            result = await result
        if result is False:
            raise StartActionError(f"Action '{self.name}' reported failure")


Action = Callable[[], Awaitable[None]]


def as_action(value: Action | Callable[[], Any] | Sequence[str] | str) -> Action:
    """Coerce a command or callable into an action."""
    if isinstance(value, (CommandAction, CallableAction)):
        return value
    if isinstance(value, (str, list, tuple)):
        return CommandAction(value)
    if callable(value):
        return CallableAction(value)
    raise TypeError(f"Cannot use {type(value).__name__} as an action")
