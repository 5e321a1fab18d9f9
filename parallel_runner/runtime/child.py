"""Fork-based child process handle.

The runner treats this module as its process primitive: spawn a callable in a
forked copy of the current process, poll its exit status without blocking,
signal it, and optionally receive the callable's return value.
"""

from __future__ import annotations

import multiprocessing
import os
from multiprocessing.connection import Connection
from typing import Any, Callable

# Work items are arbitrary closures that must see the parent's memory, so only
# the fork start method is usable (POSIX only).
_FORK = multiprocessing.get_context("fork")

# Importing util registers multiprocessing's atexit join of live children. That
# has to happen before any Runner registers its exit hook, so the hook runs first.
import multiprocessing.util  # noqa: E402,F401


def _child_main(body: Callable[[], Any], reader: Connection | None, writer: Connection | None) -> None:
    if reader is not None:
        reader.close()
    result = body()
    if writer is not None:
        writer.send(result)
        writer.close()


class Child:
    """Handle to a forked child, owned by whoever spawned it."""

    def __init__(self, process: Any, reader: Connection | None = None) -> None:
        self._process = process
        self._reader = reader
        self._has_value = False
        self._value: Any = None

    def __repr__(self) -> str:
        return f"Child(pid={self.pid}, exit_status={self.exit_status})"

    @property
    def pid(self) -> int:
        return int(self._process.pid)

    @property
    def exit_status(self) -> int | None:
        """Exit code, ``-signum`` if killed by a signal, ``None`` while running."""
        return self._process.exitcode

    def is_exited(self) -> bool:
        return self._process.exitcode is not None

    @property
    def has_return_value(self) -> bool:
        return self._has_value

    @property
    def return_value(self) -> Any:
        return self._value

    def collect_return_value(self) -> bool:
        """Receive the child's return value if it has been sent (non-blocking)."""
        reader = self._reader
        if reader is None:
            return self._has_value
        if not reader.poll():
            return False
        try:
            self._value = reader.recv()
            self._has_value = True
        except EOFError:
            # Child exited without sending (crashed, killed or sys.exit()).
            pass
        reader.close()
        self._reader = None
        return self._has_value

    def kill(self, sig: int) -> None:
        # Once the exit is observed the pid is reaped and may be reused.
        if self.is_exited():
            return
        try:
            os.kill(self.pid, sig)
        except ProcessLookupError:
            pass

    def wait(self, timeout: float | None = None) -> int | None:
        self._process.join(timeout)
        return self.exit_status


def spawn_child(body: Callable[[], Any], *, return_value: bool = False) -> Child:
    """Fork a child running ``body``; with ``return_value`` its result is piped back."""
    reader: Connection | None = None
    writer: Connection | None = None
    if return_value:
        reader, writer = _FORK.Pipe(duplex=False)

    process = _FORK.Process(target=_child_main, args=(body, reader, writer))
    process.start()
    if writer is not None:
        writer.close()
    return Child(process, reader)
