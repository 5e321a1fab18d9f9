from __future__ import annotations


class UsageError(RuntimeError):
    """Raised when a Runner is driven from a process that does not own it.

    This happens when a forked child re-enters the pool API through the copy
    of the Runner it inherited from its parent.
    """

    def __init__(self, operation: str, *, owner_pid: int, current_pid: int) -> None:
        super().__init__(
            f"Called {operation}() in child process {current_pid} "
            f"(runner is owned by process {owner_pid})"
        )
        self.operation = operation
        self.owner_pid = owner_pid
        self.current_pid = current_pid
