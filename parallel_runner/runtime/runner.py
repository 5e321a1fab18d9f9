from __future__ import annotations

import atexit
import functools
import logging
import os
import signal
import time
import weakref
from pathlib import Path
from typing import Any, Callable

from parallel_runner.config.load_config import RunnerConfig, load_runner_config
from parallel_runner.runtime.child import Child, spawn_child
from parallel_runner.utils.errors import UsageError


logger = logging.getLogger(__name__)

IterationCallback = Callable[[], None]
ChildExitCallback = Callable[[int, int], None]
ReturnValueCallback = Callable[[Any], None]
PreExitCallback = Callable[[Any], None]


def _close_at_exit(ref: weakref.ref[Runner]) -> None:
    runner = ref()
    if runner is not None:
        runner.close()


class Runner:
    """Bounded pool of forked children, driven by single-threaded polling.

    With ``max_concurrency == 1`` work runs inline unless a spawn is forced.
    Call :meth:`finish` when done; releasing a Runner that still has live
    children warns and escalates SIGTERM -> SIGKILL on them.
    """

    def __init__(
        self,
        max_concurrency: int | None = None,
        *,
        config: RunnerConfig | None = None,
        poll_interval_s: float | None = None,
        on_iteration: IterationCallback | None = None,
        on_child_exit: ChildExitCallback | None = None,
        on_child_return_value: ReturnValueCallback | None = None,
        on_child_pre_exit: PreExitCallback | None = None,
    ) -> None:
        self._children: list[Child] = []
        self._owner_pid = os.getpid()
        self._config = config or RunnerConfig()

        self.max_concurrency = int(self._config.max_concurrency if max_concurrency is None else max_concurrency)
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        self.poll_interval_s = float(self._config.poll_interval_s if poll_interval_s is None else poll_interval_s)
        if self.poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be > 0, got {self.poll_interval_s}")

        # Called once per poll tick while blocked (capacity wait, forced wait, finish).
        self.on_iteration = on_iteration
        # Called in the parent as each child is reaped: (exit_status, pid).
        self.on_child_exit = on_child_exit
        # Called in the parent with the child's return value; setting it enables the pipe.
        self.on_child_return_value = on_child_return_value
        # Called inside the child with the work's return value, just before it exits.
        self.on_child_pre_exit = on_child_pre_exit

        # Runs before multiprocessing's own exit handler, which would otherwise
        # join live children with no time limit when the parent exits.
        self._exit_hook = functools.partial(_close_at_exit, weakref.ref(self))
        atexit.register(self._exit_hook)

    @classmethod
    def from_config(cls, path: Path | str | None = None, **callbacks: Any) -> Runner:
        return cls(config=load_runner_config(path), **callbacks)

    def __enter__(self) -> Runner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        hook = getattr(self, "_exit_hook", None)
        if hook is not None:
            atexit.unregister(hook)
        if getattr(self, "_children", None):
            self.close()

    @property
    def owner_pid(self) -> int:
        return self._owner_pid

    @property
    def config(self) -> RunnerConfig:
        return self._config

    @property
    def children(self) -> list[Child]:
        """Live children, after reaping any that have exited."""
        return self.reap()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "max_concurrency": int(self.max_concurrency),
            "poll_interval_s": float(self.poll_interval_s),
            "owner_pid": self._owner_pid,
            "live_pids": [c.pid for c in self.children],
        }

    def _check_owner(self, operation: str) -> None:
        current = os.getpid()
        if current != self._owner_pid:
            raise UsageError(operation, owner_pid=self._owner_pid, current_pid=current)

    def run(self, work: Callable[[], Any], force_spawn: bool = False) -> Any:
        """Run ``work`` inline (capacity 1) or in a forked child.

        Returns the work's result when run inline, otherwise the ``Child``
        handle. A forced spawn blocks until the child exits and is only
        tracked in the live set if that wait is interrupted.
        """
        self._check_owner("run")

        if self.max_concurrency <= 1 and not force_spawn:
            return work()

        if not force_spawn:
            self._iterate(lambda: len(self.children) >= self.max_concurrency)

        child = self._spawn(work)

        if force_spawn:
            def _still_running() -> bool:
                self._collect_return_value(child)
                return not child.is_exited()

            try:
                self._iterate(_still_running)
            except BaseException:
                # Keep the child visible to finish(), killall() and close().
                self._children.append(child)
                raise
            self._collect_return_value(child)
            logger.debug("Forced child %s exited with status %s", child.pid, child.exit_status)
            return child

        self.reap(child)
        return child

    def _spawn(self, work: Callable[[], Any]) -> Child:
        def _body() -> Any:
            # The child only inherited a copy of our bookkeeping; it must never
            # reap or kill its siblings.
            self._children = []
            result = work()
            if self.on_child_pre_exit is not None:
                self.on_child_pre_exit(result)
            return result

        child = spawn_child(_body, return_value=self.on_child_return_value is not None)
        logger.debug("Spawned child %s", child.pid)
        return child

    def _collect_return_value(self, child: Child) -> None:
        if self.on_child_return_value is None or child.has_return_value:
            return
        if child.collect_return_value():
            self.on_child_return_value(child.return_value)

    def reap(self, *new_children: Child) -> list[Child]:
        """Track ``new_children`` and retire every tracked child that has exited.

        Each retired child is dropped from the live set before its callbacks
        fire, so it is reported exactly once even if a callback raises.
        """
        self._children.extend(new_children)

        for child in list(self._children):
            self._collect_return_value(child)
            if not child.is_exited():
                continue
            self._children.remove(child)
            # A value sent right before exit may only be readable now.
            self._collect_return_value(child)
            logger.debug("Reaped child %s (status %s)", child.pid, child.exit_status)
            if self.on_child_exit is not None:
                self.on_child_exit(int(child.exit_status), child.pid)

        return list(self._children)

    def _iterate(
        self,
        condition: Callable[[], bool],
        timeout: float | None = None,
        on_timeout: Callable[[], None] | None = None,
    ) -> bool:
        """Poll ``condition`` until it is false; ``False`` means the timeout hit first."""
        started = time.monotonic()
        while condition():
            if self.on_iteration is not None:
                self.on_iteration()

            if timeout is not None and time.monotonic() - started >= timeout:
                logger.debug("Wait timed out after %.2fs", time.monotonic() - started)
                if on_timeout is not None:
                    on_timeout()
                return False

            time.sleep(self.poll_interval_s)
        return True

    def finish(self, timeout: float | None = None, on_timeout: Callable[[], None] | None = None) -> bool:
        """Block until every child is reaped, or until ``timeout`` seconds pass.

        A timeout only stops waiting; children still running are left alone.
        """
        self._check_owner("finish")
        return self._iterate(lambda: bool(self.children), timeout, on_timeout)

    def killall(self, sig: int, warn: bool = False) -> None:
        """Send ``sig`` to every live child without waiting for it to exit."""
        for child in self.children:
            if warn:
                logger.warning("Killing child %s with signal %s", child.pid, signal.Signals(sig).name)
            child.kill(sig)

    def close(self) -> bool:
        """Drain outstanding children, escalating to signals if they linger.

        Does nothing outside the owning process. Returns ``False`` when some
        children survived every stage and were abandoned.
        """
        if os.getpid() != self._owner_pid or not self.children:
            return True

        logger.warning(
            "Runner released without first calling finish(); this will terminate all %d "
            "child process(es). Either finish() was never called or the parent is dying.",
            len(self._children),
        )
        cfg = self._config
        if self.finish(cfg.teardown_grace_s):
            return True

        self.killall(signal.SIGTERM, warn=True)
        if self.finish(cfg.teardown_term_s):
            return True

        self.killall(signal.SIGKILL, warn=True)
        if self.finish(cfg.teardown_kill_s):
            return True

        logger.warning(
            "Giving up on %d child process(es) that survived SIGKILL: %s",
            len(self._children),
            ", ".join(str(c.pid) for c in self._children),
        )
        return False
