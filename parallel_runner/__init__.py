"""Run callables in a bounded pool of forked child processes."""

from __future__ import annotations

from parallel_runner.config.load_config import ConfigError, RunnerConfig, load_runner_config
from parallel_runner.runtime.child import Child, spawn_child
from parallel_runner.runtime.runner import Runner
from parallel_runner.utils.errors import UsageError

__version__ = "0.7.0"

__all__ = [
    "Child",
    "ConfigError",
    "Runner",
    "RunnerConfig",
    "UsageError",
    "load_runner_config",
    "spawn_child",
]
