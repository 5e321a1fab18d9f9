"""Runtime layer (process pool, child processes).

This layer is responsible for:
- admitting work into a bounded number of forked children
- reaping exited children and reporting their exit status
- draining the pool, and tearing down stragglers with escalating signals

It holds no configuration loading of its own (see `parallel_runner.config`),
so callers can build a Runner from code or from a config file alike.
"""

from __future__ import annotations
