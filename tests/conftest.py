from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure `import parallel_runner...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from parallel_runner.config.load_config import RunnerConfig  # noqa: E402


@pytest.fixture
def fast_config() -> RunnerConfig:
    # Short poll ticks and teardown windows keep the fork tests quick.
    return RunnerConfig(
        poll_interval_s=0.02,
        teardown_grace_s=0.2,
        teardown_term_s=1.0,
        teardown_kill_s=3.0,
    )
