from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ConfigError(RuntimeError):
    pass


_ENV_PREFIX = "PARALLEL_RUNNER_"

# Runner config field -> environment variable overriding it.
_ENV_OVERRIDES = {
    "max_concurrency": f"{_ENV_PREFIX}MAX_CONCURRENCY",
    "poll_interval_s": f"{_ENV_PREFIX}POLL_INTERVAL_S",
    "teardown_grace_s": f"{_ENV_PREFIX}TEARDOWN_GRACE_S",
    "teardown_term_s": f"{_ENV_PREFIX}TEARDOWN_TERM_S",
    "teardown_kill_s": f"{_ENV_PREFIX}TEARDOWN_KILL_S",
}


class RunnerConfig(BaseModel):
    """Pool capacity, polling cadence and the teardown escalation windows."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_concurrency: int = Field(default=1, ge=1, description="Maximum number of live children.")
    poll_interval_s: float = Field(default=0.1, gt=0, description="Sleep between poll ticks while blocked.")
    # Escalation windows used when a Runner is released with live children.
    teardown_grace_s: float = Field(default=1.0, ge=0, description="Wait before any signal is sent.")
    teardown_term_s: float = Field(default=4.0, ge=0, description="Wait after SIGTERM.")
    teardown_kill_s: float = Field(default=10.0, ge=0, description="Wait after SIGKILL.")


def default_config_path() -> Path:
    return Path(os.getenv(f"{_ENV_PREFIX}CONFIG_PATH", "config/runner.toml")).expanduser().resolve()


def _read_toml_table(cfg_path: Path) -> dict[str, Any]:
    import tomllib

    try:
        raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e

    table = raw.get("runner", {})
    if not isinstance(table, dict):
        raise ConfigError(f"Invalid [runner] section in {cfg_path}: expected a table")
    return dict(table)


def load_runner_config(path: Path | str | None = None) -> RunnerConfig:
    """Load RunnerConfig from TOML (``[runner]`` table), then apply env overrides.

    An explicitly given path must exist; a missing default path means defaults.
    """
    values: dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path).expanduser().resolve()
        if not cfg_path.exists():
            raise ConfigError(f"Config file not found: {cfg_path}")
        values.update(_read_toml_table(cfg_path))
    else:
        cfg_path = default_config_path()
        if cfg_path.exists():
            values.update(_read_toml_table(cfg_path))

    for key, env_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip():
            values[key] = raw.strip()

    try:
        return RunnerConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"Invalid runner config: {e}") from e
