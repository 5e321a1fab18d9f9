from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from parallel_runner.config.load_config import ConfigError, RunnerConfig, load_runner_config
from parallel_runner.runtime.runner import Runner


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PARALLEL_RUNNER_CONFIG_PATH",
        "PARALLEL_RUNNER_MAX_CONCURRENCY",
        "PARALLEL_RUNNER_POLL_INTERVAL_S",
        "PARALLEL_RUNNER_TEARDOWN_GRACE_S",
        "PARALLEL_RUNNER_TEARDOWN_TERM_S",
        "PARALLEL_RUNNER_TEARDOWN_KILL_S",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_default_path_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        monkeypatch.setenv("PARALLEL_RUNNER_CONFIG_PATH", str(Path(td) / "missing.toml"))
        cfg = load_runner_config()
    assert cfg == RunnerConfig()
    assert (cfg.teardown_grace_s, cfg.teardown_term_s, cfg.teardown_kill_s) == (1.0, 4.0, 10.0)


def test_toml_then_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "runner.toml"
        path.write_text("[runner]\nmax_concurrency = 4\npoll_interval_s = 0.5\n", encoding="utf-8")
        monkeypatch.setenv("PARALLEL_RUNNER_POLL_INTERVAL_S", "0.25")

        cfg = load_runner_config(path)

    assert cfg.max_concurrency == 4
    assert cfg.poll_interval_s == pytest.approx(0.25)


def test_explicit_missing_path_is_an_error() -> None:
    with tempfile.TemporaryDirectory() as td:
        with pytest.raises(ConfigError):
            load_runner_config(Path(td) / "nope.toml")


@pytest.mark.parametrize(
    "body",
    [
        "[runner]\nmax_concurrency = 0\n",
        "[runner]\npoll_interval_s = -1\n",
        "[runner]\nunknown_key = 1\n",
        "[runner\n",
    ],
)
def test_invalid_config_raises_config_error(body: str) -> None:
    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "runner.toml"
        path.write_text(body, encoding="utf-8")
        with pytest.raises(ConfigError):
            load_runner_config(path)


def test_invalid_env_override_raises_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PARALLEL_RUNNER_MAX_CONCURRENCY", "many")
    with tempfile.TemporaryDirectory() as td:
        monkeypatch.setenv("PARALLEL_RUNNER_CONFIG_PATH", str(Path(td) / "missing.toml"))
        with pytest.raises(ConfigError):
            load_runner_config()


def test_runner_from_config(monkeypatch: pytest.MonkeyPatch) -> None:
    ticks: list[int] = []
    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "runner.toml"
        path.write_text("[runner]\nmax_concurrency = 3\npoll_interval_s = 0.05\n", encoding="utf-8")
        runner = Runner.from_config(path, on_iteration=lambda: ticks.append(1))

    assert runner.max_concurrency == 3
    assert runner.poll_interval_s == pytest.approx(0.05)
    assert runner.config.teardown_kill_s == pytest.approx(10.0)
    assert runner.on_iteration is not None


def test_constructor_arguments_override_config() -> None:
    runner = Runner(5, config=RunnerConfig(max_concurrency=2, poll_interval_s=0.3), poll_interval_s=0.01)
    assert runner.max_concurrency == 5
    assert runner.poll_interval_s == pytest.approx(0.01)
