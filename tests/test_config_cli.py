from __future__ import annotations

import logging
from pathlib import Path

import pytest

from roadfeed import cli
from roadfeed.config import SyncConfig
from roadfeed.cycle import CycleReport
from roadfeed.exceptions import RoadFeedConfigError, RoadFeedTransportError

_ENV_KEYS = (
    "ROADFEED_BASE_URL",
    "ROADFEED_DATABASE_PATH",
    "ROADFEED_FEATURE_TYPES",
    "ROADFEED_SUPPORTING_TYPES",
    "ROADFEED_HASH_SEED",
    "ROADFEED_BACKFILL_PARTITIONS",
    "ROADFEED_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_from_env_reads_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROADFEED_BASE_URL", "https://roads.example.test")
    monkeypatch.setenv("ROADFEED_DATABASE_PATH", "/var/lib/roadfeed/replica.sqlite3")
    monkeypatch.setenv("ROADFEED_FEATURE_TYPES", "538")
    monkeypatch.setenv("ROADFEED_SUPPORTING_TYPES", "105,900")
    monkeypatch.setenv("ROADFEED_BACKFILL_PARTITIONS", "8")

    config = SyncConfig.from_env(hash_seed=11)

    assert config.base_url == "https://roads.example.test"
    assert config.database_path == Path("/var/lib/roadfeed/replica.sqlite3")
    assert [spec.name for spec in config.feature_types] == ["RoadName"]
    assert config.object_types == (538, 105, 900)
    assert config.backfill_partitions == 8
    assert config.hash_seed == 11
    assert config.page_size_for("link_sequences") == config.link_sequence_page_size


def test_missing_base_url_is_a_config_error() -> None:
    with pytest.raises(RoadFeedConfigError, match="base_url"):
        SyncConfig.from_env()


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("ROADFEED_FEATURE_TYPES", "105,12345"),
        ("ROADFEED_HASH_SEED", "-1"),
        ("ROADFEED_BACKFILL_PARTITIONS", "many"),
        ("ROADFEED_BACKFILL_PARTITIONS", "0"),
    ],
)
def test_invalid_settings_are_config_errors(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv("ROADFEED_BASE_URL", "https://roads.example.test")
    monkeypatch.setenv(key, value)
    with pytest.raises(RoadFeedConfigError):
        SyncConfig.from_env()


def test_unknown_mode_is_a_config_error(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    async def never(mode: str, config: SyncConfig) -> list[CycleReport]:
        raise AssertionError("must not run")

    monkeypatch.setattr(cli, "run", never)
    monkeypatch.setenv("ROADFEED_BASE_URL", "https://roads.example.test")

    with caplog.at_level(logging.ERROR, logger="roadfeed.cli"):
        assert cli.main(["rebuild"]) == cli.EXIT_CONFIG

    assert "Configuration error: unknown mode 'rebuild'" in caplog.text


def test_missing_configuration_exits_without_work(monkeypatch: pytest.MonkeyPatch) -> None:
    async def never(mode: str, config: SyncConfig) -> list[CycleReport]:
        raise AssertionError("must not run")

    monkeypatch.setattr(cli, "run", never)
    assert cli.main(["update"]) == cli.EXIT_CONFIG


def test_successful_run_prints_summary(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    seen: list[tuple[str, SyncConfig]] = []

    async def fake_run(mode: str, config: SyncConfig) -> list[CycleReport]:
        seen.append((mode, config))
        return [CycleReport(synchronized=0)]

    monkeypatch.setattr(cli, "run", fake_run)

    code = cli.main(["update", "--base-url", "https://roads.example.test", "--database", str(tmp_path / "db")])

    assert code == cli.EXIT_OK
    assert seen[0][0] == "update"
    assert seen[0][1].database_path == tmp_path / "db"
    assert "update: backfilled=0, synchronized=0" in capsys.readouterr().out


def test_default_mode_is_auto(monkeypatch: pytest.MonkeyPatch) -> None:
    modes: list[str] = []

    async def fake_run(mode: str, config: SyncConfig) -> list[CycleReport]:
        modes.append(mode)
        return []

    monkeypatch.setattr(cli, "run", fake_run)
    monkeypatch.setenv("ROADFEED_BASE_URL", "https://roads.example.test")

    assert cli.main([]) == cli.EXIT_OK
    assert modes == ["auto"]


def test_failed_run_exits_nonzero(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing(mode: str, config: SyncConfig) -> list[CycleReport]:
        raise RoadFeedTransportError("HTTP 503 from /link-sequences", status_code=503)

    monkeypatch.setattr(cli, "run", failing)
    monkeypatch.setenv("ROADFEED_BASE_URL", "https://roads.example.test")

    assert cli.main(["backfill"]) == cli.EXIT_FAILURE


def test_unknown_log_level_is_rejected() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["update", "--log-level", "chatty"])
    assert excinfo.value.code == 2
