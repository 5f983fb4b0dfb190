"""
Unit tests for the process entry point exit codes.
"""

import pytest

from kline_backfill import app
from kline_backfill.core.errors import BackfillAborted, DestinationDiscoveryError, FetchError
from kline_backfill.data.feeds.historical import BackfillReport, UnitReport, UnitState

SETTINGS_YAML = """
backfill:
  base_url: "https://api.poloniex.com/markets"
  start_time: 1704067200000
  pairs: [BTC_USDT]
  intervals: [HOUR_1]
"""


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for name in ("BASE_URL", "START_TIME", "PAIRS", "TIMEFRAMES", "BACKFILL_SETTINGS_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DB_HOST", "localhost")
    monkeypatch.setenv("DB_PORT", "3301")
    monkeypatch.setenv("DB_USERNAME", "guest")
    monkeypatch.setattr(app, "configure_logging", lambda *a, **kw: None)
    path = tmp_path / "settings.yaml"
    path.write_text(SETTINGS_YAML)
    return path


def fake_app(monkeypatch, outcome):
    calls = []

    class FakeBackfillApp:
        def __init__(self, settings):
            self.settings = settings

        async def run(self, **kwargs):
            calls.append(kwargs)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

    monkeypatch.setattr(app, "BackfillApp", FakeBackfillApp)
    return calls


def test_parse_args_overrides():
    args = app.parse_args(["--pairs", "BTC_USDT", "ETH_USDT", "--intervals", "DAY_1", "--start-time", "5"])
    assert args.pairs == ["BTC_USDT", "ETH_USDT"]
    assert args.intervals == ["DAY_1"]
    assert args.start_time == 5


@pytest.mark.asyncio
async def test_invalid_config_exits_with_config_code(config_path, monkeypatch):
    monkeypatch.delenv("DB_HOST")
    assert await app.main(["--config", str(config_path)]) == app.EXIT_CONFIG


@pytest.mark.asyncio
async def test_clean_run_exits_ok(config_path, monkeypatch):
    report = BackfillReport(units=[UnitReport("BTC_USDT", "HOUR_1", state=UnitState.DONE)])
    calls = fake_app(monkeypatch, report)

    code = await app.main(["--config", str(config_path), "--pairs", "ETH_USDT"])

    assert code == app.EXIT_OK
    assert calls == [{"pairs": ["ETH_USDT"], "intervals": None, "start_ms": None}]


@pytest.mark.asyncio
async def test_unit_failures_exit_nonzero(config_path, monkeypatch):
    unit = UnitReport("BTC_USDT", "HOUR_1", state=UnitState.ABORTED)
    fake_app(monkeypatch, BackfillReport(units=[unit]))
    assert await app.main(["--config", str(config_path)]) == app.EXIT_FAILURES


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    DestinationDiscoveryError("connection refused"),
    BackfillAborted("aborted", report=None, cause=FetchError("boom")),
])
async def test_fatal_errors_exit_nonzero(config_path, monkeypatch, error):
    fake_app(monkeypatch, error)
    assert await app.main(["--config", str(config_path)]) == app.EXIT_FAILURES
