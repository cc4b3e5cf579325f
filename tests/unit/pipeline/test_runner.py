import asyncio
import json
from datetime import datetime, timezone

import pytest

from tests._fixtures import FakeStockRepository, StockRecordFactory
from value_screener.exceptions import SelectionError
from value_screener.pipeline import runner


class _ClientStub:
    def __init__(self, provider):
        self._provider = provider

    async def __aenter__(self):
        return self._provider

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def wired(mocker, fake_provider, screener_config):
    repo = FakeStockRepository(universe=["AAPL"])
    mocker.patch.object(runner, "PostgresStockRepository", lambda exchange="US": repo)
    mocker.patch.object(runner, "FinnhubClient", lambda **kwargs: _ClientStub(fake_provider))
    mocker.patch.object(runner, "default_config", screener_config)
    mocker.patch.object(runner, "close_global_pool", lambda: None)
    return repo


def _main(*argv):
    return asyncio.run(runner.main(list(argv)))


@pytest.mark.unit
def test_ingest_command_prints_summary(wired, fake_provider, capsys):
    fake_provider.add_stock("AAPL")

    assert _main("ingest") == runner.EXIT_OK

    summary = json.loads(capsys.readouterr().out)
    assert summary["updated"] == 1
    assert summary["total"] == 1
    assert wired.schema_ensured == 1


@pytest.mark.unit
def test_ingest_with_explicit_symbols(wired, fake_provider, capsys):
    fake_provider.add_stock("MSFT")
    assert _main("ingest", "--symbols", "MSFT", "--max-seconds", "60") == runner.EXIT_OK
    assert wired.get("MSFT") is not None


@pytest.mark.unit
def test_selection_failure_exits_nonzero(wired):
    wired.fail_select = SelectionError("db down")
    assert _main("ingest") == runner.EXIT_FAILED


@pytest.mark.unit
def test_undervalued_lists_records(wired, capsys):
    wired.records["KO"] = StockRecordFactory.build(
        symbol="KO", graham_number=80.0, margin_of_safety=35.0, value_score=85.0, safety_score=70.0,
        verdict="Strong Buy",
    )
    wired.records["XOM"] = StockRecordFactory.build(
        symbol="XOM", graham_number=50.0, margin_of_safety=5.0, value_score=40.0, safety_score=40.0
    )

    assert _main("undervalued", "--min-margin", "30") == runner.EXIT_OK

    out = capsys.readouterr().out
    assert "1 stocks with margin of safety >= 30.0%" in out
    assert "KO" in out
    assert "Strong Buy" in out
    assert "XOM" not in out


@pytest.mark.unit
def test_last_updated(wired, capsys):
    ts = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)
    wired.records["KO"] = StockRecordFactory.build(symbol="KO", last_updated=ts)

    assert _main("last-updated") == runner.EXIT_OK
    assert capsys.readouterr().out.strip() == ts.isoformat()


@pytest.mark.unit
def test_load_universe_and_rescore(wired, fake_provider, capsys):
    fake_provider.listings = [{"symbol": "MSFT"}]

    assert _main("load-universe") == runner.EXIT_OK
    result = json.loads(capsys.readouterr().out)
    assert result["deactivated"] == 1
    assert wired.universe == {"AAPL": False, "MSFT": True}

    assert _main("rescore") == runner.EXIT_OK


@pytest.mark.unit
def test_keyboard_interrupt_exit_code(mocker):
    mocker.patch.object(runner.asyncio, "run", side_effect=KeyboardInterrupt)
    mocker.patch.object(runner, "shutdown_logging", lambda: None)
    assert runner.cli(["rescore"]) == runner.EXIT_INTERRUPTED


@pytest.mark.unit
def test_unknown_command_is_rejected():
    with pytest.raises(SystemExit):
        runner.build_parser().parse_args(["explode"])
