"""Tests for CLI."""

from datetime import date

import pytest
import pytest_asyncio

from kaigo.cli import CLI, _build_notifier, create_parser
from kaigo.config import ClientConfig
from kaigo.notify import ConsoleNotifier, LoggingNotifier, TelegramNotifier
from kaigo.records import Persistent, RecordCache, RecordFilter
from kaigo.records.kinds import MEDICATION


@pytest_asyncio.fixture
async def cli(store, notifier, event_logger, morning) -> CLI:
    cache = RecordCache(MEDICATION, store, notifier, logger=event_logger)
    cache.set_residents(store.residents)
    await cache.apply_filter(morning)
    return CLI(cache, staff_name="山田")


@pytest.mark.asyncio
async def test_handle_command_exit(cli: CLI) -> None:
    """Test exit commands return False."""
    assert await cli._handle_command("/exit") is False


@pytest.mark.asyncio
async def test_handle_command_quit(cli: CLI) -> None:
    """Test quit commands return False."""
    assert await cli._handle_command("quit") is False


@pytest.mark.asyncio
async def test_handle_command_help(cli: CLI, capsys) -> None:
    """Test help command returns True."""
    assert await cli._handle_command("/help") is True
    assert "/filter" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_format_list(cli: CLI) -> None:
    """Test provisional rows are marked."""
    output = cli.format_list(cli.cache.snapshot())

    assert output.splitlines()[0] == "[medication] 2024-05-01 朝後(08:30) all"
    assert "  1* 101 青木 花子" in output
    assert "  2* 201 伊藤 太郎" in output


@pytest.mark.asyncio
async def test_format_empty_list(cli: CLI) -> None:
    assert "(記録なし)" in cli.format_list([])


@pytest.mark.asyncio
async def test_set_creates_record(cli: CLI, store, capsys) -> None:
    """Test /set applies the change and waits for confirmation."""
    assert await cli._handle_command("/set 1 result ○") is True

    assert store.count("create") == 1
    assert cli.cache.snapshot()[0].id == Persistent("rec-1")
    assert "result=○" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_set_invalid_value(cli: CLI, notifier) -> None:
    assert await cli._handle_command("/set 1 result maybe") is True
    assert notifier.messages[-1].startswith("入力値が正しくありません")


@pytest.mark.asyncio
async def test_invalid_row(cli: CLI, capsys) -> None:
    assert await cli._handle_command("/set 9 notes x") is True
    assert "No row 9" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_stamp(cli: CLI, store) -> None:
    await cli._handle_command("/stamp 2")

    assert store.calls[-1][1]["confirmer1"] == "山田"
    assert store.calls[-1][1]["residentId"] == "B"


@pytest.mark.asyncio
async def test_new_and_resident(cli: CLI) -> None:
    await cli._handle_command("/new")
    assert cli.cache.snapshot()[-1].resident_id is None

    await cli._handle_command("/resident 3 A")

    assert [r.resident_id for r in cli.cache.snapshot()] == ["B", "A"]


@pytest.mark.asyncio
async def test_delete(cli: CLI, store) -> None:
    await cli._handle_command("/del 1")

    assert [r.resident_id for r in cli.cache.snapshot()] == ["B"]
    assert store.count("delete") == 0


@pytest.mark.asyncio
async def test_filter(cli: CLI) -> None:
    await cli._handle_command("/filter 2024-05-02 夕後")

    assert cli.cache.active_filter == RecordFilter(date(2024, 5, 2), "夕後", "all")


@pytest.mark.asyncio
async def test_bad_filter_date(cli: CLI, capsys) -> None:
    assert await cli._handle_command("/filter tomorrow") is True
    assert "❌" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_unknown_command(cli: CLI, capsys) -> None:
    assert await cli._handle_command("/dance") is True
    assert "Unknown command" in capsys.readouterr().out


def test_parser() -> None:
    args = create_parser().parse_args(["--kind", "weight", "--date", "2024-05-01", "--floor", "2階"])

    assert args.kind == "weight"
    assert args.date == "2024-05-01"
    assert args.floor == "2階"
    assert args.staff == "スタッフ"


@pytest.mark.asyncio
async def test_header_without_scheduled_time(cli: CLI) -> None:
    await cli._handle_command("/filter 2024-05-01 頓用")

    assert cli.format_list([]).splitlines()[0] == "[medication] 2024-05-01 頓用 all"


def test_parser_notify_choice() -> None:
    assert create_parser().parse_args(["--notify", "log"]).notify == "log"
    with pytest.raises(SystemExit):
        create_parser().parse_args(["--notify", "email"])


class TestBuildNotifier:
    def test_console_by_default(self, tmp_path) -> None:
        assert isinstance(_build_notifier(ClientConfig(log_dir=tmp_path)), ConsoleNotifier)

    def test_log(self, tmp_path) -> None:
        assert isinstance(_build_notifier(ClientConfig(log_dir=tmp_path), "log"), LoggingNotifier)

    def test_telegram_when_configured(self, tmp_path) -> None:
        config = ClientConfig(log_dir=tmp_path, telegram_token="123:abc", telegram_chat_id="42")

        assert isinstance(_build_notifier(config), TelegramNotifier)

    def test_telegram_requires_token(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)

        with pytest.raises(ValueError, match="TELEGRAM_TOKEN"):
            _build_notifier(ClientConfig(log_dir=tmp_path), "telegram")
