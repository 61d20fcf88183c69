"""Interactive terminal view of a record list."""

import argparse
import shlex
from datetime import date

from .config import ClientConfig, load_config
from .errors import KaigoError
from .logging import JSONLLogger, configure_logger, get_logger
from .notify import ConsoleNotifier, LoggingNotifier, Notifier, TelegramNotifier
from .records import Record, RecordCache, RecordFilter, get_kind
from .records.clock import MEDICATION_TIMES, facility_today, timing_instant, to_wall_clock
from .store import HttpRecordStore, StoreError

BANNER = """
╔══════════════════════════════════════════╗
║           📋 Kaigo Records v0.1.0         ║
╚══════════════════════════════════════════╝

Commands:
  /list                          - Show the current list
  /filter <date> [timing] [floor] - Change the filter (date as YYYY-MM-DD)
  /set <row> <field> <value>     - Change a field
  /resident <row> <resident-id>  - Point a row at another resident
  /stamp <row>                   - Toggle your staff stamp
  /new                           - Add an empty card
  /del <row>                     - Delete a row
  /help                          - Show this help
  /exit, /quit                   - Exit
"""


class CLI:
    """Interactive command-line list for one record kind."""

    def __init__(
        self,
        cache: RecordCache,
        staff_name: str = "スタッフ",
        logger: JSONLLogger | None = None,
    ) -> None:
        self.cache = cache
        self.staff_name = staff_name
        self.logger = logger or cache.logger

    def _format_record(self, row: int, record: Record) -> str:
        resident = next((r for r in self.cache.residents if r.id == record.resident_id), None)
        who = f"{resident.room_number or '-'} {resident.name}" if resident else "(利用者未選択)"
        marker = "*" if record.provisional else " "
        shown = [
            f"{name}={record.get(name)}"
            for name in self.cache.kind.field_names()
            if record.get(name) not in (None, "")
        ]
        return f"{row:>3}{marker} {who:<16} {' '.join(shown)}"

    def format_list(self, records: list[Record]) -> str:
        """Format the visible records, provisional rows marked with '*'."""
        flt = self.cache.active_filter
        header = f"[{self.cache.kind.name}]"
        if flt is not None:
            header += f" {flt.record_date.isoformat()} {self._timing_label(flt)} {flt.floor}"
        if not records:
            return f"{header}\n  (記録なし)"
        lines = [header]
        lines.extend(self._format_record(i, r) for i, r in enumerate(records, start=1))
        return "\n".join(lines)

    def _timing_label(self, flt: RecordFilter) -> str:
        """Timing bucket, with its scheduled wall-clock time for medication timings."""
        if not flt.timing:
            return ""
        if flt.timing not in MEDICATION_TIMES:
            return flt.timing
        offset = self.cache.config.utc_offset_hours
        scheduled = to_wall_clock(timing_instant(flt.record_date, flt.timing, offset_hours=offset), offset)
        return f"{flt.timing}({scheduled:%H:%M})"

    def _record_at(self, row: str) -> Record:
        records = self.cache.snapshot()
        try:
            index = int(row) - 1
        except ValueError:
            raise KaigoError(f"Invalid row: {row}") from None
        if not 0 <= index < len(records):
            raise KaigoError(f"No row {row}")
        return records[index]

    async def _settle(self) -> None:
        """Show the optimistic list, then wait for the server to confirm."""
        print(self.format_list(self.cache.snapshot()))
        if self.cache.pending:
            await self.cache.drain()

    async def _handle_command(self, line: str) -> bool:
        """Handle a command. Returns True if should continue, False to exit."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            print(f"❌ {e}")
            return True
        if not parts:
            return True

        cmd, args = parts[0].lower(), parts[1:]

        if cmd in ("/exit", "/quit", "exit", "quit"):
            await self.cache.drain()
            print("\n👋 お疲れさまでした")
            return False

        try:
            if cmd == "/help":
                print(BANNER)
            elif cmd == "/list":
                print(self.format_list(self.cache.snapshot()))
            elif cmd == "/filter" and args:
                current = self.cache.active_filter
                flt = RecordFilter(
                    record_date=date.fromisoformat(args[0]),
                    timing=args[1] if len(args) > 1 else (current.timing if current else None),
                    floor=args[2] if len(args) > 2 else (current.floor if current else "all"),
                )
                print(self.format_list(await self.cache.apply_filter(flt)))
            elif cmd == "/set" and len(args) >= 3:
                record = self._record_at(args[0])
                self.cache.mutate_field(record.id, args[1], " ".join(args[2:]))
                await self._settle()
            elif cmd == "/resident" and len(args) == 2:
                record = self._record_at(args[0])
                self.cache.change_identity(record.id, args[1])
                await self._settle()
            elif cmd == "/stamp" and len(args) == 1:
                record = self._record_at(args[0])
                self.cache.stamp_staff(record.id, self.staff_name)
                await self._settle()
            elif cmd == "/new":
                self.cache.add_blank()
                print(self.format_list(self.cache.snapshot()))
            elif cmd == "/del" and len(args) == 1:
                record = self._record_at(args[0])
                self.cache.delete_record(record.id)
                await self._settle()
            else:
                print("Unknown command. Type /help for the list of commands.")
        except (KaigoError, ValueError) as e:
            print(f"❌ {e}")

        return True

    async def run(self) -> None:
        """Run the interactive CLI."""
        print(BANNER)
        print(self.format_list(self.cache.snapshot()))
        self.logger.log("session_start")

        while True:
            try:
                user_input = input("kaigo> ").strip()
            except (KeyboardInterrupt, EOFError):
                await self.cache.drain()
                print("\n👋 お疲れさまでした")
                break

            if not user_input:
                continue
            if not await self._handle_command(user_input):
                break

        self.logger.log("session_end")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the kaigo CLI."""
    parser = argparse.ArgumentParser(prog="kaigo", description="Edit care record lists")
    parser.add_argument("--kind", help="Record kind (medication, weight, bathing, ...)")
    parser.add_argument("--date", help="Record date, YYYY-MM-DD (default: today)")
    parser.add_argument("--timing", help="Timing bucket, e.g. 朝後 or 午前")
    parser.add_argument("--floor", help="Floor filter, e.g. 2階 or all")
    parser.add_argument("--staff", default="スタッフ", help="Name used for staff stamps")
    parser.add_argument(
        "--notify",
        choices=["console", "log", "telegram"],
        help="Where failure notices go (default: telegram when configured, else console)",
    )
    return parser


def _build_notifier(client_config: ClientConfig, choice: str | None = None) -> Notifier:
    if choice is None:
        configured = client_config.telegram_token and client_config.telegram_chat_id
        choice = "telegram" if configured else "console"
    if choice == "telegram":
        return TelegramNotifier(client_config.telegram_token, client_config.telegram_chat_id)
    if choice == "log":
        return LoggingNotifier()
    return ConsoleNotifier()


async def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with configuration from the environment."""
    args = create_parser().parse_args(argv)
    client_config, cache_config = load_config()
    if args.kind:
        client_config.kind = args.kind
    configure_logger(client_config.log_dir)

    kind = get_kind(client_config.kind)
    get_logger().set_kind(kind.name)
    try:
        notifier = _build_notifier(client_config, args.notify)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    store = HttpRecordStore(
        client_config.base_url,
        session_cookie=client_config.session_cookie,
        timeout=client_config.timeout,
    )
    cache = RecordCache(kind, store, notifier, config=cache_config)

    try:
        try:
            cache.set_residents(await store.list_residents())
        except StoreError as e:
            print(f"❌ 利用者情報を取得できませんでした: {e}")
            return 1

        flt = RecordFilter(
            record_date=date.fromisoformat(args.date) if args.date else facility_today(cache_config.utc_offset_hours),
            timing=args.timing,
            floor=args.floor or client_config.floor,
        )
        await cache.apply_filter(flt)
        await CLI(cache, staff_name=args.staff).run()
    finally:
        await store.close()
        if isinstance(notifier, TelegramNotifier):
            await notifier.close()
    return 0

