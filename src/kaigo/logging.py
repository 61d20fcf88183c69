"""JSONL logging for record cache events."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    kind: str | None = None
    record_id: str | None = None
    operation: str | None = None
    fields: list[str] | None = None
    duration_ms: float | None = None
    success: bool | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".kaigo" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._current_kind: str | None = None

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def set_kind(self, kind: str | None) -> None:
        """Set the record kind attached to all subsequent logs."""
        self._current_kind = kind

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        kind: str | None = None,
        record_id: str | None = None,
        operation: str | None = None,
        fields: list[str] | None = None,
        duration_ms: float | None = None,
        success: bool | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            kind=kind or self._current_kind,
            record_id=record_id,
            operation=operation,
            fields=fields,
            duration_ms=duration_ms,
            success=success,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_filter(self, kind: str, filter_desc: dict[str, Any], *, count: int | None = None) -> None:
        """Log a filter change and the size of the resulting list."""
        self.log("filter_applied", kind=kind, filter=filter_desc, count=count)

    def log_mutation(self, kind: str, record_id: str, fields: list[str]) -> None:
        """Log an optimistic local change."""
        self.log("mutation", kind=kind, record_id=record_id, fields=fields)

    def log_remote(
        self,
        kind: str,
        operation: str,
        record_id: str,
        success: bool,
        *,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log the outcome of a remote store call."""
        self.log(
            "remote",
            kind=kind,
            operation=operation,
            record_id=record_id,
            success=success,
            duration_ms=duration_ms,
            error=error if not success else None,
        )

    def log_rollback(self, kind: str, record_id: str, *, reason: str | None = None) -> None:
        """Log a rollback to the pre-mutation snapshot."""
        self.log("rollback", kind=kind, record_id=record_id, error=reason)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
