import datetime
import logging
import shutil
from pathlib import Path
from typing import Callable, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

LOGGER_NAME = "integration_metrics"

_LOGGING_CONFIGURED = False


def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    # Fallback to system local timezone
    return datetime.datetime.now().astimezone().tzinfo or datetime.UTC


class LocalTimezoneFormatter(logging.Formatter):
    """
    Logging formatter that forces timestamps into a configured timezone.
    Defaults to the system local timezone when LOG_TIMEZONE is not set
    or when the provided timezone is invalid.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = _resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


def _project_root() -> Path:
    # integration_metrics/logging_config.py -> integration_metrics -> repo root
    return Path(__file__).resolve().parents[1]


def _resolve_log_dir(value: str | Path) -> Path:
    p = value if isinstance(value, Path) else Path(value)
    if p.is_absolute():
        return p
    return _project_root() / p


def infer_log_business(record: logging.LogRecord) -> str:
    """
    Map a log record back to the part of the engine that emitted it.

    Every module logs through the shared `integration_metrics` logger, so the
    call site (record.pathname) is what tells the tiers apart.
    """
    name = record.name or ""
    if name.startswith("uvicorn.access"):
        return "access"
    if name.startswith(("uvicorn.error", "uvicorn")):
        return "server"
    if name.startswith("celery"):
        return "tasks"

    path = (record.pathname or "").replace("\\", "/")
    if "/integration_metrics/metrics/hot_store.py" in path:
        return "hot_tier"
    if "/integration_metrics/repositories/" in path or "/integration_metrics/metrics/retention.py" in path:
        return "cold_tier"
    if "/integration_metrics/metrics/aggregator.py" in path:
        return "aggregator"
    if "/integration_metrics/services/" in path:
        return "tracking"
    if "/integration_metrics/api/" in path or "/integration_metrics/routes.py" in path:
        return "api"
    if "/integration_metrics/metrics/tasks.py" in path or "/integration_metrics/celery_app.py" in path:
        return "tasks"
    if "/integration_metrics/db/" in path:
        return "db"

    return "app"


class DailyFolderBusinessFileHandler(logging.Handler):
    """
    Route logs into per-day folders and per-business files:
    <log_dir>/<YYYY-MM-DD>/<business>.log
    """

    def __init__(
        self,
        log_dir: Path,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
        fixed_business: str | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.backup_days = backup_days
        self.encoding = encoding
        self.terminator = "\n"
        self._tzinfo = _resolve_tzinfo(timezone_name)
        # now_fn is mainly for tests.
        self._now_fn = now_fn
        self._fixed_business = fixed_business
        self._current_date: datetime.date | None = None
        self._streams: dict[str, TextIO] = {}
        self._ensure_date()

    def _today(self) -> datetime.date:
        now = self._now_fn() if self._now_fn is not None else datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _cleanup_old_dirs(self) -> None:
        if self.backup_days <= 0:
            return
        try:
            dirs = [p for p in self.log_dir.iterdir() if p.is_dir()]
        except OSError:
            return

        dated: list[tuple[datetime.date, Path]] = []
        for p in dirs:
            try:
                day = datetime.date.fromisoformat(p.name)
            except ValueError:
                continue
            dated.append((day, p))

        dated.sort(key=lambda x: x[0])
        for _, old_dir in dated[: max(len(dated) - self.backup_days, 0)]:
            shutil.rmtree(old_dir, ignore_errors=True)

    def _close_all_streams(self) -> None:
        for stream in self._streams.values():
            try:
                stream.close()
            except OSError:
                pass
        self._streams.clear()

    def _ensure_date(self) -> None:
        today = self._today()
        if self._current_date == today:
            return
        self._current_date = today
        self._close_all_streams()
        (self.log_dir / today.isoformat()).mkdir(parents=True, exist_ok=True)
        self._cleanup_old_dirs()

    def file_path(self, biz: str) -> Path:
        assert self._current_date is not None
        safe = "".join(c if (c.isalnum() or c in ("-", "_")) else "_" for c in biz)
        return self.log_dir / self._current_date.isoformat() / f"{safe}.log"

    def _stream_for_biz(self, biz: str) -> TextIO:
        stream = self._streams.get(biz)
        if stream is None:
            path = self.file_path(biz)
            path.parent.mkdir(parents=True, exist_ok=True)
            stream = open(path, "a", encoding=self.encoding)
            self._streams[biz] = stream
        return stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_date()
            biz = self._fixed_business or infer_log_business(record)
            # Expose biz for formatters.
            setattr(record, "biz", biz)
            stream = self._stream_for_biz(biz)
            stream.write(self.format(record) + self.terminator)
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._close_all_streams()
        finally:
            super().close()


class EnsureBizFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not hasattr(record, "biz"):
            setattr(record, "biz", infer_log_business(record))
        return True


def setup_logging() -> None:
    """
    Configure application logging.
    Writes logs to a daily folder under LOG_DIR (default: ./logs/),
    split by engine tier, e.g. logs/2026-10-17/hot_tier.log.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = _resolve_log_dir(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level_value = getattr(logging, str(settings.log_level).upper(), logging.INFO)

    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] [%(biz)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )

    # When splitting is off everything lands in a single app.log per day.
    file_handler = DailyFolderBusinessFileHandler(
        log_dir=log_dir,
        backup_days=settings.log_backup_days,
        timezone_name=settings.log_timezone,
        fixed_business=None if settings.log_split_by_business else "app",
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(EnsureBizFilter())
    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level_value)
    app_logger.propagate = True  # console output goes through the root handler
    app_logger.addHandler(file_handler)

    access_handler = DailyFolderBusinessFileHandler(
        log_dir=log_dir,
        backup_days=settings.log_backup_days,
        timezone_name=settings.log_timezone,
        fixed_business="access",
    )
    access_handler.setFormatter(formatter)
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.setLevel(level_value)
    access_logger.addHandler(access_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(EnsureBizFilter())
        root_logger.addHandler(console_handler)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
