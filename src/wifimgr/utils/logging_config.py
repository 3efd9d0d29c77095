"""Logging setup and perf timing for wifimgr.

``setup_logging`` attaches a console handler and a rotating file handler to
the ``wifimgr`` package logger, plus a separate perf file fed by ``timed``,
``timed_section`` and ``timed_section_sync``. Perf lines carry the vendor
API label, so refresh and apply timings can be grepped per vendor:

    2026-01-05 10:02:11.412 | PERF | cache.refresh        | mist-lab        |   812.40ms | OK | sites=3

Values come from the ``logging`` section of wifimgr.yaml; environment
variables override them:

    WIFIMGR_LOG_LEVEL      DEBUG, INFO, WARNING, ERROR (default: INFO)
    WIFIMGR_LOG_FILE       log file (default: ~/.wifimgr/wifimgr.log)
    WIFIMGR_LOG_MAX_SIZE   max file size in MB before rotation (default: 10)
    WIFIMGR_LOG_BACKUPS    rotated files kept (default: 5)

The service object calls ``setup_logging`` on start-up when logging is
enabled and ``teardown_logging`` on close; calling it twice replaces the
handlers instead of stacking them.
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import contextmanager, asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

DEFAULT_LOG_FILE = Path.home() / ".wifimgr" / "wifimgr.log"
DEFAULT_MAX_SIZE_MB = 10
DEFAULT_BACKUPS = 5

package_logger = logging.getLogger("wifimgr")
perf_logger = logging.getLogger("wifimgr.perf")

# Handlers installed by setup_logging, as (logger, handler)
_installed: list[tuple[logging.Logger, logging.Handler]] = []


def get_log_level(default: str = "INFO") -> int:
    """Log level from WIFIMGR_LOG_LEVEL, else ``default``; unknown names mean INFO."""
    level_str = os.environ.get("WIFIMGR_LOG_LEVEL", default).upper()
    level = logging.getLevelName(level_str)
    return level if isinstance(level, int) else logging.INFO


def get_log_file(default: Optional[Path] = None) -> Path:
    path_str = os.environ.get("WIFIMGR_LOG_FILE")
    if path_str:
        return Path(path_str).expanduser()
    return Path(default).expanduser() if default else DEFAULT_LOG_FILE


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    max_size_mb: int = DEFAULT_MAX_SIZE_MB,
    backup_count: int = DEFAULT_BACKUPS,
    console: bool = True,
) -> Path:
    """Attach wifimgr's handlers, replacing any from an earlier call.

    Args:
        level: Console level; the main file always records DEBUG
        log_file: Main log file; the perf log sits next to it
        max_size_mb: Rotation size for both files
        backup_count: Rotated files kept per log
        console: Also log to stderr

    Returns:
        Path of the main log file
    """
    teardown_logging()

    log_level = get_log_level(level)
    path = get_log_file(log_file)
    max_bytes = _env_int("WIFIMGR_LOG_MAX_SIZE", max_size_mb) * 1024 * 1024
    backups = _env_int("WIFIMGR_LOG_BACKUPS", backup_count)
    path.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)
    _install(package_logger, file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(main_format)
        _install(package_logger, console_handler)

    perf_file = path.parent / f"{path.stem}-perf{path.suffix or '.log'}"
    perf_handler = RotatingFileHandler(perf_file, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)
    _install(perf_logger, perf_handler)

    package_logger.setLevel(logging.DEBUG)
    perf_logger.setLevel(logging.DEBUG)
    # Perf lines go to the perf file only
    perf_logger.propagate = False

    package_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={path}")
    return path


def _install(logger: logging.Logger, handler: logging.Handler) -> None:
    logger.addHandler(handler)
    _installed.append((logger, handler))


def teardown_logging() -> None:
    """Detach and close the handlers installed by setup_logging."""
    while _installed:
        logger, handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()
    perf_logger.propagate = True


def _perf_line(operation: str, api_label: Optional[str], elapsed: float, outcome: str, extra: dict) -> str:
    line = f"{operation:20s} | {api_label or 'N/A':15s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        line += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return line


def timed(operation: str, api_label: Optional[str] = None):
    """Decorator logging how long a sync or async call took.

    Without ``api_label`` the label is taken from ``self.api_label`` when the
    decorated function is a method of a vendor client.
    """
    def decorator(func: Callable) -> Callable:
        def _label(args: tuple) -> Optional[str]:
            if api_label is None and args and hasattr(args[0], "api_label"):
                return args[0].api_label
            return api_label

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                perf_logger.warning(_perf_line(operation, _label(args), _ms(start), f"FAIL: {e}", {}))
                raise
            perf_logger.info(_perf_line(operation, _label(args), _ms(start), "OK", {}))
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                perf_logger.warning(_perf_line(operation, _label(args), _ms(start), f"FAIL: {e}", {}))
                raise
            perf_logger.info(_perf_line(operation, _label(args), _ms(start), "OK", {}))
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


@asynccontextmanager
async def timed_section(operation: str, api_label: Optional[str] = None, **extra):
    """Time an async block. Keyword arguments are appended as ``key=value``.

    Cancellation is logged as a failure and re-raised.
    """
    start = time.perf_counter()
    try:
        yield
    except BaseException as e:
        perf_logger.warning(_perf_line(operation, api_label, _ms(start), f"FAIL: {e!r}", extra))
        raise
    perf_logger.info(_perf_line(operation, api_label, _ms(start), "OK", extra))


@contextmanager
def timed_section_sync(operation: str, api_label: Optional[str] = None, **extra):
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        perf_logger.warning(_perf_line(operation, api_label, _ms(start), f"FAIL: {e}", extra))
        raise
    perf_logger.info(_perf_line(operation, api_label, _ms(start), "OK", extra))
