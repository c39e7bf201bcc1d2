"""Structured logging setup using loguru."""
import sys
from pathlib import Path

from loguru import logger as _logger


def setup_logging(
    log_file: str = "logs/trading.log",
    level: str = "INFO",
    enable_console: bool = True,
) -> None:
    """Configure logging sinks for the trading pipeline.

    Args:
        log_file: Path to the rotating log file
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Whether to log to stdout as well
    """
    _logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _logger.add(
        str(log_path),
        format=log_format,
        level=level,
        rotation="50 MB",
        retention="30 days",
        encoding="utf-8",
    )

    if enable_console:
        _logger.add(sys.stdout, format=log_format, level=level, colorize=True)


def sanitize_error(err: BaseException) -> str:
    """Reduce a collaborator error to a log-safe one-liner.

    Response bodies and headers are never included, only the exception type,
    message and, when the error carries them, HTTP status and request line.
    """
    parts = [f"{type(err).__name__}: {err}"]
    status = getattr(err, "status", None)
    response = getattr(err, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None) or getattr(response, "status", None)
    if status:
        parts.append(f"status={status}")
    method = getattr(err, "method", None)
    url = getattr(err, "url", None)
    if url:
        request = f"{method.upper()} {url}" if method else url
        parts.append(f"url={request}")
    return ", ".join(parts)


logger = _logger
