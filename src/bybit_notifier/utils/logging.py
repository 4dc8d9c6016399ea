"""Structured logging setup for the notifier service."""

import logging
import logging.handlers
import json
import os
import sys
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from ..config.settings import LoggingConfig

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message',
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).astimezone().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Text formatter with colors for console output. Timestamps are local time."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        level = record.levelname
        message = record.getMessage()

        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.COLORS['RESET']}"

        # Format: timestamp [LEVEL] logger: message
        formatted = f"{timestamp} [{level}] {record.name}: {message}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class AccountFileFilter(logging.Filter):
    """Passes only records logged on behalf of one account."""

    def __init__(self, account_id: int):
        super().__init__()
        self.account_id = account_id

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, 'ctx_account_id', None) == self.account_id


class AccountLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the account label and tags records with ``ctx_`` fields."""

    def __init__(self, logger: logging.Logger, account_id: int, account_name: str):
        super().__init__(logger, {'ctx_account_id': account_id, 'ctx_account_name': account_name})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return f"[{self.extra['ctx_account_name']} #{self.extra['ctx_account_id']}] {msg}", kwargs


_log_dir = os.path.join('data', 'logs')
_account_handlers: Dict[int, logging.Handler] = {}


def setup_logging(config: LoggingConfig, service_name: str = "bybit-notifier") -> None:
    """
    Setup logging configuration for the service.

    Args:
        config: Logging configuration
        service_name: Name of the service for log context
    """
    global _log_dir
    _log_dir = config.log_dir

    if config.format.lower() == 'json':
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    if config.output.lower() == 'stdout':
        handler = logging.StreamHandler(sys.stdout)
    elif config.output.lower() == 'stderr':
        handler = logging.StreamHandler(sys.stderr)
    else:
        os.makedirs(config.log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(config.log_dir, f"{service_name}.log"),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    class ServiceContextFilter(logging.Filter):
        def filter(self, record):
            record.service = service_name
            return True

    handler.addFilter(ServiceContextFilter())

    logging.getLogger('websockets').setLevel(logging.INFO)
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={config.level}, format={config.format}, "
        f"output={config.output}, service={service_name}"
    )


def get_account_logger(name: str, account_id: int, account_name: str) -> AccountLoggerAdapter:
    return AccountLoggerAdapter(logging.getLogger(name), account_id, account_name)


def account_log_path(account_id: int, log_dir: Optional[str] = None) -> str:
    return os.path.join(log_dir or _log_dir, f"account_{account_id}.log")


def attach_account_log(account_id: int, config: LoggingConfig) -> Optional[str]:
    """
    Mirror every record tagged with ``account_id`` into its own rotating file.

    Returns the file path, or None if the file could not be opened.
    """
    if account_id in _account_handlers:
        return _account_handlers[account_id].baseFilename

    path = account_log_path(account_id, config.log_dir)
    try:
        os.makedirs(config.log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
    except OSError as e:
        logging.getLogger(__name__).error(f"Cannot open log file for account {account_id}: {e}")
        return None

    handler.setFormatter(TextFormatter(use_colors=False))
    handler.addFilter(AccountFileFilter(account_id))
    logging.getLogger().addHandler(handler)
    _account_handlers[account_id] = handler
    return path


def detach_account_log(account_id: int) -> None:
    handler = _account_handlers.pop(account_id, None)
    if handler:
        logging.getLogger().removeHandler(handler)
        handler.close()


def read_log_tail(path: str, lines: int = 100) -> List[str]:
    """Return the last ``lines`` lines of a log file."""
    if not os.path.exists(path):
        return []
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        return [line.rstrip('\n') for line in deque(f, maxlen=lines)]


def report_fatal(account_name: str, account_id: int, error: BaseException, log_path: str) -> None:
    """Print an operator-facing banner to stderr for a fault that ended an account's monitoring."""
    print(
        "\n=== FATAL ERROR ===\n"
        f"Monitoring of account '{account_name}' (ID: {account_id}) stopped after an unexpected error\n"
        f"Error: {error!r}\n"
        f"Check the logs at: {log_path}\n"
        "===================\n",
        file=sys.stderr,
        flush=True
    )
