"""
Logging configuration for finproxy
Provides structured logging with color support
"""

import functools
import logging
import sys
import time
from datetime import datetime
from typing import Optional
import colorama
from colorama import Fore, Style

# Initialize colorama for Windows support
colorama.init()

# Custom log colors
LOG_COLORS = {
    'DEBUG': Fore.CYAN,
    'INFO': Fore.GREEN,
    'WARNING': Fore.YELLOW,
    'ERROR': Fore.RED,
    'CRITICAL': Fore.MAGENTA
}

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    'message', 'asctime', 'timestamp'
}

class ColoredFormatter(logging.Formatter):
    """Custom formatter with color support and key=value context suffix"""

    def __init__(self, fmt=None, datefmt=None, use_colors=True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record):
        if self.use_colors:
            levelname = record.levelname
            if levelname in LOG_COLORS:
                record.levelname = f"{LOG_COLORS[levelname]}{levelname}{Style.RESET_ALL}"
                record.name = f"{Fore.BLUE}{record.name}{Style.RESET_ALL}"

        record.timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        formatted = super().format(record)
        context = {
            k: v for k, v in vars(record).items()
            if k not in _RESERVED_ATTRS and not k.startswith('_')
        }
        if context:
            pairs = " ".join(f"{k}={v}" for k, v in sorted(context.items()))
            formatted = f"{formatted} [{pairs}]"
        return formatted

class StructuredLogger:
    """Wrapper for structured logging with context"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.context = {}

    def add_context(self, **kwargs):
        """Add persistent context to all log messages"""
        self.context.update(kwargs)

    def clear_context(self):
        """Clear all context"""
        self.context = {}

    def bind(self, **kwargs) -> 'StructuredLogger':
        """Return a child logger sharing the handler but with extra context"""
        child = StructuredLogger(self.logger)
        child.context = {**self.context, **kwargs}
        return child

    def _log(self, level, msg, *args, **kwargs):
        """Internal log method with context injection"""
        extra = dict(self.context)
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        getattr(self.logger, level)(msg, *args, **kwargs)

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def debug(self, msg, *args, **kwargs):
        self._log('debug', msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._log('info', msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._log('warning', msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._log('error', msg, *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._log('critical', msg, *args, **kwargs)

def setup_logger(
    name: str,
    level: Optional[str] = None,
    use_colors: bool = True
) -> StructuredLogger:
    """
    Set up a logger with console output

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Whether to use colored output

    Returns:
        StructuredLogger instance
    """
    from ..config.settings import get_config
    config = get_config()

    # Use provided level or fall back to config
    if level is None:
        level = config.system.log_level

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Only attach our console handler once per logger
    if not any(getattr(h, '_finproxy', False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler._finproxy = True
        console_format = "%(timestamp)s [%(levelname)s] %(name)s: %(message)s"
        console_handler.setFormatter(ColoredFormatter(console_format, use_colors=use_colors))
        logger.addHandler(console_handler)

    # Still propagate so pytest's caplog and host applications see our records
    logger.propagate = True

    return StructuredLogger(logger)

def get_logger(name: str) -> StructuredLogger:
    """
    Get or create a logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        StructuredLogger instance
    """
    return setup_logger(name)

def log_performance(logger: Optional[StructuredLogger] = None):
    """Decorator to log function duration"""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = get_logger(func.__module__)

            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed_ms = int((time.perf_counter() - start_time) * 1000)
                logger.debug(f"{func.__name__} finished in {elapsed_ms}ms")

        return wrapper
    return decorator

def log_async_performance(logger: Optional[StructuredLogger] = None):
    """Decorator to log coroutine duration"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = get_logger(func.__module__)

            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = int((time.perf_counter() - start_time) * 1000)
                logger.warning(f"{func.__name__} failed after {elapsed_ms}ms: {e}")
                raise
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.debug(f"{func.__name__} finished in {elapsed_ms}ms")
            return result

        return wrapper
    return decorator
