import logging
import os
import sys
from typing import Union

from vaultgraph.utils.config_handler import ConfigHandler

class DuplicateFilter(logging.Filter):
    """Filter to prevent repeated log messages within a short time window."""
    def __init__(self, timeout=1.0):
        super().__init__()
        self.timeout = timeout
        self.last_log = {}

    def filter(self, record):
        # Create a key from the log record's essential attributes
        key = (record.module, record.levelno, record.msg)
        current_time = record.created

        # Check if we've seen this message recently
        if key in self.last_log:
            if current_time - self.last_log[key] < self.timeout:
                return False

        self.last_log[key] = current_time
        return True

class RequestFormatter(logging.Formatter):
    """Formatter that prefixes records logged while handling a request.

    Records carry request context when logged with
    ``extra={"request_id": ..., "request_type": ...}``.
    """

    def __init__(self, fmt=None, datefmt=None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        tagged_fmt = (fmt or '%(message)s').replace('%(message)s', '[%(request_tag)s] - %(message)s')
        self._tagged = logging.Formatter(fmt=tagged_fmt, datefmt=datefmt)

    def format(self, record):
        if hasattr(record, 'request_id'):
            record.request_tag = f"{record.request_id} {getattr(record, 'request_type', '?')}"
            return self._tagged.format(record)
        return super().format(record)

def _build_formatters(log_config: dict) -> dict:
    formatters = {}
    for name, fmt_config in log_config.get('formatters', {}).items():
        formatters[name] = RequestFormatter(
            fmt=fmt_config.get('format'),
            datefmt=fmt_config.get('datefmt')
        )
    return formatters

def setup_logger(config: Union[ConfigHandler, str, None] = None) -> None:
    """
    Setup and configure the engine logger.

    The console handler writes to stderr so a worker's stdout stays free
    for whatever transport the host puts there.

    Args:
        config: A ConfigHandler, a path to a configuration file, or None for
            the packaged defaults
    """
    try:
        if not isinstance(config, ConfigHandler):
            config = ConfigHandler(config)
        log_config = config.get_section('logging') or {}

        # Configure root logger
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, str(log_config.get('log_level', 'INFO')).upper()))

        # Remove any existing handlers
        root_logger.handlers = []

        formatters = _build_formatters(log_config)
        window = float(log_config.get('duplicate_window', 1.0))

        # Setup console handler
        console_config = log_config.get('console', {})
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, str(console_config.get('level', 'INFO')).upper()))
        console_handler.setFormatter(formatters.get(console_config.get('formatter', 'simple')))
        console_handler.addFilter(DuplicateFilter(window))
        root_logger.addHandler(console_handler)

        # Setup file handler
        file_config = log_config.get('file', {})
        if file_config.get('enabled'):
            log_path = file_config.get('path', os.path.join('logs', 'vaultgraph.log'))
            log_dir = os.path.dirname(log_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(
                filename=log_path,
                mode='w',  # Overwrite existing log file
                encoding='utf-8'
            )
            file_handler.setLevel(getattr(logging, str(file_config.get('level', 'DEBUG')).upper()))
            file_handler.setFormatter(formatters.get(file_config.get('formatter', 'detailed')))
            file_handler.addFilter(DuplicateFilter(window))
            root_logger.addHandler(file_handler)

        # Configure specific loggers
        for logger_name, logger_config in log_config.get('loggers', {}).items():
            if logger_name != 'root':
                logger = logging.getLogger(logger_name)
                logger.setLevel(getattr(logging, str(logger_config.get('level', 'INFO')).upper()))
                logger.propagate = logger_config.get('propagate', True)

        logging.getLogger(__name__).debug("Logger initialized successfully")

    except Exception as e:
        print(f"Error setting up logger: {str(e)}", file=sys.stderr)
        # Set up a basic console logger as fallback
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        logging.error("Failed to setup logger with config, using basic configuration")
