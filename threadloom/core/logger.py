"""Logging setup for Threadloom with credential and URL masking."""

import logging
import logging.handlers
import re
from pathlib import Path

from threadloom.core.config_manager import APP_HOME

LOG_DIR = APP_HOME / "logs"

LOGGER_NAME = "threadloom"


class SensitiveDataFilter(logging.Filter):
    """Mask access tokens and instance URLs in log records.

    Tokens are masked first, both as Authorization headers and as
    `access_token=` query parameters, so they stay hidden even when URL
    masking is relaxed. Status URLs identify the viewer's reading, so they
    are masked as a whole.
    """

    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9._~+/=-]+')
    TOKEN_PARAM_PATTERN = re.compile(r'(access_token|token|code)=[^&\s]+')
    URL_PATTERN = re.compile(r'https?://[^\s]+')

    def __init__(self, mask_urls: bool = True):
        super().__init__()
        self._mask_urls = mask_urls

    def mask(self, text: str) -> str:
        text = self.BEARER_PATTERN.sub('Bearer [TOKEN_MASKED]', text)
        text = self.TOKEN_PARAM_PATTERN.sub(r'\1=[TOKEN_MASKED]', text)
        if self._mask_urls:
            text = self.URL_PATTERN.sub('[URL_MASKED]', text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        return True


def setup_logger(log_level: str = "INFO", mask_logs: bool = True,
                 log_dir: Path = LOG_DIR) -> logging.Logger:
    """Set up the application logger. Call once at startup.

    Logs go to the console and to log_dir/threadloom.log (5 MB x 3).
    Tokens are always masked; mask_logs additionally hides URLs. A second
    call returns the already configured logger.
    """
    logger = logging.getLogger(LOGGER_NAME)

    if logger.handlers:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
    )
    sensitive_filter = SensitiveDataFilter(mask_urls=mask_logs)

    console_handler = logging.StreamHandler()
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "threadloom.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    for handler in (console_handler, file_handler):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(sensitive_filter)
        logger.addHandler(handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the application logger."""
    return logging.getLogger(LOGGER_NAME)
