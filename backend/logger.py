
import logging
import sys
import os
from logging.handlers import RotatingFileHandler

# Log files go next to the backend unless LOG_DIR says otherwise
LOGS_DIR = os.getenv("LOG_DIR") or os.path.join(os.path.dirname(__file__), "logs")

ROOT_LOGGER_NAME = "timewise"


class CustomFormatter(logging.Formatter):
    """Colored console output, one color per level"""

    grey = "\x1b[38;20m"
    blue = "\x1b[34;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format_str + reset,
        logging.INFO: blue + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def _level_from_env(default: int) -> int:
    name = os.getenv("LOG_LEVEL", "").upper()
    return getattr(logging, name, default) if name else default


def setup_logger(name: str = ROOT_LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    """Configures the application logger: console plus rotating file"""

    logger = logging.getLogger(name)
    logger.setLevel(_level_from_env(level))

    # Prevent duplicate handlers if function is called multiple times
    if logger.hasHandlers():
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter())
    logger.addHandler(console_handler)

    # 5MB max size per file, keep last 5 backups
    try:
        os.makedirs(LOGS_DIR, exist_ok=True)
        log_file = os.path.join(LOGS_DIR, "app.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
        return logger

    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Child logger of the application logger, e.g. timewise.scheduler"""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")


# Global logger instance
logger = setup_logger()
