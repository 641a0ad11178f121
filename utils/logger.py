import logging
import os
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from colorama import Fore, Style, init
from tqdm import tqdm

init(autoreset=True)


DEFAULT_LOG_FILE = "data/logs/harvest.log"


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def setup_logger(
    name="harvester", level=None, log_file=None, console=True
):
    """Setup logger with file and console handlers"""

    level = _resolve_level(level or os.getenv("HARVEST_LOG_LEVEL", "INFO"))
    log_file = log_file or os.getenv("HARVEST_LOG_FILE", DEFAULT_LOG_FILE)

    # Create logs directory if not exists
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    # File handler
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    # Console handler
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter("%(asctime)s - %(levelname_colored)s - %(message)s")
        )
        logger.addHandler(console_handler)

    return logger


def create_progress_bar(iterable=None, desc="Progress", unit="it", total=None, disable=False):
    """Create tqdm progress bar"""
    return tqdm(iterable, desc=desc, unit=unit, total=total, colour="green", disable=disable)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured pipeline events"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "event_type": getattr(record, "event_type", "general"),
            "event_data": getattr(record, "event_data", {}),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.BLUE,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        record.levelname_colored = (
            self.COLORS.get(record.levelname, Fore.WHITE)
            + record.levelname
            + Style.RESET_ALL
        )
        return super().format(record)


class DefaultEventMetadataFilter(logging.Filter):
    """Ensure log records carry the event metadata the structured formatter reads."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 (doc inherited)
        if not hasattr(record, "event_type"):
            record.event_type = "general"
        if not hasattr(record, "event_data"):
            record.event_data = {}
        return True


def setup_event_logger(
    name="harvester.events",
    level=logging.INFO,
    structured_file="data/logs/harvest_events.jsonl",
):
    """Setup a JSON-lines logger for pipeline events (job state, sync outcomes)."""
    os.makedirs(os.path.dirname(structured_file), exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    if logger.hasHandlers():
        logger.handlers.clear()

    logger.addFilter(DefaultEventMetadataFilter())
    json_handler = logging.FileHandler(structured_file, encoding="utf-8")
    json_handler.setFormatter(StructuredFormatter())
    logger.addHandler(json_handler)
    return logger


def log_pipeline_event(event_type: str, event_data: Dict[str, Any], level: str = "INFO"):
    """Structured pipeline event logging"""
    logger = logging.getLogger("harvester.events")
    if not logger.handlers:
        logger = setup_event_logger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.log(
        log_level,
        f"Pipeline event: {event_type}",
        extra={"event_type": event_type, "event_data": event_data},
    )


def get_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """Get logger instance for the given name.

    Loggers are configured once; later calls return the existing instance.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logger(name, log_file=log_file)
