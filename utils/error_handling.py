import json
import logging
import traceback
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Optional, Any
import psutil

from .logger import get_logger

logger = get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000


# Custom Exception Classes
class HarvestError(Exception):
    """Base exception for all harvester errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class TransientNetworkError(HarvestError):
    """Timeouts, DNS failures, 429 and retryable 5xx responses"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class ChallengeDetectedError(HarvestError):
    """Anti-bot challenge page still present after retries"""

    pass


class RenderError(HarvestError):
    """Render subprocess failed, exited non-zero or produced no HTML"""

    pass


class MalformedSourceError(HarvestError):
    """Required field could not be recovered from the source document"""

    pass


class RemoteCatalogError(HarvestError):
    """Non-2xx response from the commerce catalog"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code
        self.body = body


class ConfigurationError(HarvestError):
    """Configuration-related errors; fatal for the whole run"""

    pass


class TranslationError(HarvestError):
    """Translation collaborator failed; never fatal to a product"""

    pass


ITEM_LEVEL_ERRORS = (
    TransientNetworkError,
    ChallengeDetectedError,
    RenderError,
    MalformedSourceError,
    RemoteCatalogError,
)


@dataclass
class ErrorContext:
    """Captures error details for structured logs"""

    url: Optional[str] = None
    stage: Optional[str] = None
    external_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    system_memory: Optional[float] = None
    additional_data: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()
        if self.system_memory is None:
            self.system_memory = psutil.virtual_memory().percent

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def truncate_error_message(
    message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH
) -> str:
    """Bound an error message for the job record."""
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


def log_item_error(
    error: Exception, context: Optional[ErrorContext] = None, level: str = "WARNING"
) -> None:
    """Log an item-boundary error with structured context"""
    log_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context.to_dict() if context else {},
    }
    if isinstance(error, HarvestError) and error.context:
        log_data["error_context"] = error.context

    logger.log(
        getattr(logging, level.upper(), logging.WARNING),
        json.dumps(log_data, default=str),
    )


def describe_exception(error: BaseException) -> Dict[str, str]:
    """Error payload recorded in sync mapping snapshots."""
    return {
        "error": str(error),
        "trace": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    }
