"""
Structured logging configuration for the application.

JSON logs carry module/function context. Structured `extra` fields whose
key names a credential (code, pin, password, secret, token) are masked
before output, so a stray `logger.info(..., extra={"pin": pin})` cannot leak
one. Messages themselves must still never interpolate those values.
"""

import logging
import sys
from typing import Any, Dict
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger

_SENSITIVE_KEYWORDS = ("code", "pin", "password", "secret", "token")

# Standard LogRecord attributes, never masked
_RECORD_FIELDS = {"message", "module", "funcName", "pathname", "lineno", "levelname", "name"}


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return key not in _RECORD_FIELDS and any(keyword in key_lower for keyword in _SENSITIVE_KEYWORDS)


def mask_sensitive_data(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: "***" if _is_sensitive_key(str(key)) else mask_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [mask_sensitive_data(item) for item in data]
    return data


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding service context and masking credential fields.
    """

    def __init__(self, *args, service: str = "lifevault-auth", **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        for key in list(log_record):
            if _is_sensitive_key(key):
                log_record[key] = "***"
            else:
                log_record[key] = mask_sensitive_data(log_record[key])

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['service'] = self.service
        log_record['function'] = record.funcName

        if record.levelno >= logging.WARNING:
            log_record['line'] = record.lineno
            log_record['pathname'] = record.pathname


def setup_logging(log_level: str = "INFO", json_logs: bool = True, service: str = "lifevault-auth") -> None:
    """
    Configure root logging for the API and the Celery worker.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON output for production, plain lines for development
        service: Value of the `service` field on every JSON record
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if json_logs:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(logger)s %(module)s %(message)s',
            service=service
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.addHandler(console_handler)

    # Client libraries log request URLs and headers at DEBUG/INFO
    for noisy in ("httpx", "httpcore", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
