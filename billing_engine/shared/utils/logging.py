# 📄 File: billing_engine/shared/utils/logging.py

# 🧭 Purpose (Layman Explanation):
# Sets up how the billing engine writes its diary: every line says when it happened,
# which request it belongs to, and what part of the system wrote it.

# 🧪 Purpose (Technical Summary):
# Structured logging setup with a JSON formatter (python-json-logger) for production and a
# contextual plain-text formatter for development, plus request/job context variables.

# 🔗 Dependencies:
# - python-json-logger: JSON log formatting
# - logging: Python standard logging
# - contextvars: Request context tracking

# 🔄 Connected Modules / Calls From:
# Used by: billing_engine.main (startup), api/middleware/logging.py (request id),
# background_jobs tasks (job id), every module through logging.getLogger(__name__)

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from billing_engine.shared.config.settings import get_settings

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
job_name_var: ContextVar[str] = ContextVar('job_name', default='')

SERVICE_NAME = 'billing-engine'

_logging_configured = False


class ContextFilter(logging.Filter):
    """Attach request/user/job context and host information to every record."""

    def __init__(self):
        super().__init__()
        self.hostname = os.uname().nodename if hasattr(os, 'uname') else 'unknown'

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.user_id = user_id_var.get()
        record.job_name = job_name_var.get()
        record.hostname = self.hostname
        record.service = SERVICE_NAME
        record.timestamp = datetime.now(timezone.utc).isoformat()
        return True


class ContextualFormatter(logging.Formatter):
    """Plain-text formatter that appends the request id when one is set."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        request_id = getattr(record, 'request_id', '')
        if request_id:
            message = f"{message} [request_id={request_id}]"
        return message


class JSONFormatter(JsonFormatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line with a consistent structure for
    log aggregation; empty context fields are dropped.
    """

    def __init__(self):
        super().__init__(
            '%(timestamp)s %(levelname)s %(name)s %(message)s %(module)s %(funcName)s %(lineno)d',
            rename_fields={'levelname': 'level', 'name': 'logger', 'funcName': 'function', 'lineno': 'line'},
        )

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['service'] = getattr(record, 'service', SERVICE_NAME)
        log_record['hostname'] = getattr(record, 'hostname', 'unknown')
        for key in ('request_id', 'user_id', 'job_name'):
            value = getattr(record, key, '')
            if value:
                log_record[key] = value


def setup_logging(
    log_level: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> logging.Logger:
    """
    Setup application logging configuration.

    Args:
        log_level: Overrides settings.LOG_LEVEL
        json_format: Overrides settings.LOG_JSON

    Returns:
        The startup logger
    """
    global _logging_configured

    if _logging_configured:
        return logging.getLogger("startup")

    settings = get_settings()
    log_level = log_level or settings.LOG_LEVEL
    if json_format is None:
        json_format = settings.LOG_JSON or settings.is_production

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = ContextualFormatter('%(timestamp)s - %(name)s - %(levelname)s - %(message)s')

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())
    root_logger.addHandler(console_handler)

    logging.getLogger('stripe').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    _logging_configured = True
    return logging.getLogger("startup")


@contextmanager
def log_context(request_id: Optional[str] = None, user_id: Optional[str] = None, job_name: Optional[str] = None):
    """
    Context manager binding context variables for the duration of a block.

    Example:
        with log_context(job_name="check_failed_payments"):
            logger.info("Processing...")
    """
    tokens = []
    if request_id is not None:
        tokens.append((request_id_var, request_id_var.set(request_id)))
    if user_id is not None:
        tokens.append((user_id_var, user_id_var.set(user_id)))
    if job_name is not None:
        tokens.append((job_name_var, job_name_var.set(job_name)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
