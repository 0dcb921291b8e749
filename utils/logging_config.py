"""
Centralized logging configuration for DutySync
Structured JSON logs in production, readable lines in development, plus
per-request timing for the API.
"""

import os
import sys
import json
import logging
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from flask import has_request_context, request, g

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'message',
    'taskName',
})

COMPONENT_LOGGERS = ('app', 'services', 'utils', 'requests', 'audit', 'tracking', 'store')


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with request context when there is one"""

    def __init__(self):
        super().__init__()
        self.application_name = "dutysync"
        self.environment = os.environ.get('FLASK_ENV', 'development')

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'application': self.application_name,
            'environment': self.environment,
        }

        if has_request_context():
            log_data['request'] = {
                'method': request.method,
                'path': request.path,
                'remote_addr': request.remote_addr,
            }
            if hasattr(g, 'correlation_id'):
                log_data['correlation_id'] = g.correlation_id
            session = getattr(g, 'session', None)
            if session is not None:
                log_data['user'] = {'user_id': session.user_id, 'role': session.role.value}

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}
        if extra_fields:
            log_data['extra'] = extra_fields

        if record.levelno >= logging.ERROR:
            log_data['location'] = {
                'file': record.pathname,
                'function': record.funcName,
                'line': record.lineno
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class RequestContextFilter(logging.Filter):
    """Copy the correlation id onto records emitted while serving a request"""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context() and hasattr(g, 'correlation_id'):
            record.correlation_id = g.correlation_id
        return True


def setup_logging(app=None) -> Dict[str, logging.Logger]:
    """
    Configure root logging from LOG_LEVEL, USE_JSON_LOGGING and ENABLE_FILE_LOGGING.

    Returns:
        dict: component loggers keyed by name
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        log_level = 'INFO'

    use_json_logging = (
        os.environ.get('USE_JSON_LOGGING', 'false').lower() == 'true' or
        os.environ.get('FLASK_ENV') == 'production'
    )

    if use_json_logging:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter('[%(asctime)s] %(levelname)s in %(name)s: %(message)s')

    handlers = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if os.environ.get('ENABLE_FILE_LOGGING', 'false').lower() == 'true':
        log_dir = os.environ.get('LOG_DIR', 'logs')
        os.makedirs(log_dir, exist_ok=True)

        error_handler = logging.FileHandler(os.path.join(log_dir, 'error.log'))
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

        file_handler = logging.FileHandler(os.path.join(log_dir, 'application.log'))
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestContextFilter())
        root_logger.addHandler(handler)

    loggers = {}
    for name in COMPONENT_LOGGERS:
        loggers[name] = logging.getLogger(name)
        loggers[name].setLevel(log_level)

    # Quiet chatty third-party loggers
    for noisy in ('werkzeug', 'urllib3', 'sqlalchemy.engine', 'google.auth'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if app:
        app.logger.info(f"Logging configured: level={log_level}, json_format={use_json_logging}")

    return loggers


def log_request_start():
    """Mark the start of request processing for timing"""
    g.request_start_time = time.monotonic()
    g.correlation_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex


def log_request_end(response):
    """Log request completion with timing and response info"""
    if not hasattr(g, 'request_start_time'):
        return response

    duration = time.monotonic() - g.request_start_time
    extra_data = {
        'method': request.method,
        'path': request.path,
        'status_code': response.status_code,
        'duration_ms': round(duration * 1000, 2),
    }
    session = getattr(g, 'session', None)
    if session is not None:
        extra_data['user_id'] = session.user_id

    if response.status_code >= 500:
        log_level = logging.ERROR
    elif response.status_code >= 400 or duration > 5.0:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logging.getLogger('requests').log(log_level, f"Request completed: {request.method} {request.path}",
                                      extra=extra_data)
    response.headers['X-Request-ID'] = g.correlation_id
    return response
