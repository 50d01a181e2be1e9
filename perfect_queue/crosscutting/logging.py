import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
fingerprint_var: ContextVar[Optional[str]] = ContextVar('fingerprint', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        """Initialize secret masker with patterns."""
        self.patterns = [
            # API tokens and keys
            r'(?i)(token|key|secret|password)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Access tokens in JSON payloads and query strings
            r'(?i)(access_token|accessToken)["\']?[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{8,})["\']?',
            # Client secrets
            r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # Bearer credentials
            r'(?i)(bearer)[\s]+([a-zA-Z0-9\-_\.]{8,})',
            # OAuth codes
            r'(?i)(code|authorization_code)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]

        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    @staticmethod
    def mask_value(secret: str) -> str:
        """Keep first 4 and last 4 characters of long secrets, mask the rest."""
        if len(secret) > 8:
            return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
        return '*' * len(secret)

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text

        for pattern in self.compiled_patterns:
            def replace_match(match):
                return f"{match.group(1)}: {self.mask_value(match.group(2))}"

            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}

        for key, value in data.items():
            if isinstance(value, str) and re.search(r'(?i)token|secret|credential|code', key):
                masked_data[key] = self.mask_value(value)
            elif isinstance(value, str):
                masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                  else self.mask_secrets(item) if isinstance(item, str)
                                  else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        """Initialize formatter."""
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        request_id = request_id_var.get()
        fingerprint = fingerprint_var.get()
        playlist_id = playlist_id_var.get()
        stage = stage_var.get()

        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add correlation fields if available
        if request_id:
            log_entry['requestId'] = request_id
        if fingerprint:
            log_entry['fingerprint'] = fingerprint
        if playlist_id:
            log_entry['playlistId'] = playlist_id
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if getattr(record, 'fields', None):
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def mask_secrets(self, text: str) -> str:
        """Mask secrets in text."""
        return self.masker.mask_secrets(text)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, request_id: Optional[str] = None,
                 fingerprint: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        """Initialize correlation context."""
        self._values = {
            request_id_var: request_id,
            fingerprint_var: fingerprint,
            playlist_id_var: playlist_id,
            stage_var: stage,
        }
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        for var, value in self._values.items():
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                 log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging for the perfect_queue logger tree."""
    logger = logging.getLogger('perfect_queue')
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = 'perfect_queue') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                   fields: Optional[Dict[str, Any]] = None,
                   exc_info: bool = False, **kwargs) -> None:
    """Log message with additional fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message,
               extra={'fields': merged}, exc_info=exc_info)


# Convenience functions for the orchestration lifecycle
def log_orchestration_start(logger: logging.Logger, request_id: str,
                            playlist_name: str, track_count: int, **kwargs) -> None:
    """Log orchestration start."""
    with CorrelationContext(request_id=request_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Playlist creation started', {
            'playlist_name': playlist_name,
            'track_count': track_count,
            **kwargs
        })


def log_transition(logger: logging.Logger, source: str, target: str, **kwargs) -> None:
    """Log a state machine transition."""
    with CorrelationContext(stage=target):
        log_with_fields(logger, 'DEBUG', f'Transition {source} -> {target}', kwargs)


def log_orchestration_complete(logger: logging.Logger, state: str,
                               reason: Optional[str], status_code: int, **kwargs) -> None:
    """Log orchestration completion."""
    level = 'INFO' if reason is None else 'WARNING'
    with CorrelationContext(stage='complete'):
        log_with_fields(logger, level, 'Playlist creation finished', {
            'state': state,
            'reason': reason,
            'status_code': status_code,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs) -> None:
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
