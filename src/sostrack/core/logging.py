"""
Logging Configuration for SOSTrack

Root logger setup with a rotating file handler, a console handler,
per-component levels and structlog audit events. SOS tokens and identity
tokens are masked in every record before it reaches a handler.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Dict, Optional
import structlog


# Session credentials never written to a log
SECRET_KEYS = frozenset({
    'auth', 'sos_token', 'sosToken', 'identity_token', 'identityToken', 'idToken',
})
REDACTED = '***'

# aiohttp errors embed the request URL, including the ?auth= token
_AUTH_QUERY = re.compile(r'([?&]auth=)[^&\s\'"),]+')


def redact_text(text: str) -> str:
    """Mask credentials carried in URL query strings"""
    return _AUTH_QUERY.sub(r'\g<1>' + REDACTED, text)


def redact_secrets(logger, method_name, event_dict):
    """structlog processor masking session credentials"""
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED

    event = event_dict.get('event')
    if isinstance(event, str):
        event_dict['event'] = redact_text(event)
    return event_dict


class CredentialFilter(logging.Filter):
    """Masks ``auth=`` query values before a record reaches a handler"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class TrackerLogger:
    """
    Centralized logging configuration for SOSTrack
    """

    def __init__(self, config: Dict):
        self.config = config
        self.loggers: Dict[str, logging.Logger] = {}
        self._setup_logging()

    def _setup_logging(self):
        """Set up logging configuration"""
        log_config = self.config.get('logging', {})
        log_level = log_config.get('level', 'INFO').upper()
        log_file = log_config.get('file', 'logs/sostrack.log')
        max_size = log_config.get('max_size', '10MB')
        backup_count = log_config.get('backup_count', 5)
        console_enabled = log_config.get('console', True)
        console_level = log_config.get('console_level', 'INFO').upper()

        # Configure structlog
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                redact_secrets,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level))
        root_logger.handlers.clear()

        # File handler with rotation
        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=self._parse_size(max_size),
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(getattr(logging, log_level))
            file_handler.addFilter(CredentialFilter())
            root_logger.addHandler(file_handler)

        # Console handler
        if console_enabled:
            console_handler = logging.StreamHandler(sys.stdout)
            console_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            console_handler.setLevel(getattr(logging, console_level))
            console_handler.addFilter(CredentialFilter())
            root_logger.addHandler(console_handler)

        # Component-specific log levels, e.g. {"sync_client": "DEBUG"}
        component_levels = log_config.get('components', {})
        for component, level in component_levels.items():
            component_logger = logging.getLogger(f'sostrack.{component}')
            component_logger.setLevel(getattr(logging, level.upper()))

        self._configure_third_party_loggers()

    def _parse_size(self, size_str) -> int:
        """Parse size string like '10MB' to bytes"""
        size_str = str(size_str).upper()
        if size_str.endswith('KB'):
            return int(size_str[:-2]) * 1024
        elif size_str.endswith('MB'):
            return int(size_str[:-2]) * 1024 * 1024
        elif size_str.endswith('GB'):
            return int(size_str[:-2]) * 1024 * 1024 * 1024
        else:
            return int(size_str)

    def _configure_third_party_loggers(self):
        """Configure third-party library loggers to reduce noise"""
        noisy_loggers = [
            'asyncio',
            'aiohttp.access',
            'aiohttp.client',
            'serial',
            'serial_asyncio',
        ]

        for logger_name in noisy_loggers:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger for a specific component"""
        if name not in self.loggers:
            full_name = f'sostrack.{name}' if not name.startswith('sostrack') else name
            self.loggers[name] = logging.getLogger(full_name)

        return self.loggers[name]


# Global logger instance
_logger_instance: Optional[TrackerLogger] = None


def initialize_logging(config: Dict) -> TrackerLogger:
    """Initialize the global logging system"""
    global _logger_instance
    _logger_instance = TrackerLogger(config)
    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    if _logger_instance is None:
        # Fallback to basic logging if not initialized
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        return logging.getLogger(f'sostrack.{name}')

    return _logger_instance.get_logger(name)


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance"""
    if _logger_instance is None:
        # Initialize with minimal config
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                redact_secrets,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.JSONRenderer()
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    return structlog.get_logger(f'sostrack.{name}')


class LogContext:
    """Context manager for adding structured logging context"""

    def __init__(self, logger: structlog.stdlib.BoundLogger, **context):
        self.logger = logger
        self.context = context
        self.bound_logger = None

    def __enter__(self):
        self.bound_logger = self.logger.bind(**self.context)
        return self.bound_logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass
