"""
Core module for SOSTrack

Contains configuration management, logging and the durable storage layer.
"""

from .config import ConfigurationManager, ConfigurationError
from .database import DatabaseManager, PersistenceError, initialize_database

__all__ = [
    'ConfigurationManager',
    'ConfigurationError',
    'DatabaseManager',
    'PersistenceError',
    'initialize_database'
]
