from .logging_utils import get_module_logger, StructuredLogger
from .logging_config import configure_logging
from .notifications import Notifier, LoggingNotifier
from .observable import ObservableValue, DerivedValue
from .settings import Settings
from .state_cache import StateCache

__all__ = [
    'get_module_logger',
    'StructuredLogger',
    'configure_logging',
    'Notifier',
    'LoggingNotifier',
    'ObservableValue',
    'DerivedValue',
    'Settings',
    'StateCache',
]
