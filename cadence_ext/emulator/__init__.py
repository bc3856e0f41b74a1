from .account import Account
from .flow_config import FlowConfig, FlowConfigError, ConfigWatch
from .scanner import EmulatorScanner

__all__ = [
    'Account',
    'FlowConfig',
    'FlowConfigError',
    'ConfigWatch',
    'EmulatorScanner',
]
