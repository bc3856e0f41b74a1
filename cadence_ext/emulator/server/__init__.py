from .lsp_client import LanguageClient, LanguageServerError
from .language_server import (
    LanguageServerAPI,
    ClientState,
    EmulatorState,
    ClientStateError,
    compute_emulator_state,
)

__all__ = [
    'LanguageClient',
    'LanguageServerError',
    'LanguageServerAPI',
    'ClientState',
    'EmulatorState',
    'ClientStateError',
    'compute_emulator_state',
]
