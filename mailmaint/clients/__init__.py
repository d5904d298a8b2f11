from .base import ControlPlaneClient
from .exchange_shell import ExchangeShellClient

__all__ = [
    'ControlPlaneClient',
    'ExchangeShellClient',
]
