from functools import lru_cache

from .clients.base import ControlPlaneClient
from .clients.exchange_shell import ExchangeShellClient
from .database import get_db  # noqa: F401


@lru_cache()
def get_control_plane_client() -> ControlPlaneClient:
    return ExchangeShellClient()
