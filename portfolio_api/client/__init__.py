"""Async client for the admin API."""

from portfolio_api.client.errors import ApiError, NetworkTimeoutError, RefreshFailedError
from portfolio_api.client.session_manager import AdminApiClient, ClientTimeouts, SessionManager
from portfolio_api.client.storage import FileTokenStorage, MemoryTokenStorage, TokenStorage

__all__ = [
    "AdminApiClient",
    "ApiError",
    "ClientTimeouts",
    "FileTokenStorage",
    "MemoryTokenStorage",
    "NetworkTimeoutError",
    "RefreshFailedError",
    "SessionManager",
    "TokenStorage",
]
