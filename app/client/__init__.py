"""Client-side session coordination for consumers of the auth API."""
from app.client.api_client import AuthenticatedClient, SessionExpiredError, TokenStore
from app.client.session_timeout import SessionState, SessionTimeoutCoordinator

__all__ = [
    "AuthenticatedClient",
    "SessionExpiredError",
    "SessionState",
    "SessionTimeoutCoordinator",
    "TokenStore",
]
