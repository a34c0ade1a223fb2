"""
Identity Service

Firebase Admin SDK integration for token verification, and the identity
providers the swap services are constructed with.
"""

import logging
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import auth as firebase_auth, credentials

from foodswap.config import settings
from foodswap.errors import Unauthenticated
from foodswap.models.user import CurrentUser

logger = logging.getLogger(__name__)


# =============================================================================
# Firebase Initialization
# =============================================================================

_firebase_app = None


def _init_firebase():
    """
    Initialize Firebase Admin SDK.

    SECURITY: The service account credentials must be kept secure.
    Never log or expose the credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    creds = settings.firebase_credentials
    if creds is None:
        raise RuntimeError(
            "Firebase credentials not configured. "
            "Set FIREBASE_SERVICE_ACCOUNT_JSON or FIREBASE_SERVICE_ACCOUNT_PATH in .env"
        )

    cred = credentials.Certificate(creds)
    _firebase_app = firebase_admin.initialize_app(cred)
    return _firebase_app


class IdentityProvider(Protocol):
    """Supplies the caller's identity to a service."""

    async def get_current_user(self) -> CurrentUser:
        """Return the caller, or raise Unauthenticated."""
        ...


# Identity used by scheduled jobs for the messages and writes they make
SYSTEM_USER = CurrentUser(id="system", name="FoodSwap")


class StaticIdentity:
    """
    Identity already resolved for one request (or one scheduled job).

    ``None`` means there is no session.
    """

    def __init__(self, user: Optional[CurrentUser]):
        self.user = user

    async def get_current_user(self) -> CurrentUser:
        if self.user is None:
            raise Unauthenticated("User not authenticated. Please log in and try again.")
        return self.user


class FirebaseTokenVerifier:
    """
    Firebase ID token verification.

    SECURITY: This is the authoritative verification of user identity.
    The token is verified against Firebase's public keys.
    """

    def __init__(self):
        """Initialize Firebase on first use."""
        try:
            _init_firebase()
        except (RuntimeError, ValueError) as e:
            # Allow startup without Firebase; every verification will fail
            logger.warning(f"Firebase initialization failed: {e}")

    def verify_firebase_token(self, id_token: str) -> Optional[dict]:
        """
        Verify a Firebase ID token and return the decoded claims.

        Returns:
            Decoded token claims if valid, None otherwise
        """
        try:
            return firebase_auth.verify_id_token(id_token)
        except (
            firebase_auth.InvalidIdTokenError,
            firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError,
        ):
            return None
        except ValueError:
            # Raised when the SDK has no initialized app
            return None

    def identity_for_token(self, id_token: Optional[str]) -> StaticIdentity:
        """Resolve a bearer token into an identity. Invalid tokens yield no session."""
        if not id_token:
            return StaticIdentity(None)

        claims = self.verify_firebase_token(id_token)
        if not claims:
            return StaticIdentity(None)

        return StaticIdentity(CurrentUser.from_claims(claims))
