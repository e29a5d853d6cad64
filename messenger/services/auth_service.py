"""
Authentication helpers: Firebase ID token verification
"""

from typing import Any, Dict

from firebase_admin import auth as firebase_auth

from messenger.services.firebase_service import FirebaseService


def verify_id_token(id_token: str) -> Dict[str, Any]:
    """Convenience wrapper to verify Firebase ID tokens for simple use in routes/tests."""
    try:
        FirebaseService()
        return firebase_auth.verify_id_token(id_token)
    except Exception as e:
        # Re-raise the exception to be caught by the dependency that calls this
        raise ValueError(f"Firebase ID token verification failed: {e}") from e
