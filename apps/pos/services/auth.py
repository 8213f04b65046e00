"""
Bearer credential handling.

The engine never reads login state itself; it asks a credential provider for
the current token and tells it when the backend rejected that token.
"""
import hashlib
import logging

logger = logging.getLogger(__name__)

EXPIRED_TOKEN_CODES = ('TOKEN_EXPIRED', 'INVALID_TOKEN')


class CredentialProvider:
    """Holds the bearer token for one cashier session."""

    def __init__(self, token=''):
        self._token = token or ''
        self._expired = False

    def get_token(self):
        """Return the current token, or '' when none is usable."""
        if self._expired:
            return ''
        return self._token

    @property
    def is_expired(self):
        return self._expired or not self._token

    def mark_expired(self, code='TOKEN_EXPIRED'):
        if not self._expired:
            logger.warning(f"Bearer credential rejected by backend ({code}); re-authentication required")
        self._expired = True

    def fingerprint(self):
        """Short digest of the token, safe to keep in the session."""
        if not self._token:
            return ''
        return hashlib.sha256(self._token.encode()).hexdigest()[:16]

    def update(self, token):
        """Install a fresh token after re-authentication."""
        self._token = token or ''
        self._expired = False


def token_from_header(header):
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not header:
        return ''
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == 'bearer':
        return parts[1]
    return ''
