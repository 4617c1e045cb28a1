"""
Webhook signature verification.

Signatures are HMAC-SHA256 over the raw request bytes, hex encoded,
optionally prefixed with ``sha256=``. The raw body must be used: re-encoding
the parsed JSON changes the byte layout and breaks the digest.
"""

import hashlib
import hmac
from enum import Enum

from app.shared.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


class SignatureCheck(str, Enum):
    """Outcome of applying the signature policy to a request."""

    VALID = "valid"
    INVALID = "invalid"
    MISSING_ALLOWED = "missing_allowed"
    MISSING_REJECTED = "missing_rejected"
    NO_SECRET = "no_secret"
    GENERIC_UNVERIFIED = "generic_unverified"

    @property
    def accepted(self) -> bool:
        return self in (
            SignatureCheck.VALID,
            SignatureCheck.MISSING_ALLOWED,
            SignatureCheck.NO_SECRET,
            SignatureCheck.GENERIC_UNVERIFIED,
        )


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``raw_body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Verify a signature header value against the raw body.

    Args:
        raw_body: Unparsed request body.
        signature: Header value, hex digest with optional ``sha256=`` prefix.
        secret: Tenant webhook secret.

    Returns:
        True if the signature matches.
    """
    if not signature or not secret:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, provided.lower())


class SignatureVerifier:
    """Applies the environment-dependent signature policy.

    A missing signature is rejected in production and let through with a
    warning elsewhere. When no secret is configured for the tenant there is
    nothing to verify against: production rejects, other environments warn.

    Events that resolve to no tenant are processed in generic mode. They are
    verified against the platform secret when one is configured and
    accepted unverified otherwise.
    """

    def __init__(self, production: bool) -> None:
        self._production = production

    def check(
        self,
        raw_body: bytes,
        signature: str | None,
        secret: str | None,
        generic: bool = False,
    ) -> SignatureCheck:
        if generic and not secret:
            logger.warning("Webhook accepted unverified: no tenant resolved and no platform secret")
            return SignatureCheck.GENERIC_UNVERIFIED

        if not signature:
            if self._production:
                logger.warning("Webhook rejected: missing signature")
                return SignatureCheck.MISSING_REJECTED
            logger.warning("Webhook accepted without signature (non-production)")
            return SignatureCheck.MISSING_ALLOWED

        if not secret:
            if self._production:
                logger.warning("Webhook rejected: no secret configured for tenant")
                return SignatureCheck.INVALID
            logger.warning("Webhook signature not verified: no secret configured")
            return SignatureCheck.NO_SECRET

        if verify_signature(raw_body, signature, secret):
            return SignatureCheck.VALID

        logger.warning("Webhook rejected: signature mismatch")
        return SignatureCheck.INVALID
