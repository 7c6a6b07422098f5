"""Bearer token verification (ES256).

Tokens are issued by the auth collaborator; this service only verifies
them against the collaborator's public key (``JWT_PUBLIC_KEY_FILE``).
Without a configured key every token is rejected.
"""

from __future__ import annotations

import logging
from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from coursetrack.core.config import SETTINGS

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"

_verifying_key: ec.EllipticCurvePublicKey | None = None


def load_public_key(path: str) -> ec.EllipticCurvePublicKey:
    key = serialization.load_pem_public_key(Path(path).read_bytes())
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError(f"{path} does not hold an EC public key")
    return key


def configure(public_key: ec.EllipticCurvePublicKey) -> None:
    """Set the key tokens are verified against."""
    global _verifying_key
    _verifying_key = public_key


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry, issuer and audience; return the claims.

    The algorithm is pinned so alg:none and alg-switching tokens fail.
    Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError.
    """
    if _verifying_key is None:
        raise jwt.InvalidTokenError("no token verification key configured")
    return jwt.decode(
        token,
        _verifying_key,
        algorithms=[ALGORITHM],
        issuer=SETTINGS.jwt_issuer,
        audience=SETTINGS.jwt_audience,
        options={"require": ["sub", "exp", "iat"]},
    )


if SETTINGS.jwt_public_key_file is not None:
    configure(load_public_key(SETTINGS.jwt_public_key_file))
    logger.info("Verifying tokens with key from %s", SETTINGS.jwt_public_key_file)
else:
    logger.warning("No JWT_PUBLIC_KEY_FILE configured; bearer tokens will be rejected")
