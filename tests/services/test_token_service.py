from __future__ import annotations

from pathlib import Path

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from coursetrack.services import token_service
from tests.conftest import TEST_SIGNING_KEY, mint_token


def _pem(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def test_decodes_auth_service_token() -> None:
    claims = token_service.decode_access_token(mint_token(username="s1", roles=["admin"]))
    assert claims["sub"] == "s1"
    assert claims["roles"] == ["admin"]


def test_wrong_audience_rejected() -> None:
    with pytest.raises(jwt.InvalidAudienceError):
        token_service.decode_access_token(mint_token(audience="some-other-service"))


def test_foreign_key_rejected() -> None:
    other = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(jwt.InvalidSignatureError):
        token_service.decode_access_token(mint_token(key=other))


def test_unconfigured_key_rejects_everything(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(token_service, "_verifying_key", None)
    with pytest.raises(jwt.InvalidTokenError, match="no token verification key"):
        token_service.decode_access_token(mint_token())


def test_load_public_key_reads_pem(tmp_path: Path) -> None:
    path = tmp_path / "auth.pem"
    path.write_bytes(_pem(TEST_SIGNING_KEY.public_key()))
    loaded = token_service.load_public_key(str(path))
    assert loaded.public_numbers() == TEST_SIGNING_KEY.public_key().public_numbers()


def test_load_public_key_rejects_non_ec(tmp_path: Path) -> None:
    path = tmp_path / "ed.pem"
    path.write_bytes(_pem(ed25519.Ed25519PrivateKey.generate().public_key()))
    with pytest.raises(ValueError, match="EC public key"):
        token_service.load_public_key(str(path))
