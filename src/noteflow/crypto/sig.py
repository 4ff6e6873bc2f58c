# src/noteflow/crypto/sig.py
from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from noteflow.crypto.felt import Word, hash_bytes
from noteflow.crypto.rng import FeltRng

Json = Dict[str, Any]

SCHEME_ED25519 = "ed25519"


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    if s.startswith("0x"):
        s = s[2:]
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def _word_message(message: Word) -> bytes:
    return b"noteflow:sign:" + bytes.fromhex(message.to_hex()[2:])


@dataclass(frozen=True)
class PublicKey:
    raw: bytes

    def commitment(self) -> Word:
        """Word stored in the auth component's storage slot."""
        return hash_bytes(self.raw)

    def to_hex(self) -> str:
        return self.raw.hex()

    @classmethod
    def from_hex(cls, s: str) -> "PublicKey":
        b = _decode_bytes(s)
        if len(b) != 32:
            raise ValueError("ed25519 pubkey must be 32 bytes")
        return cls(raw=b)

    def verify(self, message: Word, signature: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(self.raw).verify(bytes(signature), _word_message(message))
            return True
        except (InvalidSignature, ValueError):
            return False


class SecretKey:
    """Ed25519 secret key. Never logged and never serialized outside the key store."""

    __slots__ = ("_sk",)

    def __init__(self, sk: Ed25519PrivateKey) -> None:
        self._sk = sk

    @classmethod
    def with_rng(cls, rng: FeltRng) -> "SecretKey":
        return cls(Ed25519PrivateKey.from_private_bytes(rng.fill_bytes(32)))

    @classmethod
    def from_seed_bytes(cls, seed: bytes) -> "SecretKey":
        if len(seed) != 32:
            raise ValueError("ed25519 secret seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(bytes(seed)))

    def seed_bytes(self) -> bytes:
        return self._sk.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())

    def public_key(self) -> PublicKey:
        return PublicKey(raw=self._sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw))

    def sign(self, message: Word) -> bytes:
        return self._sk.sign(_word_message(message))

    def __repr__(self) -> str:
        return f"SecretKey(pub={self.public_key().to_hex()[:16]}...)"


@dataclass(frozen=True)
class AuthSecretKey:
    """Closed variant over supported auth schemes (only Ed25519 today)."""

    scheme: str
    key: SecretKey

    @classmethod
    def ed25519(cls, key: SecretKey) -> "AuthSecretKey":
        return cls(scheme=SCHEME_ED25519, key=key)

    def public_key(self) -> PublicKey:
        return self.key.public_key()

    def to_json(self) -> Json:
        return {"scheme": self.scheme, "secret": self.key.seed_bytes().hex()}

    @classmethod
    def from_json(cls, j: Json) -> "AuthSecretKey":
        scheme = str(j.get("scheme") or "")
        if scheme != SCHEME_ED25519:
            raise ValueError(f"unsupported auth scheme: {scheme!r}")
        return cls(scheme=scheme, key=SecretKey.from_seed_bytes(_decode_bytes(str(j.get("secret") or ""))))


@dataclass(frozen=True)
class AuthSignature:
    """Signature plus the public key it verifies under (the account stores only its commitment)."""

    scheme: str
    pubkey: str
    sig: str

    def to_json(self) -> Json:
        return {"scheme": self.scheme, "pubkey": self.pubkey, "sig": self.sig}

    @classmethod
    def from_json(cls, j: Json) -> "AuthSignature":
        return cls(scheme=str(j.get("scheme") or ""), pubkey=str(j.get("pubkey") or ""), sig=str(j.get("sig") or ""))


def sign_message(secret: AuthSecretKey, message: Word) -> AuthSignature:
    return AuthSignature(
        scheme=secret.scheme,
        pubkey=secret.public_key().to_hex(),
        sig=secret.key.sign(message).hex(),
    )


def verify_signature(*, signature: AuthSignature, message: Word, pub_commitment: Word) -> bool:
    if signature.scheme != SCHEME_ED25519:
        return False
    try:
        pk = PublicKey.from_hex(signature.pubkey)
        sig_b = _decode_bytes(signature.sig)
    except ValueError:
        return False
    if pk.commitment() != pub_commitment:
        return False
    return pk.verify(message, sig_b)
