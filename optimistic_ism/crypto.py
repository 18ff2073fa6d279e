"""
Optimistic ISM cryptography helpers.

Ed25519 key pairs for attestation signers and watchers, plus the
length-prefixed hashing used to build signing digests.

The engine itself never signs: it only holds PUBLIC keys via the verifiers.
Private keys exist on signer/watcher machines (or in tests).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


ED25519_SIGNATURE_LEN = 64
ED25519_PUBLIC_KEY_LEN = 32


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def safe_hash_encode(components: List[str]) -> bytes:
    """
    Length-prefixed encoding for hash inputs.
    Prevents delimiter collision attacks.
    """
    result = b""
    for component in components:
        encoded = component.encode("utf-8")
        length_bytes = len(encoded).to_bytes(8, byteorder="big")
        result += length_bytes + encoded
    return result


def canonical_json_dumps(obj: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, UTF-8 preserved."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass
class Ed25519KeyPair:
    """
    Ed25519 key pair for signing and verification.

    Verifiers are built from public-key-only instances.
    """
    key_id: str
    public_key_bytes: bytes
    private_key_bytes: Optional[bytes] = None

    @classmethod
    def generate(cls, key_id: str) -> "Ed25519KeyPair":
        """Generate a new Ed25519 key pair."""
        private_key = Ed25519PrivateKey.generate()
        return cls._from_private(key_id, private_key)

    @classmethod
    def from_seed(cls, seed: bytes, key_id: str) -> "Ed25519KeyPair":
        """Create key pair from a 32-byte seed."""
        if len(seed) != 32:
            raise ValueError(f"Seed must be 32 bytes, got {len(seed)}")
        return cls._from_private(key_id, Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_public_key(cls, key_id: str, public_key_hex: str) -> "Ed25519KeyPair":
        """Create key pair with public key only (for verification)."""
        try:
            raw = bytes.fromhex(public_key_hex)
        except ValueError as e:
            raise ValueError(f"Public key for {key_id!r} is not valid hex") from e
        if len(raw) != ED25519_PUBLIC_KEY_LEN:
            raise ValueError(f"Public key for {key_id!r} must be {ED25519_PUBLIC_KEY_LEN} bytes, got {len(raw)}")
        return cls(key_id=key_id, public_key_bytes=raw)

    @classmethod
    def _from_private(cls, key_id: str, private_key: Ed25519PrivateKey) -> "Ed25519KeyPair":
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(key_id=key_id, public_key_bytes=public_bytes, private_key_bytes=private_bytes)

    @property
    def public_key_hex(self) -> str:
        return self.public_key_bytes.hex()

    def can_sign(self) -> bool:
        return self.private_key_bytes is not None

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the private key."""
        if not self.can_sign():
            raise ValueError(f"Key {self.key_id} has no private key - cannot sign")
        private_key = Ed25519PrivateKey.from_private_bytes(self.private_key_bytes)
        return private_key.sign(message)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a signature with the public key."""
        try:
            public_key = Ed25519PublicKey.from_public_bytes(self.public_key_bytes)
            public_key.verify(signature, message)
            return True
        except InvalidSignature:
            return False


def create_key_pair(key_id: str) -> Ed25519KeyPair:
    return Ed25519KeyPair.generate(key_id)


def load_public_keys(mapping: Dict[str, Any]) -> Dict[str, str]:
    """Validate a `{key_id: public_key_hex}` mapping loaded from config.

    Raises ValueError on non-string entries or malformed keys.
    """
    out: Dict[str, str] = {}
    for kid, pub_hex in mapping.items():
        if not isinstance(kid, str) or not kid.strip():
            raise ValueError("key ids must be non-empty strings")
        if not isinstance(pub_hex, str):
            raise ValueError(f"public key for {kid!r} must be a hex string")
        out[kid] = Ed25519KeyPair.from_public_key(kid, pub_hex.strip()).public_key_hex
    return out
