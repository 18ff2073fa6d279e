"""Signature-threshold verifiers (Ed25519).

Two verifiers share one mechanism and differ only in their signing domain:

- AttestationSubmodule (domain OISM_ATTEST_V1): a pre-verify submodule.
  Relayer/validator keys attest that a message was dispatched.
- WatcherQuorumVerifier (domain OISM_FRAUD_V1): message-removal authority.
  Watcher keys attest that a message is fraudulent.

Distinct domains mean an attestation signature can never be replayed as a
fraud report, even when the same key sits in both sets.

Metadata format: concatenated 64-byte Ed25519 signatures over
sha256(len-prefixed(domain, message_id)), ordered by signer position. Each
signature must match a signer strictly after the one matched by the previous
signature, so a single key cannot be counted twice.
"""

from __future__ import annotations

import hashlib
from typing import Callable, Dict, List, Sequence, Tuple

from .crypto import ED25519_SIGNATURE_LEN, Ed25519KeyPair, safe_hash_encode
from .errors import (
    ism_error,
    OISM_E_BAD_REQUEST,
    OISM_E_METADATA_MALFORMED,
    OISM_E_QUORUM_NOT_MET,
)
from .message import message_id
from .registry import ModuleType

ATTEST_DOMAIN = "OISM_ATTEST_V1"
FRAUD_DOMAIN = "OISM_FRAUD_V1"


def signing_digest(domain: str, msg_id: str) -> bytes:
    return hashlib.sha256(safe_hash_encode([domain, msg_id])).digest()


def split_signatures(metadata: bytes) -> List[bytes]:
    if len(metadata) % ED25519_SIGNATURE_LEN != 0:
        raise ism_error(
            OISM_E_METADATA_MALFORMED,
            "metadata length is not a multiple of the signature length",
            length=len(metadata),
            signature_len=ED25519_SIGNATURE_LEN,
        )
    return [
        bytes(metadata[i:i + ED25519_SIGNATURE_LEN])
        for i in range(0, len(metadata), ED25519_SIGNATURE_LEN)
    ]


class ThresholdSignatureVerifier:
    """`threshold`-of-n ordered Ed25519 signature check over a message id."""

    module_type = ModuleType.MESSAGE_ID_MULTISIG

    def __init__(
        self,
        module_id: str,
        signers: Sequence[Tuple[str, str]],
        threshold: int,
        *,
        domain: str,
        message_id_fn: Callable[[bytes], str] = message_id,
    ):
        if not module_id:
            raise ism_error(OISM_E_BAD_REQUEST, "module_id must be non-empty")
        keys = [Ed25519KeyPair.from_public_key(kid, pub_hex) for kid, pub_hex in signers]
        if len({k.key_id for k in keys}) != len(keys):
            raise ism_error(OISM_E_BAD_REQUEST, "duplicate signer ids", module_id=module_id)
        if not keys:
            raise ism_error(OISM_E_BAD_REQUEST, "at least one signer is required", module_id=module_id)
        if threshold < 1 or threshold > len(keys):
            raise ism_error(
                OISM_E_BAD_REQUEST,
                "threshold must be between 1 and the number of signers",
                module_id=module_id,
                threshold=threshold,
                signers=len(keys),
            )
        self.module_id = module_id
        self.domain = domain
        self.threshold = int(threshold)
        self._keys = keys
        self._message_id = message_id_fn

    @property
    def signer_ids(self) -> List[str]:
        return [k.key_id for k in self._keys]

    def digest(self, message: bytes) -> bytes:
        return signing_digest(self.domain, self._message_id(message))

    def matched_signers(self, metadata: bytes, message: bytes) -> List[str]:
        """Signer ids proven by `metadata`, stopping at the first unmatched signature."""
        digest = self.digest(message)
        matched: List[str] = []
        idx = 0
        for sig in split_signatures(metadata):
            while idx < len(self._keys) and not self._keys[idx].verify(digest, sig):
                idx += 1
            if idx >= len(self._keys):
                break
            matched.append(self._keys[idx].key_id)
            idx += 1
            if len(matched) >= self.threshold:
                break
        return matched

    def verify(self, metadata: bytes, message: bytes) -> bool:
        return len(self.matched_signers(metadata, message)) >= self.threshold


class AttestationSubmodule(ThresholdSignatureVerifier):
    def __init__(self, module_id: str, signers: Sequence[Tuple[str, str]], threshold: int, **kwargs):
        super().__init__(module_id, signers, threshold, domain=ATTEST_DOMAIN, **kwargs)


class WatcherQuorumVerifier(ThresholdSignatureVerifier):
    """Raises instead of returning False so removal failures carry a reason."""

    def __init__(self, module_id: str, signers: Sequence[Tuple[str, str]], threshold: int, **kwargs):
        super().__init__(module_id, signers, threshold, domain=FRAUD_DOMAIN, **kwargs)

    def verify(self, metadata: bytes, message: bytes) -> bool:
        matched = self.matched_signers(metadata, message)
        if len(matched) < self.threshold:
            raise ism_error(
                OISM_E_QUORUM_NOT_MET,
                "watcher quorum not met",
                http_status=403,
                matched=len(matched),
                threshold=self.threshold,
            )
        return True


class WatcherQuorumFactory:
    """Builds the removal verifier from the engine's watcher list and threshold."""

    def __init__(self, watcher_keys: Dict[str, str], module_id: str = "watcher-quorum"):
        self.watcher_keys = dict(watcher_keys)
        self.module_id = module_id

    def __call__(self, watchers: Sequence[str], threshold: int) -> WatcherQuorumVerifier:
        missing = [w for w in watchers if w not in self.watcher_keys]
        if missing:
            raise ism_error(OISM_E_BAD_REQUEST, "no public key configured for watchers", watchers=missing)
        return WatcherQuorumVerifier(
            self.module_id,
            [(w, self.watcher_keys[w]) for w in watchers],
            threshold,
        )


def sign_metadata(
    key_pairs: Sequence[Ed25519KeyPair],
    message: bytes,
    *,
    domain: str,
    message_id_fn: Callable[[bytes], str] = message_id,
) -> bytes:
    """Concatenate signatures from `key_pairs` (must be in signer order)."""
    digest = signing_digest(domain, message_id_fn(message))
    return b"".join(kp.sign(digest) for kp in key_pairs)


def sign_attestation(key_pairs: Sequence[Ed25519KeyPair], message: bytes) -> bytes:
    return sign_metadata(key_pairs, message, domain=ATTEST_DOMAIN)


def sign_fraud_report(key_pairs: Sequence[Ed25519KeyPair], message: bytes) -> bytes:
    return sign_metadata(key_pairs, message, domain=FRAUD_DOMAIN)
