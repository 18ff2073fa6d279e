"""Cross-domain message encoding and identity.

Wire layout (big-endian):

    offset  size  field
    0       1     version
    1       4     nonce
    5       4     origin domain
    9       32    sender
    41      4     destination domain
    45      32    recipient
    77      ...   body

The message identifier is SHA-256 over the raw encoded bytes. It is the only
key the engine uses for per-message state.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .crypto import sha256_hex
from .errors import ism_error, OISM_E_MESSAGE_MALFORMED


MESSAGE_VERSION = 3
HEADER_LEN = 77

_HEADER = struct.Struct(">BII32sI32s")


def _pad32(value: bytes, field_name: str) -> bytes:
    if len(value) > 32:
        raise ism_error(OISM_E_MESSAGE_MALFORMED, f"{field_name} longer than 32 bytes", length=len(value))
    return value.rjust(32, b"\x00")


@dataclass(frozen=True)
class Message:
    nonce: int
    origin: int
    sender: bytes
    destination: int
    recipient: bytes
    body: bytes = b""
    version: int = MESSAGE_VERSION

    def encode(self) -> bytes:
        try:
            header = _HEADER.pack(
                self.version,
                self.nonce,
                self.origin,
                _pad32(self.sender, "sender"),
                self.destination,
                _pad32(self.recipient, "recipient"),
            )
        except struct.error as e:
            raise ism_error(OISM_E_MESSAGE_MALFORMED, f"header field out of range: {e}") from e
        return header + self.body

    @classmethod
    def decode(cls, raw: bytes) -> "Message":
        if len(raw) < HEADER_LEN:
            raise ism_error(
                OISM_E_MESSAGE_MALFORMED,
                "message shorter than header",
                length=len(raw),
                header_len=HEADER_LEN,
            )
        version, nonce, origin, sender, destination, recipient = _HEADER.unpack_from(raw, 0)
        return cls(
            nonce=nonce,
            origin=origin,
            sender=sender,
            destination=destination,
            recipient=recipient,
            body=bytes(raw[HEADER_LEN:]),
            version=version,
        )

    @property
    def id(self) -> str:
        return message_id(self.encode())


def message_id(raw: bytes) -> str:
    """Deterministic identifier for an encoded message (hex SHA-256)."""
    return sha256_hex(bytes(raw))
