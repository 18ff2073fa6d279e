import hashlib

import pytest

from optimistic_ism.errors import ISMError, OISM_E_MESSAGE_MALFORMED
from optimistic_ism.message import HEADER_LEN, MESSAGE_VERSION, Message, message_id


def test_encode_layout_and_decode():
    msg = Message(nonce=7, origin=1, sender=b"\xaa" * 20, destination=42, recipient=b"\xbb" * 32, body=b"hi")
    raw = msg.encode()

    assert len(raw) == HEADER_LEN + 2
    assert raw[0] == MESSAGE_VERSION
    assert raw[1:5] == (7).to_bytes(4, "big")
    assert raw[5:9] == (1).to_bytes(4, "big")
    assert raw[9:41] == b"\x00" * 12 + b"\xaa" * 20
    assert raw[41:45] == (42).to_bytes(4, "big")
    assert raw[45:77] == b"\xbb" * 32
    assert raw[77:] == b"hi"

    decoded = Message.decode(raw)
    assert decoded.nonce == 7
    assert decoded.destination == 42
    assert decoded.sender == b"\x00" * 12 + b"\xaa" * 20
    assert decoded.body == b"hi"


def test_message_id_is_sha256_of_bytes():
    raw = Message(nonce=1, origin=1, sender=b"", destination=2, recipient=b"").encode()
    assert message_id(raw) == hashlib.sha256(raw).hexdigest()
    assert Message.decode(raw).id == message_id(raw)


def test_short_message_rejected():
    with pytest.raises(ISMError) as ei:
        Message.decode(b"\x03" * (HEADER_LEN - 1))
    assert ei.value.code == OISM_E_MESSAGE_MALFORMED


def test_oversized_fields_rejected():
    with pytest.raises(ISMError) as ei:
        Message(nonce=1, origin=1, sender=b"\x01" * 33, destination=2, recipient=b"").encode()
    assert ei.value.code == OISM_E_MESSAGE_MALFORMED

    with pytest.raises(ISMError) as ei:
        Message(nonce=2**32, origin=1, sender=b"", destination=2, recipient=b"").encode()
    assert ei.value.code == OISM_E_MESSAGE_MALFORMED
