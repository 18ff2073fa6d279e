import json
import sys

import pytest

import oism_cli
from optimistic_ism.message import message_id
from optimistic_ism.quorum import AttestationSubmodule


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["oism", *argv])
    oism_cli.main()


def test_keygen_sign_and_verify(monkeypatch, tmp_path, capsys):
    k0, k1 = tmp_path / "r0.json", tmp_path / "r1.json"
    _run(monkeypatch, "keygen", "--key-id", "relayer-0", "--out", str(k0))
    _run(monkeypatch, "keygen", "--key-id", "relayer-1", "--out", str(k1))
    capsys.readouterr()

    _run(
        monkeypatch,
        "encode-message",
        "--nonce", "1",
        "--origin", "10",
        "--sender", "11" * 20,
        "--destination", "20",
        "--recipient", "22" * 20,
        "--body", "beef",
    )
    encoded = json.loads(capsys.readouterr().out)
    assert encoded["message_id"] == message_id(bytes.fromhex(encoded["message_hex"]))

    _run(monkeypatch, "sign", "--kind", "attest", "--key", str(k0), "--key", str(k1), "--message-hex", encoded["message_hex"])
    metadata = bytes.fromhex(capsys.readouterr().out.strip())

    keys = [json.loads(p.read_text(encoding="utf-8")) for p in (k0, k1)]
    sub = AttestationSubmodule("attest-v1", [(k["key_id"], k["public_key_hex"]) for k in keys], 2)
    assert sub.verify(metadata, bytes.fromhex(encoded["message_hex"])) is True


def test_message_id_command(monkeypatch, capsys):
    _run(monkeypatch, "message-id", "0xdeadbeef")
    assert capsys.readouterr().out.strip() == message_id(bytes.fromhex("deadbeef"))


def test_bad_key_file_exits_nonzero(monkeypatch, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(SystemExit) as ei:
        _run(monkeypatch, "sign", "--kind", "fraud", "--key", str(bad), "--message-hex", "00")
    assert ei.value.code == 2


def test_no_command_prints_help(monkeypatch):
    with pytest.raises(SystemExit) as ei:
        _run(monkeypatch)
    assert ei.value.code == 1
