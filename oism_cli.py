#!/usr/bin/env python3
"""
Optimistic ISM - Command Line Interface

Usage:
    oism keygen --key-id ID [--out key.json]     Generate an Ed25519 signer/watcher key
    oism encode-message --nonce N ...            Encode a message and print hex + id
    oism message-id <message_hex>                Print the identifier of an encoded message
    oism sign --kind attest|fraud --key k.json   Produce verifier metadata for a message
    oism config                                  Show configuration loaded from env
    oism serve [--host H] [--port P]             Run the HTTP API (uvicorn)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from optimistic_ism.config import OptimisticIsmConfig
from optimistic_ism.crypto import Ed25519KeyPair
from optimistic_ism.errors import ISMError
from optimistic_ism.message import Message, message_id
from optimistic_ism.quorum import sign_attestation, sign_fraud_report


def setup_logging(verbose: bool = False):
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logging.getLogger("optimistic_ism").setLevel(level)


def _hex_arg(value: str, name: str) -> bytes:
    v = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(v)
    except ValueError:
        raise SystemExit(f"ERROR: {name} is not valid hex")


def load_key_file(path: Path) -> Ed25519KeyPair:
    """Load a key written by `oism keygen`."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"KEY_ERROR: cannot read key file '{path}': {e}") from e
    seed_hex = data.get("private_seed_hex")
    if not isinstance(seed_hex, str):
        raise ValueError(f"KEY_ERROR: '{path}' has no private_seed_hex")
    return Ed25519KeyPair.from_seed(bytes.fromhex(seed_hex), str(data.get("key_id", path.stem)))


def cmd_keygen(args):
    kp = Ed25519KeyPair.generate(args.key_id)
    doc = {
        "key_id": kp.key_id,
        "public_key_hex": kp.public_key_hex,
        "private_seed_hex": kp.private_key_bytes.hex(),
    }
    text = json.dumps(doc, indent=2)
    if args.out:
        Path(args.out).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote key {kp.key_id} to {args.out} (public key {kp.public_key_hex})")
    else:
        print(text)


def cmd_encode_message(args):
    msg = Message(
        nonce=args.nonce,
        origin=args.origin,
        sender=_hex_arg(args.sender, "--sender"),
        destination=args.destination,
        recipient=_hex_arg(args.recipient, "--recipient"),
        body=_hex_arg(args.body, "--body"),
    )
    raw = msg.encode()
    print(json.dumps({"message_hex": raw.hex(), "message_id": message_id(raw)}, indent=2))


def cmd_message_id(args):
    raw = _hex_arg(args.message_hex, "message_hex")
    print(message_id(raw))


def cmd_sign(args):
    keys: List[Ed25519KeyPair] = [load_key_file(Path(p)) for p in args.key]
    raw = _hex_arg(args.message_hex, "--message-hex")
    if args.kind == "attest":
        metadata = sign_attestation(keys, raw)
    else:
        metadata = sign_fraud_report(keys, raw)
    print(metadata.hex())


def cmd_config(args):
    cfg = OptimisticIsmConfig.from_env()
    print(json.dumps(cfg.as_public_dict(), indent=2))


def cmd_serve(args):
    import uvicorn

    from optimistic_ism.server import create_app

    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")


def main():
    parser = argparse.ArgumentParser(
        description="Optimistic ISM CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an Ed25519 key")
    keygen_parser.add_argument("--key-id", required=True, help="Signer or watcher identity")
    keygen_parser.add_argument("--out", help="Output JSON file (default: stdout)")
    keygen_parser.set_defaults(func=cmd_keygen)

    enc_parser = subparsers.add_parser("encode-message", help="Encode a cross-domain message")
    enc_parser.add_argument("--nonce", type=int, required=True)
    enc_parser.add_argument("--origin", type=int, required=True, help="Origin domain id")
    enc_parser.add_argument("--sender", required=True, help="Sender (hex, up to 32 bytes)")
    enc_parser.add_argument("--destination", type=int, required=True, help="Destination domain id")
    enc_parser.add_argument("--recipient", required=True, help="Recipient (hex, up to 32 bytes)")
    enc_parser.add_argument("--body", default="", help="Body (hex)")
    enc_parser.set_defaults(func=cmd_encode_message)

    id_parser = subparsers.add_parser("message-id", help="Print a message identifier")
    id_parser.add_argument("message_hex", help="Encoded message (hex)")
    id_parser.set_defaults(func=cmd_message_id)

    sign_parser = subparsers.add_parser("sign", help="Produce verifier metadata")
    sign_parser.add_argument("--kind", choices=["attest", "fraud"], required=True)
    sign_parser.add_argument(
        "--key",
        action="append",
        required=True,
        help="Key file from keygen; repeat in signer order",
    )
    sign_parser.add_argument("--message-hex", required=True, help="Encoded message (hex)")
    sign_parser.set_defaults(func=cmd_sign)

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.set_defaults(func=cmd_config)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)
    try:
        args.func(args)
    except (ISMError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
