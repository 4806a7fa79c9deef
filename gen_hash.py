#!/usr/bin/env python3
"""
Preimage/Hash Generator

Prints a fresh random 32-byte preimage and its SHA-256 payment hash, for
building hold invoices. The hash goes to the counterparty; the preimage is
revealed later to settle.

Usage:
    gen-hash
    gen-hash --json
"""

import argparse
import hashlib
import json
import secrets
import sys

PREIMAGE_SIZE = 32


def generate_pair():
    """Return (preimage, payment_hash) as raw bytes."""
    preimage = secrets.token_bytes(PREIMAGE_SIZE)
    payment_hash = hashlib.sha256(preimage).digest()
    return preimage, payment_hash


def format_plain(preimage: bytes, payment_hash: bytes) -> str:
    return f"preimage: {preimage.hex()}\nhash:     {payment_hash.hex()}\n"


def format_json(preimage: bytes, payment_hash: bytes) -> str:
    record = {"preimage": preimage.hex(), "hash": payment_hash.hex()}
    return json.dumps(record, indent=2) + "\n"


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="gen-hash",
        description="Generate a random preimage and its SHA-256 hash",
    )
    parser.add_argument("--json", action="store_true",
                        help="print the pair as a JSON object")
    args = parser.parse_args(argv)

    try:
        preimage, payment_hash = generate_pair()
    except (OSError, NotImplementedError):
        # No usable randomness source; nothing goes to stdout
        return 1

    fmt = format_json if args.json else format_plain
    sys.stdout.write(fmt(preimage, payment_hash))
    return 0


if __name__ == "__main__":
    sys.exit(main())
