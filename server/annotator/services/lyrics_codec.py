"""Decoders for the two lyrics payload formats served by the catalog.

LRC arrives as base64-wrapped UTF-8. KRC arrives as base64 of a 4-byte
``krc1`` header followed by a zlib stream XOR-obfuscated with a fixed
16-byte key.
"""

import base64
import binascii
import zlib

from annotator.errors import DecodeError

KRC_HEADER_SIZE = 4

KRC_DECRYPTION_KEY = bytes(
    [64, 71, 97, 119, 94, 50, 116, 71, 81, 54, 49, 45, 206, 210, 110, 105]
)


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 payload: {exc}") from exc


def decode_timed_plain(payload: str) -> str:
    """Decode a base64-wrapped LRC payload to text."""
    raw = _b64decode(payload)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"LRC payload is not valid UTF-8: {exc}") from exc


def _xor_key(data: bytes) -> bytes:
    key = KRC_DECRYPTION_KEY
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def decode_krc(payload: str) -> str:
    """Recover KRC text from the catalog's obfuscated container."""
    raw = _b64decode(payload)
    if len(raw) <= KRC_HEADER_SIZE:
        raise DecodeError("KRC payload too short")

    try:
        inflated = zlib.decompress(_xor_key(raw[KRC_HEADER_SIZE:]))
    except zlib.error as exc:
        raise DecodeError(f"KRC payload failed to inflate: {exc}") from exc

    try:
        text = inflated.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"KRC payload is not valid UTF-8: {exc}") from exc

    # Decoded KRC commonly starts with a BOM
    return text.lstrip("\ufeff")


def encode_krc(text: str, header: bytes = b"krc1") -> str:
    """Build a KRC container from text. Inverse of ``decode_krc``."""
    obfuscated = _xor_key(zlib.compress(text.encode("utf-8")))
    return base64.b64encode(header[:KRC_HEADER_SIZE] + obfuscated).decode("ascii")
