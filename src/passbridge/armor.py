"""
OpenPGP ASCII armor (RFC 4880 section 6), on top of PGPy.

Armor is only a transport encoding: base64 of the binary packets, a
CRC-24 checksum line, and BEGIN/END markers. Wrapping an encrypted
``.gpg`` file in armor does not change what it decrypts to.
"""

from __future__ import annotations

import pgpy
from pgpy.types import Armorable

MESSAGE_LABEL = "PGP MESSAGE"


class ArmorError(ValueError):
    """Raised when data cannot be armored or unarmored."""


def armor_message(blob: bytes) -> str:
    """Armor a binary OpenPGP message as a ``PGP MESSAGE`` block.

    The packets are parsed first, so a file that is not an OpenPGP
    message is rejected instead of being wrapped.

    Raises:
        ArmorError: ``blob`` does not parse as an OpenPGP message.
    """
    try:
        message = pgpy.PGPMessage.from_blob(bytes(blob))
    except Exception as exc:
        raise ArmorError(f"not an OpenPGP message: {exc}") from exc
    return str(message)


def unarmor(text: str) -> bytes:
    """Decode the first armored block in ``text``.

    Raises:
        ArmorError: No armored block, bad base64 or checksum mismatch.
    """
    try:
        parts = Armorable.ascii_unarmor(text)
    except Exception as exc:
        raise ArmorError(f"invalid armor: {exc}") from exc

    if parts.get("magic") is None:
        raise ArmorError("no armor header line")
    data = bytes(parts["body"])
    if parts.get("crc") is not None and Armorable.crc24(data) != parts["crc"]:
        raise ArmorError("armor checksum mismatch")
    return data
