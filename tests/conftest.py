"""Shared test fixtures for passbridge."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Sequence

import pgpy
import pytest
from pgpy.constants import CompressionAlgorithm

from passbridge.armor import armor_message
from passbridge.errors import EncryptionError


def pgp_blob(payload: bytes) -> bytes:
    """Binary OpenPGP message (one literal data packet) carrying ``payload``."""
    message = pgpy.PGPMessage.new(
        payload, format="b", compression=CompressionAlgorithm.Uncompressed
    )
    return bytes(message)


SECRETS = {
    "social/example.com/alice.gpg": pgp_blob(b"alice-secret"),
    "social/example.com/bob@example.com.gpg": pgp_blob(b"bob-secret"),
    "work/git.example.org/Jürgen.gpg": pgp_blob(b"jurgen-secret"),
    "bank/7.gpg": pgp_blob(b"numeric-secret"),
}


class FakeEngine:
    """Deterministic stand-in for gpg.

    ``encrypt`` armors a literal message holding
    ``ENC[<recipients>]<plaintext>`` so tests can "decrypt" it with
    :func:`fake_decrypt`; ``reencode`` is plain armor.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.encrypt_calls: list[tuple[str, ...]] = []
        self.reencode_calls = 0
        self.fail_encrypt = False
        self.fail_reencode_on: set[bytes] = set()

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> str:
        with self._lock:
            self.encrypt_calls.append(tuple(recipients))
        if self.fail_encrypt:
            raise EncryptionError("gpg --encrypt failed (exit 2): no public key")
        header = f"ENC[{','.join(recipients)}]".encode()
        return armor_message(pgp_blob(header + plaintext))

    def reencode(self, blob: bytes) -> str:
        with self._lock:
            self.reencode_calls += 1
        if blob in self.fail_reencode_on:
            raise EncryptionError("gpg --enarmor failed (exit 2)")
        return armor_message(blob)


def fake_decrypt(armored: str, recipient: str) -> bytes:
    """Undo FakeEngine.encrypt for ``recipient``."""
    data = bytes(pgpy.PGPMessage.from_blob(armored).message)
    header, _, plaintext = data.partition(b"]")
    recipients = header.decode()[len("ENC["):].split(",")
    if recipient not in recipients:
        raise AssertionError(f"{recipient} cannot decrypt this message")
    return plaintext


def write_store(root: Path, recipients: str = "A\n", secrets: dict | None = None) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / ".gpg-id").write_text(recipients, encoding="utf-8")
    for rel, content in (SECRETS if secrets is None else secrets).items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def store(tmp_path: Path) -> Path:
    """A small password store with noise the walker must ignore."""
    root = write_store(tmp_path / "store")
    (root / "root-level.gpg").write_bytes(b"not a secret")
    (root / "social" / "notes.txt").write_text("not a secret either")
    (root / ".git" / "objects").mkdir(parents=True)
    (root / ".git" / "objects" / "leak.gpg").write_bytes(b"git internals")
    return root


@pytest.fixture
def bridge_home(tmp_path: Path) -> Path:
    home = tmp_path / ".passbridge"
    home.mkdir()
    return home
