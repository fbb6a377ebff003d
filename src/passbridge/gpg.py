"""
Crypto engine adapter.

The bridge needs exactly two capabilities from a crypto engine:

    encrypt(plaintext, recipients) -> armored ciphertext
    reencode(blob)                 -> armored form of an existing blob

``SystemGpg`` provides both by running the gpg binary once per call,
the way the rest of the pass(1) ecosystem does. Nothing here ever
decrypts.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Optional, Protocol, Sequence, runtime_checkable

from .armor import MESSAGE_LABEL, ArmorError, armor_message
from .errors import ConfigurationError, EncryptionError

logger = logging.getLogger("passbridge.gpg")

# gpg --enarmor labels its output as a generic armored file; clients
# expect a message block.
ARMORED_FILE_LABEL = "PGP ARMORED FILE"


@runtime_checkable
class CryptoEngine(Protocol):
    """What the snapshot assembler needs from an encryption backend."""

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> str:
        ...

    def reencode(self, blob: bytes) -> str:
        ...


class SystemGpg:
    """Crypto engine backed by the gpg command line.

    Args:
        command: gpg executable name or path.
        options: Extra arguments placed before every operation
            (``--homedir``, ``--trust-model``...).
        timeout: Seconds allowed per invocation.
    """

    def __init__(
        self,
        command: str = "gpg",
        options: Optional[Sequence[str]] = None,
        timeout: float = 60,
    ):
        self.command = command
        self.options = list(options or [])
        self.timeout = timeout

    @classmethod
    def locate(cls, command: str = "gpg", **kwargs) -> SystemGpg:
        """Resolve ``command`` on PATH.

        Raises:
            ConfigurationError: If the executable cannot be found.
        """
        resolved = shutil.which(command)
        if resolved is None:
            raise ConfigurationError(f"gpg command not found: {command}")
        logger.debug("Using gpg at %s", resolved)
        return cls(resolved, **kwargs)

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> str:
        """Encrypt and armor ``plaintext`` for every recipient."""
        if not recipients:
            raise EncryptionError("no recipients to encrypt for")
        args = ["--encrypt", "--armor"]
        for recipient in recipients:
            args.extend(["--recipient", recipient])
        return self._run(plaintext, args)

    def reencode(self, blob: bytes) -> str:
        """Armor an already encrypted binary blob."""
        output = self._run(blob, ["--enarmor"])
        return output.replace(ARMORED_FILE_LABEL, MESSAGE_LABEL)

    def _run(self, stdin: bytes, args: list[str]) -> str:
        cmd = [self.command, "--batch", "--quiet", *self.options, *args]
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise EncryptionError(f"failed to run {self.command}: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise EncryptionError(
                f"{self.command} {args[0]} failed (exit {result.returncode}): {stderr}"
            )
        try:
            return result.stdout.decode("ascii")
        except UnicodeDecodeError as exc:
            raise EncryptionError(f"{self.command} {args[0]} produced non-armored output") from exc


class ArmorOnlyEngine:
    """Engine that re-encodes in process and delegates encryption.

    Armoring needs no key material, so ``reencode`` skips the
    per-secret gpg process. Each blob is parsed as OpenPGP packets
    first, so stray non-OpenPGP files fail the build. The catalog still
    goes through ``inner``.
    """

    def __init__(self, inner: CryptoEngine):
        self.inner = inner

    def encrypt(self, plaintext: bytes, recipients: Sequence[str]) -> str:
        return self.inner.encrypt(plaintext, recipients)

    def reencode(self, blob: bytes) -> str:
        try:
            return armor_message(blob)
        except ArmorError as exc:
            raise EncryptionError(str(exc)) from exc
