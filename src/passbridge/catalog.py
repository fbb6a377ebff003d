"""
Catalog builder — walks a password store into identities and payloads.

Store layout (pass(1)):

    <store>/.gpg-id                     recipients, one per line
    <store>/<group...>/<username>.gpg   one encrypted secret

The store is user-writable and treated as untrusted input: anything
that does not look like a secret is skipped, and any I/O failure aborts
the whole build so a partial catalog can never be served.
"""

from __future__ import annotations

import logging
import os
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .errors import BuildError, ConfigurationError
from .models import CatalogEntry, SecretIdentity

logger = logging.getLogger("passbridge.catalog")

RECIPIENTS_FILE = ".gpg-id"
SECRET_SUFFIX = ".gpg"
EXCLUDED_DIRS = {".git", ".hg", ".svn"}


@dataclass
class CatalogBuild:
    """Output of one builder run.

    ``entries`` and ``secrets`` come from the same walk, so every entry
    has exactly one payload and vice versa.

    Attributes:
        recipients: Recipient ids from ``.gpg-id``, in file order.
        entries: Catalog rows in walk order.
        secrets: Raw encrypted file content per identity.
    """

    recipients: tuple[str, ...]
    entries: list[CatalogEntry] = field(default_factory=list)
    secrets: dict[SecretIdentity, bytes] = field(default_factory=dict)


def normalize_username(username: str) -> str:
    """ASCII-only search key for ``username``.

    Compatibility-decomposes (NFKD) and drops every code point >= 0x80,
    so ``"Jürgen"`` becomes ``"Jurgen"``. Best effort: returns ``""``
    instead of failing.
    """
    try:
        decomposed = unicodedata.normalize("NFKD", username)
    except (TypeError, ValueError) as exc:
        logger.debug("Could not normalize username: %s", exc)
        return ""
    return "".join(ch for ch in decomposed if ord(ch) < 0x80)


def read_recipients(store: Path) -> tuple[str, ...]:
    """Read recipient ids from ``<store>/.gpg-id``.

    Raises:
        ConfigurationError: Missing, unreadable or empty file.
    """
    gpg_id = store / RECIPIENTS_FILE
    try:
        text = gpg_id.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"failed to read {gpg_id}: {exc}") from exc

    recipients = tuple(line.strip() for line in text.splitlines() if line.strip())
    if not recipients:
        raise ConfigurationError(f"no recipients listed in {gpg_id}")
    return recipients


def _raise_walk_error(exc: OSError) -> None:
    raise BuildError(f"dirwalk failed: {exc}") from exc


def iter_secret_files(store: Path):
    """Yield ``(relative_dir, filename)`` for every secret file.

    Walk order is lexical so a single build is reproducible. Files at
    the store root hold configuration only and are never yielded.
    """
    root = str(store)
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        rel = os.path.relpath(dirpath, root)
        if rel == os.curdir:
            continue
        rel = rel.replace(os.sep, "/")
        for fname in sorted(filenames):
            if fname.endswith(SECRET_SUFFIX):
                yield rel, fname


def build_catalog(store: Union[str, Path]) -> CatalogBuild:
    """Walk ``store`` into a consistent catalog and payload map.

    Raises:
        ConfigurationError: Recipient file problems.
        BuildError: Store missing, walk failure or unreadable secret.
    """
    store = Path(store).expanduser()
    recipients = read_recipients(store)
    if not store.is_dir():
        raise BuildError(f"password store is not a directory: {store}")

    build = CatalogBuild(recipients=recipients)
    for rel_dir, fname in iter_secret_files(store):
        identity = SecretIdentity(path=rel_dir, username=fname[: -len(SECRET_SUFFIX)])
        file_path = store.joinpath(*rel_dir.split("/"), fname)
        try:
            payload = file_path.read_bytes()
        except OSError as exc:
            raise BuildError(f"readfile failed: {file_path}: {exc}") from exc

        build.entries.append(
            CatalogEntry.from_identity(identity, normalize_username(identity.username))
        )
        build.secrets[identity] = payload

    logger.info(
        "Indexed %d secret(s) for %d recipient(s) in %s",
        len(build.entries),
        len(recipients),
        store,
    )
    return build
