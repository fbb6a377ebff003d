"""
Snapshot assembly — everything a request could ask for, computed up front.

A Snapshot is built in one pass over the store and is never modified
afterwards. Either every body is ready or the build fails and nothing
is returned: there is no partially filled snapshot.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Union

from .catalog import CatalogBuild, build_catalog
from .errors import EncryptionError
from .gpg import CryptoEngine
from .models import CatalogEntry, SecretIdentity

logger = logging.getLogger("passbridge.snapshot")


def wrap_response(body: str) -> str:
    """Wrap a payload in the ``{"response": ...}`` envelope."""
    return json.dumps({"response": body}, separators=(",", ":"))


def error_body(message: str) -> str:
    """Wrap an error message in the ``{"error": ...}`` envelope."""
    return json.dumps({"error": message}, separators=(",", ":"))


def serialize_catalog(entries: list[CatalogEntry]) -> bytes:
    """Canonical catalog form: compact UTF-8 JSON array in build order."""
    rows = [entry.model_dump() for entry in entries]
    # Undecodable filename bytes surface as lone surrogates; they become "?".
    return json.dumps(rows, ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8", errors="replace"
    )


@dataclass(frozen=True)
class Snapshot:
    """Immutable, fully precomputed servable state.

    Attributes:
        catalog_body: Enveloped catalog encrypted for all recipients.
        secret_bodies: Enveloped, armored secret per identity.
        recipients: Recipients the catalog was encrypted for.
        built_at: When assembly finished.
    """

    catalog_body: str
    secret_bodies: Mapping[SecretIdentity, str]
    recipients: tuple[str, ...] = ()
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not isinstance(self.secret_bodies, MappingProxyType):
            object.__setattr__(
                self, "secret_bodies", MappingProxyType(dict(self.secret_bodies))
            )

    def __len__(self) -> int:
        return len(self.secret_bodies)

    def lookup(self, identity: SecretIdentity) -> str | None:
        return self.secret_bodies.get(identity)


class SnapshotAssembler:
    """Builds Snapshots from a store with a crypto engine.

    Args:
        store: Password store root.
        engine: Encryption capability (see :class:`~passbridge.gpg.CryptoEngine`).
        workers: Parallel re-encode calls; 1 runs them serially.
    """

    def __init__(self, store: Union[str, Path], engine: CryptoEngine, workers: int = 1):
        self.store = Path(store).expanduser()
        self.engine = engine
        self.workers = max(1, workers)

    def assemble(self) -> Snapshot:
        """Run one full build.

        Raises:
            ConfigurationError: Recipient file problems.
            BuildError: Store walk or read failure.
            EncryptionError: Any engine failure, catalog or secret.
        """
        started = time.monotonic()
        build = build_catalog(self.store)

        catalog = serialize_catalog(build.entries)
        try:
            catalog_armor = self.engine.encrypt(catalog, build.recipients)
        except EncryptionError as exc:
            raise EncryptionError(f"index encrypt failed: {exc}") from exc

        bodies = self._reencode_all(build)

        snapshot = Snapshot(
            catalog_body=wrap_response(catalog_armor),
            secret_bodies=bodies,
            recipients=build.recipients,
        )
        logger.info(
            "Snapshot assembled: %d secret(s) in %.2fs",
            len(snapshot),
            time.monotonic() - started,
        )
        return snapshot

    def _reencode_one(self, item: tuple[SecretIdentity, bytes]) -> tuple[SecretIdentity, str]:
        identity, raw = item
        try:
            armored = self.engine.reencode(raw)
        except EncryptionError as exc:
            raise EncryptionError(f"enarmor failed for {identity}: {exc}") from exc
        return identity, wrap_response(armored)

    def _reencode_all(self, build: CatalogBuild) -> dict[SecretIdentity, str]:
        items = list(build.secrets.items())
        if self.workers == 1 or len(items) < 2:
            return dict(map(self._reencode_one, items))

        # map() re-raises the first failure while results are consumed.
        pool = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="passbridge-reencode"
        )
        try:
            return dict(pool.map(self._reencode_one, items))
        finally:
            pool.shutdown(wait=True, cancel_futures=True)
