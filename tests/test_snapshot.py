"""Tests for snapshot assembly."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from passbridge.armor import unarmor
from passbridge.catalog import build_catalog
from passbridge.errors import BuildError, ConfigurationError, EncryptionError
from passbridge.models import SecretIdentity
from passbridge.snapshot import Snapshot, SnapshotAssembler, error_body, wrap_response

from conftest import SECRETS, fake_decrypt, write_store

ALICE = SecretIdentity(path="social/example.com", username="alice")


def _unwrap(body: str) -> str:
    return json.loads(body)["response"]


class TestEnvelopes:
    def test_response_envelope(self):
        assert json.loads(wrap_response("abc")) == {"response": "abc"}

    def test_error_envelope(self):
        assert json.loads(error_body("unknown secret")) == {"error": "unknown secret"}


class TestAssemble:
    def test_catalog_encrypted_for_all_recipients(self, tmp_path: Path, engine):
        root = write_store(tmp_path / "s", recipients="A\nB\n")
        snap = SnapshotAssembler(root, engine).assemble()

        assert engine.encrypt_calls == [("A", "B")]
        assert snap.recipients == ("A", "B")
        catalog = json.loads(fake_decrypt(_unwrap(snap.catalog_body), "B"))
        assert {row["username"] for row in catalog} == {
            "alice", "bob@example.com", "Jürgen", "7",
        }
        assert set(catalog[0]) == {"domain", "path", "username", "username_normalized"}

    def test_catalog_preserves_build_order(self, store: Path, engine):
        snap = SnapshotAssembler(store, engine).assemble()
        catalog = json.loads(fake_decrypt(_unwrap(snap.catalog_body), "A"))
        expected = [e.model_dump() for e in build_catalog(store).entries]
        assert catalog == expected

    def test_catalog_is_utf8(self, store: Path, engine):
        snap = SnapshotAssembler(store, engine).assemble()
        raw = fake_decrypt(_unwrap(snap.catalog_body), "A")
        assert "Jürgen".encode("utf-8") in raw

    def test_secret_bodies_are_reencoded_raw_secrets(self, store: Path, engine):
        snap = SnapshotAssembler(store, engine).assemble()
        build = build_catalog(store)

        assert set(snap.secret_bodies) == set(build.secrets)
        for ident, raw in build.secrets.items():
            assert unarmor(_unwrap(snap.secret_bodies[ident])) == raw

    def test_every_secret_reencoded_once(self, store: Path, engine):
        SnapshotAssembler(store, engine).assemble()
        assert engine.reencode_calls == len(SECRETS)

    def test_rebuild_is_semantically_identical(self, store: Path, engine):
        assembler = SnapshotAssembler(store, engine)
        first, second = assembler.assemble(), assembler.assemble()

        assert set(first.secret_bodies) == set(second.secret_bodies)
        assert fake_decrypt(_unwrap(first.catalog_body), "A") == fake_decrypt(
            _unwrap(second.catalog_body), "A"
        )
        for ident in first.secret_bodies:
            assert unarmor(_unwrap(first.secret_bodies[ident])) == unarmor(
                _unwrap(second.secret_bodies[ident])
            )

    def test_catalog_encryption_failure_aborts(self, store: Path, engine):
        engine.fail_encrypt = True
        with pytest.raises(EncryptionError, match="index encrypt failed"):
            SnapshotAssembler(store, engine).assemble()

    def test_single_reencode_failure_aborts(self, store: Path, engine):
        engine.fail_reencode_on = {SECRETS["bank/7.gpg"]}
        with pytest.raises(EncryptionError, match="enarmor failed for bank/7"):
            SnapshotAssembler(store, engine).assemble()

    def test_parallel_reencode(self, store: Path, engine):
        snap = SnapshotAssembler(store, engine, workers=4).assemble()
        assert len(snap) == len(SECRETS)
        assert unarmor(_unwrap(snap.secret_bodies[ALICE])) == SECRETS["social/example.com/alice.gpg"]

    def test_parallel_failure_aborts(self, store: Path, engine):
        engine.fail_reencode_on = {SECRETS["social/example.com/alice.gpg"]}
        with pytest.raises(EncryptionError):
            SnapshotAssembler(store, engine, workers=4).assemble()

    def test_builder_errors_propagate(self, tmp_path: Path, engine):
        (tmp_path / "empty").mkdir()
        with pytest.raises(ConfigurationError):
            SnapshotAssembler(tmp_path / "empty", engine).assemble()
        assert engine.encrypt_calls == []

    def test_missing_store(self, tmp_path: Path, engine):
        with pytest.raises((ConfigurationError, BuildError)):
            SnapshotAssembler(tmp_path / "nope", engine).assemble()


class TestSnapshot:
    def test_secret_bodies_are_read_only(self):
        snap = Snapshot(catalog_body="{}", secret_bodies={ALICE: "body"})
        with pytest.raises(TypeError):
            snap.secret_bodies[ALICE] = "other"

    def test_detached_from_source_dict(self):
        source = {ALICE: "body"}
        snap = Snapshot(catalog_body="{}", secret_bodies=source)
        source.clear()
        assert snap.lookup(ALICE) == "body"

    def test_frozen(self):
        snap = Snapshot(catalog_body="{}", secret_bodies={})
        with pytest.raises(AttributeError):
            snap.catalog_body = "x"

    def test_lookup_miss(self):
        snap = Snapshot(catalog_body="{}", secret_bodies={})
        assert snap.lookup(ALICE) is None
