"""Tests for the HTTP surface, against a live server on a free port."""

from __future__ import annotations

import http.client
import json
import threading
from pathlib import Path

import pytest

from passbridge.armor import unarmor
from passbridge.registry import SnapshotRegistry
from passbridge.router import RequestRouter
from passbridge.server import make_server, media_type
from passbridge.snapshot import SnapshotAssembler

from conftest import SECRETS, fake_decrypt, pgp_blob


@pytest.fixture
def live(store: Path, engine):
    """Yield (host, port, registry) for a running server."""
    registry = SnapshotRegistry(SnapshotAssembler(store, engine).assemble())
    server = make_server(RequestRouter(registry), port=0, max_body_bytes=4096)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    host, port = server.server_address[:2]
    try:
        yield host, port, registry
    finally:
        server.shutdown()
        server.server_close()
        t.join(timeout=5)


def _request(live, method, path, body=None, content_type="application/json", headers=None):
    host, port, _ = live
    conn = http.client.HTTPConnection(host, port, timeout=5)
    hdrs = dict(headers or {})
    if content_type is not None:
        hdrs["Content-Type"] = content_type
    data = json.dumps(body).encode() if isinstance(body, (dict, list)) else body
    try:
        conn.request(method, path, body=data, headers=hdrs)
        resp = conn.getresponse()
        return resp.status, resp, resp.read()
    finally:
        conn.close()


class TestMediaType:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("application/json", "application/json"),
            ("Application/JSON; charset=utf-8", "application/json"),
            ("text/plain", "text/plain"),
            ("application/json;", "application/json"),
            ("application/json; charset", None),
            ("application/json; =utf-8", None),
            ("application/json;; charset=utf-8", None),
            ("application/js on", None),
            ("json", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header, expected):
        assert media_type(header) == expected


class TestCatalogRoute:
    def test_returns_encrypted_catalog(self, live):
        status, resp, body = _request(live, "POST", "/secrets/", {})
        assert status == 200
        assert resp.getheader("Content-Type") == "application/json"
        armored = json.loads(body)["response"]
        catalog = json.loads(fake_decrypt(armored, "A"))
        assert {row["username"] for row in catalog} >= {"alice", "7"}

    def test_body_is_precomputed_verbatim(self, live):
        _, _, body = _request(live, "POST", "/secrets/", {"ignored": True})
        assert body.decode() == live[2].current().catalog_body

    def test_text_plain_is_415(self, live):
        status, _, body = _request(live, "POST", "/secrets/", b"{}", content_type="text/plain")
        assert status == 415
        assert "error" in json.loads(body)

    def test_missing_content_type_is_415(self, live):
        status, _, _ = _request(live, "POST", "/secrets/", b"{}", content_type=None)
        assert status == 415

    def test_charset_parameter_accepted(self, live):
        status, _, _ = _request(
            live, "POST", "/secrets/", {}, content_type="application/json; charset=utf-8"
        )
        assert status == 200

    def test_parameter_without_value_is_415(self, live):
        status, _, _ = _request(
            live, "POST", "/secrets/", {}, content_type="application/json; charset"
        )
        assert status == 415

    def test_malformed_body_is_400(self, live):
        status, _, body = _request(live, "POST", "/secrets/", b"{oops")
        assert status == 400
        assert "error" in json.loads(body)


class TestSecretRoute:
    def test_scenario_hit_and_miss(self, live):
        status, _, body = _request(
            live, "POST", "/secret/", {"path": "social/example.com", "username": "alice"}
        )
        assert status == 200
        armored = json.loads(body)["response"]
        assert unarmor(armored) == SECRETS["social/example.com/alice.gpg"]

        status, _, body = _request(
            live, "POST", "/secret/", {"path": "social/example.com", "username": "bob"}
        )
        assert status == 400
        assert json.loads(body) == {"error": "unknown secret"}

    def test_numeric_username(self, live):
        _, _, as_number = _request(live, "POST", "/secret/", {"path": "bank", "username": 7})
        _, _, as_text = _request(live, "POST", "/secret/", {"path": "bank", "username": "7"})
        assert as_number == as_text
        assert "response" in json.loads(as_number)

    def test_bad_username_type(self, live):
        status, _, body = _request(live, "POST", "/secret/", {"path": "bank", "username": False})
        assert status == 400
        assert json.loads(body) == {"error": "bad username"}

    def test_subtree_is_routed(self, live):
        status, _, _ = _request(
            live, "POST", "/secret/extra", {"path": "bank", "username": "7"}
        )
        assert status == 200


class TestMethodsAndPaths:
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH", "OPTIONS", "TRACE", "FOO"])
    def test_non_post_is_405(self, live, method):
        status, resp, _ = _request(live, method, "/secret/", {"path": "bank", "username": "7"})
        assert status == 405
        assert resp.getheader("Allow") == "POST"

    def test_get_secrets_is_405(self, live):
        status, resp, _ = _request(live, "GET", "/secrets/")
        assert status == 405
        assert resp.getheader("Allow") == "POST"

    def test_method_checked_before_content_type(self, live):
        status, _, _ = _request(live, "GET", "/secret/", b"x", content_type="text/plain")
        assert status == 405

    def test_head_has_no_body(self, live):
        status, resp, body = _request(live, "HEAD", "/secrets/")
        assert status == 405
        assert body == b""

    def test_bare_path_redirects(self, live):
        status, resp, _ = _request(live, "POST", "/secret", {})
        assert status == 301
        assert resp.getheader("Location") == "/secret/"

    def test_unknown_path_is_404(self, live):
        status, _, body = _request(live, "POST", "/nothing", {})
        assert status == 404
        assert "error" in json.loads(body)

    def test_body_too_large_is_413(self, live):
        status, _, _ = _request(live, "POST", "/secrets/", b"[" + b"1," * 4000 + b"1]")
        assert status == 413


class TestHotSwap:
    def test_replace_is_visible_to_next_request(self, live, store: Path, engine):
        carol = pgp_blob(b"carol")
        (store / "social" / "example.com" / "carol.gpg").write_bytes(carol)
        req = {"path": "social/example.com", "username": "carol"}

        status, _, _ = _request(live, "POST", "/secret/", req)
        assert status == 400

        live[2].replace(SnapshotAssembler(store, engine).assemble())
        status, _, body = _request(live, "POST", "/secret/", req)
        assert status == 200
        assert unarmor(json.loads(body)["response"]) == carol
