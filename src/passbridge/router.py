"""
Request router — validation and O(1) lookups against the live Snapshot.

No filesystem access and no crypto happens here; every body handed out
was computed at build time. Each operation reads the registry exactly
once, so a request can never mix state from two builds.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from .errors import RequestValidationError, UnknownSecretError
from .models import SecretRequest
from .registry import SnapshotRegistry

logger = logging.getLogger("passbridge.router")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def parse_json(body: bytes) -> Any:
    """Decode a request body as strict JSON.

    Raises:
        RequestValidationError: Empty body, bad encoding or malformed JSON.
    """
    if not body:
        raise RequestValidationError("empty request body")
    try:
        return json.loads(body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        raise RequestValidationError(f"malformed JSON: {exc}") from exc


def _validation_message(exc: ValidationError) -> str:
    for err in exc.errors():
        loc = err.get("loc") or ()
        if loc and loc[0] == "username":
            return "bad username"
        if loc and loc[0] == "path":
            return "bad path"
    return "request body must be a JSON object"


class RequestRouter:
    """Answers catalog and secret requests from the registry's Snapshot.

    Args:
        registry: Source of the live Snapshot.
    """

    def __init__(self, registry: SnapshotRegistry):
        self.registry = registry

    def fetch_catalog(self, body: bytes) -> str:
        """Return the enveloped, encrypted catalog.

        The body content is ignored, but it must be well-formed JSON.
        """
        parse_json(body)
        return self.registry.current().catalog_body

    def fetch_secret(self, body: bytes) -> str:
        """Return the enveloped, armored secret named by ``body``.

        Raises:
            RequestValidationError: Malformed body or username type.
            UnknownSecretError: No such secret in the live Snapshot.
        """
        data = parse_json(body)
        try:
            request = SecretRequest.model_validate(data)
            identity = request.identity()
        except ValidationError as exc:
            raise RequestValidationError(_validation_message(exc)) from exc
        except ValueError as exc:
            # Numbers a double cannot hold.
            raise RequestValidationError("bad username") from exc

        secret = self.registry.current().lookup(identity)
        if secret is None:
            logger.debug("Lookup miss for %r", identity.path)
            raise UnknownSecretError()
        return secret
