"""
Pydantic models for identities, catalog rows and incoming requests.

The catalog row field names (domain, path, username,
username_normalized) are what companion clients parse. Do not rename.
"""

from __future__ import annotations

import math
import posixpath
from decimal import Decimal
from typing import Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr


class SecretIdentity(BaseModel):
    """The (group path, account name) pair addressing one secret.

    Hashable so it can key the snapshot's body map. Normalized names are
    a search aid and never part of identity.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    username: str

    @property
    def domain(self) -> str:
        """Last segment of the group path."""
        return posixpath.basename(self.path)

    def __str__(self) -> str:
        return f"{self.path}/{self.username}"


class CatalogEntry(BaseModel):
    """One row of the catalog sent (encrypted) to clients."""

    domain: str
    path: str
    username: str
    username_normalized: str = ""

    @classmethod
    def from_identity(cls, identity: SecretIdentity, normalized: str) -> CatalogEntry:
        return cls(
            domain=identity.domain,
            path=identity.path,
            username=identity.username,
            username_normalized=normalized,
        )


def format_number(value: Union[int, float]) -> str:
    """Render a JSON number as the account name it stands for.

    The value is taken as an IEEE-754 double and written with the
    shortest digits that round-trip, without exponent or trailing
    zeros: ``7`` -> ``"7"``, ``2.50`` -> ``"2.5"``, ``1e21`` ->
    ``"1000000000000000000000"``.

    Raises:
        ValueError: For NaN, infinities, or integers too large for a double.
    """
    try:
        number = float(value)
    except OverflowError as exc:
        raise ValueError(f"number out of range: {value}") from exc
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"number out of range: {value}")

    text = format(Decimal(repr(number)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class SecretRequest(BaseModel):
    """Body of a ``POST /secret/`` request.

    ``username`` is a tagged variant: text is used as is, numbers go
    through :func:`format_number`. Booleans, null and containers are
    rejected by the strict types.
    """

    path: StrictStr = ""
    username: Union[StrictStr, StrictInt, StrictFloat]

    @property
    def account_name(self) -> str:
        """Canonical text form of ``username``."""
        if isinstance(self.username, str):
            return self.username
        return format_number(self.username)

    def identity(self) -> SecretIdentity:
        return SecretIdentity(path=self.path, username=self.account_name)
