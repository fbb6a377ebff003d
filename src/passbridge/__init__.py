"""
passbridge — a read-only HTTP bridge to a pass(1) password store.

Secrets stay encrypted end to end. The bridge never holds a private key:
it re-armors what is already on disk, encrypts the catalog for the
store's own recipients, and serves precomputed bodies to companion
clients.
"""

import os

__version__ = "0.3.0"
__author__ = "passbridge contributors"

BRIDGE_HOME = os.environ.get("PASSBRIDGE_HOME", "~/.passbridge")
PASSWORD_STORE = os.environ.get("PASSWORD_STORE_DIR", "~/.password-store")
