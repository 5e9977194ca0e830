"""Client side of the encrypted archive.

Everything that touches plaintext or keys lives here: key derivation,
encryption, the local mirror, persistence, and the sync engine. The server
only ever sees what RemoteStore sends it.
"""

from aica.client.errors import (
    AicaError,
    AuthError,
    AuthenticationError,
    ConflictError,
    CryptoError,
    OrgNotFoundError,
    PayloadDecodeError,
    StorageError,
    SyncFailedError,
    TransportError,
    ValidationError,
)
from aica.client.mirror import LocalMirror
from aica.client.remote import RemoteStore, create_http_client
from aica.client.session import VaultSession
from aica.client.sync import SyncEngine, SyncProgress, SyncState

__all__ = [
    "AicaError",
    "AuthError",
    "AuthenticationError",
    "ConflictError",
    "CryptoError",
    "LocalMirror",
    "OrgNotFoundError",
    "PayloadDecodeError",
    "RemoteStore",
    "StorageError",
    "SyncEngine",
    "SyncFailedError",
    "SyncProgress",
    "SyncState",
    "TransportError",
    "ValidationError",
    "VaultSession",
    "create_http_client",
]
