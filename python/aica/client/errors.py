"""Client-side error classes.

Taxonomy:
- AuthError: Missing/invalid credentials, unknown org. Never retried automatically.
- ValidationError: Malformed input rejected at the boundary (short password, bad slug).
- ConflictError: Unique resource already exists (org slug taken).
- CryptoError: Per-row decryption failure.
    - AuthenticationError: MAC check failed (tampered data, wrong key or nonce).
    - PayloadDecodeError: MAC ok but plaintext is not a valid conversation
      (protocol-version mismatch, not a crypto failure).
- TransportError: Network/HTTP failure. The current sync cycle aborts with the
  cursor unchanged; retrying later from the same cursor is safe.
- StorageError: Persistence adapter failure. The in-memory mirror stays usable.
- SyncFailedError: Every row in a sync session failed to decrypt.

Duplicate conversation uploads are not errors; they are reported through
UploadResult.deduplicated.
"""


class AicaError(Exception):
    """Base class for client errors.

    Attributes:
        message: Human-readable error message
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthError(AicaError):
    """Credentials rejected or organization unknown."""


class OrgNotFoundError(AuthError):
    """No organization exists for the slug."""


class ValidationError(AicaError):
    """Input rejected before any side effect."""


class ConflictError(AicaError):
    """Unique resource already exists."""


class CryptoError(AicaError):
    """Base class for decryption failures."""


class AuthenticationError(CryptoError):
    """Ciphertext failed authentication (MAC mismatch)."""


class PayloadDecodeError(CryptoError):
    """Authenticated plaintext could not be decoded into a conversation."""


class TransportError(AicaError):
    """Network or HTTP failure talking to the blob store.

    Attributes:
        status_code: HTTP status if a response was received
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(AicaError):
    """Persistence adapter failure (quota, unavailable, I/O)."""


class SyncFailedError(AicaError):
    """Every row processed in a sync session failed to decrypt.

    Attributes:
        failed: Number of rows that failed
        first_error: Message of the first failure, for diagnosis
    """

    def __init__(self, failed: int, first_error: str | None):
        self.failed = failed
        self.first_error = first_error
        super().__init__(f"Decryption failed for all {failed} conversations: {first_error}")
