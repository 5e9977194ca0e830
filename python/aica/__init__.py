"""AICA: end-to-end encrypted shared archive of AI chat exports.

- aica.client: key derivation, codec, local mirror, persistence, sync engine
- aica.app: FastAPI blob store holding only ciphertext
"""

__version__ = "0.1.0"
