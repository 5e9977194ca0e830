"""Encrypt and upload exported conversations.

The chat exporter writes JSON: either one conversation object or a list of
them. Each conversation is validated, serialized, encrypted under a fresh
nonce, and posted. The server dedups on (platform, external_id), so
re-uploading an export is safe and reported as deduplicated.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import pydantic

from aica.client.codec import encrypt_conversation
from aica.client.errors import ValidationError
from aica.client.models import Conversation, OrgCredentials
from aica.client.remote import RemoteStore
from aica.logging import get_logger
from aica.schemas.conversation import ImportResultOut

logger = get_logger(__name__)


@dataclass
class UploadSummary:
    created: int = 0
    deduplicated: int = 0

    @property
    def total(self) -> int:
        return self.created + self.deduplicated


def parse_export(raw: str | bytes) -> list[Conversation]:
    """Parse exporter JSON into conversations.

    Raises:
        ValidationError: Not JSON, or an entry is not a valid conversation.
    """
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Export is not valid JSON: {e.msg}") from e

    items = document if isinstance(document, list) else [document]
    conversations = []
    for index, item in enumerate(items):
        try:
            conversations.append(Conversation.model_validate(item))
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Entry {index} is not a valid conversation ({e.error_count()} errors)"
            ) from e
    return conversations


def load_export(path: Path | str) -> list[Conversation]:
    """Read and parse an exporter JSON file."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e.strerror}") from e
    return parse_export(raw)


class Uploader:
    """Encrypts conversations with the org key and posts them."""

    def __init__(self, remote: RemoteStore, credentials: OrgCredentials, encryption_key: bytes):
        self.remote = remote
        self.credentials = credentials
        self._encryption_key = encryption_key

    async def upload(self, conversation: Conversation) -> ImportResultOut:
        payload = encrypt_conversation(conversation, self._encryption_key)
        return await self.remote.upload_conversation(
            self.credentials,
            payload,
            platform=conversation.platform,
            external_id=conversation.external_id,
        )

    async def upload_many(self, conversations: Iterable[Conversation]) -> UploadSummary:
        """Upload conversations one at a time, in order.

        Stops at the first transport or auth failure; conversations already
        posted stay on the server and dedup on the next attempt.
        """
        summary = UploadSummary()
        for conversation in conversations:
            result = await self.upload(conversation)
            if result.deduplicated:
                summary.deduplicated += 1
            else:
                summary.created += 1

        logger.info(
            "upload_completed",
            created=summary.created,
            deduplicated=summary.deduplicated,
        )
        return summary
