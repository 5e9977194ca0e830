"""Tests for exporter JSON parsing and encrypted upload."""

import json

import pytest

from aica.client.codec import decrypt_conversation, from_base64
from aica.client.errors import AuthError, ValidationError
from aica.client.models import OrgCredentials
from aica.client.uploader import Uploader, load_export, parse_export
from tests.helpers import make_conversation


def _export(*external_ids: str) -> str:
    return json.dumps([make_conversation(e).model_dump(mode="json") for e in external_ids])


class TestParseExport:
    def test_list_of_conversations(self):
        conversations = parse_export(_export("a", "b"))

        assert [c.external_id for c in conversations] == ["a", "b"]
        assert conversations[0].messages[0].role == "user"

    def test_single_object(self):
        raw = make_conversation("solo").model_dump_json()

        assert [c.external_id for c in parse_export(raw)] == ["solo"]

    def test_not_json(self):
        with pytest.raises(ValidationError, match="not valid JSON"):
            parse_export("{nope")

    def test_invalid_entry_names_index(self):
        document = json.loads(_export("a"))
        document.append({"platform": "chatgpt"})

        with pytest.raises(ValidationError, match="Entry 1"):
            parse_export(json.dumps(document))

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ValidationError):
            load_export(tmp_path / "missing.json")

    def test_load_file(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(_export("a"))

        assert len(load_export(path)) == 1


class TestUploader:
    @pytest.mark.asyncio
    async def test_upload_many_counts_created_and_deduplicated(
        self, remote, org_credentials, derived_keys
    ):
        uploader = Uploader(remote, org_credentials, derived_keys.encryption_key)
        conversations = parse_export(_export("a", "b"))

        first = await uploader.upload_many(conversations)
        second = await uploader.upload_many(conversations)

        assert (first.created, first.deduplicated, first.total) == (2, 0, 2)
        assert (second.created, second.deduplicated, second.total) == (0, 2, 2)

    @pytest.mark.asyncio
    async def test_uploaded_row_decrypts_to_original(self, remote, org_credentials, derived_keys):
        conversation = make_conversation("a")
        await Uploader(remote, org_credentials, derived_keys.encryption_key).upload(conversation)

        row = (await remote.fetch_page(org_credentials)).conversations[0]
        decrypted = decrypt_conversation(
            from_base64(row.ciphertext), from_base64(row.nonce), derived_keys.encryption_key
        )

        assert decrypted == conversation
        assert row.platform == "chatgpt"
        assert row.external_id == "a"

    @pytest.mark.asyncio
    async def test_bad_credentials_stop_the_upload(self, remote, org_credentials, derived_keys):
        wrong = OrgCredentials(slug="acme", token="0" * 64)
        uploader = Uploader(remote, wrong, derived_keys.encryption_key)

        with pytest.raises(AuthError):
            await uploader.upload_many(parse_export(_export("a")))
