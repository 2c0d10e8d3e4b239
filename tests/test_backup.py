"""Tests for the backup envelope and backup file naming."""

import datetime
import json

import pytest

from conftest import make_entry
from otpvault.backup import VaultEnvelope, backup_filename, is_backup_name
from otpvault.crypto import VaultCipher
from otpvault.errors import RemoteFormatError


def test_backup_filename():
    when = datetime.datetime(2024, 3, 5, 7, 8, 9, tzinfo=datetime.timezone.utc)
    assert backup_filename(when) == "auths-backup-20240305-070809.json"


@pytest.mark.parametrize("name,expected", [
    ("auths-backup-20240305-070809.json", True),
    ("old-auths-backup.json", True),
    ("auths-backup-20240305-070809.json.bak", False),
    ("notes.json", False),
])
def test_is_backup_name(name, expected):
    assert is_backup_name(name) is expected


class TestVaultEnvelope:
    """Building and opening backup envelopes."""

    def test_plain_envelope(self):
        entries = [make_entry(), make_entry(issuer="Other")]
        data = json.loads(VaultEnvelope.build(entries, timestamp=1234).to_json())
        assert data == {"version": "1.0", "timestamp": 1234, "accounts": [e.to_dict() for e in entries]}
        assert VaultEnvelope.from_dict(data).open() == entries

    def test_encrypted_envelope(self):
        entries = [make_entry()]
        data = json.loads(VaultEnvelope.build(entries, "pw", timestamp=99).to_json())
        assert data["encrypted"] is True
        assert data["format"] == "v1"
        assert "accounts" not in data
        assert "JBSWY3DPEHPK3PXP" not in data["data"]
        assert VaultEnvelope.from_json(json.dumps(data)).open("pw") == entries

    def test_wrong_password(self):
        text = VaultEnvelope.build([make_entry()], "pw").to_json()
        with pytest.raises(RemoteFormatError, match="Wrong password or corrupted file"):
            VaultEnvelope.from_json(text).open("nope")

    def test_encrypted_without_password(self):
        text = VaultEnvelope.build([make_entry()], "pw").to_json()
        with pytest.raises(RemoteFormatError):
            VaultEnvelope.from_json(text).open()

    def test_untagged_encrypted_file_is_classified(self):
        blob = VaultCipher().encrypt(json.dumps([make_entry().to_dict()]), "pw")
        envelope = VaultEnvelope.from_dict({"version": "1.0", "timestamp": 1, "encrypted": True, "data": blob})
        assert envelope.format == "v1"
        assert len(envelope.open("pw")) == 1

    @pytest.mark.parametrize("text", [
        "not json",
        "[]",
        '{"timestamp": "yesterday", "accounts": []}',
        '{"timestamp": 1}',
        '{"timestamp": 1, "encrypted": true, "data": 5}',
    ])
    def test_malformed(self, text):
        with pytest.raises(RemoteFormatError):
            VaultEnvelope.from_json(text)

    def test_invalid_account_record(self):
        envelope = VaultEnvelope.from_json('{"timestamp": 1, "accounts": [{"secret": "!!", "account": "x"}]}')
        with pytest.raises(RemoteFormatError):
            envelope.open()

    def test_accepts_bytes(self):
        text = VaultEnvelope.build([make_entry()], timestamp=5).to_json().encode("utf-8")
        assert VaultEnvelope.from_json(text).timestamp == 5
