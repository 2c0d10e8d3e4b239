"""Tests for the credential record and key-value stores."""

import json
import logging
import os
import platform
import stat

import pytest

from conftest import make_entry
from otpvault import config, utils
from otpvault.errors import InvalidParameter, InvalidSecretKey, UnsupportedAlgorithm
from otpvault.storage import (
    Algorithm,
    CredentialEntry,
    JsonFileStore,
    MemoryStore,
    OtpKind,
    load_entries,
)


class TestCredentialEntry:
    """Validation and normalization of a single account."""

    def test_defaults(self):
        entry = make_entry()
        assert entry.kind is OtpKind.TOTP
        assert entry.algorithm is Algorithm.SHA1
        assert (entry.digits, entry.period, entry.counter) == (6, 30, 0)
        assert len(entry.id) == 32

    def test_secret_uppercased(self):
        assert make_entry(secret="jbswy3dpehpk3pxp").secret == "JBSWY3DPEHPK3PXP"

    @pytest.mark.parametrize("secret", ["", "ABC1", "JBSW Y3DP", "JBSWY3DP=X"])
    def test_invalid_secret(self, secret):
        with pytest.raises(InvalidSecretKey):
            make_entry(secret=secret)

    def test_needs_issuer_or_account(self):
        with pytest.raises(InvalidParameter):
            CredentialEntry(secret="JBSWY3DPEHPK3PXP")

    @pytest.mark.parametrize("field,value", [
        ("digits", 3), ("digits", 11), ("digits", True), ("period", 0), ("period", 301),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(InvalidParameter):
            make_entry(**{field: value})

    def test_totp_ignores_counter(self):
        assert make_entry(counter=9).counter == 0

    def test_hotp_ignores_period(self):
        entry = make_entry(kind=OtpKind.HOTP, period=60, counter=4)
        assert (entry.period, entry.counter) == (30, 4)

    def test_counter_fits_eight_bytes(self):
        entry = make_entry(kind=OtpKind.HOTP, counter=config.MAX_COUNTER)
        assert entry.counter == 2**64 - 1
        with pytest.raises(InvalidParameter):
            make_entry(kind=OtpKind.HOTP, counter=2**64)
        with pytest.raises(InvalidParameter):
            make_entry(kind=OtpKind.HOTP, counter=-1)

    def test_unsupported_algorithm(self):
        with pytest.raises(UnsupportedAlgorithm):
            make_entry(algorithm="MD5")

    def test_dict_round_trip(self):
        entry = make_entry(kind=OtpKind.HOTP, counter=3, algorithm=Algorithm.SHA512, pinned=True, folder="work")
        data = entry.to_dict()
        assert data["kind"] == "HOTP"
        assert data["algorithm"] == "SHA512"
        assert CredentialEntry.from_dict(json.loads(json.dumps(data))) == entry

    def test_from_legacy_record(self):
        entry = CredentialEntry.from_dict({
            "hash": "abc123", "type": 2, "algorithm": 2, "secret": "JBSWY3DPEHPK3PXP",
            "account": "legacy", "counter": "7",
        })
        assert entry.id == "abc123"
        assert entry.kind is OtpKind.HOTP
        assert entry.algorithm is Algorithm.SHA256
        assert entry.counter == 7

    def test_record_without_id_gets_stable_id(self):
        record = {"secret": "jbswy3dpehpk3pxp", "issuer": "Acme", "account": "bob"}
        first = CredentialEntry.from_dict(dict(record))
        second = CredentialEntry.from_dict(dict(record))
        assert first.id == second.id
        assert len(first.id) == 32
        assert CredentialEntry.from_dict(dict(record, account="eve")).id != first.id

    @pytest.mark.parametrize("record", [
        {"type": 9, "secret": "JBSWY3DPEHPK3PXP", "account": "a"},
        {"kind": "MOTP", "secret": "JBSWY3DPEHPK3PXP", "account": "a"},
        {"algorithm": 7, "secret": "JBSWY3DPEHPK3PXP", "account": "a"},
        {"digits": "six", "secret": "JBSWY3DPEHPK3PXP", "account": "a"},
    ])
    def test_from_dict_rejects_bad_fields(self, record):
        with pytest.raises((InvalidParameter, UnsupportedAlgorithm)):
            CredentialEntry.from_dict(record)


class TestMemoryStore:
    """In-process store semantics."""

    def test_get_returns_existing_keys_only(self):
        store = MemoryStore({"a": 1})
        assert store.get(["a", "b"]) == {"a": 1}
        assert store.get_value("b", "dflt") == "dflt"

    def test_values_are_copied(self):
        store = MemoryStore()
        value = {"list": [1]}
        store.set({"k": value})
        value["list"].append(2)
        store.get_value("k")["list"].append(3)
        assert store.get_value("k") == {"list": [1]}

    def test_remove(self):
        store = MemoryStore({"a": 1, "b": 2})
        store.remove(["a", "missing"])
        assert store.get(["a", "b"]) == {"b": 2}


class TestJsonFileStore:
    """File-backed store."""

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "sub" / "store.json")
        JsonFileStore(path).set({"entries": [], "UserSettings": {"offset": 3}})
        assert JsonFileStore(path).get_value("UserSettings") == {"offset": 3}
        assert not os.path.exists(path + ".tmp")

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileStore(str(tmp_path / "none.json")).get(["entries"]) == {}

    def test_remove(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "store.json"))
        store.set({"a": 1, "b": 2})
        store.remove(["a"])
        with open(tmp_path / "store.json", encoding="utf-8") as f:
            assert json.load(f) == {"b": 2}

    def test_rejects_non_object_document(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            JsonFileStore(str(path)).get(["a"])

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(str(path)).set({"a": 1})
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


    def test_warns_when_owner_acl_cannot_be_applied(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setattr(utils, "WINDOWS_SECURITY_AVAILABLE", False)
        monkeypatch.setattr(platform, "system", lambda: "Windows")
        path = tmp_path / "store.json"
        with caplog.at_level(logging.WARNING, logger="otpvault.storage"):
            JsonFileStore(str(path)).set({"a": 1})
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1}
        assert "Failed to set secure file permissions" in caplog.text
        assert utils.restrict_to_owner(str(path)) is False


class TestLoadEntries:
    """Reading the persisted entry list."""

    def test_skips_invalid_records(self):
        good = make_entry().to_dict()
        store = MemoryStore({config.KEY_ENTRIES: [good, {"secret": "!!", "account": "x"}]})
        entries = load_entries(store)
        assert [e.id for e in entries] == [good["id"]]

    def test_empty_store(self):
        assert load_entries(MemoryStore()) == []
