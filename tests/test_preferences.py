import logging

import pytest
from pydantic import ValidationError

from recruitflow.preferences import Preferences, PreferenceStore


def test_missing_file_gives_defaults(tmp_path):
    store = PreferenceStore(tmp_path / "prefs.json")
    assert store.load() == Preferences()


def test_update_merges_and_persists(tmp_path):
    store = PreferenceStore(tmp_path / "nested" / "prefs.json")
    store.update(email_method="native")
    store.update(theme="light")

    reloaded = PreferenceStore(tmp_path / "nested" / "prefs.json").load()
    assert reloaded.email_method == "native"
    assert reloaded.theme == "light"
    assert reloaded.fallback_to_native is True


def test_corrupt_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "prefs.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        assert PreferenceStore(path).load() == Preferences()
    assert "Ignoring unreadable preferences file" in caplog.text


def test_invalid_value_rejected(tmp_path):
    store = PreferenceStore(tmp_path / "prefs.json")
    with pytest.raises(ValidationError):
        store.update(call_method="carrier-pigeon")
