import pytest
from pydantic import ValidationError

from personalbot.services.profile_store import ProfileStore


def test_loads_backing_file(profiles):
    profile = profiles.get()
    assert profile.name == "Arjun Mehta"
    assert profiles.primary_vehicle().registration == "MH02AB1234"
    assert profiles.family_size() == 4
    assert profiles.budget_range() == "₹15k-30k/year"


def test_missing_file_falls_back_to_default(tmp_path):
    store = ProfileStore(tmp_path / "absent.json")
    assert store.get().name == "User"
    assert store.primary_vehicle().model == "City"


def test_invalid_file_falls_back_to_default(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text('{"age": "unknown"}', encoding="utf-8")
    assert ProfileStore(path).get().name == "User"


def test_replace_validates(profiles):
    with pytest.raises(ValidationError):
        profiles.replace({"age": "forty"})
    assert profiles.get().name == "Arjun Mehta"

    profiles.replace({"name": "Priya Mehta", "age": 39})
    assert profiles.get().age == 39
    assert profiles.reload().name == "Arjun Mehta"


def test_summary_is_compact(profiles):
    summary = profiles.summary()
    assert summary["cars"][0] == "Honda City 2021 ZX CVT (MH02AB1234)"
    assert summary["health_status"] == "Non-smoker"
    assert summary["family_size"] == 4
