import json

from services.preferences import JsonFilePreferenceStore, MemoryPreferenceStore


class TestMemoryPreferenceStore:
    def test_get_default(self):
        store = MemoryPreferenceStore()
        assert store.get("missing") is None
        assert store.get("missing", False) is False

    def test_initial_values_are_copied(self):
        initial = {"hasShownVoteDialog": True}
        store = MemoryPreferenceStore(initial)
        store.set("hasShownVoteDialog", False)

        assert initial["hasShownVoteDialog"] is True


class TestJsonFilePreferenceStore:
    """Test file backed preferences."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "prefs.json"

        JsonFilePreferenceStore(path).set("hasShownVoteDialog", True)

        assert JsonFilePreferenceStore(path).get("hasShownVoteDialog") is True
        assert json.loads(path.read_text()) == {"hasShownVoteDialog": True}

    def test_no_temp_files_left(self, tmp_path):
        path = tmp_path / "prefs.json"
        store = JsonFilePreferenceStore(path)
        store.set("a", 1)
        store.set("b", 2)

        assert [p.name for p in tmp_path.iterdir()] == ["prefs.json"]

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "prefs.json"
        path.write_text("{not json")

        store = JsonFilePreferenceStore(path)

        assert store.get("hasShownVoteDialog", False) is False

    def test_non_object_file_ignored(self, tmp_path):
        path = tmp_path / "prefs.json"
        path.write_text("[1, 2, 3]")

        assert JsonFilePreferenceStore(path).get("x") is None
