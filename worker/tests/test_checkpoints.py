import json

from daycare_sync.core.checkpoints import CheckpointStore


def test_save_load_clear(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoints")
    assert store.load("licensing") is None

    store.save("licensing", {"page": 4})
    assert store.load("licensing") == {"page": 4}
    saved = json.loads((tmp_path / "checkpoints" / "licensing.json").read_text(encoding="utf-8"))
    assert saved["source"] == "licensing"

    store.clear("licensing")
    assert store.load("licensing") is None
    store.clear("licensing")


def test_unreadable_checkpoint_is_ignored(tmp_path, caplog):
    (tmp_path / "places.json").write_text("{not json", encoding="utf-8")
    with caplog.at_level("WARNING"):
        assert CheckpointStore(tmp_path).load("places") is None
    assert "Ignoring unreadable checkpoint" in caplog.text
