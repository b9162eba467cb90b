import json

from bulletin_ai.llm_clients.delay_store import (
    MIN_DELAY_MS,
    DelayStore,
    JsonFileDelayPersistence,
    MemoryDelayPersistence,
)
from bulletin_ai.llm_clients.rate_governor import RateGovernor


def test_json_persistence_keeps_other_keys(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")

    persistence = JsonFileDelayPersistence(path)
    persistence.save({"google:gemini-2.5-flash": 7200})

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["theme"] == "dark"
    assert document["bulletinAI_adaptiveRateLimits"] == {"google:gemini-2.5-flash": 7200}
    assert persistence.load() == {"google:gemini-2.5-flash": 7200}


def test_json_persistence_accepts_string_encoded_entry(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"bulletinAI_adaptiveRateLimits": json.dumps({"m": 900})}), encoding="utf-8")
    assert JsonFileDelayPersistence(path).load() == {"m": 900}


def test_missing_file_loads_empty(tmp_path):
    assert JsonFileDelayPersistence(tmp_path / "absent.json").load() == {}


def test_corrupt_file_degrades_to_base_delays(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    store = DelayStore(lambda model_id: 2000, JsonFileDelayPersistence(path))
    assert store.load() == 0
    assert store.get("m").current_delay_ms == 2000

    # saving over a corrupt document replaces it
    store.set_delay("m", 3000)
    store.save()
    assert JsonFileDelayPersistence(path).load() == {"m": 3000}


def test_loaded_delays_are_clamped_and_malformed_entries_skipped():
    persistence = MemoryDelayPersistence({"big": 999999, "small": 1, "bad": "x", "ok": 1500})
    store = DelayStore(lambda model_id: 1000, persistence)
    assert store.load() == 3

    assert store.get("big").current_delay_ms == 5000
    assert store.get("small").current_delay_ms == MIN_DELAY_MS
    assert store.get("ok").current_delay_ms == 1500
    assert store.get("bad").current_delay_ms == 1000


def test_base_delay_never_below_minimum():
    store = DelayStore(lambda model_id: 100)
    state = store.get("fast")
    assert state.base_delay_ms == MIN_DELAY_MS
    assert state.current_delay_ms == MIN_DELAY_MS


def test_clear_forgets_persisted_entries_not_yet_touched():
    persistence = MemoryDelayPersistence({"a": 3000, "b": 4000})
    store = DelayStore(lambda model_id: 1000, persistence)
    store.load()

    store.clear("a")
    assert store.to_mapping() == {"b": 4000}
    store.clear()
    assert store.to_mapping() == {}


def test_save_failure_is_not_fatal():
    class Broken(MemoryDelayPersistence):
        def save(self, delays):
            raise OSError("disk full")

    store = DelayStore(lambda model_id: 1000, Broken())
    store.set_delay("m", 2000)
    store.save()
    assert store.get("m").current_delay_ms == 2000


def test_non_finite_delays_are_skipped(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        '{"bulletinAI_adaptiveRateLimits": {"google:x": NaN, "google:y": Infinity, "google:z": 2500}}',
        encoding="utf-8",
    )

    governor = RateGovernor(lambda model_id: 1000, JsonFileDelayPersistence(path))
    assert governor.current_delay("google:x") == 1000
    assert governor.current_delay("google:y") == 1000
    assert governor.current_delay("google:z") == 2500
