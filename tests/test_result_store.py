import time

from ideagen.models import GenerationResult, Idea, IdeaSelection, ProgressSample
from ideagen.result_store import ResultStore, ResultStoreCache


def completed_result():
    result = GenerationResult()
    result.attempts = 1
    result.succeed({"tam": "2B"})
    return result


def test_new_store_is_empty():
    store = ResultStore("market-analysis")
    assert store.is_empty
    assert store.reset() is False


def test_publish_and_snapshot():
    store = ResultStore("market-analysis")
    idea = Idea(title="Pet-sitting app", description="Sitters on demand", id="i1")
    store.progress = ProgressSample(percent=100.0, phase_label="Done!")

    store.publish(completed_result(), idea)
    snap = store.snapshot()

    assert snap["feature"] == "market-analysis"
    assert snap["result"] == {"status": "success", "artifact": {"tam": "2B"}, "attempts": 1, "error_message": None}
    assert snap["idea"] == {"title": "Pet-sitting app", "description": "Sitters on demand", "id": "i1"}
    assert snap["progress"] == {"percent": 100.0, "phase_label": "Done!"}
    assert snap["view"]["active_tab"] == "overview"


def test_view_changes_and_extra_keys():
    store = ResultStore("pitch-deck")

    store.set_view(page=3, fullscreen=True, slide_theme="dark")

    assert store.view.page == 3
    assert store.view.fullscreen is True
    assert store.view.extra == {"slide_theme": "dark"}
    assert not store.is_empty


def test_reset_clears_everything_once():
    store = ResultStore("market-analysis")
    store.selection = IdeaSelection(custom_text="Drone delivery", use_custom=True)
    store.publish(completed_result(), Idea(title="Custom idea", description="Drone delivery"))
    store.set_view(active_tab="risks")

    assert store.reset() is True
    assert store.is_empty
    assert store.selection == IdeaSelection()
    assert store.reset() is False


def test_cache_returns_same_store_until_expiry():
    cache = ResultStoreCache(ttl_seconds=60)

    first = cache.get("u1", "market-analysis")
    assert cache.get("u1", "market-analysis") is first
    assert cache.get("u2", "market-analysis") is not first
    assert cache.peek("u1", "market-analysis") is first
    assert cache.peek("u3", "market-analysis") is None


def test_cache_sweeps_expired_stores():
    cache = ResultStoreCache(ttl_seconds=0)
    store = cache.get("u1", "market-analysis")
    time.sleep(0.01)

    assert cache.sweep_expired() == 1
    assert cache.peek("u1", "market-analysis") is None
    assert cache.get("u1", "market-analysis") is not store
