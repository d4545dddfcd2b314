import pytest

from storefront.observability.metrics import (
    increment_counter,
    set_gauge,
    observe_latency,
    timed,
    get_counter_value,
    get_metrics_snapshot,
    record_event,
    reset_metrics,
)


def test_metrics_snapshot_accumulates_counts():
    reset_metrics()
    increment_counter("test_counter")
    increment_counter("test_counter", amount=2, labels={"route": "/api/product/"})
    set_gauge("test_gauge", 5)
    observe_latency("test_latency", 100, labels={"route": "/api/product/"})
    observe_latency("test_latency", 50, labels={"route": "/api/product/"})

    snapshot = get_metrics_snapshot()
    counters = snapshot["counters"]["test_counter"]
    assert len(counters) == 2

    gauges = snapshot["gauges"]["test_gauge"]
    assert gauges[0]["value"] == 5

    hist = snapshot["histograms"]["test_latency"][0]["stats"]
    assert hist["count"] == 2
    assert hist["max"] == 100
    assert hist["avg"] == 75


def test_counter_lookup_is_label_sensitive():
    reset_metrics()
    increment_counter("orders_created_total")
    increment_counter("review_mutations_total", labels={"action": "created"})

    assert get_counter_value("orders_created_total") == 1
    assert get_counter_value("review_mutations_total", labels={"action": "created"}) == 1
    assert get_counter_value("review_mutations_total", labels={"action": "deleted"}) == 0
    assert get_counter_value("review_mutations_total") == 0


def test_timed_records_even_when_the_block_raises():
    reset_metrics()
    with timed("block_ms"):
        pass
    with pytest.raises(RuntimeError):
        with timed("block_ms"):
            raise RuntimeError("boom")

    stats = get_metrics_snapshot()["histograms"]["block_ms"][0]["stats"]
    assert stats["count"] == 2
    assert stats["min"] >= 0


def test_event_buffer_is_bounded():
    reset_metrics()
    for index in range(150):
        record_event("tick", {"index": index})

    events = get_metrics_snapshot()["events"]
    assert len(events) == 100
    assert events[0]["payload"]["index"] == 50
