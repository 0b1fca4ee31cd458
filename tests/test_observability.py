import logging

from cardsync.infrastructure.observability import (Timer, current_log_context,
                                                   format_prometheus,
                                                   get_metrics_summary,
                                                   get_registry,
                                                   log_context,
                                                   record_target_result)
from cardsync.infrastructure.observability.logging import ContextualFormatter


def test_log_context_nests_and_restores():
    with log_context(operation_id="op-1", target=None):
        with log_context(target="3170"):
            assert current_log_context() == {"operation_id": "op-1", "target": "3170"}
        assert current_log_context() == {"operation_id": "op-1"}
    assert current_log_context() == {}


def test_formatter_appends_context_fields():
    formatter = ContextualFormatter("%(message)s")
    record = logging.LogRecord("cardsync", logging.INFO, __file__, 1, "fetched %s", (20,), None)

    with log_context(source="tcgcsv", target="3170"):
        line = formatter.format(record)

    assert line == "fetched 20 [source=tcgcsv target=3170]"
    assert formatter.format(record) == "fetched 20"


def test_target_results_feed_counters_and_histograms():
    record_target_result("tcgcsv", "completed", 0.2, 40)
    record_target_result("tcgcsv", "error", 1.5, 0)

    summary = get_metrics_summary()

    assert summary["counters"]["sync_targets_total"]["source=tcgcsv,state=completed"] == 1.0
    assert summary["counters"]["sync_records_upserted_total"]["source=tcgcsv"] == 40.0
    stats = summary["histograms"]["sync_target_duration_seconds"]["source=tcgcsv"]
    assert stats["count"] == 2


def test_prometheus_buckets_are_cumulative():
    histogram = get_registry().histogram("demo_seconds")
    for value in (0.02, 0.3, 7):
        histogram.observe(value)

    text = format_prometheus()

    assert 'demo_seconds_bucket{le="0.05"} 1' in text
    assert 'demo_seconds_bucket{le="0.5"} 2' in text
    assert 'demo_seconds_bucket{le="10"} 3' in text
    assert 'demo_seconds_bucket{le="+Inf"} 3' in text
    assert "demo_seconds_count 3" in text


def test_timer_records_elapsed_time():
    with Timer("block_seconds", labels={"step": "parse"}) as timer:
        pass

    assert timer.elapsed >= 0
    assert get_registry().histogram("block_seconds").get_stats({"step": "parse"})["count"] == 1


def test_json_formatter_includes_context():
    import json

    from cardsync.infrastructure.observability.logging import JsonFormatter

    record = logging.LogRecord("cardsync.sync", logging.WARNING, __file__, 1, "page cap hit", (), None)

    with log_context(operation_id="op-1"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["message"] == "page cap hit"
    assert payload["operation_id"] == "op-1"
