"""Tests for bulk payload encoding"""
import json
import math
import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from structlog.testing import capture_logs

from elastic_metrics.encoder import (
    CREATE_ACTION,
    as_time_string,
    encode_metric,
    encode_metrics_data,
)
from elastic_metrics.schema import ExportSchema
from factories import (
    counter,
    counter_point,
    gauge,
    histogram,
    histogram_point,
    metrics_data,
    scope,
)


def strict_loads(line):
    """Parse JSON rejecting NaN and Infinity literals"""
    def reject(constant):
        pytest.fail(f"non-standard JSON constant {constant} in {line}")
    return json.loads(line, parse_constant=reject)


def documents(payload):
    """Split a bulk payload into (action, document) pairs"""
    lines = payload.splitlines()
    assert len(lines) % 2 == 0
    return [(lines[i], json.loads(lines[i + 1])) for i in range(0, len(lines), 2)]


class TestTimeString:
    """Test epoch nanosecond conversion"""

    def test_epoch(self):
        assert as_time_string(0) == "1970-01-01T00:00:00.000Z"

    def test_truncates_to_milliseconds(self):
        assert as_time_string(1_700_000_000_123_456_789) == "2023-11-14T22:13:20.123Z"
        assert as_time_string(1_999_999) == "1970-01-01T00:00:00.001Z"

    def test_deterministic_and_monotonic(self):
        stamps = [0, 999_999, 1_000_000, 5_000_000_000, 1_700_000_000_000_000_000]
        converted = [as_time_string(n) for n in stamps]

        assert converted == [as_time_string(n) for n in stamps]
        assert converted == sorted(converted)


class TestEncodeMetric:
    """Test encoding of single metric series"""

    def test_counter_points_in_order(self):
        metric = counter("requests", [counter_point(1), counter_point(2), counter_point(3)])

        lines = encode_metric(metric, scope())

        assert lines[0::2] == [CREATE_ACTION] * 3
        values = [json.loads(line)[ExportSchema.VALUE] for line in lines[1::2]]
        assert values == [1, 2, 3]

    def test_counter_document(self):
        metric = counter("longSum", [counter_point(0)])

        lines = encode_metric(metric, scope("scope", "1.0", "https://opentelemetry.io/schemas/1.21.0"))

        assert lines == [
            '{"create":{}}',
            '{"SCOPE_NAME":"scope","SCOPE_VERSION":"1.0",'
            '"SCOPE_SCHEMA":"https://opentelemetry.io/schemas/1.21.0",'
            '"METRIC_NAME":"longSum","METRIC_TYPE":"counter",'
            '"START_TIME":"1970-01-01T00:00:00.000Z","END_TIME":"1970-01-01T00:00:00.000Z",'
            '"VALUE":0}',
        ]

    def test_histogram_document(self):
        point = histogram_point(4, 6.0, 5.0, 6.5, start=1_000_000, end=2_000_000)
        metric = histogram("hist1", [point])

        document = json.loads(encode_metric(metric, scope("scope", "1.2", "https://schema"))[1])

        assert document[ExportSchema.METRIC_TYPE] == "histogram"
        assert document[ExportSchema.START_TIME] == "1970-01-01T00:00:00.001Z"
        assert document[ExportSchema.END_TIME] == "1970-01-01T00:00:00.002Z"
        assert document[ExportSchema.COUNT] == 4
        assert document[ExportSchema.SUM] == 6.0
        assert document[ExportSchema.MIN] == 5.0
        assert document[ExportSchema.MAX] == 6.5
        assert document[ExportSchema.AVG] == 1.5
        assert document[ExportSchema.SCOPE_VERSION] == "1.2"
        assert document[ExportSchema.SCOPE_SCHEMA] == "https://schema"
        assert ExportSchema.VALUE not in document

    def test_histogram_average_is_exact_division(self):
        point = histogram_point(3, 10.0, 1.0, 7.0)

        document = json.loads(encode_metric(histogram("h", [point]), scope())[1])

        assert document[ExportSchema.AVG] == 10.0 / 3

    def test_histogram_without_samples_has_no_average(self):
        point = histogram_point(0, 0.0, 0.0, 0.0)

        document = json.loads(encode_metric(histogram("h", [point]), scope())[1])

        assert document[ExportSchema.AVG] is None

    def test_non_finite_values_become_null(self):
        point = histogram_point(2, math.inf, -math.inf, math.nan, attributes={"ratio": math.nan, "ok": 1.5})

        line = encode_metric(histogram("h", [point]), scope())[1]
        document = strict_loads(line)

        assert document[ExportSchema.SUM] is None
        assert document[ExportSchema.MIN] is None
        assert document[ExportSchema.MAX] is None
        assert document[ExportSchema.AVG] is None
        assert document["ATTR_ratio"] is None
        assert document["ATTR_ok"] == 1.5

    def test_non_finite_counter_value_becomes_null(self):
        point = counter_point(math.nan, attributes={"bounds": (1.0, math.inf)})

        document = strict_loads(encode_metric(counter("c", [point]), scope())[1])

        assert document[ExportSchema.VALUE] is None
        assert document["ATTR_bounds"] == [1.0, None]

    def test_histogram_without_min_max_from_sdk(self):
        reader = InMemoryMetricReader()
        provider = MeterProvider(
            metric_readers=[reader],
            views=[View(
                instrument_name="latency",
                aggregation=ExplicitBucketHistogramAggregation(record_min_max=False),
            )],
        )
        provider.get_meter("tests").create_histogram("latency").record(3)

        payload = encode_metrics_data(reader.get_metrics_data())
        provider.shutdown()

        document = strict_loads(payload.splitlines()[1])
        assert document[ExportSchema.COUNT] == 1
        assert document[ExportSchema.SUM] == 3
        assert document[ExportSchema.MIN] is None
        assert document[ExportSchema.MAX] is None
        assert document[ExportSchema.AVG] == 3.0

    def test_attributes_are_prefixed(self):
        point = counter_point(5, attributes={"host": "a", "METRIC_NAME": "clash", "code": 200})

        document = json.loads(encode_metric(counter("c", [point]), scope())[1])

        assert document["ATTR_host"] == "a"
        assert document["ATTR_code"] == 200
        assert document["ATTR_METRIC_NAME"] == "clash"
        assert document[ExportSchema.METRIC_NAME] == "c"

    def test_attributes_do_not_leak_between_points(self):
        points = [counter_point(1, attributes={"only": "first"}), counter_point(2)]

        lines = encode_metric(counter("c", points), scope())

        assert "ATTR_only" in json.loads(lines[1])
        assert "ATTR_only" not in json.loads(lines[3])

    def test_empty_series_emits_nothing(self):
        assert encode_metric(counter("c", []), scope()) == []
        assert encode_metric(histogram("h", []), scope()) == []

    def test_unsupported_type_is_skipped(self):
        with capture_logs() as logs:
            lines = encode_metric(gauge("temperature", [counter_point(21)]), scope())

        assert lines == []
        warnings = [entry for entry in logs if entry["log_level"] == "warning"]
        assert warnings[0]["metric_name"] == "temperature"
        assert warnings[0]["metric_type"] == "Gauge"


class TestEncodeMetricsData:
    """Test encoding of whole export batches"""

    def test_series_then_points_order(self):
        data = metrics_data(
            counter("longSum", [counter_point(0)]),
            histogram("hist1", [
                histogram_point(4, 5.0, 5.0, 6.0, start=1, end=2),
                histogram_point(5, 6.0, 6.0, 7.0, start=3, end=4),
            ]),
        )

        pairs = documents(encode_metrics_data(data))

        assert len(pairs) == 3
        assert all(action == CREATE_ACTION for action, _ in pairs)
        assert [doc[ExportSchema.METRIC_NAME] for _, doc in pairs] == ["longSum", "hist1", "hist1"]
        assert [doc[ExportSchema.SUM] for _, doc in pairs[1:]] == [5.0, 6.0]

    def test_payload_is_newline_terminated(self):
        payload = encode_metrics_data(metrics_data(counter("c", [counter_point(1)])))

        assert payload.endswith("\n")
        assert payload.count("\n") == 2

    def test_empty_and_unsupported_series_produce_empty_payload(self):
        data = metrics_data(counter("c", []), gauge("g", [counter_point(1)]))

        assert encode_metrics_data(data) == ""

    def test_unsupported_series_does_not_drop_others(self):
        data = metrics_data(gauge("g", [counter_point(1)]), counter("c", [counter_point(2)]))

        pairs = documents(encode_metrics_data(data))

        assert [doc[ExportSchema.METRIC_NAME] for _, doc in pairs] == ["c"]
