"""Encoding of OpenTelemetry metrics into Elasticsearch Bulk API lines"""
import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from opentelemetry.sdk.metrics.export import (
    Histogram,
    HistogramDataPoint,
    Metric,
    MetricsData,
    NumberDataPoint,
    Sum,
)
from opentelemetry.sdk.util.instrumentation import InstrumentationScope
from .schema import ExportSchema, COUNTER_TYPE, HISTOGRAM_TYPE
from logging_config import get_logger


logger = get_logger(__name__)

CREATE_ACTION = '{"create":{}}'

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_time_string(epoch_nanos: int) -> str:
    """Convert epoch nanoseconds to an ISO-8601 UTC string truncated to milliseconds"""
    instant = _EPOCH + timedelta(milliseconds=epoch_nanos // 1_000_000)
    return instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _finite(value):
    """Replace NaN and infinities, which JSON cannot represent, with None"""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (list, tuple)):
        return [_finite(item) for item in value]
    return value


def _dumps(document: Dict[str, Any]) -> str:
    return json.dumps(document, separators=(",", ":"), default=str, allow_nan=False)


def _scope_fields(scope: Optional[InstrumentationScope]) -> Dict[str, Any]:
    return {
        ExportSchema.SCOPE_NAME: scope.name if scope else None,
        ExportSchema.SCOPE_VERSION: scope.version if scope else None,
        ExportSchema.SCOPE_SCHEMA: scope.schema_url if scope else None,
    }


def _point_fields(name: str, metric_type: str, point) -> Dict[str, Any]:
    return {
        ExportSchema.METRIC_NAME: name,
        ExportSchema.METRIC_TYPE: metric_type,
        ExportSchema.START_TIME: as_time_string(point.start_time_unix_nano),
        ExportSchema.END_TIME: as_time_string(point.time_unix_nano),
    }


def _attribute_fields(attributes) -> Dict[str, Any]:
    if not attributes:
        return {}
    return {
        f"{ExportSchema.ATTR_PREFIX}{key}": _finite(value)
        for key, value in attributes.items()
    }


def _encode_counter_point(name: str, scope_fields: Dict[str, Any], point: NumberDataPoint) -> Dict[str, Any]:
    document = dict(scope_fields)
    document.update(_point_fields(name, COUNTER_TYPE, point))
    document[ExportSchema.VALUE] = _finite(point.value)
    document.update(_attribute_fields(point.attributes))
    return document


def _encode_histogram_point(name: str, scope_fields: Dict[str, Any], point: HistogramDataPoint) -> Dict[str, Any]:
    document = dict(scope_fields)
    document.update(_point_fields(name, HISTOGRAM_TYPE, point))
    document[ExportSchema.COUNT] = point.count
    document[ExportSchema.SUM] = _finite(point.sum)
    # Without recorded min/max the SDK reports +inf and -inf
    document[ExportSchema.MIN] = _finite(point.min)
    document[ExportSchema.MAX] = _finite(point.max)
    # An empty bucket has no average
    document[ExportSchema.AVG] = _finite(point.sum / point.count) if point.count else None
    document.update(_attribute_fields(point.attributes))
    return document


def encode_metric(metric: Metric, scope: Optional[InstrumentationScope] = None) -> List[str]:
    """Encode one metric series into bulk action/document line pairs.

    Every data point produces a ``{"create":{}}`` action line followed by the
    flattened document line. Series without data points produce no lines.
    Series of any type other than Sum or Histogram are logged and skipped.
    """
    data = metric.data
    if isinstance(data, Sum):
        encode_point = _encode_counter_point
    elif isinstance(data, Histogram):
        encode_point = _encode_histogram_point
    else:
        logger.warning(
            "Metric type not supported, ignoring",
            metric_name=metric.name,
            metric_type=type(data).__name__
        )
        return []

    if not data.data_points:
        return []

    scope_fields = _scope_fields(scope)
    lines = []
    for point in data.data_points:
        lines.append(CREATE_ACTION)
        lines.append(_dumps(encode_point(metric.name, scope_fields, point)))
    return lines


def iter_metrics(metrics_data: MetricsData) -> Iterable:
    """Yield (metric, scope) pairs in input order"""
    for resource_metrics in metrics_data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                yield metric, scope_metrics.scope


def encode_metrics_data(metrics_data: MetricsData) -> str:
    """Encode a whole export batch into one newline-delimited bulk payload"""
    lines = []
    for metric, scope in iter_metrics(metrics_data):
        logger.debug("Encoding metric", metric_name=metric.name)
        lines.extend(encode_metric(metric, scope))
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
