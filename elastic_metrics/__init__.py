"""Push metric exporter for Elasticsearch"""
from .encoder import as_time_string, encode_metric, encode_metrics_data
from .exporters.elasticsearch import ElasticsearchMetricExporter
from .provider import create_meter_provider
from .schema import ExportSchema
from .transport import Credentials, ElasticsearchTransport

__all__ = [
    "Credentials",
    "ElasticsearchMetricExporter",
    "ElasticsearchTransport",
    "ExportSchema",
    "as_time_string",
    "create_meter_provider",
    "encode_metric",
    "encode_metrics_data",
]
