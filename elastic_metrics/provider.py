"""Meter provider wiring for the Elasticsearch exporter"""
from typing import Optional
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from .exporters.elasticsearch import ElasticsearchMetricExporter
from config import Config
from logging_config import get_logger


logger = get_logger(__name__)


def create_meter_provider(
    config: Config,
    exporter: Optional[ElasticsearchMetricExporter] = None,
) -> MeterProvider:
    """Build a meter provider exporting to Elasticsearch.

    The provider is returned to the caller and never registered globally;
    pass it to whatever needs a meter and call ``shutdown()`` on it when done.
    """
    if exporter is None:
        exporter = ElasticsearchMetricExporter.from_config(config)

    reader = PeriodicExportingMetricReader(
        exporter=exporter,
        export_interval_millis=config.export_interval * 1000,
        export_timeout_millis=config.export_timeout * 1000,
    )

    provider = MeterProvider(
        resource=Resource.create(config.get_resource_attributes()),
        metric_readers=[reader],
    )

    logger.info(
        "Meter provider configured",
        export_interval=config.export_interval,
        service_name=config.service_name,
        event_type="provider_setup"
    )
    return provider
