"""Metric exporters"""
from .elasticsearch import ElasticsearchMetricExporter

__all__ = ["ElasticsearchMetricExporter"]
