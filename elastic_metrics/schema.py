"""Field names of the documents written to Elasticsearch"""


class ExportSchema:
    """Fixed field names of an exported metric document"""

    METRIC_NAME = "METRIC_NAME"
    METRIC_TYPE = "METRIC_TYPE"
    START_TIME = "START_TIME"
    END_TIME = "END_TIME"
    VALUE = "VALUE"
    COUNT = "COUNT"
    SUM = "SUM"
    MIN = "MIN"
    MAX = "MAX"
    AVG = "AVG"
    SCOPE_NAME = "SCOPE_NAME"
    SCOPE_VERSION = "SCOPE_VERSION"
    SCOPE_SCHEMA = "SCOPE_SCHEMA"

    # Attribute keys are prefixed so they never shadow the fields above
    ATTR_PREFIX = "ATTR_"


COUNTER_TYPE = "counter"
HISTOGRAM_TYPE = "histogram"
