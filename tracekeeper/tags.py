"""Reserved tag keys and metric names."""

# Tags that set span fields instead of being stored in meta.
SERVICE_NAME = "service.name"
SPAN_TYPE = "span.type"
RESOURCE_NAME = "resource.name"
OPERATION_NAME = "operation"
ANALYTICS_EVENT = "analytics.event"

# Sets the error flag and is also kept in meta.
ERROR = "error"
ERROR_TYPE = "error.type"
ERROR_MSG = "error.msg"
ERROR_STACK = "error.stack"

HTTP_URL = "http.url"
ENVIRONMENT = "env"
VERSION = "version"
ORIGIN = "_dd.origin"

SAMPLING_PRIORITY_METRIC = "_sampling_priority_v1"
ANALYTICS_METRIC = "_dd1.sr.eausr"
RULE_RATE_METRIC = "_dd.rule_psr"
LIMITER_RATE_METRIC = "_dd.limit_psr"
