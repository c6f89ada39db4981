"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Module reloads (tests) would otherwise raise a duplicate timeseries error
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Token refresh metrics
token_refresh_counter = _counter(
    'postbridge_token_refresh_total',
    'Total number of token refresh attempts by outcome',
    ['outcome']
)

reauth_required_counter = _counter(
    'postbridge_reauth_required_total',
    'Total number of connections escalated to NeedsReauth',
    ['network']
)

# Publish metrics
publish_attempts_counter = _counter(
    'postbridge_publish_attempts_total',
    'Total number of per-network publish attempts',
    ['network', 'status']
)

content_published_counter = _counter(
    'postbridge_content_published_total',
    'Total number of content items reaching a published state',
    ['state']
)

# Scheduler metrics
scheduler_runs_counter = _counter(
    'postbridge_scheduler_runs_total',
    'Total number of scheduled job runs',
    ['job', 'status']
)

# OAuth metrics
oauth_callbacks_counter = _counter(
    'postbridge_oauth_callbacks_total',
    'Total number of OAuth callbacks handled',
    ['network', 'status']
)

# Compliance metrics
data_deletion_requests_counter = _counter(
    'postbridge_data_deletion_requests_total',
    'Total number of provider data deletion requests',
    ['status']
)
