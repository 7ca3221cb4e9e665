from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Cache
cache_hits_total = Counter('cache_hits_total', 'Total cache hits')
cache_misses_total = Counter('cache_misses_total', 'Total cache misses')

# DB
db_queries_total = Counter('db_queries_total', 'Total database queries')

# Bulk lesson reconciliation
lesson_reconciliations_total = Counter(
    'lesson_reconciliations_total',
    'Bulk lesson reconciliations by outcome',
    ['outcome']
)
lesson_operations_total = Counter(
    'lesson_operations_total',
    'Applied lesson operations by kind',
    ['op']
)

# Progress
progress_updates_total = Counter(
    'progress_updates_total',
    'Recorded lesson progress updates',
    ['completed']
)


def metrics_endpoint():
    """Prometheus scrape endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
