"""
Prometheus metrics definitions for the broker API and the upload client.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram

# HTTP request metrics (broker API)
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Presign metrics (broker API)
presigned_urls_total = Counter(
    'presigned_urls_total',
    'Total presigned URLs issued',
    ['operation']
)

# Upload client metrics
uploads_started_total = Counter(
    'uploads_started_total',
    'Total file uploads started',
    ['strategy']
)

uploads_completed_total = Counter(
    'uploads_completed_total',
    'Total file uploads completed',
    ['strategy']
)

uploads_failed_total = Counter(
    'uploads_failed_total',
    'Total file uploads failed or aborted',
    ['error_type']
)

upload_bytes_total = Counter(
    'upload_bytes_total',
    'Total bytes uploaded to storage',
    ['strategy']
)

upload_duration_seconds = Histogram(
    'upload_duration_seconds',
    'File upload duration in seconds',
    ['strategy'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0]
)

# Broker client metrics
broker_requests_total = Counter(
    'broker_requests_total',
    'Total presigning broker requests',
    ['operation']
)

broker_failures_total = Counter(
    'broker_failures_total',
    'Total presigning broker failures',
    ['operation']
)

broker_latency_seconds = Histogram(
    'broker_latency_seconds',
    'Presigning broker request latency in seconds',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Multipart metrics
multipart_parts_uploaded_total = Counter(
    'multipart_parts_uploaded_total',
    'Total multipart parts uploaded'
)

multipart_aborts_total = Counter(
    'multipart_aborts_total',
    'Total multipart sessions aborted'
)
