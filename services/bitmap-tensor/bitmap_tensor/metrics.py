from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

SCALE_LATENCY = Histogram("bitmap_tensor_scale_seconds", "Scale-and-pack latency in seconds")
SCALE_FAILURES = Counter("bitmap_tensor_scale_failures", "Requests that produced no tensor", ["reason"])

def metrics_response() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
