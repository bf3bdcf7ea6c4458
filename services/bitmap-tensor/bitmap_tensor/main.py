import logging
import os
from typing import Optional

from fastapi import FastAPI, Header, HTTPException

from .schemas import ScaleRequest, ScaleResponse, HealthzResponse
from .scaler import ImageScaler
from .metrics import SCALE_LATENCY, SCALE_FAILURES, metrics_response

logger = logging.getLogger(__name__)

app = FastAPI(title="bitmap-tensor", version="0.1.0")

API_KEY = os.getenv("API_KEY", "")
SERVED_MODEL_NAME = os.getenv("SERVED_MODEL_NAME", "bitmap-tensor")

scaler = ImageScaler.from_env()
logger.info(
    "serving %s: %dx%d, %d components, batch %d, quantized=%s",
    SERVED_MODEL_NAME,
    scaler.target_size[0],
    scaler.target_size[1],
    scaler.components,
    scaler.batch_size,
    scaler.quantized,
)


def _check_auth(authorization: Optional[str]):
    # Expect: "Bearer <API_KEY>"
    if not API_KEY:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    if token != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")


@app.get("/healthz", response_model=HealthzResponse)
def healthz():
    return HealthzResponse(
        ok=True,
        model=SERVED_MODEL_NAME,
        target_width=scaler.target_size[0],
        target_height=scaler.target_size[1],
        components=scaler.components,
        batch_size=scaler.batch_size,
        quantized=scaler.quantized,
    )


@app.get("/metrics")
def metrics():
    return metrics_response()


@app.post("/v1/tensors", response_model=ScaleResponse)
def tensors(req: ScaleRequest, authorization: Optional[str] = Header(default=None)):
    _check_auth(authorization)

    try:
        with SCALE_LATENCY.time():
            result = scaler.scale(req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        SCALE_FAILURES.labels(reason=result.error.value).inc()
        raise HTTPException(
            status_code=422,
            detail={"code": result.error.value, "message": result.error.message},
        )

    tensor = result.tensor
    return ScaleResponse(
        model=SERVED_MODEL_NAME,
        kind=tensor.kind.value,
        shape=list(tensor.shape),
        data=tensor.tolist(),
    )
