"""Example FastAPI application with contextual request logging.

Run with:
    uvicorn examples.fastapi_example:app --reload

Endpoints:
    /checkout   - logs inside a narrowed "CheckoutOrder" operation
    /orders     - logs through the stdlib logging bridge
    /error      - raises; the completion event carries the exception
    /health     - excluded from request logging

Every request prints a "Request completed in N ms" line on the console
and writes one row per event into the ``Logs`` table of ``logs.db``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from contextlog import (
    LoggingPipeline,
    PipelineConfig,
    PipelineHandler,
    RequestTimingMiddleware,
    SinkTarget,
    operation_scope,
)

pipeline = LoggingPipeline(
    PipelineConfig(
        service_name="OrderService",
        sinks=(SinkTarget.console(), SinkTarget.sqlite("logs.db")),
    )
)

logger = logging.getLogger("orders")
logger.setLevel(logging.INFO)
logger.addHandler(PipelineHandler(pipeline))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    async with pipeline:
        pipeline.info("Server started")
        yield


app = FastAPI(title="Contextual Logging Example", lifespan=lifespan)
app.add_middleware(
    RequestTimingMiddleware,
    pipeline=pipeline,
    exclude_paths=["/health"],
    correlation_id_header="X-Correlation-ID",
)


@app.post("/checkout")
async def checkout() -> dict[str, str]:
    with operation_scope("CheckoutOrder"):
        pipeline.info("Processing checkout order")
        return {"status": "accepted"}


@app.get("/orders")
async def list_orders() -> dict[str, list[str]]:
    orders = ["A-1", "A-2"]
    logger.info("Listing orders", extra={"OrderCount": len(orders)})
    return {"orders": orders}


@app.get("/error")
async def error_endpoint() -> dict[str, str]:
    raise ValueError("Intentional error for demonstration")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
