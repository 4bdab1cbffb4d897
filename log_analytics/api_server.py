import asyncio
import datetime
import logging
import random
import time
import uuid

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from log_analytics.config import API_PORT, configure_logging

LONG_DELAY_PROBABILITY = 0.1
FAILURE_PROBABILITY = 0.05
MAX_ORDER_ID = 100


class SimulatedError(RuntimeError):
    pass


async def simulate_latency() -> None:
    """Sleep 10-299 ms (300-999 ms one time in ten), then fail 5% of the time."""
    if random.random() < LONG_DELAY_PROBABILITY:
        delay_ms = random.randint(300, 999)
    else:
        delay_ms = random.randint(10, 299)
    await asyncio.sleep(delay_ms / 1000)

    if random.random() < FAILURE_PROBABILITY:
        raise SimulatedError("Random error occurred")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


app = FastAPI(title="Log Analytics Demo API")


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    response.headers["X-Response-Time"] = f"{elapsed_ms:.3f}"
    logging.info(
        f"{request.state.request_id} {request.method} {request.url.path} "
        f"{response.status_code} {elapsed_ms:.3f} ms"
    )
    return response


@app.exception_handler(SimulatedError)
async def simulated_error_handler(request: Request, exc: SimulatedError):
    logging.error(f"Application error (request {getattr(request.state, 'request_id', '-')}): {exc}")
    return _error(500, "Internal server error")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logging.exception(f"Application error (request {getattr(request.state, 'request_id', '-')}): {exc}")
    return _error(500, "Internal server error")


@app.get("/", dependencies=[Depends(simulate_latency)])
async def root():
    return {"message": "Welcome to the API server!"}


@app.get("/users", dependencies=[Depends(simulate_latency)])
async def list_users():
    return [
        {"id": 1, "name": "John Doe"},
        {"id": 2, "name": "Jane Smith"},
    ]


@app.get("/products", dependencies=[Depends(simulate_latency)])
async def list_products():
    return [
        {"id": 1, "name": "Product A", "price": 29.99},
        {"id": 2, "name": "Product B", "price": 49.99},
        {"id": 3, "name": "Product C", "price": 19.99},
    ]


@app.get("/orders", dependencies=[Depends(simulate_latency)])
async def list_orders():
    return [
        {"id": 1, "user_id": 1, "product_id": 2, "quantity": 1},
        {"id": 2, "user_id": 2, "product_id": 1, "quantity": 3},
    ]


@app.post("/orders", status_code=201, dependencies=[Depends(simulate_latency)])
async def create_order(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or not body.get("user_id") or not body.get("product_id"):
        logging.error(f"Invalid order data (request {request.state.request_id})")
        return _error(400, "Invalid order data")

    return {
        **body,
        "id": random.randint(0, 999),
        "createdAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }


@app.get("/orders/{order_id}", dependencies=[Depends(simulate_latency)])
async def get_order(order_id: str, request: Request):
    try:
        parsed_id = int(order_id)
    except ValueError:
        parsed_id = 0

    if parsed_id <= 0:
        logging.error(f"Invalid order ID (request {request.state.request_id})")
        return _error(400, "Invalid order ID")
    if parsed_id > MAX_ORDER_ID:
        logging.error(f"Order not found (request {request.state.request_id})")
        return _error(404, "Order not found")

    return {
        "id": parsed_id,
        "user_id": random.randint(1, 10),
        "product_id": random.randint(1, 20),
        "quantity": random.randint(1, 5),
        "createdAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }


@app.get("/error")
async def intentional_error(request: Request):
    logging.error(f"Intentional error endpoint called (request {request.state.request_id})")
    return _error(500, "Internal server error")


@app.get("/health")
async def health():
    return {"status": "UP"}


def main() -> None:
    configure_logging()
    logging.info(f"Server listening on port {API_PORT}")
    uvicorn.run(app, host="0.0.0.0", port=API_PORT, access_log=False)


if __name__ == "__main__":
    main()
