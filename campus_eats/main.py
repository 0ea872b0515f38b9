import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from campus_eats.config import settings
from campus_eats.db import PostgresOrderStore, close_pool, get_pool, init_schema
from campus_eats.errors import (
    AlreadyClaimed,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    OrderError,
    StaleTransition,
    ValidationError,
)
from campus_eats.memory_store import InMemoryOrderStore
from campus_eats.metrics import get_metrics_bytes, get_metrics_content_type, sqs_queue_messages_in_flight, sqs_queue_messages_waiting
from campus_eats.notifier import LocalNotifier, RedisNotifier
from campus_eats.queue import EventSink, InlineEventSink
from campus_eats.redis_client import close_redis, get_redis, redis_available
from campus_eats.routes import admin, deliveries, events, orders, vendors
from campus_eats.service import OrderService
from campus_eats.sqs_client import get_queue_depth

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[OrderError], int] = {
    NotFound: 404,
    ValidationError: 422,
    NotAuthorized: 403,
    InvalidTransition: 400,
    StaleTransition: 409,
    AlreadyClaimed: 409,
}


async def build_service() -> OrderService:
    """Assemble the service from STORE_BACKEND / NOTIFIER_BACKEND."""
    if settings.store_backend == "postgres":
        pool = await get_pool()
        await init_schema(pool)
        store = PostgresOrderStore(pool)
        sink = EventSink()
    else:
        store = InMemoryOrderStore()
        sink = InlineEventSink(store)

    if settings.notifier_backend == "redis":
        notifier = RedisNotifier(await get_redis())
    else:
        notifier = LocalNotifier(queue_size=settings.subscriber_queue_size)

    logger.info("Backends: store=%s notifier=%s", settings.store_backend, settings.notifier_backend)
    return OrderService(store, notifier, events=sink, config=settings)


def create_app(service: OrderService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service or await build_service()
        await app.state.service.notifier.start()
        yield
        await app.state.service.notifier.close()
        if service is None:
            await close_redis()
            await close_pool()

    app = FastAPI(title="Campus Eats Orders", lifespan=lifespan)
    app.include_router(orders.router)
    app.include_router(deliveries.router)
    app.include_router(vendors.router)
    app.include_router(events.router)
    app.include_router(admin.router)

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
        return JSONResponse(
            status_code=STATUS_BY_ERROR.get(type(exc), 400),
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(part) for part in first.get("loc", ()))
        return JSONResponse(
            status_code=422,
            content={"error": ValidationError.code, "detail": f"{where}: {first.get('msg', 'invalid request')}"},
        )

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        config = request.app.state.service.config
        if config.notifier_backend == "redis" and not await redis_available():
            return JSONResponse(status_code=503, content={"status": "degraded", "redis": False})
        return JSONResponse(content={"status": "ok"})

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: transitions, claims, notifier fan-out, SQS queue depth."""
        if settings.sqs_queue_url:
            try:
                waiting, in_flight = await get_queue_depth()
                sqs_queue_messages_waiting.set(waiting)
                sqs_queue_messages_in_flight.set(in_flight)
            except Exception as e:
                logger.warning("Could not read SQS queue depth: %s", e)
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
