import logging
from contextlib import asynccontextmanager

from aiokafka import AIOKafkaProducer
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import make_asgi_app

from cafeteria import __version__, models  # noqa: F401  (models registers tables on Base.metadata)
from cafeteria.config import settings
from cafeteria.database import AsyncSessionLocal, Base, engine
from cafeteria.errors import CafeteriaError
from cafeteria.middleware.metrics import MetricsMiddleware
from cafeteria.middleware.request_id import RequestIDMiddleware
from cafeteria.routers import auth, cart, menu, orders
from cafeteria.services.catalog import seed_menu_items
from cafeteria.services.events import EventPublisher, KafkaEventPublisher
from cafeteria.utils.logging import setup_logging
from shared.tracing import setup_tracing

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

tracing_enabled = setup_tracing(
    "cafeteria",
    settings.otlp_endpoint,
    service_version=__version__,
    sample_ratio=settings.trace_sample_ratio,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up, creating database tables")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    if settings.seed_menu:
        async with AsyncSessionLocal() as db:
            await seed_menu_items(db)

    producer = None
    if settings.kafka_enabled:
        producer = AIOKafkaProducer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            enable_idempotence=True,
        )
        await producer.start()
        app.state.event_publisher = KafkaEventPublisher(producer)
    else:
        app.state.event_publisher = EventPublisher()
    logger.info("Startup complete", extra={"kafka_enabled": settings.kafka_enabled})

    yield

    if producer is not None:
        await producer.stop()
    await engine.dispose()
    logger.info("Shutting down")


app = FastAPI(
    title="Campus Cafeteria",
    description="Menu, cart and order fulfillment for the campus cafeteria",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(CafeteriaError)
async def handle_domain_error(request: Request, exc: CafeteriaError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "detail": exc.detail},
        headers=headers,
    )


if tracing_enabled:
    FastAPIInstrumentor.instrument_app(app)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(menu.router, prefix="/menu", tags=["menu"])
app.include_router(cart.router, prefix="/cart", tags=["cart"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])

# Expose Prometheus metrics at /metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
