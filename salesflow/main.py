from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from salesflow.api.routes import router as api_router
from salesflow.core.config import get_settings
from salesflow.core.database import Base, engine
from salesflow.core.events import InternalEvent, event_bus
from salesflow.logging import configure_logging
from salesflow.middleware.correlation_id import CorrelationIdMiddleware
from salesflow.middleware.request_logging import RequestLoggingMiddleware
from salesflow.otel import get_fastapi_server_request_hook, setup_otel
from salesflow.sales.api import register_exception_handlers
from salesflow.store import models as _store_models  # noqa: F401


configure_logging(get_settings().log_level)
logger = logging.getLogger("salesflow.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name, "event_payload": event.payload})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        _subscriptions_registered = True
    if get_settings().store_backend.lower() == "sql":
        Base.metadata.create_all(bind=engine)
    event_bus.publish("system.started", {"service": "salesflow"})
    yield


app = FastAPI(title="Salesflow API", version=get_settings().app_version, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)
register_exception_handlers(app)

settings = get_settings()
setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
