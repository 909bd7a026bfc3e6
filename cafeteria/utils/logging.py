import logging
import sys
from contextvars import ContextVar

from opentelemetry import trace
from pythonjsonlogger import jsonlogger

# Set per request by RequestIDMiddleware; "-" outside a request.
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the current request id and trace id."""

    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        span_context = trace.get_current_span().get_span_context()
        record.trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None
        return True


def setup_logging(log_level: str = "INFO", service: str = "cafeteria") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter(service))
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(service)s %(name)s %(levelname)s %(request_id)s %(trace_id)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
    )
    root_logger.addHandler(handler)

    # Reduce noise from libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "aiokafka"):
        logging.getLogger(name).setLevel(logging.WARNING)
