"""JSON logs carrying the purchase being worked on.

Every record gets the service name plus whatever correlation ids are bound in
the current context: the inbound request's trace id, and the purchase
reference and user id while a purchase is being initialized or reconciled.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from wavepay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
reference_ctx: ContextVar[str] = ContextVar("purchase_reference", default="")
user_id_ctx: ContextVar[str] = ContextVar("user_id", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(purchase_reference)s %(user_id)s %(message)s"


class PurchaseContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.purchase_reference = reference_ctx.get()
        record.user_id = user_id_ctx.get()
        return True


@contextmanager
def bind_purchase(reference: str | None = None, user_id: str | None = None):
    """Tag log lines inside the block with a purchase reference and/or user id."""

    tokens = []
    if reference is not None:
        tokens.append((reference_ctx, reference_ctx.set(reference)))
    if user_id is not None:
        tokens.append((user_id_ctx, user_id_ctx.set(user_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging() -> None:
    """Install the JSON handler on the root logger; safe to call once per process."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(PurchaseContextFilter())
    handler.setFormatter(JsonFormatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # Chatty client libraries only surface warnings.
    for noisy in ("aiokafka", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, root.level))


logger = logging.getLogger("wavepay.monetization")
