import logging

import structlog

from metrics_api.observability.logging import configure_logging


def test_app_logs_through_one_json_handler(app) -> None:
    configure_logging("INFO")

    json_handlers = [
        handler
        for handler in logging.getLogger().handlers
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)
    ]
    assert len(json_handlers) == 1

    uvicorn_error = logging.getLogger("uvicorn.error")
    assert uvicorn_error.handlers == json_handlers
    assert uvicorn_error.propagate is False
    assert logging.getLogger("uvicorn.access").disabled
