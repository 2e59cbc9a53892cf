"""Application entry point for the QuizRelay server."""

from __future__ import annotations

from quiz_relay.constants.about import APP_NAME, APP_VERSION
from quiz_relay.core.services.result_store import HttpResultStore, InMemoryResultStore
from quiz_relay.server.api_server import create_api_app, run_api_server
from quiz_relay.server.devices import DeviceRegistry
from quiz_relay.utils.logging_config import configure_logging
from quiz_relay.utils.settings import get_settings


def main() -> None:
    """Read settings, initialize logging, and serve the API until interrupted."""
    settings = get_settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    local_results = InMemoryResultStore()
    if settings.result_store_url:
        logger.info("Saving results to %s", settings.result_store_url)
        result_store = HttpResultStore(settings.result_store_url, timeout=settings.result_store_timeout_seconds)
    else:
        result_store = local_results

    registry = DeviceRegistry(settings, result_store)
    app = create_api_app(registry, local_results)
    logger.info("Serving on http://%s:%d/", settings.host, settings.port)
    try:
        run_api_server(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    finally:
        if isinstance(result_store, HttpResultStore):
            result_store.close()


if __name__ == "__main__":
    main()
