"""
Print fulfillment service - Flask Application Entry Point.

This is a slim app factory that:
1. Loads operator configuration (FulfillmentConfig) from the environment
2. Builds the provider adapter registry (Prodigi, Lulu, Peecho)
3. Wires the order store, reconciler, orchestrator and reorder service
4. Starts the status poller and rendition pipeline (separate threads)
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    │   └── Vendor pool (quote fan-out, live status, bounded by timeouts)
    └── Cleanup on shutdown (atexit)

    Poller Thread (background)
    └── 30-minute sweep of quiet orders -> StatusReconciler

    Renditions Thread (background, only with a renderer)
    └── Scheduler -> Render worker pool (interior, cover, preflight)

Webhooks and the poller both write through StatusReconciler, so status
only moves forward no matter which path reports first.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from config import FulfillmentConfig
from core.exceptions import PrintFulfillmentError
from providers.registry import AdapterRegistry, build_registry
from services.collaborators import LocalFileStorage, LoggingNotifier, Notifier, Renderer, Storage
from services.order_store import OrderStore
from services.orchestrator import FulfillmentOrchestrator
from services.reconciliation import StatusPoller, StatusReconciler
from services.rendition_service import RenditionPipeline
from services.reorder_service import ReorderService
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_app(
    config_object: str = "config.Config",
    registry: Optional[AdapterRegistry] = None,
    renderer: Optional[Renderer] = None,
    storage: Optional[Storage] = None,
    notifier: Optional[Notifier] = None,
    fulfillment_config: Optional[FulfillmentConfig] = None
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Flask config class path (e.g. "config.TestingConfig")
        registry: Provider adapters (built from the environment when omitted)
        renderer: PDF renderer; without one the rendition endpoints answer 503
        storage: Rendition file storage (LocalFileStorage by default)
        notifier: Status/failure notifier (LoggingNotifier by default)
        fulfillment_config: Operator configuration (from the environment by default)

    Returns:
        Configured Flask application
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)  # Default behavior

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting print fulfillment service in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    fulfillment_config = fulfillment_config or FulfillmentConfig.from_env()
    registry = registry if registry is not None else build_registry(fulfillment_config)
    notifier = notifier or LoggingNotifier()

    store = OrderStore()
    reconciler = StatusReconciler(store, registry, notifier)

    pipeline: Optional[RenditionPipeline] = None
    if renderer is not None:
        storage = storage or LocalFileStorage(app.config["RENDITION_STORAGE_DIR"])
        pipeline = RenditionPipeline(renderer, storage, notifier=notifier, config=fulfillment_config)
    else:
        logger.warning("No renderer configured, rendition endpoints disabled")

    orchestrator = FulfillmentOrchestrator(
        registry,
        store,
        config=fulfillment_config,
        reconciler=reconciler,
        renditions=pipeline,
    )
    poller = StatusPoller(store, registry, reconciler, fulfillment_config)

    # Store in app config for access by routes
    app.config["FULFILLMENT_CONFIG"] = fulfillment_config
    app.config["PROVIDER_REGISTRY"] = registry
    app.config["ORDER_STORE"] = store
    app.config["RECONCILER"] = reconciler
    app.config["ORCHESTRATOR"] = orchestrator
    app.config["REORDER_SERVICE"] = ReorderService(orchestrator)
    app.config["STATUS_POLLER"] = poller
    app.config["RENDITION_PIPELINE"] = pipeline

    if app.config.get("START_BACKGROUND_SERVICES"):
        poller.start()
        logger.info("Status poller started")
        if pipeline is not None:
            pipeline.start()
            logger.info("Rendition pipeline started")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        poller.stop()
        if pipeline is not None:
            pipeline.stop()
        orchestrator.close()
        registry.close()

        logger.info("Shutdown complete")

    atexit.register(cleanup)
    app.extensions["print_fulfillment_cleanup"] = cleanup

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(PrintFulfillmentError)
    def handle_fulfillment_error(e: PrintFulfillmentError):
        if e.http_status >= 500:
            logger.warning(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__}: {e.message}")
        return e.to_dict(), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return {"error": e.name, "message": e.description}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "InternalServerError", "message": "An unexpected error occurred"}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
