"""
Flask route blueprints for the print fulfillment service.

This module contains all route handlers organized by functionality:
- quotes: Quote aggregation and best-quote selection
- orders: Order creation/submission, status, cancel, reorder
- renditions: Rendition creation, status, cancel, queue metrics
- webhooks: Signed vendor status webhooks
- cron: Externally triggered poll sweep
- health: Health check

Each blueprint is registered with the Flask app in create_app().
"""

from .quotes import quotes_bp
from .orders import orders_bp
from .renditions import renditions_bp
from .webhooks import webhooks_bp
from .cron import cron_bp
from .health import health_bp

__all__ = [
    "quotes_bp",
    "orders_bp",
    "renditions_bp",
    "webhooks_bp",
    "cron_bp",
    "health_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(quotes_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(renditions_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(health_bp)
