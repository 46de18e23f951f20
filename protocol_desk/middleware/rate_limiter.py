"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in protocol_desk/__init__.py with no
default limits; this module applies limits per route category.

Usage:
    from protocol_desk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
EXPORT_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Protocol endpoints: 60/minute
        - Report export:      10/minute (workbook generation is the heaviest call)
        - Health check:       exempt

    Rate limiting is disabled when RATELIMIT_ENABLED is false or in testing.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("protocols")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("export")
    if bp:
        limiter.limit(EXPORT_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: protocols: %s, export: %s",
                    WRITE_LIMIT, EXPORT_LIMIT)
