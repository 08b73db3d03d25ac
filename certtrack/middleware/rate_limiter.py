"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in certtrack/__init__.py with no default
limits; this module applies granular limits per route category. The public
status check carries its own route-level limit (STATUS_CHECK_RATE_LIMIT).

Usage:
    from certtrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

ADMIN_API_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Certification admin API:  ADMIN_API_LIMIT
        - Public status check:      STATUS_CHECK_RATE_LIMIT (route decorator)
        - Health check:             exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("certification")
    if bp:
        limiter.limit(app.config.get("ADMIN_API_RATE_LIMIT", ADMIN_API_LIMIT))(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: admin=%s status_check=%s",
        app.config.get("ADMIN_API_RATE_LIMIT", ADMIN_API_LIMIT),
        app.config.get("STATUS_CHECK_RATE_LIMIT"),
    )
