"""
Flask-Limiter limits for the DMAIC API.

The shared ``limiter`` (app/__init__.py) has no default limits; limits are
attached here once the blueprints exist:

    DMAIC_WRITE_RATE_LIMIT     POST/PATCH on the dmaic blueprint
    DMAIC_ADVANCE_RATE_LIMIT   phase advance, stacked on the write limit
    health_bp                  exempt
"""

import logging

logger = logging.getLogger(__name__)

ADVANCE_ENDPOINT = "dmaic.advance_phase"


def init_rate_limits(app, limiter):
    """Attach per-IP limits; a no-op under TESTING or RATELIMIT_ENABLED=false."""
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.debug("Rate limiter disabled")
        return

    write_limit = app.config.get("DMAIC_WRITE_RATE_LIMIT", "60/minute")
    advance_limit = app.config.get("DMAIC_ADVANCE_RATE_LIMIT", "10/minute")

    dmaic = app.blueprints.get("dmaic")
    if dmaic is not None:
        limiter.limit(write_limit, methods=["POST", "PATCH"])(dmaic)

    advance_view = app.view_functions.get(ADVANCE_ENDPOINT)
    if advance_view is not None:
        app.view_functions[ADVANCE_ENDPOINT] = limiter.limit(advance_limit)(advance_view)

    health = app.blueprints.get("health_bp")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits: dmaic writes %s, advance %s", write_limit, advance_limit)
