"""
Per-blueprint rate limits applied with Flask-Limiter.

The Limiter instance is created in ``actionlog/__init__.py`` with no default
limits; this module attaches granular limits per blueprint.

Usage:
    from actionlog.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Login attempts are keyed by remote address like everything else
BLUEPRINT_LIMITS = {
    "auth": "20/minute",
    "action_log": "120/minute",
    "delegation": "60/minute",
    "department": "200/minute",
    "user": "200/minute",
}


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints. Disabled in testing mode."""
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limits configured: %s", ", ".join(
        f"{name}={limit}" for name, limit in BLUEPRINT_LIMITS.items()))
