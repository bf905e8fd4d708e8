"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in gatepass/__init__.py with no default limits.

Usage:
    from gatepass.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

# Checkpoint terminals poll and submit in bursts at shift change
PASS_LIMIT = "120/minute"
LEAVE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP).

        - Pass endpoints:   120/minute
        - Leave endpoints:  60/minute (admin + scheduler control)
        - Health checks:    exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("passes")
    if bp:
        limiter.limit(PASS_LIMIT)(bp)

    bp = app.blueprints.get("leave")
    if bp:
        limiter.limit(LEAVE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: passes=%s leave=%s", PASS_LIMIT, LEAVE_LIMIT)
