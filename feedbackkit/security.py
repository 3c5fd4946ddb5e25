from flask_talisman import Talisman

# JSON-only service: nothing is ever rendered in a browser frame or loads sub-resources
API_CSP = {
    "default-src": ["'none'"],
    "frame-ancestors": ["'none'"],
    "base-uri": ["'none'"],
    "form-action": ["'self'"],
}

talisman = Talisman()


def init_security(app):
    """
    HTTPS redirect, HSTS and security headers for staging/production.
    Load balancers terminate TLS, so X-Forwarded-Proto decides what "https" means.
    """
    talisman.init_app(
        app,
        content_security_policy=API_CSP,
        force_https=app.config.get("FORCE_HTTPS", True),
        strict_transport_security=True,
        strict_transport_security_max_age=app.config.get("HSTS_MAX_AGE", 31536000),
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="no-referrer",
    )
