from fastapi import FastAPI
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

from readhub.api.rate_limit import limiter
from readhub.api.routes_health import router as health_router
from readhub.api.routes_metrics import router as metrics_router
from readhub.api.routes_subscription import router as subscription_router
from readhub.core.config import BaseAppSettings, get_settings
from readhub.core.errors import register_error_handlers
from readhub.core.logger import init_logging
from readhub.core.monitoring import init_monitoring
from readhub.services.payment_gateway import PaystackGateway


async def _rate_limit_handler(request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Too many requests"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, hsts_seconds: int) -> None:
        super().__init__(app)
        self.hsts_seconds = hsts_seconds

    async def dispatch(self, request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security",
            f"max-age={self.hsts_seconds}; includeSubDomains; preload",
        )
        response.headers.setdefault("Referrer-Policy", "same-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        return response


def create_app(settings: BaseAppSettings | None = None, gateway: PaystackGateway | None = None) -> FastAPI:
    """Build the API around one settings object and one gateway client.

    Both are attached to ``app.state`` and handed to request handlers through
    dependencies; tests pass their own instead of patching globals.
    """
    settings = settings or get_settings()
    init_logging(settings)
    init_monitoring(settings)

    is_production = settings.ENV.lower() == "prod"
    app = FastAPI(
        title=settings.APP_NAME,
        debug=False,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    app.state.settings = settings
    app.state.payment_gateway = gateway or PaystackGateway.from_settings(settings)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    if is_production:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, hsts_seconds=settings.HSTS_SECONDS)
    register_error_handlers(app)

    app.include_router(subscription_router)
    app.include_router(metrics_router)
    app.include_router(health_router)

    @app.on_event("shutdown")
    def close_gateway() -> None:
        app.state.payment_gateway.close()

    return app


app = create_app()
