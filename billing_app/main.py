import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from billing_app import config

# =====================================================
# LOGGING
# =====================================================
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("billing_app.main")

from billing_app.api import build_api_router
from billing_app.db import SessionLocal
from billing_app.events import EventIngress
from billing_app.exceptions import AppException
from billing_app.payments import StripeGateway
from billing_app.reconciler import Reconciler, build_customer_resolver
from billing_app.storage import Storage
from billing_app.ws_broadcast import BroadcastHub
from billing_app import ws_handler


def create_app(
    storage: Optional[Storage] = None,
    processor: Optional[StripeGateway] = None,
    webhook_secret: Optional[str] = None,
    ws_auth_token: Optional[str] = None,
    seed_plans: Optional[bool] = None,
) -> FastAPI:
    """
    Build the service. Components are created once here and live for the
    process lifetime; arguments override the environment configuration.
    """
    storage = storage or Storage(SessionLocal)
    processor = processor or StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_API_VERSION)
    hub = BroadcastHub(queue_size=config.WS_QUEUE_SIZE)
    resolver = build_customer_resolver(
        storage,
        policy=config.UNMAPPED_CUSTOMER_POLICY,
        placeholder_user_id=config.PLACEHOLDER_USER_ID,
        placeholder_subscription_id=config.PLACEHOLDER_SUBSCRIPTION_ID,
    )
    reconciler = Reconciler(
        storage,
        hub,
        resolver,
        retry_after=timedelta(hours=config.PAYMENT_RETRY_HOURS),
    )
    ingress = EventIngress(
        config.STRIPE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret,
        tolerance=config.STRIPE_WEBHOOK_TOLERANCE,
    )
    seed = config.SEED_DEFAULT_PLANS if seed_plans is None else seed_plans

    # =====================================================
    # STARTUP / SHUTDOWN
    # =====================================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage.init_schema()
        if seed:
            storage.seed_default_plans()
        if not ingress.signed:
            log.warning("STRIPE_WEBHOOK_SECRET not set: webhooks are accepted unsigned")
        log.info("✅ Billing backend started")
        yield
        await hub.close()
        log.info("🛑 Billing backend stopped")

    app = FastAPI(
        title="Subscription Billing Hub",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.storage = storage
    app.state.processor = processor
    app.state.hub = hub
    app.state.reconciler = reconciler
    app.state.ingress = ingress
    app.state.ws_auth_token = config.WS_AUTH_TOKEN if ws_auth_token is None else ws_auth_token

    # =====================================================
    # MIDDLEWARE
    # =====================================================
    allowed_origins = [
        config.FRONTEND_URL,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]
    if config.CORS_ALLOW_ALL:
        allowed_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =====================================================
    # ERRORS
    # =====================================================
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        content = {"message": exc.message, "code": exc.code}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    # =====================================================
    # ROUTES
    # =====================================================
    app.include_router(build_api_router(), prefix="/api")
    app.include_router(ws_handler.router)

    @app.get("/health")
    def health():
        return {"ok": True, "time": int(time.time())}

    return app


app = create_app()

# =====================================================
# ENTRYPOINT
# =====================================================
if __name__ == "__main__":
    uvicorn.run(
        "billing_app.main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=True,
    )
