"""FastAPI application factory for serving a billing engine over HTTP."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billsdk.core.errors import BillingError
from billsdk.engine import BillingEngine
from billsdk.routers.billing import create_billing_router

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Billing", "description": "Customers, subscriptions, features, payments and refunds."},
]


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def create_app(engine: BillingEngine) -> FastAPI:
    """Create an app exposing ``engine`` under ``BASE_PATH``."""
    config = engine.settings
    logging.getLogger("billsdk").setLevel(config.LOG_LEVEL.upper())

    app = FastAPI(
        title="BillSDK",
        description="Subscription billing API: plans, subscriptions, payments and refunds.",
        openapi_tags=OPENAPI_TAGS,
    )

    if config.trusted_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[o for o in config.trusted_origins if "*" not in o],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(BillingError, billing_error_handler)  # type: ignore[arg-type]
    app.include_router(create_billing_router(engine), prefix=config.BASE_PATH, tags=["Billing"])
    app.state.billing = engine
    return app
