"""Billing API endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from billsdk.core import csrf
from billsdk.core.errors import CustomerNotFoundError
from billsdk.core.plugins import PluginEndpoint
from billsdk.engine import BillingEngine
from billsdk.models.catalog import Plan
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment
from billsdk.models.subscription import Subscription
from billsdk.schemas.api import (
    CustomerCreate,
    RefundCreate,
    RenewalRun,
    SubscriptionCancel,
    SubscriptionChange,
    SubscriptionCreate,
)
from billsdk.schemas.billing import (
    ChangeSubscriptionResult,
    CreateSubscriptionResult,
    FeatureAccess,
    RefundOutcome,
    RenewalResult,
    WebhookAck,
)

logger = logging.getLogger(__name__)


def _plugin_route(endpoint: PluginEndpoint):  # type: ignore[no-untyped-def]
    async def handle(request: Request) -> Any:
        params: dict[str, Any] = dict(request.query_params)
        if endpoint.method.upper() != "GET":
            body = await request.body()
            if body:
                payload = await request.json()
                if isinstance(payload, dict):
                    params.update(payload)
        return await endpoint.handler(params)

    return handle


def create_billing_router(engine: BillingEngine) -> APIRouter:
    """Build the billing API router for ``engine``.

    Mutating routes are protected by the origin and CSRF token checks, except
    ``POST /webhook`` which is authenticated by the payment adapter.
    """

    async def require_csrf(request: Request) -> None:
        csrf.check_request(request.method, request.url.path, request.headers, engine.settings)

    router = APIRouter()
    protected = APIRouter(dependencies=[Depends(require_csrf)])

    @router.get("/health")
    async def health() -> dict[str, Any]:
        now = await engine.now()
        return {"status": "ok", "timestamp": now.isoformat()}

    @router.get("/csrf-token")
    async def csrf_token() -> JSONResponse:
        """Issue a CSRF token as both an HttpOnly cookie and the response body."""
        config = engine.settings
        token = csrf.generate_token(config.SECRET)
        cookie = csrf.build_cookie_header(
            config.CSRF_COOKIE_NAME, token, secure=config.is_production
        )
        return JSONResponse({"csrf_token": token}, headers={"set-cookie": cookie})

    @router.post("/webhook", response_model=WebhookAck)
    async def handle_webhook(request: Request) -> WebhookAck:
        """Handle payment gateway webhooks.

        Signature verification happens in the payment adapter, so this route
        is exempt from the CSRF check.
        """
        payload = await request.body()
        return await engine.handle_webhook(payload, dict(request.headers))

    # ── Customers ──

    @protected.post("/customer", response_model=Customer)
    async def create_customer(data: CustomerCreate) -> Customer:
        return await engine.create_customer(data.external_id, data.email, data.name, data.metadata)

    @protected.get("/customer", response_model=Customer)
    async def get_customer(customer_id: str = Query(...)) -> Customer:
        customer = await engine.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer '{customer_id}' not found")
        return customer

    # ── Plans & features ──

    @protected.get("/plans", response_model=list[Plan])
    async def list_plans() -> list[Plan]:
        return engine.list_plans()

    @protected.get("/plan/{code}", response_model=Plan)
    async def get_plan(code: str) -> Plan:
        return engine.get_plan(code)

    @protected.get("/features", response_model=list[FeatureAccess])
    async def list_features(customer_id: str = Query(...)) -> list[FeatureAccess]:
        return await engine.list_features(customer_id)

    @protected.get("/feature/{code}", response_model=FeatureAccess)
    async def check_feature(code: str, customer_id: str = Query(...)) -> FeatureAccess:
        return await engine.check_feature(customer_id, code)

    # ── Subscriptions ──

    @protected.post("/subscription", response_model=CreateSubscriptionResult)
    async def create_subscription(data: SubscriptionCreate) -> CreateSubscriptionResult:
        return await engine.create_subscription(
            data.customer_id, data.plan_code, data.interval, data.success_url, data.cancel_url
        )

    @protected.get("/subscription")
    async def get_subscription(customer_id: str = Query(...)) -> dict[str, Subscription | None]:
        return {"subscription": await engine.get_subscription(customer_id)}

    @protected.post("/subscription/change", response_model=ChangeSubscriptionResult)
    async def change_subscription(data: SubscriptionChange) -> ChangeSubscriptionResult:
        return await engine.change_subscription(
            data.customer_id, data.new_plan_code, data.new_interval, data.prorate
        )

    @protected.post("/subscription/cancel", response_model=Subscription)
    async def cancel_subscription(data: SubscriptionCancel) -> Subscription:
        return await engine.cancel_subscription(data.customer_id, data.mode)

    # ── Payments ──

    @protected.get("/payments", response_model=list[Payment])
    async def list_payments(
        customer_id: str = Query(...),
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> list[Payment]:
        return await engine.list_payments(customer_id, limit, offset)

    @protected.get("/payment/{payment_id}", response_model=Payment)
    async def get_payment(payment_id: str) -> Payment:
        return await engine.get_payment(payment_id)

    @protected.post("/refund", response_model=RefundOutcome)
    async def create_refund(data: RefundCreate) -> RefundOutcome:
        return await engine.create_refund(data.payment_id, data.amount, data.reason)

    @protected.post("/renewals", response_model=RenewalResult)
    async def process_renewals(data: RenewalRun | None = None) -> RenewalResult:
        data = data or RenewalRun()
        return await engine.process_renewals(
            customer_id=data.customer_id, limit=data.limit, dry_run=data.dry_run
        )

    for endpoint in engine.endpoints:
        protected.add_api_route(
            endpoint.path, _plugin_route(endpoint), methods=[endpoint.method.upper()]
        )
        logger.debug("Mounted plugin endpoint %s %s", endpoint.method, endpoint.path)

    router.include_router(protected)
    return router
