"""Embeddable billing engine facade."""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from billsdk.adapters.memory import MemoryStorageAdapter
from billsdk.adapters.mock_payment import MockPaymentAdapter
from billsdk.adapters.payment import PaymentAdapter, WebhookRequest
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.config import Settings, settings as default_settings, validate_secret
from billsdk.core.context import BillingContext
from billsdk.core.errors import ConfigurationError
from billsdk.core.plugins import Plugin, PluginEndpoint, PluginHost
from billsdk.models.catalog import BillingInterval, Plan, PlanCatalog
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment
from billsdk.models.subscription import CancelMode, Subscription
from billsdk.schemas.billing import (
    ChangeSubscriptionResult,
    CreateSubscriptionResult,
    FeatureAccess,
    RefundOutcome,
    RenewalResult,
    WebhookAck,
)
from billsdk.services.behaviors import BillingBehaviors
from billsdk.services.customer_service import CustomerService
from billsdk.services.entitlement_service import EntitlementService
from billsdk.services.failure_policy import (
    DowngradePolicy,
    MarkPastDuePolicy,
    PaymentFailurePolicy,
)
from billsdk.services.payment_service import PaymentService
from billsdk.services.plan_change import DeferDowngradesPolicy, PlanChangePolicy
from billsdk.services.refund_service import RefundService
from billsdk.services.renewal_service import RenewalService
from billsdk.services.subscription_service import SubscriptionService
from billsdk.services.time_provider import SystemTimeProvider, TimeProvider
from billsdk.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


def _build_catalog(catalog: PlanCatalog | Mapping[str, Any]) -> PlanCatalog:
    if isinstance(catalog, PlanCatalog):
        return catalog
    try:
        return PlanCatalog.model_validate(catalog)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid plan catalog: {e}") from e


class BillingEngine:
    """Subscription billing engine bound to a catalog, storage and payment gateway.

    Plugins, the schema and the time provider are resolved once, here; they
    do not change for the lifetime of the engine.

    Example::

        engine = BillingEngine(
            catalog={"features": [...], "plans": [...]},
            storage=MemoryStorageAdapter(),
        )
        await engine.create_customer("user_1", "user@example.com")
        await engine.create_subscription("user_1", "pro")
    """

    def __init__(
        self,
        catalog: PlanCatalog | Mapping[str, Any],
        storage: StorageAdapter | None = None,
        payment: PaymentAdapter | None = None,
        plugins: Iterable[Plugin] = (),
        time_provider: TimeProvider | None = None,
        behaviors: BillingBehaviors | None = None,
        plan_change_policy: PlanChangePolicy | None = None,
        failure_policy: PaymentFailurePolicy | None = None,
        settings: Settings | None = None,
    ):
        config = settings or default_settings
        validate_secret(config)

        self.catalog = _build_catalog(catalog)
        self.storage = storage if storage is not None else MemoryStorageAdapter()
        self.payment = payment if payment is not None else MockPaymentAdapter()

        self.plugin_host = PluginHost.from_plugins(plugins)
        self.schema = self.plugin_host.resolve_schema()
        bind_schema = getattr(self.storage, "bind_schema", None)
        if callable(bind_schema):
            bind_schema(self.schema)

        resolved_time = self.plugin_host.init(
            self.storage, config, self.schema, time_provider or SystemTimeProvider()
        )

        failure_policy = failure_policy or MarkPastDuePolicy()
        if isinstance(failure_policy, DowngradePolicy):
            target = self.catalog.find_plan(failure_policy.plan_code)
            if target is None:
                raise ConfigurationError(
                    f"Downgrade plan '{failure_policy.plan_code}' is not in the catalog"
                )
            if not any(price.is_free for price in target.prices):
                raise ConfigurationError(
                    f"Downgrade plan '{failure_policy.plan_code}' must have a free price"
                )

        self.ctx = BillingContext(
            catalog=self.catalog,
            storage=self.storage,
            payment=self.payment,
            time_provider=resolved_time,
            schema=self.schema,
            behaviors=behaviors or BillingBehaviors(),
            plan_change_policy=plan_change_policy or DeferDowngradesPolicy(),
            failure_policy=failure_policy,
            settings=config,
        )
        logger.info(
            "Billing engine ready: %d plans, payment=%s, plugins=%s",
            len(self.catalog.plans),
            getattr(self.payment, "id", type(self.payment).__name__),
            [p.id for p in self.plugin_host.plugins] or "none",
        )

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    @property
    def time_provider(self) -> TimeProvider:
        return self.ctx.time_provider

    @property
    def endpoints(self) -> list[PluginEndpoint]:
        """Endpoints contributed by plugins."""
        return self.plugin_host.endpoints

    async def now(self, customer_id: str | None = None) -> datetime:
        return await self.ctx.now(customer_id)

    # ── Customers ──

    async def create_customer(
        self,
        external_id: str,
        email: str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Customer:
        return await CustomerService(self.ctx).create_customer(external_id, email, name, metadata)

    async def get_customer(self, external_id: str) -> Customer | None:
        return await CustomerService(self.ctx).get_customer(external_id)

    # ── Plans & features ──

    def list_plans(self, include_private: bool = False) -> list[Plan]:
        return self.catalog.list_plans(include_private)

    def get_plan(self, code: str) -> Plan:
        return self.catalog.get_plan(code)

    async def check_feature(self, customer_id: str, feature_code: str) -> FeatureAccess:
        return await EntitlementService(self.ctx).check_feature(customer_id, feature_code)

    async def list_features(self, customer_id: str) -> list[FeatureAccess]:
        return await EntitlementService(self.ctx).list_features(customer_id)

    # ── Subscriptions ──

    async def create_subscription(
        self,
        customer_id: str,
        plan_code: str,
        interval: BillingInterval | str = BillingInterval.MONTHLY,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CreateSubscriptionResult:
        return await SubscriptionService(self.ctx).create_subscription(
            customer_id, plan_code, interval, success_url, cancel_url
        )

    async def get_subscription(self, customer_id: str) -> Subscription | None:
        return await SubscriptionService(self.ctx).get_subscription(customer_id)

    async def change_subscription(
        self,
        customer_id: str,
        new_plan_code: str,
        new_interval: BillingInterval | str | None = None,
        prorate: bool = True,
    ) -> ChangeSubscriptionResult:
        return await SubscriptionService(self.ctx).change_subscription(
            customer_id, new_plan_code, new_interval, prorate
        )

    async def cancel_subscription(
        self, customer_id: str, mode: CancelMode | str = CancelMode.PERIOD_END
    ) -> Subscription:
        return await SubscriptionService(self.ctx).cancel_subscription(customer_id, mode)

    async def process_renewals(
        self,
        now: datetime | None = None,
        customer_id: str | None = None,
        limit: int | None = None,
        dry_run: bool = False,
    ) -> RenewalResult:
        return await RenewalService(self.ctx).process_renewals(now, customer_id, limit, dry_run)

    # ── Payments ──

    async def create_refund(
        self, payment_id: str, amount: int | None = None, reason: str | None = None
    ) -> RefundOutcome:
        return await RefundService(self.ctx).create_refund(payment_id, amount, reason)

    async def list_payments(
        self, customer_id: str, limit: int | None = None, offset: int = 0
    ) -> list[Payment]:
        return await PaymentService(self.ctx).list_payments(customer_id, limit, offset)

    async def get_payment(self, payment_id: str) -> Payment:
        return await PaymentService(self.ctx).get_payment(payment_id)

    async def expire_stale_checkouts(
        self, older_than: timedelta = timedelta(hours=24), now: datetime | None = None
    ) -> int:
        return await PaymentService(self.ctx).expire_stale_checkouts(older_than, now)

    async def handle_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        """Verify and apply a raw gateway webhook delivery."""
        request = WebhookRequest(body=body, headers={k.lower(): v for k, v in headers.items()})
        return await WebhookReconciler(self.ctx).handle_webhook(request)
