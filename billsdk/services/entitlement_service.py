"""Service for checking feature access."""

from billsdk.core.context import BillingContext
from billsdk.models.catalog import Plan
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository
from billsdk.schemas.billing import FeatureAccess


class EntitlementService:
    """Derives feature access from the customer's subscription and the plan catalog."""

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx
        self.customer_repo = CustomerRepository(ctx.storage)
        self.subscription_repo = SubscriptionRepository(ctx.storage)

    async def resolve_plan(self, customer_id: str) -> Plan | None:
        """Plan granting features right now: the trialing/active subscription's, else the default plan.

        Unknown customers get the default plan as well, since entitlement
        checks often run before the first billing interaction.
        """
        customer = await self.customer_repo.get_by_external_id(customer_id)
        if customer is not None:
            subscription = await self.subscription_repo.get_entitled_for_customer(customer.id)
            if subscription is not None:
                return self.ctx.catalog.find_plan(subscription.plan_code)
        return self.ctx.catalog.default_plan

    async def check_feature(self, customer_id: str, feature_code: str) -> FeatureAccess:
        """Check whether a customer has access to a feature.

        Raises:
            FeatureNotFoundError: If the feature is not declared in the catalog.
        """
        feature = self.ctx.catalog.get_feature(feature_code)
        plan = await self.resolve_plan(customer_id)
        return FeatureAccess(
            code=feature.code,
            name=feature.name,
            type=feature.type,
            allowed=plan is not None and plan.grants(feature.code),
        )

    async def list_features(self, customer_id: str) -> list[FeatureAccess]:
        plan = await self.resolve_plan(customer_id)
        return [
            FeatureAccess(
                code=feature.code,
                name=feature.name,
                type=feature.type,
                allowed=plan is not None and plan.grants(feature.code),
            )
            for feature in self.ctx.catalog.features
        ]
