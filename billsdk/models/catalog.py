"""Plan catalog: immutable plans, prices and features validated once at construction."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from billsdk.core.errors import FeatureNotFoundError, InvalidRequestError, PlanNotFoundError


class BillingInterval(str, Enum):
    """Billing interval enum."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class FeatureType(str, Enum):
    """How a feature is granted. Quantities are not tracked for metered or seat features."""

    BOOLEAN = "boolean"
    METERED = "metered"
    SEATS = "seats"


class Feature(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    name: str
    type: FeatureType = FeatureType.BOOLEAN


class Price(BaseModel):
    """A price attached to a plan. Amounts are integer minor currency units."""

    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., ge=0)
    interval: BillingInterval = BillingInterval.MONTHLY
    currency: str = "usd"
    trial_days: int = Field(default=0, ge=0)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.lower()

    @property
    def is_free(self) -> bool:
        return self.amount == 0


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    name: str
    description: str | None = None
    is_public: bool = True
    prices: tuple[Price, ...] = Field(..., min_length=1)
    features: tuple[str, ...] = ()

    @model_validator(mode="after")
    def check_unique_intervals(self) -> "Plan":
        intervals = [p.interval for p in self.prices]
        if len(set(intervals)) != len(intervals):
            raise ValueError(f"Plan '{self.code}' declares more than one price per interval")
        return self

    def price_for(self, interval: BillingInterval | str) -> Price:
        """Return the price for ``interval`` or raise InvalidRequestError."""
        try:
            interval = BillingInterval(interval)
        except ValueError:
            raise InvalidRequestError(f"Invalid billing interval: {interval}") from None
        for price in self.prices:
            if price.interval == interval:
                return price
        raise InvalidRequestError(f"Plan '{self.code}' has no {interval.value} price")

    def grants(self, feature_code: str) -> bool:
        return feature_code in self.features


class PlanCatalog(BaseModel):
    """Validated, read-only collection of plans and features."""

    model_config = ConfigDict(frozen=True)

    features: tuple[Feature, ...] = ()
    plans: tuple[Plan, ...] = ()
    default_plan_code: str | None = None

    @model_validator(mode="after")
    def check_references(self) -> "PlanCatalog":
        feature_codes = [f.code for f in self.features]
        duplicates = {c for c in feature_codes if feature_codes.count(c) > 1}
        if duplicates:
            raise ValueError(f"Duplicate feature codes: {sorted(duplicates)}")

        plan_codes = [p.code for p in self.plans]
        duplicates = {c for c in plan_codes if plan_codes.count(c) > 1}
        if duplicates:
            raise ValueError(f"Duplicate plan codes: {sorted(duplicates)}")

        declared = set(feature_codes)
        for plan in self.plans:
            unknown = [code for code in plan.features if code not in declared]
            if unknown:
                raise ValueError(f"Plan '{plan.code}' references undeclared features: {unknown}")

        if self.default_plan_code is not None and self.default_plan_code not in plan_codes:
            raise ValueError(f"Default plan '{self.default_plan_code}' is not declared")
        return self

    def get_plan(self, code: str) -> Plan:
        for plan in self.plans:
            if plan.code == code:
                return plan
        raise PlanNotFoundError(f"Plan '{code}' not found")

    def find_plan(self, code: str) -> Plan | None:
        return next((p for p in self.plans if p.code == code), None)

    def list_plans(self, include_private: bool = False) -> list[Plan]:
        return [p for p in self.plans if include_private or p.is_public]

    def get_feature(self, code: str) -> Feature:
        for feature in self.features:
            if feature.code == code:
                return feature
        raise FeatureNotFoundError(f"Feature '{code}' not found")

    @property
    def default_plan(self) -> Plan | None:
        if self.default_plan_code is None:
            return None
        return self.get_plan(self.default_plan_code)
