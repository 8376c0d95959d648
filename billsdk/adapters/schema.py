"""Storage schema shared by storage adapters and extended by plugins."""

from dataclasses import dataclass
from enum import Enum

from billsdk.core.errors import ConfigurationError


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"


@dataclass(frozen=True)
class FieldAttribute:
    """Column description consumed by concrete storage adapters."""

    type: FieldType
    required: bool = True
    unique: bool = False
    index: bool = False
    primary_key: bool = False
    references: str | None = None  # "<table>.<field>"


TableSchema = dict[str, FieldAttribute]
Schema = dict[str, TableSchema]


class Tables:
    CUSTOMER = "customer"
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


def _id() -> FieldAttribute:
    return FieldAttribute(FieldType.STRING, primary_key=True)


def _timestamps() -> TableSchema:
    return {
        "created_at": FieldAttribute(FieldType.DATE),
        "updated_at": FieldAttribute(FieldType.DATE),
    }


BASE_SCHEMA: Schema = {
    Tables.CUSTOMER: {
        "id": _id(),
        "external_id": FieldAttribute(FieldType.STRING, unique=True, index=True),
        "email": FieldAttribute(FieldType.STRING, index=True),
        "name": FieldAttribute(FieldType.STRING, required=False),
        "provider_customer_id": FieldAttribute(FieldType.STRING, required=False, index=True),
        "metadata": FieldAttribute(FieldType.JSON, required=False),
        **_timestamps(),
    },
    Tables.SUBSCRIPTION: {
        "id": _id(),
        "customer_id": FieldAttribute(FieldType.STRING, index=True, references="customer.id"),
        "plan_code": FieldAttribute(FieldType.STRING),
        "interval": FieldAttribute(FieldType.STRING),
        "status": FieldAttribute(FieldType.STRING, index=True),
        "provider_subscription_id": FieldAttribute(FieldType.STRING, required=False),
        "provider_checkout_session_id": FieldAttribute(
            FieldType.STRING, required=False, index=True
        ),
        "current_period_start": FieldAttribute(FieldType.DATE),
        "current_period_end": FieldAttribute(FieldType.DATE, index=True),
        "canceled_at": FieldAttribute(FieldType.DATE, required=False),
        "cancel_at": FieldAttribute(FieldType.DATE, required=False),
        "trial_start": FieldAttribute(FieldType.DATE, required=False),
        "trial_end": FieldAttribute(FieldType.DATE, required=False),
        "scheduled_plan_code": FieldAttribute(FieldType.STRING, required=False),
        "scheduled_interval": FieldAttribute(FieldType.STRING, required=False),
        "metadata": FieldAttribute(FieldType.JSON, required=False),
        **_timestamps(),
    },
    Tables.PAYMENT: {
        "id": _id(),
        "customer_id": FieldAttribute(FieldType.STRING, index=True, references="customer.id"),
        "subscription_id": FieldAttribute(
            FieldType.STRING, required=False, index=True, references="subscription.id"
        ),
        "type": FieldAttribute(FieldType.STRING),
        "status": FieldAttribute(FieldType.STRING, index=True),
        "amount": FieldAttribute(FieldType.NUMBER),
        "currency": FieldAttribute(FieldType.STRING),
        "provider_payment_id": FieldAttribute(FieldType.STRING, required=False, index=True),
        "refunded_amount": FieldAttribute(FieldType.NUMBER),
        "metadata": FieldAttribute(FieldType.JSON, required=False),
        **_timestamps(),
    },
}


def resolve_schema(fragments: dict[str, Schema]) -> Schema:
    """Merge plugin schema fragments into the base schema.

    Args:
        fragments: Schema fragment per plugin id.

    Returns:
        A new schema containing the base tables and every plugin table.

    Raises:
        ConfigurationError: If a plugin table collides with a base table or
            with a table declared by another plugin.
    """
    resolved: Schema = {name: dict(fields) for name, fields in BASE_SCHEMA.items()}
    owners = {name: "core" for name in resolved}

    for plugin_id, fragment in fragments.items():
        for table, fields in fragment.items():
            if table in resolved:
                raise ConfigurationError(
                    f"Plugin '{plugin_id}' declares table '{table}' "
                    f"already defined by '{owners[table]}'"
                )
            resolved[table] = dict(fields)
            owners[table] = plugin_id

    return resolved
