"""Customer record."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Customer(BaseModel):
    """A billing customer, correlated with the host application by ``external_id``."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: str
    email: str
    name: str | None = None
    provider_customer_id: str | None = None
    metadata: dict[str, Any] | None = Field(default=None)
    created_at: datetime
    updated_at: datetime
