from pydantic import BaseModel, ConfigDict, field_validator


class ReturnReconcileIn(BaseModel):
    model_config = ConfigDict(extra="ignore")  # checkout redirect may forward extra query params

    # Empty or missing references are rejected by the reference parser (400), not here.
    external_reference: str = ""

    @field_validator("external_reference", mode="before")
    @classmethod
    def strip_reference(cls, v):
        if v is None:
            return ""
        return str(v).strip()


class ReconcileOut(BaseModel):
    ok: bool = True
    idempotent: bool | None = None
    ignored: bool | None = None
    status: str | None = None


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        # MercadoPago sends numeric ids for some topics.
        return None if v is None else str(v)


class WebhookNotificationIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    action: str | None = None
    data: WebhookData | None = None


class SubscriptionOut(BaseModel):
    tier: str
    effective_tier: str
    status: str | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    cancel_at_period_end: bool = False


class UsageOut(BaseModel):
    used: int
    limit: int
    remaining: int
    percent_used: float
    can_use: bool
    tier: str
    days_until_reset: int
