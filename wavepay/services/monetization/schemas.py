"""Request/response schemas and the activation result union.

`ActivationResult` is a discriminated union on `kind`: each purchase type's
activation path has its own strongly typed `data`, and every failed path shares
`ActivationFailed`.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes as camelCase for clients while accepting snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitializePaymentRequest(CamelModel):
    type: str = Field(min_length=1)
    listing_id: str | None = None
    currency: str = "NGN"


class InitializePaymentResponse(CamelModel):
    authorization_url: str
    reference: str


class VerifyPaymentRequest(CamelModel):
    reference: str = Field(min_length=1)


class VerifyResult(CamelModel):
    success: bool
    message: str | None = None
    retryable: bool = False


class QuotaCheck(CamelModel):
    allowed: bool
    remaining: int
    is_premium: bool


class ChatQuotaCheck(QuotaCheck):
    has_chat_pass: bool = False


class ListingQuotaCheck(QuotaCheck):
    current_count: int


class MonetizationStatus(CamelModel):
    tier: str
    is_premium: bool
    has_chat_pass: bool
    chat_pass_expiry: datetime | None
    daily_chats_used: int
    daily_chats_remaining: int
    spotlight_credits: int
    active_listings: int
    listings_remaining: int


class CrossListData(CamelModel):
    listing_id: str


class SpotlightData(CamelModel):
    listing_id: str
    days: int
    spotlight_expiry: datetime
    used_credit: bool = False
    credits_remaining: int | None = None


class BoostData(CamelModel):
    listing_id: str
    pool_size: int
    notified_count: int
    high_intent_count: int
    top_score: int
    region_name: str | None = None


class PremiumData(CamelModel):
    subscription_id: str
    expires_at: datetime
    spotlight_credits: int


class ActivationBase(CamelModel):
    success: bool = True
    message: str


class CrossListActivation(ActivationBase):
    kind: Literal["cross_list"] = "cross_list"
    data: CrossListData


class SpotlightActivation(ActivationBase):
    kind: Literal["spotlight"] = "spotlight"
    data: SpotlightData


class AggressiveBoostActivation(ActivationBase):
    kind: Literal["aggressive_boost"] = "aggressive_boost"
    data: BoostData


class PremiumActivation(ActivationBase):
    kind: Literal["premium"] = "premium"
    data: PremiumData


class ChatPassActivation(ActivationBase):
    """Deprecated purchase type; activation is an explicit no-op."""

    kind: Literal["chat_pass"] = "chat_pass"
    data: None = None


class ActivationFailed(ActivationBase):
    kind: Literal["failed"] = "failed"
    success: bool = False
    error: str
    data: None = None


ActivationResult = Annotated[
    Union[
        CrossListActivation,
        SpotlightActivation,
        AggressiveBoostActivation,
        PremiumActivation,
        ChatPassActivation,
        ActivationFailed,
    ],
    Field(discriminator="kind"),
]
