"""Error kinds raised by the monetization core."""


class MonetizationError(Exception):
    """Base class; `message` is safe to show to the end user."""

    retryable = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = "Monetization request failed."


class UnknownPurchaseType(MonetizationError):
    default_message = "Invalid purchase type."


class UnsupportedCurrency(MonetizationError):
    default_message = "Unsupported currency."


class ListingRequired(MonetizationError):
    default_message = "listingId is required for this purchase type."


class GatewayUnavailable(MonetizationError):
    """Payment processor call failed, timed out or returned an unparseable body."""

    retryable = True
    default_message = "The payment provider is unavailable. Please retry shortly."


class InvalidSignature(MonetizationError):
    default_message = "invalid signature"


class PurchaseNotFound(MonetizationError):
    default_message = "Transaction record not found."


class UserNotFound(MonetizationError):
    default_message = "User not found."


class ListingNotFound(MonetizationError):
    default_message = "Listing not found."


class NotPremium(MonetizationError):
    default_message = "Only Premium members can use spotlight credits."


class NoCreditsRemaining(MonetizationError):
    default_message = "You have no spotlight credits remaining."
