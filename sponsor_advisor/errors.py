"""Error taxonomy for the advisor.

Every error that reaches a caller is an AdvisorError carrying a category, an
HTTP status and a short user-facing message. Provider error text is logged,
never placed in user_message.
"""


class AdvisorError(Exception):
    category = "failure"
    status_code = 500
    default_message = "Failed to send message. Please try again."

    def __init__(self, user_message: str | None = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class InputError(AdvisorError):
    """Missing/empty message, malformed filters or invalid search criteria."""

    category = "input"
    status_code = 400
    default_message = "Invalid request."


class UnauthorizedError(AdvisorError):
    category = "unauthorized"
    status_code = 401
    default_message = "Unauthorized."


class ConversationNotFoundError(AdvisorError):
    category = "not_found"
    status_code = 404
    default_message = "Conversation not found."


class UnresolvedLocationError(AdvisorError):
    """A search was attempted without a resolved origin."""

    category = "location"
    status_code = 400
    default_message = "We need your location to find teams near you."


class UpstreamRateLimitError(AdvisorError):
    category = "rate_limited"
    status_code = 429
    default_message = "Too many requests. Please wait a moment and try again."


class UpstreamQuotaExhaustedError(AdvisorError):
    category = "quota_exhausted"
    status_code = 402
    default_message = "AI credits exhausted. Please add credits to continue using the advisor."


class TransientIOError(AdvisorError):
    """Persistence, candidate store, timeout or other retryable downstream failure."""

    category = "failure"
    status_code = 500
    default_message = "Failed to send message. Please try again."


class ContractViolation(Exception):
    """A reply referenced data outside the current turn's candidates. A bug, not a user error."""
