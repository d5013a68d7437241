"""Domain exceptions for the CityPulse ledger core.

Every exception carries the HTTP status it maps to and a user-facing message.
Handlers in citypulse.main turn them into JSON responses; the message is shown
verbatim to the citizen, so it must be specific and actionable.
"""


class CityPulseError(Exception):
    """Base exception for all CityPulse-specific errors."""

    status_code = 500

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationError(CityPulseError):
    """Bad input shape or size. Never retried."""

    status_code = 400


class NotFoundError(CityPulseError):
    status_code = 404


class ReportNotFound(NotFoundError):
    def __init__(self, report_id):
        super().__init__(message=f"Report not found: {report_id}")
        self.report_id = report_id


class RewardNotFound(NotFoundError):
    def __init__(self, reward_id):
        super().__init__(message=f"Reward not found: {reward_id}")
        self.reward_id = reward_id


class RedemptionNotFound(NotFoundError):
    def __init__(self, redemption_id):
        super().__init__(message=f"Redemption not found: {redemption_id}")
        self.redemption_id = redemption_id


class BusinessRuleError(CityPulseError):
    """A request that is well-formed but rejected by a ledger rule."""

    status_code = 409


class InsufficientCredits(BusinessRuleError):
    def __init__(self, required: int, available: int):
        super().__init__(
            message=f"You need {required} credits but have {max(0, available)}.",
        )
        self.required = required
        self.available = available


class OutOfStock(BusinessRuleError):
    def __init__(self, reward_title: str):
        super().__init__(message=f"Sorry, '{reward_title}' is out of stock.")
        self.reward_title = reward_title


class RewardUnavailable(BusinessRuleError):
    def __init__(self, reward_title: str):
        super().__init__(message=f"'{reward_title}' is no longer available for redemption.")
        self.reward_title = reward_title


class InvalidStatusTransition(BusinessRuleError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot move a redemption from '{current}' to '{requested}'.",
        )
        self.current = current
        self.requested = requested


class RateLimited(CityPulseError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message=message)
        self.retry_after = retry_after


class UpstreamUnavailable(CityPulseError):
    """The AI model or blob store cannot take the request right now."""

    status_code = 503


class UpstreamTimeout(CityPulseError):
    status_code = 408


class PersistenceError(CityPulseError):
    """A write could not be durably recorded; nothing was applied."""

    status_code = 500

    def __init__(self, operation: str, original_error: Exception | None = None):
        super().__init__(
            message=f"Could not complete {operation}.",
            details="No changes were saved. It is safe to try again.",
        )
        self.operation = operation
        self.original_error = original_error
