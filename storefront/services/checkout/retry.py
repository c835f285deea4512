from pydantic import BaseModel, Field
from storefront.shared.utils import settings


class RetryPolicy(BaseModel):
    """How many times the gateway widget may be opened for one order.

    The API reports whether another attempt is allowed and how long to wait;
    whether to prompt the customer is up to the client.
    """
    max_attempts: int = Field(settings.CHECKOUT_MAX_ATTEMPTS, ge=1)
    backoff_seconds: float = Field(settings.CHECKOUT_RETRY_BACKOFF_SECONDS, ge=0)
    backoff_factor: float = Field(2.0, ge=1)

    def can_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def remaining(self, attempts: int) -> int:
        return max(0, self.max_attempts - attempts)

    def delay_for(self, attempts: int) -> float:
        if attempts <= 0:
            return 0.0
        return self.backoff_seconds * self.backoff_factor ** (attempts - 1)
