"""Credit balance gate checked before enqueueing chargeable jobs."""

from typing import Literal

from fortune.db.pool import DatabasePoolManager
from fortune.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CreditType = Literal["basic", "cassandra", "chat"]

CREDIT_COST: dict[str, int] = {
    "basic": 1,
    "cassandra": 3,
    "chat": 1,
}


class CreditsService:
    def __init__(self, db: DatabasePoolManager):
        self.db = db

    async def has_sufficient_credits(self, user_id: str, credit_type: CreditType = "basic") -> bool:
        """True when the user can afford one job of credit_type. Errors count as no."""
        cost = CREDIT_COST.get(credit_type, 1)
        try:
            balance = await self.db.fetch_val(
                "SELECT credits FROM user_credits WHERE user_id = %s", (user_id,)
            )
        except Exception as e:
            logger.warning("Failed to check credits", user_id=user_id, error=str(e))
            return False

        if balance is None:
            logger.info("No credit balance found", user_id=user_id)
            return False

        return balance >= cost
