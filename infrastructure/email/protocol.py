"""EmailProvider protocol - services depend on this, not the concrete implementation."""

from typing import Optional, Protocol


class EmailProvider(Protocol):
    async def send_code(
        self, email: str, user_name: Optional[str], code: str, purpose: str
    ) -> bool:
        """Deliver a one-time code. Returns False on failure; never raises."""
        ...
