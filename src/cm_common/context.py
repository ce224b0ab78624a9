"""Explicit acting-user context passed into every core operation."""

from dataclasses import dataclass

from src.cm_common.errors import ForbiddenActionError

SYSTEM_ACTOR_ID = 0


@dataclass(frozen=True)
class RequestContext:
    actor_id: int
    is_staff: bool = False

    @classmethod
    def system(cls) -> "RequestContext":
        """Context for scheduled jobs: staff privileges, no human actor."""
        return cls(actor_id=SYSTEM_ACTOR_ID, is_staff=True)

    def require_staff(self, action: str) -> None:
        if not self.is_staff:
            raise ForbiddenActionError(f"{action} requires staff")

    def require_self_or_staff(self, user_id: int, action: str) -> None:
        if not self.is_staff and self.actor_id != user_id:
            raise ForbiddenActionError(f"{action} is only allowed for the owner or staff")
