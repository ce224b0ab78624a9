"""FastAPI dependency: get_request_context.

Authentication happens upstream (reverse proxy / identity provider). It
forwards the authenticated user in two headers which are turned into the
explicit RequestContext every service operation receives:

    X-Acting-User: 42
    X-Acting-Role: staff | member

Usage in any router:
    from src.cm_gateway.dependencies import get_request_context

    @router.get("/mine")
    async def mine(ctx: Annotated[RequestContext, Depends(get_request_context)]):
        ...
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from src.cm_common.context import RequestContext
from src.cm_common.errors import MissingActorError

STAFF_ROLES = frozenset({"staff", "admin"})


async def get_request_context(
    request: Request,
    x_acting_user: Annotated[str | None, Header()] = None,
    x_acting_role: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Raises MissingActorError (401) when the acting user header is absent or malformed."""
    if not x_acting_user:
        raise MissingActorError()
    try:
        actor_id = int(x_acting_user)
    except ValueError:
        raise MissingActorError() from None

    ctx = RequestContext(
        actor_id=actor_id,
        is_staff=(x_acting_role or "").lower() in STAFF_ROLES,
    )
    # Picked up by RequestLogMiddleware
    request.state.actor_id = ctx.actor_id
    return ctx


async def require_staff(
    ctx: Annotated[RequestContext, Depends(get_request_context)],
) -> RequestContext:
    """Router-level guard for staff-only endpoints."""
    ctx.require_staff("this endpoint")
    return ctx
