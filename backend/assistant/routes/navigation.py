"""
Semantic navigation.

POST /navigation/resolve
Returns the single best destination for a query together with the
caller's access to it, so the client can show a login prompt.
"""
from typing import Optional

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel

from assistant.core.logging import get_logger
from assistant.models.access import Tier
from assistant.services.access.controller import get_access_controller
from assistant.services.search.destination import can_access_destination, get_destination_resolver

logger = get_logger(__name__)
router = APIRouter()


class NavigationRequest(BaseModel):
    query: str = ""
    current_path: str = "/"


@router.post("/resolve")
async def resolve_destination(
    body: NavigationRequest,
    x_user_id: Optional[str] = Header(None),
):
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    state = await get_access_controller().get_state_or_guest(x_user_id)
    match = await get_destination_resolver().resolve(body.query, body.current_path, state.tier)
    if match is None:
        return {"match": None, "access_granted": False, "requires_login": False}

    granted = can_access_destination(state.tier, match)
    return {
        "match": match.model_dump(mode="json"),
        "access_granted": granted,
        "requires_login": not granted and state.tier == Tier.GUEST,
    }
