"""
Model selector listing.

GET /models
"""
from typing import Optional

from fastapi import APIRouter, Header, HTTPException

from assistant.core.logging import get_logger
from assistant.services.access.controller import get_access_controller
from assistant.services.access.listing import build_model_listing
from assistant.services.catalog import get_model_catalog

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def list_models(x_user_id: Optional[str] = Header(None)):
    state = await get_access_controller().get_state_or_guest(x_user_id)
    try:
        models = await get_model_catalog().list_models()
    except Exception as e:
        logger.error(
            "model_listing_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=503, detail="Model catalog unavailable")
    return build_model_listing(state, models)
