"""
Admin support endpoints.

GET /admin/cart/{user_id} — read a customer's cart rows straight from Supabase
with the service-role client, for support staff investigating a quote.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth import require_api_key
from app.db import supabase_admin

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/cart/{user_id}", dependencies=[Depends(require_api_key)])
async def get_user_cart(user_id: str) -> dict:
    """
    Return the cart rows for a user.

    Raises:
        HTTPException: 403 when no service-role key is configured,
                       500 on database error.
    """
    if supabase_admin is None:
        raise HTTPException(status_code=403, detail="Service role key not configured")

    try:
        result = (
            supabase_admin.table("carts")
            .select("*")
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Cart lookup failed for user {user_id!r}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch cart")

    return {"data": result.data or []}
