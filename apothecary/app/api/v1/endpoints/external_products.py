from __future__ import annotations

from functools import lru_cache
from typing import Literal

from fastapi import APIRouter, Depends, Query

from apothecary.app.api.deps import require_staff
from apothecary.app.core.security import RequestContext
from apothecary.services.janaushadhi import JanAushadhiClient

router = APIRouter(prefix="/external-products")


@lru_cache
def get_janaushadhi_client() -> JanAushadhiClient:
    # une instance par process : le token invité est partagé entre requêtes
    return JanAushadhiClient()


@router.get("")
def list_external_products(
    page_index: int = Query(default=0, ge=0),
    page_size: int = Query(default=100, ge=1, le=500),
    search_text: str = "",
    column_name: str = "id",
    order_by: Literal["asc", "desc"] = "asc",
    _: RequestContext = Depends(require_staff),
    client: JanAushadhiClient = Depends(get_janaushadhi_client),
):
    return client.get_products(
        page_index=page_index,
        page_size=page_size,
        search_text=search_text,
        column_name=column_name,
        order_by=order_by,
    )
