"""
Client du catalogue JanAushadhi (médicaments génériques).

Le token invité est mis en cache sur l'instance pendant 8 heures.
Pas de retry automatique : une erreur réseau remonte en ExternalServiceError.
"""

from __future__ import annotations

import time

import requests
import structlog

from apothecary.app.core.config import JANAUSHADHI_BASE_URL, JANAUSHADHI_TIMEOUT
from apothecary.services.errors import ExternalServiceError

logger = structlog.get_logger(__name__)

TOKEN_TTL_SECONDS = 8 * 60 * 60


class JanAushadhiClient:
    def __init__(
        self,
        base_url: str = JANAUSHADHI_BASE_URL,
        timeout: float = JANAUSHADHI_TIMEOUT,
        session: requests.Session | None = None,
        clock=time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock
        self._token: str | None = None
        self._token_expiry = 0.0

    def _get_token(self) -> str:
        if self._token and self._token_expiry > self._clock():
            return self._token

        try:
            response = self.session.get(f"{self.base_url}/auth/generateGuestToken", timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("janaushadhi.token_failed", error=str(e))
            raise ExternalServiceError("Failed to obtain JanAushadhi token") from e

        if data.get("responseCode") != 200 or not data.get("responseBody"):
            logger.error("janaushadhi.token_rejected", response_code=data.get("responseCode"))
            raise ExternalServiceError("Failed to obtain JanAushadhi token")

        self._token = data["responseBody"]
        self._token_expiry = self._clock() + TOKEN_TTL_SECONDS
        return self._token

    def get_products(
        self,
        page_index: int = 0,
        page_size: int = 100,
        search_text: str = "",
        column_name: str = "id",
        order_by: str = "asc",
    ) -> dict:
        token = self._get_token()
        body = {
            "pageIndex": page_index,
            "pageSize": page_size,
            "searchText": search_text,
            "columnName": column_name,
            "orderBy": order_by,
        }
        try:
            response = self.session.post(
                f"{self.base_url}/api/v1/admin/product/getAllProduct",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("janaushadhi.products_failed", error=str(e), page_index=page_index)
            raise ExternalServiceError("Failed to fetch external products") from e
