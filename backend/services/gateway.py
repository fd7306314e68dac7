"""
Client de la plateforme d'inventaire externe.

Adaptateur I/O pur : authentifie, pagine, valide la forme de la réponse.
Ne rejoue jamais une requête ; c'est à l'appelant de le faire (voir
ExternalApiError.retryable).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from backend.app.core.config import settings
from backend.app.core.errors import ExternalApiError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class GatewayPage:
    records: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False


def _clean_account_path(account: str) -> str:
    """
    Accepte "acme", "acme/api", "acme.finaleinventory.com" ou l'URL complète
    "https://app.finaleinventory.com/acme/api/".
    """
    path = account.strip()
    for prefix in ("https://", "http://"):
        if path.startswith(prefix):
            path = path[len(prefix):]
    if ".finaleinventory.com" in path:
        host, _, rest = path.partition(".finaleinventory.com")
        segments = [s for s in rest.split("/") if s and s != "api"]
        path = segments[0] if segments else host
    path = path.strip("/")
    if path.endswith("/api"):
        path = path[: -len("/api")]
    return path.strip("/")


class InventoryGateway:
    def __init__(
        self,
        base_url: str,
        account: str,
        api_key: str | None,
        api_secret: str | None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.api_url = f"{base_url.rstrip('/')}/{_clean_account_path(account)}/api"
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key and api_secret:
            self.session.auth = (api_key, api_secret)
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})

    @classmethod
    def from_settings(cls) -> "InventoryGateway":
        return cls(
            base_url=settings.INVENTORY_API_BASE_URL,
            account=settings.INVENTORY_API_ACCOUNT,
            api_key=settings.INVENTORY_API_KEY,
            api_secret=settings.INVENTORY_API_SECRET,
            timeout=settings.INVENTORY_API_TIMEOUT,
        )

    # ---------- HTTP ----------
    def _get_json(self, resource: str, params: dict[str, Any]) -> Any:
        url = f"{self.api_url}/{resource}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ExternalApiError(f"Inventory API unreachable: {exc}", retryable=True) from exc

        if not response.ok:
            raise ExternalApiError(
                f"Inventory API error {response.status_code} on {resource}",
                status=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUSES,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalApiError(f"Malformed payload from {resource}: invalid JSON") from exc

    def _fetch_records(self, resource: str, key: str, offset: int, limit: int) -> GatewayPage:
        payload = self._get_json(resource, {"limit": limit, "offset": offset})

        # liste directe (cas le plus courant) ou objet {"products": [...]}
        if isinstance(payload, list):
            records = payload
        elif isinstance(payload, dict) and isinstance(payload.get(key), list):
            records = payload[key]
        else:
            raise ExternalApiError(f"Malformed payload from {resource}: expected a list of records")

        if any(not isinstance(r, dict) for r in records):
            raise ExternalApiError(f"Malformed payload from {resource}: records must be objects")

        logger.debug("Fetched %s page offset=%s limit=%s -> %s records", resource, offset, limit, len(records))
        return GatewayPage(records=records, has_more=len(records) == limit)

    # ---------- API ----------
    def fetch_page(self, offset: int, limit: int) -> GatewayPage:
        """Produits et stock par location."""
        return self._fetch_records("product", "products", offset, limit)

    def fetch_vendor_page(self, offset: int, limit: int) -> GatewayPage:
        return self._fetch_records("vendor", "vendors", offset, limit)

    def test_connection(self) -> bool:
        try:
            self.fetch_page(0, 1)
        except ExternalApiError as exc:
            logger.warning("Inventory API connection test failed: %s", exc)
            return False
        return True
