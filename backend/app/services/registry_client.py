"""Company-registry API client."""

import asyncio
from datetime import date
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

from app.core.config import Settings, settings
from app.core.exceptions import ExternalServiceError, NotFoundError
from app.schemas.lead import CompanyProfile

logger = structlog.get_logger(__name__)

API_VERSION = "1.3"
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class RegistryClient:
    """
    Fetches company profiles by CIN.

    Transient failures (timeouts, 429, 5xx) are retried with exponential
    backoff up to ``REGISTRY_MAX_RETRIES``; 401 and 404 fail immediately.
    """

    def __init__(
        self,
        config: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
        backoff_seconds: float = 0.5,
    ):
        self.base_url = config.REGISTRY_BASE_URL.rstrip("/")
        self.api_key = config.REGISTRY_API_KEY
        self.timeout = config.REGISTRY_TIMEOUT_SECONDS
        self.max_retries = config.REGISTRY_MAX_RETRIES
        self.backoff_seconds = backoff_seconds
        self._client = client

    async def fetch_company(self, cin: str) -> Tuple[CompanyProfile, Dict[str, Any]]:
        """Return the parsed profile and the raw payload for caching."""
        if not self.api_key:
            raise ExternalServiceError("Company registry API key is not configured")

        url = f"{self.base_url}/companies/{cin}/comprehensive-details"
        headers = {
            "x-api-key": self.api_key,
            "x-api-version": API_VERSION,
            "Accept": "application/json",
        }
        log = logger.bind(cin=cin)

        attempt = 0
        while True:
            try:
                response = await self._get(url, headers)
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    log.error("registry_unreachable", attempt=attempt, error=str(exc))
                    raise ExternalServiceError(
                        "Company registry is unreachable", details={"cin": cin}
                    ) from exc
                log.warning("registry_transport_error", attempt=attempt, error=str(exc))
            else:
                if response.status_code == 200:
                    payload = response.json()
                    log.info("registry_profile_fetched", attempt=attempt)
                    return parse_profile(payload), payload
                if response.status_code == 404:
                    raise NotFoundError(
                        f"Company {cin} not found in the registry",
                        details={"cin": cin},
                    )
                if response.status_code == 401:
                    log.error("registry_unauthorized")
                    raise ExternalServiceError("Company registry rejected the API key")
                if response.status_code not in RETRYABLE_STATUS or attempt >= self.max_retries:
                    log.error("registry_error", status=response.status_code, attempt=attempt)
                    raise ExternalServiceError(
                        f"Company registry returned {response.status_code}",
                        details={"cin": cin, "status": response.status_code},
                    )
                log.warning("registry_retryable_status", status=response.status_code, attempt=attempt)

            await asyncio.sleep(self.backoff_seconds * (2 ** attempt))
            attempt += 1

    async def _get(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=headers)


def parse_profile(payload: Dict[str, Any]) -> CompanyProfile:
    data = payload.get("data") or {}
    company = data.get("company") or {}
    if not company.get("cin") or not company.get("legal_name"):
        raise ExternalServiceError("Company registry response is missing the company record")

    incorporation = company.get("incorporation_date")
    return CompanyProfile(
        cin=company["cin"],
        legal_name=company["legal_name"],
        company_status=company.get("status"),
        classification=company.get("classification"),
        paid_up_capital=company.get("paid_up_capital"),
        authorized_capital=company.get("authorized_capital"),
        pan=company.get("pan"),
        website=company.get("website"),
        incorporation_date=date.fromisoformat(incorporation[:10]) if incorporation else None,
        compliance_status=company.get("active_compliance"),
        director_count=len(data.get("authorized_signatories") or []),
        gst_count=len(data.get("gst_details") or []),
    )
