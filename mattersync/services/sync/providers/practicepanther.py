"""
PracticePanther v2 REST API
Lists matters, contacts, users, tasks, invoices and expenses page by page

Pagination: page=1,2,... with per_page=S. When the response is a
{"data": [...], "meta": {...}} envelope, paging continues while
meta.current_page < meta.total_pages (the server may cap S). For a bare
array the last page is the first one shorter than S (or empty).
Incremental runs add updated_since=<ISO timestamp>.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from mattersync.core.circuit_breakers import RateLimitedError, parse_retry_after, with_rate_limit_retry
from mattersync.models.schemas.sync import ConnectionCheckResponse
from mattersync.services.sync.entities import ENTITY_SPECS, EntityType
from mattersync.services.sync.errors import CredentialError, FetchError
from mattersync.services.sync.oauth import AccessTokenProvider

logger = logging.getLogger(__name__)

CONNECTION_CHECK_TIMEOUT = 10.0


def _format_since(since: Union[datetime, str]) -> str:
    if isinstance(since, datetime):
        return since.isoformat()
    return str(since)


def _has_more_pages(meta: Optional[Dict[str, Any]], batch_size: int, per_page: int) -> bool:
    """meta.current_page < meta.total_pages when the server reports it, else a full page."""
    if meta and meta.get("current_page") is not None and meta.get("total_pages") is not None:
        return int(meta["current_page"]) < int(meta["total_pages"])
    return batch_size >= per_page


class PracticePantherFetcher:
    """Pulls complete record lists for one entity type at a time."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: AccessTokenProvider,
        base_url: str = "https://app.practicepanther.com/api/v2",
        page_sizes: Optional[Dict[str, int]] = None,
        max_pages: int = 500,
        timeout: float = 30.0,
        rate_limit_max_attempts: int = 4
    ):
        self.http_client = http_client
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.page_sizes = page_sizes or {}
        self.max_pages = max_pages
        self.timeout = timeout
        self.rate_limit_max_attempts = rate_limit_max_attempts

    def page_size_for(self, entity_type: EntityType) -> int:
        return self.page_sizes.get(entity_type.value) or ENTITY_SPECS[entity_type].default_page_size

    async def fetch(
        self,
        entity_type: EntityType,
        since: Optional[Union[datetime, str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch every record of one type, optionally only those updated since a watermark.

        Args:
            entity_type: Which PracticePanther collection to list
            since: Watermark; None means a full listing

        Returns:
            All records across all pages, in API order (no deduplication)

        Raises:
            CredentialError: If no access token can be obtained
            FetchError: On HTTP, transport or payload failure, or when
                rate limiting outlasts the retry budget
        """
        spec = ENTITY_SPECS[entity_type]
        per_page = self.page_size_for(entity_type)
        url = f"{self.base_url}{spec.endpoint}"

        token = await self.token_provider.get_valid_access_token()
        get_page = with_rate_limit_retry(max_attempts=self.rate_limit_max_attempts)(self._get_page)

        logger.info(f"📥 Fetching PracticePanther {spec.endpoint} (per_page={per_page}, since={since or 'full'})")

        records: List[Dict[str, Any]] = []
        for page in range(1, self.max_pages + 1):
            params: Dict[str, Any] = {"page": page, "per_page": per_page}
            if since:
                params["updated_since"] = _format_since(since)

            try:
                batch, meta = await get_page(entity_type, url, token, params)
            except RateLimitedError as e:
                raise FetchError(
                    entity_type.value,
                    f"still rate limited after {self.rate_limit_max_attempts} attempts: {e}",
                    status_code=429
                ) from e

            records.extend(batch)
            logger.debug(f"   page {page}: {len(batch)} {entity_type.value}")

            if not batch or not _has_more_pages(meta, len(batch), per_page):
                break
        else:
            logger.warning(
                f"⚠️  Stopped {entity_type.value} pagination at max_pages={self.max_pages}; results may be incomplete"
            )

        logger.info(f"✅ Fetched {len(records)} {entity_type.value} from PracticePanther")
        return records

    async def _get_page(
        self,
        entity_type: EntityType,
        url: str,
        token: str,
        params: Dict[str, Any]
    ) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        """One page of records, plus the envelope's meta block when there is one."""
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

        try:
            response = await self.http_client.get(url, headers=headers, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise FetchError(entity_type.value, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise FetchError(entity_type.value, f"transport error: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(
                f"PracticePanther rate limit on {url}",
                retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )

        if response.status_code in (401, 403):
            logger.error(f"❌ PracticePanther rejected credentials: {response.status_code}")
            raise FetchError(entity_type.value, "authentication rejected", status_code=response.status_code)

        if response.status_code >= 400:
            logger.error(f"❌ PracticePanther API error: {response.status_code} - {response.text[:500]}")
            raise FetchError(
                entity_type.value,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(entity_type.value, "response was not valid JSON") from e

        meta = None
        if isinstance(payload, dict):
            meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else None
            payload = payload.get("data")
        if not isinstance(payload, list):
            raise FetchError(entity_type.value, "expected a JSON array of records")

        return payload, meta

    async def test_connection(self) -> ConnectionCheckResponse:
        """
        One-record request against /contacts to check credentials and reachability.

        Never raises: failures come back with success=False. The
        x-ratelimit-* headers are reported when the API sends them.
        """
        url = f"{self.base_url}{ENTITY_SPECS[EntityType.CONTACT].endpoint}"

        try:
            token = await self.token_provider.get_valid_access_token()
            response = await self.http_client.get(
                url,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                params={"per_page": 1},
                timeout=CONNECTION_CHECK_TIMEOUT
            )
        except CredentialError as e:
            logger.warning(f"⚠️  PracticePanther connection check: credentials unavailable: {e}")
            return ConnectionCheckResponse(success=False, message=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"⚠️  PracticePanther connection check failed: {e}")
            return ConnectionCheckResponse(success=False, message=f"transport error: {e}")

        if response.status_code >= 400:
            logger.warning(f"⚠️  PracticePanther connection check: HTTP {response.status_code}")
            return ConnectionCheckResponse(
                success=False,
                message=f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        logger.info("✅ PracticePanther connection check passed")
        return ConnectionCheckResponse(
            success=True,
            message="Connection successful",
            status_code=response.status_code,
            api_limit=response.headers.get("x-ratelimit-limit"),
            api_remaining=response.headers.get("x-ratelimit-remaining"),
            api_reset=response.headers.get("x-ratelimit-reset")
        )
