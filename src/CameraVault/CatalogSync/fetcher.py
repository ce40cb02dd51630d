# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.fetcher",
#   "purpose": "Retrieve raw camera records from configured sources.",
#   "sections": [
#     {"id": "fetcher", "name": "Fetcher", "anchor": "class-fetcher", "kind": "class"},
#     {"id": "extract-records", "name": "extract_records", "anchor": "function-extract-records", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Retrieve raw camera records from configured sources.

Responsibilities
----------------
- Turn a :class:`~CameraVault.CatalogSync.config.models.SourceConfig` into a
  lazy, finite iterator of raw record dictionaries.
- Space requests per host through the shared rate limit registry and retry
  transient failures with Tenacity, honouring ``Retry-After``.
- Classify terminal failures as :class:`SourceUnavailable` (unreachable or
  refused) or :class:`MalformedPayload` (unexpected body).

The fetcher performs network I/O only and never touches the catalog.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterator, List, Optional

import httpx

from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.config.models import RetryPolicy, SourceConfig
from CameraVault.CatalogSync.errors import MalformedPayload, SourceUnavailable
from CameraVault.CatalogSync.ratelimit import RateLimitExceeded, RateLimitRegistry
from CameraVault.CatalogSync.tenacity_retry import build_tenacity_retrying

logger = logging.getLogger(__name__)

def extract_records(payload: Any, records_path: Optional[str]) -> List[Any]:
    """Return the record array from a decoded JSON payload.

    ``records_path`` is a dotted key (``"data.cameras"``) used when the payload
    is an object wrapping the array.

    Raises:
        ValueError: If the payload does not have the expected shape
    """
    node = payload
    if records_path:
        for key in records_path.split("."):
            if not isinstance(node, dict) or key not in node:
                raise ValueError(f"missing key '{key}' along records path '{records_path}'")
            node = node[key]
    if not isinstance(node, list):
        raise ValueError(f"expected a JSON array of records, got {type(node).__name__}")
    return node


class Fetcher:
    """Fetch raw records from JSON endpoints or inline static lists."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limits: Optional[RateLimitRegistry] = None,
    ) -> None:
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limits = rate_limits or RateLimitRegistry()

    def fetch(
        self, source: SourceConfig, token: Optional[CancellationToken] = None
    ) -> Iterator[Dict[str, Any]]:
        """Yield raw records for ``source``.

        The iterator is lazy and cannot be restarted; pages are requested only
        as the caller consumes records.

        Raises:
            SourceUnavailable: Retries exhausted or a non-retryable status
            MalformedPayload: Body is not JSON or lacks the record array
        """
        if source.kind == "static":
            for index, record in enumerate(source.records):
                if not isinstance(record, dict):
                    raise MalformedPayload(
                        f"{source.name}: static record {index} is not an object",
                        source=source.name,
                    )
                yield dict(record)
            return

        pages = source.max_pages if source.page_param else 1
        for page in range(1, pages + 1):
            params = {source.page_param: page} if source.page_param else None
            if token is not None and token.is_cancelled():
                return
            payload = self._get_json(source, params, token)
            try:
                records = extract_records(payload, source.records_path)
            except ValueError as e:
                raise MalformedPayload(
                    f"{source.name}: {e}", source=source.name, url=source.url
                ) from e

            if not records:
                break
            logger.debug(f"{source.name}: page {page} returned {len(records)} records")
            for index, record in enumerate(records):
                if not isinstance(record, dict):
                    raise MalformedPayload(
                        f"{source.name}: record {index} on page {page} is not an object",
                        source=source.name,
                        url=source.url,
                    )
                yield record

    def _get_json(
        self,
        source: SourceConfig,
        params: Optional[Dict[str, Any]],
        token: Optional[CancellationToken],
    ) -> Any:
        url = source.url or ""
        try:
            host = httpx.URL(url).host or url
        except httpx.InvalidURL as e:
            raise SourceUnavailable(
                f"{source.name}: invalid url {url!r}", source=source.name, url=url
            ) from e

        def _attempt() -> httpx.Response:
            if self.client.is_closed:
                raise SourceUnavailable(
                    f"{source.name}: HTTP client closed", source=source.name, url=url
                )
            self.rate_limits.acquire(host, token)
            return self.client.get(url, params=params)

        retrying = build_tenacity_retrying(
            self.retry_policy, sleep=token.wait if token is not None else time.sleep
        )
        try:
            response = retrying(_attempt)
        except RateLimitExceeded as e:
            raise SourceUnavailable(f"{source.name}: {e}", source=source.name, url=url) from e
        except httpx.HTTPError as e:
            raise SourceUnavailable(
                f"{source.name}: request failed after retries: {e!r}",
                source=source.name,
                url=url,
            ) from e

        if response.status_code >= 400:
            raise SourceUnavailable(
                f"{source.name}: HTTP {response.status_code} from {url}",
                source=source.name,
                url=url,
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayload(
                f"{source.name}: response is not valid JSON", source=source.name, url=url
            ) from e
