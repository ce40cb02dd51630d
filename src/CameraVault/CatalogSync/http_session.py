# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.http_session",
#   "purpose": "HTTP client factory with polite headers and consistent timeouts",
#   "sections": [
#     {
#       "id": "build-http-client",
#       "name": "build_http_client",
#       "anchor": "function-build-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTP client factory for source fetching and image downloads.

**Purpose**
-----------
Builds the HTTPX client shared by the fetcher and the asset cache:
- Polite User-Agent identifying the crawler
- Connection pooling across the small set of known hosts
- Consistent timeout defaults

**Ownership**
-------------
The client is created once by the engine bootstrap and passed explicitly to its
consumers. The scheduler closes it as a force-stop hook, which aborts any
request still in flight when the shutdown grace period runs out.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from CameraVault.CatalogSync.config.models import HttpClientConfig

LOGGER = logging.getLogger(__name__)


def build_http_client(
    config: Optional[HttpClientConfig] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Create the HTTP client used by every network consumer.

    **Parameters**

        config : HttpClientConfig, optional
            Timeouts, user agent and TLS settings. Defaults apply when omitted.
        transport : httpx.BaseTransport, optional
            Replacement transport (``httpx.MockTransport`` in tests).

    **Returns**

        httpx.Client
            Client with polite headers and pooled connections. Redirects are
            followed because image hosts commonly redirect to CDNs.
    """
    cfg = config or HttpClientConfig()

    timeout = httpx.Timeout(timeout=cfg.timeout_read_s, connect=cfg.timeout_connect_s)

    client = httpx.Client(
        timeout=timeout,
        verify=cfg.verify_tls,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json, image/*;q=0.9, */*;q=0.5",
        },
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        follow_redirects=True,
        transport=transport,
    )

    LOGGER.debug(
        f"HTTP client created: UA={cfg.user_agent}, timeout={cfg.timeout_read_s}s, "
        f"connect={cfg.timeout_connect_s}s"
    )
    return client
