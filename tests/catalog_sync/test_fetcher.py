"""Tests for source fetching over a mocked HTTPX transport."""

from __future__ import annotations

import httpx
import pytest

from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.config.models import SourceConfig
from CameraVault.CatalogSync.errors import MalformedPayload, SourceUnavailable
from CameraVault.CatalogSync.fetcher import Fetcher, extract_records


def _json_source(**overrides) -> SourceConfig:
    fields = {"name": "api", "kind": "json", "url": "https://api.example.com/cameras"}
    fields.update(overrides)
    return SourceConfig(**fields)


@pytest.fixture
def make_fetcher(mock_client, fast_retry, rate_limits):
    def _make(handler) -> Fetcher:
        return Fetcher(mock_client(handler), retry_policy=fast_retry, rate_limits=rate_limits)

    return _make


def test_extract_records_paths():
    assert extract_records([{"a": 1}], None) == [{"a": 1}]
    assert extract_records({"data": {"items": [1, 2]}}, "data.items") == [1, 2]
    with pytest.raises(ValueError):
        extract_records({"data": {}}, "data.items")
    with pytest.raises(ValueError):
        extract_records({"cameras": []}, None)


def test_static_source_yields_copies(make_fetcher, seed_source):
    fetcher = make_fetcher(lambda request: httpx.Response(500))
    records = list(fetcher.fetch(seed_source))
    assert len(records) == 3
    records[0]["brand"] = "changed"
    assert seed_source.records[0]["brand"] == "Canon"


def test_static_source_rejects_non_objects(make_fetcher):
    source = SourceConfig(name="bad", kind="static", records=[{"brand": "A"}])
    source.records.append("not a record")  # type: ignore[arg-type]
    fetcher = make_fetcher(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(MalformedPayload):
        list(fetcher.fetch(source))


def test_json_source_with_records_path(make_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["User-Agent"].startswith("Mozilla/5.0")
        return httpx.Response(200, json={"cameras": [{"brand": "Canon", "model": "EOS R6"}]})

    records = list(make_fetcher(handler).fetch(_json_source(records_path="cameras")))
    assert records == [{"brand": "Canon", "model": "EOS R6"}]


def test_pagination_stops_on_empty_page(make_fetcher):
    pages = {1: [{"brand": "A", "model": "1"}], 2: [{"brand": "B", "model": "2"}], 3: []}
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        requested.append(page)
        return httpx.Response(200, json=pages.get(page, [{"brand": "X", "model": "X"}]))

    source = _json_source(page_param="page", max_pages=10)
    records = list(make_fetcher(handler).fetch(source))

    assert [r["model"] for r in records] == ["1", "2"]
    assert requested == [1, 2, 3]


def test_pagination_is_lazy(make_fetcher):
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.params["page"])
        return httpx.Response(200, json=[{"brand": "A", "model": "1"}])

    iterator = make_fetcher(handler).fetch(_json_source(page_param="page", max_pages=5))
    next(iterator)
    assert requested == ["1"]


def test_transient_status_is_retried(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=[{"brand": "Sony", "model": "FX3"}])

    records = list(make_fetcher(handler).fetch(_json_source()))
    assert len(calls) == 3
    assert records[0]["model"] == "FX3"


def test_retries_exhausted_raises_source_unavailable(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(SourceUnavailable) as excinfo:
        list(make_fetcher(handler).fetch(_json_source()))
    assert excinfo.value.status == 503
    assert len(calls) == 3


def test_client_error_is_not_retried(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    with pytest.raises(SourceUnavailable) as excinfo:
        list(make_fetcher(handler).fetch(_json_source()))
    assert excinfo.value.status == 404
    assert excinfo.value.source == "api"
    assert len(calls) == 1


def test_connection_errors_become_source_unavailable(make_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SourceUnavailable):
        list(make_fetcher(handler).fetch(_json_source()))


def test_invalid_json_is_malformed(make_fetcher):
    fetcher = make_fetcher(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(MalformedPayload):
        list(fetcher.fetch(_json_source()))


def test_wrong_shape_is_malformed(make_fetcher):
    fetcher = make_fetcher(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(MalformedPayload):
        list(fetcher.fetch(_json_source(records_path="cameras")))


def test_cancelled_token_stops_before_request(make_fetcher):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[])

    token = CancellationToken()
    token.cancel()
    assert list(make_fetcher(handler).fetch(_json_source(), token)) == []
    assert calls == []


def test_closed_client_reports_unavailable(make_fetcher):
    fetcher = make_fetcher(lambda request: httpx.Response(200, json=[]))
    fetcher.client.close()
    with pytest.raises(SourceUnavailable):
        list(fetcher.fetch(_json_source()))
