"""Tests for the httpx-backed manifest fetcher."""

import httpx
import pytest

from converge.adapters.http import HttpManifestFetcher
from converge.core.errors import ErrorCategory, NetworkError


def _fetcher(handler) -> HttpManifestFetcher:
    return HttpManifestFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestHttpManifestFetcher:
    def test_returns_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/octavia-amphora-images.sha256sum"
            return httpx.Response(200, text="abc123 cirros.qcow2\n")

        with _fetcher(handler) as fetcher:
            body = fetcher.fetch("http://up:8080/octavia-amphora-images.sha256sum")
        assert body == "abc123 cirros.qcow2\n"

    def test_error_status_raises_network_error(self):
        fetcher = _fetcher(lambda request: httpx.Response(404))

        with pytest.raises(NetworkError) as exc:
            fetcher.fetch("http://up:8080/missing")

        assert "404" in exc.value.message
        assert exc.value.context.url == "http://up:8080/missing"
        assert exc.value.category is ErrorCategory.NETWORK
        assert exc.value.retryable

    def test_transport_error_raises_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as exc:
            _fetcher(handler).fetch("http://up:8080/x")
        assert isinstance(exc.value.cause, httpx.ConnectError)

    def test_injected_client_not_closed(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        HttpManifestFetcher(client=client).close()
        assert not client.is_closed
