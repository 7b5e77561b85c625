"""Tests for the backchannel client and its transports."""

import gzip
from unittest.mock import MagicMock

import httpx
import pytest

from keyway.auth.models.errors import (
    CertificateValidationError,
    ResponseTooLargeError,
)
from keyway.auth.services.backchannel import (
    MAX_RESPONSE_CONTENT_BUFFER_SIZE,
    Backchannel,
    CertificateValidatingTransport,
    DefaultBackchannelHttpHandler,
    TransportHttpHandler,
)

TOKEN_ENDPOINT = "https://auth.example.com/token"


class FakeSSLObject:
    def __init__(self, der_certificate: bytes | None):
        self._der_certificate = der_certificate

    def getpeercert(self, binary_form: bool = False):
        return self._der_certificate


class FakeNetworkStream:
    def __init__(self, ssl_object: FakeSSLObject | None):
        self._ssl_object = ssl_object
        self.closed = False

    def get_extra_info(self, info: str):
        return self._ssl_object if info == "ssl_object" else None

    async def aclose(self):
        self.closed = True


def tls_handshake_transport(network_stream: FakeNetworkStream) -> httpx.MockTransport:
    """Mock transport that reports a TLS handshake before responding."""

    async def handler(request: httpx.Request) -> httpx.Response:
        trace = request.extensions.get("trace")
        if trace is not None:
            await trace("connection.start_tls.started", {})
            await trace(
                "connection.start_tls.complete", {"return_value": network_stream}
            )
        return httpx.Response(200, json={"access_token": "xyz"})

    return httpx.MockTransport(handler)


class TestHandlers:
    """Test handler capabilities and transport construction."""

    def test_default_handler_supports_certificate_validation(self):
        assert DefaultBackchannelHttpHandler().supports_certificate_validation()

    def test_transport_handler_does_not_support_certificate_validation(self):
        handler = TransportHttpHandler(httpx.MockTransport(lambda request: None))
        assert not handler.supports_certificate_validation()

    def test_default_handler_without_callback_uses_plain_transport(self):
        # Act
        transport = DefaultBackchannelHttpHandler().create_transport()

        # Assert
        assert isinstance(transport, httpx.AsyncHTTPTransport)

    def test_default_handler_with_callback_validates_certificates(self):
        # Arrange
        handler = DefaultBackchannelHttpHandler()
        callback = MagicMock(return_value=True)
        handler.server_certificate_validation_callback = callback

        # Act
        transport = handler.create_transport()

        # Assert
        assert isinstance(transport, CertificateValidatingTransport)
        assert transport.callback is callback

    def test_transport_handler_returns_wrapped_transport(self):
        # Arrange
        mock_transport = httpx.MockTransport(lambda request: None)

        # Act & Assert
        assert TransportHttpHandler(mock_transport).create_transport() is mock_transport


class TestBackchannel:
    """Test backchannel requests and the response buffer limit."""

    def _backchannel(self, handler, limit=MAX_RESPONSE_CONTENT_BUFFER_SIZE) -> Backchannel:
        return Backchannel(
            TransportHttpHandler(httpx.MockTransport(handler)),
            timeout=30.0,
            max_response_content_buffer_size=limit,
        )

    async def test_request_passes_through(self):
        # Arrange
        backchannel = self._backchannel(
            lambda request: httpx.Response(200, json={"access_token": "xyz"})
        )

        # Act
        response = await backchannel.post(TOKEN_ENDPOINT, data={"grant_type": "x"})

        # Assert
        assert response.status_code == 200
        assert response.json() == {"access_token": "xyz"}

        await backchannel.aclose()

    def test_settings_are_exposed(self):
        # Act
        backchannel = self._backchannel(lambda request: httpx.Response(200))

        # Assert
        assert backchannel.timeout == httpx.Timeout(30.0)
        assert backchannel.max_response_content_buffer_size == 10 * 1024 * 1024

    async def test_body_at_limit_is_accepted(self):
        # Arrange
        backchannel = self._backchannel(
            lambda request: httpx.Response(200, content=b"x" * 16), limit=16
        )

        # Act
        response = await backchannel.get(TOKEN_ENDPOINT)

        # Assert
        assert response.content == b"x" * 16

    async def test_declared_length_over_limit_is_rejected(self):
        # Arrange
        backchannel = self._backchannel(
            lambda request: httpx.Response(200, content=b"x" * 17), limit=16
        )

        # Act & Assert
        with pytest.raises(ResponseTooLargeError) as exc_info:
            await backchannel.get(TOKEN_ENDPOINT)

        assert exc_info.value.limit == 16

    async def test_streamed_body_over_limit_is_rejected(self):
        # Arrange
        async def chunks():
            for _ in range(3):
                yield b"x" * 8

        backchannel = self._backchannel(
            lambda request: httpx.Response(200, content=chunks()), limit=16
        )

        # Act & Assert
        with pytest.raises(ResponseTooLargeError):
            await backchannel.get(TOKEN_ENDPOINT)

    async def test_limit_counts_encoded_bytes(self):
        # Arrange
        body = gzip.compress(b"x" * 1024)
        backchannel = self._backchannel(
            lambda request: httpx.Response(
                200, content=body, headers={"Content-Encoding": "gzip"}
            ),
            limit=len(body),
        )

        # Act
        response = await backchannel.get(TOKEN_ENDPOINT)

        # Assert
        assert len(response.content) == 1024


class TestCertificateValidatingTransport:
    """Test certificate callbacks run after the TLS handshake."""

    async def test_accepted_certificate_lets_request_through(self):
        # Arrange
        callback = MagicMock(return_value=True)
        network_stream = FakeNetworkStream(FakeSSLObject(b"der-cert"))
        transport = CertificateValidatingTransport(
            tls_handshake_transport(network_stream), callback
        )

        # Act
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.get(TOKEN_ENDPOINT)

        # Assert
        assert response.status_code == 200
        callback.assert_called_once_with("auth.example.com", b"der-cert")
        assert not network_stream.closed

    async def test_rejected_certificate_aborts_request(self):
        # Arrange
        callback = MagicMock(return_value=False)
        network_stream = FakeNetworkStream(FakeSSLObject(b"der-cert"))
        transport = CertificateValidatingTransport(
            tls_handshake_transport(network_stream), callback
        )

        # Act & Assert
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(CertificateValidationError, match="auth.example.com"):
                await client.get(TOKEN_ENDPOINT)

        assert network_stream.closed

    async def test_missing_tls_session_fails_closed(self):
        # Arrange
        callback = MagicMock(return_value=True)
        network_stream = FakeNetworkStream(None)
        transport = CertificateValidatingTransport(
            tls_handshake_transport(network_stream), callback
        )

        # Act & Assert
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(CertificateValidationError):
                await client.get(TOKEN_ENDPOINT)

        callback.assert_not_called()
        assert network_stream.closed

    async def test_existing_trace_extension_still_receives_events(self):
        # Arrange
        events = []

        async def recorder(event_name, info):
            events.append(event_name)

        transport = CertificateValidatingTransport(
            tls_handshake_transport(FakeNetworkStream(FakeSSLObject(b"der-cert"))),
            MagicMock(return_value=True),
        )

        # Act
        async with httpx.AsyncClient(transport=transport) as client:
            await client.get(TOKEN_ENDPOINT, extensions={"trace": recorder})

        # Assert
        assert events == [
            "connection.start_tls.started",
            "connection.start_tls.complete",
        ]

    async def test_backchannel_with_validating_handler(self):
        # Arrange
        callback = MagicMock(return_value=False)
        handler = TransportHttpHandler(
            CertificateValidatingTransport(
                tls_handshake_transport(FakeNetworkStream(FakeSSLObject(b"der"))),
                callback,
            )
        )
        backchannel = Backchannel(handler, timeout=10.0)

        # Act & Assert
        with pytest.raises(CertificateValidationError):
            await backchannel.post(TOKEN_ENDPOINT)

        await backchannel.aclose()
