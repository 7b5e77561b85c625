"""Backchannel HTTP client for server-to-server OAuth traffic.

The backchannel is an httpx client created once per middleware and shared
by every request the middleware handles. Its transport comes from a
`BackchannelHttpHandler`, which also declares whether it can run a server
certificate validation callback.
"""

from __future__ import annotations

import logging
import ssl
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from keyway.auth.models.errors import (
    CertificateValidationError,
    ResponseTooLargeError,
)

logger = logging.getLogger(__name__)

MAX_RESPONSE_CONTENT_BUFFER_SIZE = 10 * 1024 * 1024  # 10 MiB

CertificateValidationCallback = Callable[[str, bytes], bool]


class BackchannelHttpHandler(ABC):
    """Supplies the httpx transport the backchannel sends requests through."""

    server_certificate_validation_callback: CertificateValidationCallback | None = None

    @abstractmethod
    def create_transport(self) -> httpx.AsyncBaseTransport:
        """Build the transport for a new backchannel client."""
        ...

    def supports_certificate_validation(self) -> bool:
        """Whether `server_certificate_validation_callback` is honoured."""
        return False


class DefaultBackchannelHttpHandler(BackchannelHttpHandler):
    """Platform default handler backed by `httpx.AsyncHTTPTransport`.

    When `server_certificate_validation_callback` is set, it is called
    with the host name and DER leaf certificate after every TLS handshake
    and before any request bytes are written.
    """

    def __init__(self, verify: ssl.SSLContext | bool = True):
        self.verify = verify
        self.server_certificate_validation_callback = None

    def supports_certificate_validation(self) -> bool:
        return True

    def create_transport(self) -> httpx.AsyncBaseTransport:
        transport = httpx.AsyncHTTPTransport(verify=self.verify)
        if self.server_certificate_validation_callback is None:
            return transport
        return CertificateValidatingTransport(
            transport, self.server_certificate_validation_callback
        )


class TransportHttpHandler(BackchannelHttpHandler):
    """Handler wrapping an arbitrary httpx transport.

    Useful for mock transports and custom connection pools. It cannot run
    certificate validation callbacks.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport):
        self.transport = transport

    def create_transport(self) -> httpx.AsyncBaseTransport:
        return self.transport


class CertificateValidatingTransport(httpx.AsyncBaseTransport):
    """Runs a certificate validation callback on every new TLS connection.

    Hooks the httpcore `trace` extension, so validation happens once per
    connection and pooled connections are not re-validated.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        callback: CertificateValidationCallback,
    ):
        self._transport = transport
        self.callback = callback

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        previous_trace = request.extensions.get("trace")

        async def trace(event_name: str, info: dict[str, Any]) -> None:
            if event_name.endswith("start_tls.complete"):
                await self._validate(request, info.get("return_value"))
            if previous_trace is not None:
                result = previous_trace(event_name, info)
                if result is not None:
                    await result

        request.extensions["trace"] = trace
        return await self._transport.handle_async_request(request)

    async def _validate(self, request: httpx.Request, network_stream: Any) -> None:
        # httpcore has not adopted the stream yet, so a rejected one is closed here
        hostname = request.url.host
        if network_stream is None:
            raise CertificateValidationError(
                f"No TLS session available to validate {hostname}"
            )

        ssl_object = network_stream.get_extra_info("ssl_object")
        if ssl_object is None:
            await network_stream.aclose()
            raise CertificateValidationError(
                f"No TLS session available to validate {hostname}"
            )

        der_certificate = ssl_object.getpeercert(binary_form=True)
        if not der_certificate or not self.callback(hostname, der_certificate):
            await network_stream.aclose()
            raise CertificateValidationError(
                f"Server certificate for {hostname} was rejected by the validator"
            )

        logger.debug(f"Server certificate for {hostname} accepted")

    async def aclose(self) -> None:
        await self._transport.aclose()


class BoundedResponseTransport(httpx.AsyncBaseTransport):
    """Fails responses whose body exceeds a fixed number of bytes.

    The limit counts encoded bytes as received, not the decoded content.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport, max_content_size: int):
        self._transport = transport
        self.max_content_size = max_content_size

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self._transport.handle_async_request(request)

        content_length = response.headers.get("Content-Length", "")
        if content_length.isdigit() and int(content_length) > self.max_content_size:
            await response.aclose()
            raise ResponseTooLargeError(self.max_content_size)

        return httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            stream=_BoundedByteStream(response.stream, self.max_content_size),
            extensions=response.extensions,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


class _BoundedByteStream(httpx.AsyncByteStream):
    """Counts bytes as received on the wire.

    The limit applies before httpx decodes any Content-Encoding, so a
    compressed body may decode to more than `max_content_size` bytes.
    """

    def __init__(self, stream: Any, max_content_size: int):
        self._stream = stream
        self._max_content_size = max_content_size

    async def __aiter__(self) -> AsyncIterator[bytes]:
        received = 0
        async for chunk in self._stream:
            received += len(chunk)
            if received > self._max_content_size:
                raise ResponseTooLargeError(self._max_content_size)
            yield chunk

    async def aclose(self) -> None:
        await self._stream.aclose()


class Backchannel(httpx.AsyncClient):
    """HTTP client for token and user-info endpoints.

    Safe to share between concurrent requests. Nothing about it changes
    after construction.
    """

    def __init__(
        self,
        handler: BackchannelHttpHandler,
        *,
        timeout: float,
        max_response_content_buffer_size: int = MAX_RESPONSE_CONTENT_BUFFER_SIZE,
        **kwargs: Any,
    ):
        """Initialize the backchannel.

        Args:
            handler: Source of the underlying transport
            timeout: Request timeout in seconds
            max_response_content_buffer_size: Largest response body accepted
            **kwargs: Passed through to `httpx.AsyncClient`
        """
        self.handler = handler
        self.max_response_content_buffer_size = max_response_content_buffer_size
        super().__init__(
            transport=BoundedResponseTransport(
                handler.create_transport(), max_response_content_buffer_size
            ),
            timeout=timeout,
            **kwargs,
        )
