# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Transport bindings used by the CMP client to exchange `PKIMessage` structures.

Exactly one binding is active per context: a managed HTTP connection, a caller-provided stream,
or a custom transfer function given at `prepare` time.
"""

import logging
import socket
import ssl
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

import requests
from pyasn1_alt_modules import rfc9480

from cmpclient import cmputils
from cmpclient.config_vars import HTTPConfig
from cmpclient.exceptions import CMPClientError, OtherLibraryError, TransportError, TransportUnsupported
from cmpclient.tlsutils import SSLContextAdapter
from cmpclient.typingutils import TransferFn

CMP_CONTENT_TYPE = "application/pkixcmp"
MAX_HEADER_SIZE = 64 * 1024


def _check_socket_support() -> None:
    if not hasattr(socket, "create_connection") or not hasattr(socket, "socket"):
        raise TransportUnsupported("This platform does not support network sockets")


def _effective_timeout(configured: int, remaining: Optional[float]) -> Optional[float]:
    """Return the smaller of the per-exchange timeout and the remaining total time, `None` for no limit."""
    candidates = []
    if configured and configured > 0:
        candidates.append(float(configured))
    if remaining is not None:
        candidates.append(max(remaining, 0.001))
    return min(candidates) if candidates else None


def _decode_response(data: bytes) -> rfc9480.PKIMessage:
    try:
        return cmputils.parse_pkimessage(data)
    except ValueError as err:
        raise OtherLibraryError("The response could not be decoded as PKIMessage", lib_error=err) from err


class TransportBinding(ABC):
    """Base class of the transport bindings."""

    kind = "none"

    @abstractmethod
    def exchange(self, request: rfc9480.PKIMessage, remaining: Optional[float] = None) -> rfc9480.PKIMessage:
        """Send the request and return the response.

        :param request: The protected request.
        :param remaining: The remaining time of the total timeout in seconds, `None` for no limit.
        :return: The decoded response.
        :raises TransportError: On connection failure, timeout or closure of the channel.
        :raises OtherLibraryError: If the response cannot be decoded.
        """

    def close(self) -> None:
        """Release the resources owned by the binding."""


class HttpTransport(TransportBinding):
    """Posts the DER-encoded messages to a CMP server using a `requests.Session`."""

    kind = "http"

    def __init__(self, config: HTTPConfig, tls: Optional[ssl.SSLContext] = None):
        """Configure the connection, without opening it.

        :param config: The HTTP settings.
        :param tls: The TLS context, if the server is contacted via HTTPS.
        :raises TransportUnsupported: If the platform lacks network socket support.
        :raises ValueError: If `keep_alive` is not `0`, `1` or `2`.
        """
        _check_socket_support()
        if config.keep_alive not in (0, 1, 2):
            raise ValueError(f"keep_alive must be 0, 1 or 2, got: {config.keep_alive}")
        self.config = config
        self.url = self._build_url(config.server, config.path, tls is not None)
        self.session: Optional[requests.Session] = requests.Session()
        self.session.trust_env = False
        if tls is not None:
            self.session.mount("https://", SSLContextAdapter(tls))
        self.session.proxies = self._proxies()
        logging.debug("HTTP transport settings: %s", self.config.to_dict())

    @staticmethod
    def _build_url(server: str, path: str, use_tls: bool) -> str:
        if "://" not in server:
            server = f"{'https' if use_tls else 'http'}://{server}"
        server = server.rstrip("/")
        path = path or "/"
        if not path.startswith("/"):
            path = "/" + path
        return server + path

    def _proxies(self) -> Dict[str, str]:
        host = urlsplit(self.url).hostname or ""
        if not self.config.proxy or self.config.bypasses_proxy(host):
            return {}
        return {"http": self.config.proxy, "https": self.config.proxy}

    def exchange(self, request: rfc9480.PKIMessage, remaining: Optional[float] = None) -> rfc9480.PKIMessage:
        """Post the request and return the decoded response."""
        if self.session is None:
            raise TransportError("The HTTP transport was already closed")

        data = cmputils.encode_pkimessage(request)
        headers = {"Content-Type": CMP_CONTENT_TYPE}
        if self.config.keep_alive == 0:
            headers["Connection"] = "close"

        timeout = _effective_timeout(self.config.timeout, remaining)
        logging.debug("Sending %d bytes to %s (timeout: %s)", len(data), self.url, timeout)
        try:
            response = self.session.post(self.url, data=data, headers=headers, timeout=timeout)
        except requests.exceptions.Timeout as err:
            raise TransportError(f"Timeout while waiting for {self.url}", str(err), timeout=True) from err
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Could not exchange the message with {self.url}", str(err)) from err

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip().lower()
        if response.status_code != 200 and (content_type != CMP_CONTENT_TYPE or not response.content):
            raise TransportError(
                f"The server {self.url} answered with HTTP status {response.status_code}",
                response.text[:200] if response.content else None,
            )
        if not response.content:
            raise TransportError(f"The server {self.url} sent an empty response")

        if self.config.keep_alive == 2 and response.headers.get("Connection", "").lower() == "close":
            raise TransportError(f"The server {self.url} did not keep the connection alive")

        logging.debug("Received %d bytes (HTTP status %d)", len(response.content), response.status_code)
        return _decode_response(response.content)

    def close(self) -> None:
        """Close the session and its pooled connections."""
        if self.session is not None:
            self.session.close()
            self.session = None


class StreamTransport(TransportBinding):
    """Frames the messages as HTTP/1.1 POST requests over a caller-provided, already connected stream.

    The stream must offer `sendall` and `recv`, like a `socket.socket` or an `ssl.SSLSocket`.
    It is never closed by this class.
    """

    kind = "stream"

    def __init__(self, stream, path: str = "/", keep_alive: int = 1, timeout: int = 0, host: str = "localhost"):
        """Bind to the stream.

        :param stream: The connected, bidirectional stream.
        :param path: The HTTP path of the CMP endpoint. Defaults to "/".
        :param keep_alive: `0` asks the server to close the connection. Defaults to `1`.
        :param timeout: The timeout in seconds for a single exchange, `0` for none. Defaults to `0`.
        :param host: The value of the `Host` header. Defaults to "localhost".
        """
        if not hasattr(stream, "sendall") or not hasattr(stream, "recv"):
            raise ValueError("The stream must provide `sendall` and `recv`")
        if keep_alive not in (0, 1, 2):
            raise ValueError(f"keep_alive must be 0, 1 or 2, got: {keep_alive}")
        self.stream = stream
        self.path = path if path.startswith("/") else "/" + path
        self.keep_alive = keep_alive
        self.timeout = timeout
        self.host = host

    def _frame_request(self, data: bytes) -> bytes:
        connection = "close" if self.keep_alive == 0 else "keep-alive"
        head = (
            f"POST {self.path} HTTP/1.1\r\n"
            f"Host: {self.host}\r\n"
            f"Content-Type: {CMP_CONTENT_TYPE}\r\n"
            f"Content-Length: {len(data)}\r\n"
            f"Connection: {connection}\r\n\r\n"
        )
        return head.encode("ascii") + data

    def _recv(self) -> bytes:
        return self.stream.recv(8192)

    def _read_head(self) -> Tuple[int, Dict[str, str], bytes]:
        buffer = b""
        while b"\r\n\r\n" not in buffer:
            chunk = self._recv()
            if not chunk:
                raise TransportError("The stream was closed before a response was received")
            buffer += chunk
            if len(buffer) > MAX_HEADER_SIZE:
                raise TransportError("The response header is too large")

        head, rest = buffer.split(b"\r\n\r\n", 1)
        lines = head.decode("iso-8859-1").split("\r\n")
        parts = lines[0].split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
            raise TransportError(f"Invalid HTTP status line: {lines[0]!r}")

        headers = {}
        for line in lines[1:]:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
        return int(parts[1]), headers, rest

    def _read_body(self, headers: Dict[str, str], body: bytes) -> bytes:
        length = headers.get("content-length")
        if length is None:
            # Without a length, the body ends when the peer closes the connection.
            while True:
                chunk = self._recv()
                if not chunk:
                    return body
                body += chunk

        if not length.isdigit():
            raise TransportError(f"Invalid Content-Length: {length}")
        expected = int(length)
        while len(body) < expected:
            chunk = self._recv()
            if not chunk:
                raise TransportError("The stream was closed before the response was complete")
            body += chunk
        return body[:expected]

    def exchange(self, request: rfc9480.PKIMessage, remaining: Optional[float] = None) -> rfc9480.PKIMessage:
        """Write the framed request to the stream and read the response."""
        data = cmputils.encode_pkimessage(request)
        timeout = _effective_timeout(self.timeout, remaining)
        if hasattr(self.stream, "settimeout"):
            self.stream.settimeout(timeout)

        logging.debug("Sending %d bytes over the stream (timeout: %s)", len(data), timeout)
        try:
            self.stream.sendall(self._frame_request(data))
            status_code, headers, rest = self._read_head()
            body = self._read_body(headers, rest)
        except socket.timeout as err:
            raise TransportError("Timeout while waiting for the response on the stream", timeout=True) from err
        except OSError as err:
            raise TransportError("Could not exchange the message over the stream", str(err)) from err

        content_type = headers.get("content-type", "").split(";")[0].strip().lower()
        if status_code != 200 and (content_type != CMP_CONTENT_TYPE or not body):
            raise TransportError(f"The server answered with HTTP status {status_code}")
        if not body:
            raise TransportError("The server sent an empty response")
        if self.keep_alive == 2 and headers.get("connection", "").lower() == "close":
            raise TransportError("The server did not keep the connection alive")

        logging.debug("Received %d bytes (HTTP status %d)", len(body), status_code)
        return _decode_response(body)


class CustomTransfer(TransportBinding):
    """Delegates the exchange to a caller-provided transfer function.

    The function receives the request and returns the response. The total timeout is
    checked by the client between exchanges, but cannot interrupt the function.
    """

    kind = "custom"

    def __init__(self, transfer_fn: TransferFn):
        """Wrap the transfer function."""
        if not callable(transfer_fn):
            raise ValueError("The transfer function must be callable")
        self.transfer_fn = transfer_fn

    def exchange(self, request: rfc9480.PKIMessage, remaining: Optional[float] = None) -> rfc9480.PKIMessage:
        """Call the transfer function."""
        try:
            response = self.transfer_fn(request)
        except CMPClientError:
            raise
        except Exception as err:
            raise TransportError("The transfer function failed", f"{type(err).__name__}: {err}") from err

        if response is None:
            raise TransportError("The transfer function did not return a response")
        if isinstance(response, (bytes, bytearray)):
            return _decode_response(bytes(response))
        return response
