# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import socket
import unittest

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from cmpclient import client, context
from cmpclient.config_vars import HTTPConfig
from cmpclient.credentials import Credentials
from cmpclient.enums import ErrorCode
from cmpclient.exceptions import OtherLibraryError, TransportError
from cmpclient.transport import CustomTransfer, HttpTransport
from unit_tests.utils_for_test import MockCA, MockCAServer, SilentServer

MAC_SECRET = b"SiemensIT"


class TestHttpTransport(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.mock_ca = MockCA(mac_secret=MAC_SECRET)
        cls.server = MockCAServer(cls.mock_ca, path="/pkix/").start()

    @classmethod
    def tearDownClass(cls):
        cls.server.stop()

    def setUp(self):
        self.mock_ca.received.clear()
        self.ctx = context.prepare(
            truststore=self.mock_ca.truststore(), creds=Credentials(secret=MAC_SECRET, secret_ref="CMP-client")
        )

    def tearDown(self):
        context.finish(self.ctx)

    def test_imprint_over_http(self):
        """
        GIVEN a CA reachable over HTTP.
        WHEN requesting an initial certificate over the managed HTTP transport,
        THEN the certificate is issued and confirmed.
        """
        context.attach_http(self.ctx, self.server.address, path="/pkix/", timeout=10, no_proxy="127.0.0.1")
        self.assertEqual(self.ctx.transport.kind, "http")

        new_creds = client.imprint(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")

        self.assertEqual(self.mock_ca.received, ["ir", "certConf"])
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Joe Mustermann"))

    def test_http_without_keep_alive(self):
        """
        GIVEN a CA reachable over HTTP.
        WHEN the transport closes the connection after each exchange,
        THEN the enrollment still succeeds.
        """
        context.attach_http(self.ctx, self.server.address, path="/pkix/", keep_alive=0, no_proxy="127.0.0.1")
        client.imprint(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")
        self.assertEqual(self.mock_ca.received, ["ir", "certConf"])

    def test_wrong_path(self):
        """
        GIVEN a CA reachable over HTTP.
        WHEN posting to a path without CMP endpoint,
        THEN `TransportError` is raised.
        """
        context.attach_http(self.ctx, self.server.address, path="/unknown/", timeout=10, no_proxy="127.0.0.1")
        with self.assertRaises(TransportError) as err:
            client.imprint(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")
        self.assertEqual(err.exception.get_error_code(), ErrorCode.TRANSPORT)
        self.assertFalse(err.exception.timeout)

    def test_stream_transport(self):
        """
        GIVEN a connected socket to the CA.
        WHEN requesting an initial certificate with implicit confirmation over the stream transport,
        THEN the certificate is issued and the stream is not closed by the client.
        """
        ctx = context.prepare(
            truststore=self.mock_ca.truststore(),
            creds=Credentials(secret=MAC_SECRET, secret_ref="CMP-client"),
            implicit_confirm=True,
        )
        host, port = self.server.address.split(":")
        sock = socket.create_connection((host, int(port)), timeout=10)
        self.addCleanup(sock.close)
        context.attach_stream(ctx, sock, path="/pkix/", timeout=10)
        self.assertEqual(ctx.transport.kind, "stream")

        new_creds = client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Stream Client")
        context.finish(ctx)

        self.assertEqual(self.mock_ca.received, ["ir"])
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Stream Client"))
        self.assertNotEqual(sock.fileno(), -1)


class TestTransportFailures(unittest.TestCase):
    def setUp(self):
        self.mock_ca = MockCA()
        self.ctx = context.prepare(truststore=self.mock_ca.truststore(), creds=self.mock_ca.client_creds)

    def tearDown(self):
        context.finish(self.ctx)

    def test_message_timeout(self):
        """
        GIVEN a server which accepts the connection but never answers.
        WHEN revoking a certificate with a message timeout of one second,
        THEN `TransportError` is raised, flagged as timeout.
        """
        silent = SilentServer()
        self.addCleanup(silent.close)
        context.attach_http(self.ctx, silent.address, timeout=1, no_proxy="127.0.0.1")

        with self.assertRaises(TransportError) as err:
            client.revoke(self.ctx, self.mock_ca.client_cert)
        self.assertTrue(err.exception.timeout)
        self.assertIsNone(self.ctx.status)

    def test_connection_refused(self):
        """
        GIVEN a port without server.
        WHEN revoking a certificate,
        THEN `TransportError` is raised, not flagged as timeout.
        """
        silent = SilentServer()
        address = silent.address
        silent.close()
        context.attach_http(self.ctx, address, timeout=5, no_proxy="127.0.0.1")

        with self.assertRaises(TransportError) as err:
            client.revoke(self.ctx, self.mock_ca.client_cert)
        self.assertFalse(err.exception.timeout)

    def test_closed_http_transport(self):
        """
        GIVEN a closed HTTP transport.
        WHEN exchanging a message,
        THEN `TransportError` is raised.
        """
        transport = HttpTransport(HTTPConfig(server="127.0.0.1:1", no_proxy="127.0.0.1"))
        transport.close()
        with self.assertRaises(TransportError):
            transport.exchange(None)

    def test_transfer_function_without_response(self):
        """
        GIVEN a transfer function returning `None`.
        WHEN exchanging a message,
        THEN `TransportError` is raised.
        """
        with self.assertRaises(TransportError):
            CustomTransfer(lambda _request: None).exchange(None)

    def test_transfer_function_with_garbage(self):
        """
        GIVEN a transfer function returning bytes which are no PKIMessage.
        WHEN exchanging a message,
        THEN `OtherLibraryError` is raised.
        """
        with self.assertRaises(OtherLibraryError):
            CustomTransfer(lambda _request: b"not a PKIMessage").exchange(None)

    def test_url_building(self):
        """
        GIVEN server addresses with and without scheme.
        WHEN building the URL of the transport,
        THEN the scheme follows the TLS setting and the path is normalized.
        """
        url = HttpTransport._build_url("ca.example.com:8080", "pkix", False)
        self.assertEqual(url, "http://ca.example.com:8080/pkix")
        url = HttpTransport._build_url("ca.example.com", "/.well-known/cmp", True)
        self.assertEqual(url, "https://ca.example.com/.well-known/cmp")
        self.assertEqual(HttpTransport._build_url("http://ca.example.com/", "/", True), "http://ca.example.com/")


if __name__ == "__main__":
    unittest.main()
