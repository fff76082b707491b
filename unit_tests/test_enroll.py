# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import unittest

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from cmpclient import client, context
from cmpclient.certreq import setup_cert_req
from cmpclient.credentials import Credentials
from cmpclient.enums import CmdKind, ErrorCode, PKIStatus, SessionPhase
from cmpclient.exceptions import (
    CertVerifyError,
    InvalidContext,
    InvalidParameters,
    OtherLibraryError,
    ProtocolRejection,
    TransportError,
)
from cmpclient.status import snprint_pki_status
from unit_tests.utils_for_test import MockCA, build_csr, get_san_dns_names

MAC_SECRET = b"SiemensIT"


def _mac_creds() -> Credentials:
    return Credentials(secret=MAC_SECRET, secret_ref="CMP-client")


class TestEnrollWithMac(unittest.TestCase):
    def _prepare(self, mock_ca: MockCA, implicit_confirm: bool) -> context.CMPContext:
        ctx = context.prepare(
            truststore=mock_ca.truststore(),
            creds=_mac_creds(),
            transfer_fn=mock_ca.transfer,
            implicit_confirm=implicit_confirm,
        )
        self.addCleanup(context.finish, ctx)
        return ctx

    def test_imprint_with_cert_conf(self):
        """
        GIVEN a CA protecting its responses with the shared secret.
        WHEN requesting an initial certificate without implicit confirmation,
        THEN the certificate is issued and confirmed with one extra exchange.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET)
        ctx = self._prepare(mock_ca, implicit_confirm=False)
        new_key = ec.generate_private_key(ec.SECP256R1())

        new_creds = client.imprint(ctx, new_key, "CN=Joe Mustermann")

        self.assertEqual(mock_ca.received, ["ir", "certConf"])
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Joe Mustermann"))
        self.assertIs(new_creds.key, new_key)
        self.assertEqual(new_creds.chain, [mock_ca.ca_cert])
        self.assertEqual(mock_ca.confirmed, [new_creds.cert.serial_number])
        self.assertIs(client.get_new_credentials(ctx), new_creds)
        self.assertEqual(ctx.phase, SessionPhase.DONE)

    def test_imprint_with_implicit_confirm(self):
        """
        GIVEN a CA granting implicit confirmation.
        WHEN requesting an initial certificate with implicit confirmation,
        THEN no `certConf` is sent.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET)
        ctx = self._prepare(mock_ca, implicit_confirm=True)

        client.imprint(ctx, ed25519.Ed25519PrivateKey.generate(), "CN=Joe Mustermann")

        self.assertEqual(mock_ca.received, ["ir"])
        self.assertEqual(mock_ca.confirmed, [])

    def test_new_cert_rejected_with_cert_conf(self):
        """
        GIVEN a trust store for new certificates which does not contain the issuing CA.
        WHEN requesting an initial certificate without implicit confirmation,
        THEN the certificate is rejected with a `certConf` before `CertVerifyError` is raised.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET)
        other_ca = MockCA(ca_subject="CN=Other CA")
        ctx = context.prepare(
            truststore=mock_ca.truststore(),
            new_cert_truststore=other_ca.truststore(),
            creds=_mac_creds(),
            transfer_fn=mock_ca.transfer,
        )
        self.addCleanup(context.finish, ctx)

        with self.assertRaises(CertVerifyError):
            client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")

        self.assertEqual(mock_ca.received, ["ir", "certConf"])
        status_info = mock_ca.requests[-1]["body"]["certConf"][0]["statusInfo"]
        self.assertEqual(int(status_info["status"]), PKIStatus.rejection)
        self.assertEqual(mock_ca.rejected, [mock_ca.last_issued.serial_number])
        self.assertEqual(mock_ca.confirmed, [])
        self.assertIsNone(client.get_new_credentials(ctx))

    def test_new_cert_rejected_without_cert_conf_if_implicitly_confirmed(self):
        """
        GIVEN a trust store for new certificates which does not contain the issuing CA.
        WHEN requesting an initial certificate with granted implicit confirmation,
        THEN `CertVerifyError` is raised without sending a `certConf`.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET)
        other_ca = MockCA(ca_subject="CN=Other CA")
        ctx = context.prepare(
            truststore=mock_ca.truststore(),
            new_cert_truststore=other_ca.truststore(),
            creds=_mac_creds(),
            transfer_fn=mock_ca.transfer,
            implicit_confirm=True,
        )
        self.addCleanup(context.finish, ctx)

        with self.assertRaises(CertVerifyError):
            client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")
        self.assertEqual(mock_ca.received, ["ir"])

    def test_implicit_confirm_not_granted(self):
        """
        GIVEN a CA which does not grant implicit confirmation.
        WHEN requesting an initial certificate with implicit confirmation,
        THEN the certificate is confirmed explicitly.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET, grant_implicit_confirm=False)
        ctx = self._prepare(mock_ca, implicit_confirm=True)

        client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")

        self.assertEqual(mock_ca.received, ["ir", "certConf"])

    def test_wrong_secret_of_response(self):
        """
        GIVEN a CA protecting its responses with another secret.
        WHEN requesting an initial certificate,
        THEN `CertVerifyError` is raised.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET, response_secret=b"another secret")
        ctx = self._prepare(mock_ca, implicit_confirm=False)

        with self.assertRaises(CertVerifyError) as err:
            client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Joe Mustermann")
        self.assertEqual(err.exception.get_error_code(), ErrorCode.CERT_VERIFY)

    def test_polling(self):
        """
        GIVEN a CA which answers the request only after polling.
        WHEN requesting an initial certificate,
        THEN the client polls until the certificate is delivered and then confirms it.
        """
        mock_ca = MockCA(mac_secret=MAC_SECRET, wait_polls=1)
        ctx = self._prepare(mock_ca, implicit_confirm=False)

        new_creds = client.imprint(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Patient")

        self.assertEqual(mock_ca.received, ["ir", "pollReq", "pollReq", "certConf"])
        self.assertEqual(ctx.status.status, PKIStatus.accepted)
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Patient"))


class TestEnrollWithSignature(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.mock_ca = MockCA()

    def setUp(self):
        self.mock_ca.received.clear()
        self.ctx = context.prepare(
            truststore=self.mock_ca.truststore(),
            creds=self.mock_ca.client_creds,
            transfer_fn=self.mock_ca.transfer,
        )

    def tearDown(self):
        context.finish(self.ctx)

    def test_bootstrap_alice(self):
        """
        GIVEN a context with signature-based credentials and a trust store of the CA.
        WHEN requesting a certificate for "CN=Alice" with a new key,
        THEN the certificate holds the new key, chains to the trust store and the status is `accepted`.
        """
        new_key = ec.generate_private_key(ec.SECP256R1())

        new_creds = client.bootstrap(self.ctx, new_key, "CN=Alice")

        self.assertEqual(self.mock_ca.received, ["cr", "certConf"])
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Alice"))
        self.assertEqual(new_creds.cert.public_key().public_numbers(), new_key.public_key().public_numbers())
        self.assertEqual(new_creds.cert.issuer, self.mock_ca.ca_cert.subject)
        self.assertEqual(new_creds.chain, [self.mock_ca.ca_cert])
        self.assertEqual(self.ctx.status.status, PKIStatus.accepted)
        self.assertEqual(snprint_pki_status(self.ctx), "PKIStatus: accepted")

    def test_pkcs10(self):
        """
        GIVEN a CSR for "CN=CSR Subject".
        WHEN requesting a certificate with `p10cr`,
        THEN the certificate is issued for the CSR, without private key in the result.
        """
        csr_key = ec.generate_private_key(ec.SECP256R1())
        csr = build_csr(csr_key, "CN=CSR Subject")

        new_creds = client.pkcs10(self.ctx, csr)

        self.assertEqual(self.mock_ca.received, ["p10cr", "certConf"])
        self.assertIsNone(new_creds.key)
        self.assertEqual(new_creds.cert.subject, csr.subject)

    def test_update_keeps_subject_and_san(self):
        """
        GIVEN a client certificate with subject "CN=Client C0" and a SAN.
        WHEN updating it to a new key,
        THEN the new certificate holds the new key, the old subject and the old SAN.
        """
        new_key = ec.generate_private_key(ec.SECP256R1())

        new_creds = client.update(self.ctx, new_key)

        self.assertEqual(self.mock_ca.received, ["kur", "certConf"])
        self.assertEqual(new_creds.cert.subject, self.mock_ca.client_cert.subject)
        self.assertEqual(get_san_dns_names(new_creds.cert), get_san_dns_names(self.mock_ca.client_cert))
        self.assertEqual(new_creds.cert.public_key().public_numbers(), new_key.public_key().public_numbers())

    def test_update_anycert(self):
        """
        GIVEN another certificate of the client.
        WHEN updating that certificate to a new key,
        THEN the new certificate takes over its subject.
        """
        first = client.bootstrap(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Second Device")
        context.reinit(self.ctx)

        new_creds = client.update_anycert(self.ctx, first.cert, ec.generate_private_key(ec.SECP256R1()))

        self.assertEqual(new_creds.cert.subject, first.cert.subject)

    def test_second_operation_requires_reinit(self):
        """
        GIVEN a context whose enrollment succeeded.
        WHEN starting a second operation without `reinit`,
        THEN `InvalidContext` is raised, and the operation succeeds after `reinit`.
        """
        client.bootstrap(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")

        with self.assertRaises(InvalidContext):
            client.bootstrap(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Bob")
        with self.assertRaises(InvalidContext):
            client.revoke(self.ctx, self.mock_ca.client_cert)

        context.reinit(self.ctx)
        new_creds = client.bootstrap(self.ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Bob")
        self.assertEqual(new_creds.cert.subject, x509.Name.from_rfc4514_string("CN=Bob"))

    def test_enroll_without_setup(self):
        """
        GIVEN a context without a pending certificate request.
        WHEN calling `enroll`,
        THEN `InvalidContext` is raised.
        """
        with self.assertRaises(InvalidContext):
            client.enroll(self.ctx, CmdKind.CR)

    def test_enroll_with_revocation_command(self):
        """
        GIVEN a pending certificate request.
        WHEN calling `enroll` with the revocation command,
        THEN `InvalidParameters` is raised.
        """
        setup_cert_req(self.ctx, new_key=ec.generate_private_key(ec.SECP256R1()), subject="CN=Alice")
        with self.assertRaises(InvalidParameters):
            client.enroll(self.ctx, CmdKind.RR)

    def test_p10cr_without_csr(self):
        """
        GIVEN a pending certificate request without CSR.
        WHEN calling `enroll` with `p10cr`,
        THEN `InvalidContext` is raised.
        """
        setup_cert_req(self.ctx, new_key=ec.generate_private_key(ec.SECP256R1()), subject="CN=Alice")
        with self.assertRaises(InvalidContext):
            client.enroll(self.ctx, CmdKind.P10CR)


class TestEnrollRejected(unittest.TestCase):
    def _prepare(self, mock_ca: MockCA, **params) -> context.CMPContext:
        params.setdefault("truststore", mock_ca.truststore())
        ctx = context.prepare(creds=mock_ca.client_creds, transfer_fn=mock_ca.transfer, **params)
        self.addCleanup(context.finish, ctx)
        return ctx

    def test_rejection_is_reported(self):
        """
        GIVEN a CA rejecting with failure info `badCertTemplate`.
        WHEN requesting a certificate,
        THEN `ProtocolRejection` is raised, no `certConf` is sent and the status is rendered.
        """
        mock_ca = MockCA(reject_with="badCertTemplate", reject_text="subject not allowed")
        ctx = self._prepare(mock_ca)

        with self.assertRaises(ProtocolRejection) as err:
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Mallory")

        self.assertEqual(err.exception.get_error_code(), ErrorCode.PROTOCOL_REJECTION)
        self.assertEqual(err.exception.get_failinfo(), "badCertTemplate")
        self.assertEqual(mock_ca.received, ["cr"])
        self.assertEqual(ctx.status.status, PKIStatus.rejection)

        text = snprint_pki_status(ctx)
        self.assertIn("rejection", text)
        self.assertIn("badCertTemplate", text)
        self.assertIn('"subject not allowed"', text)

    def test_error_message_is_reported(self):
        """
        GIVEN a CA answering with an error message.
        WHEN requesting a certificate,
        THEN `ProtocolRejection` is raised with the failure info of the error message.
        """
        mock_ca = MockCA(error_with="notAuthorized")
        ctx = self._prepare(mock_ca)

        with self.assertRaises(ProtocolRejection) as err:
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Mallory")

        self.assertEqual(err.exception.get_failinfo(), "notAuthorized")
        self.assertIn("notAuthorized", snprint_pki_status(ctx))

    def test_untrusted_ca(self):
        """
        GIVEN a trust store of another CA.
        WHEN requesting a certificate,
        THEN `CertVerifyError` is raised because the signer of the response is not trusted.
        """
        mock_ca = MockCA()
        ctx = self._prepare(mock_ca, truststore=MockCA(ca_subject="CN=Other CA").truststore())

        with self.assertRaises(CertVerifyError):
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")

    def test_signed_response_without_truststore(self):
        """
        GIVEN no trust store.
        WHEN requesting a certificate from a CA signing its responses,
        THEN `CertVerifyError` is raised.
        """
        mock_ca = MockCA()
        ctx = self._prepare(mock_ca, truststore=None)

        with self.assertRaises(CertVerifyError):
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")

    def test_new_cert_not_trusted(self):
        """
        GIVEN a trust store for new certificates of another CA.
        WHEN requesting a certificate,
        THEN `CertVerifyError` is raised and no `certConf` is sent.
        """
        mock_ca = MockCA()
        other_store = MockCA(ca_subject="CN=Other CA").truststore()
        ctx = self._prepare(mock_ca, new_cert_truststore=other_store)

        with self.assertRaises(CertVerifyError):
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")
        self.assertEqual(mock_ca.received, ["cr"])

    def test_failing_transfer_function(self):
        """
        GIVEN a transfer function raising an exception.
        WHEN requesting a certificate,
        THEN `TransportError` is raised.
        """
        mock_ca = MockCA()

        def _broken_transfer(_request):
            raise ConnectionResetError("connection reset by peer")

        ctx = context.prepare(truststore=mock_ca.truststore(), creds=mock_ca.client_creds, transfer_fn=_broken_transfer)
        self.addCleanup(context.finish, ctx)
        with self.assertRaises(TransportError) as err:
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")
        self.assertFalse(err.exception.timeout)

    def test_garbage_response(self):
        """
        GIVEN a transfer function returning bytes which are no PKIMessage.
        WHEN requesting a certificate,
        THEN `OtherLibraryError` is raised.
        """
        mock_ca = MockCA()
        ctx = context.prepare(
            truststore=mock_ca.truststore(), creds=mock_ca.client_creds, transfer_fn=lambda _request: b"\x30\x03abc"
        )
        self.addCleanup(context.finish, ctx)
        with self.assertRaises(OtherLibraryError):
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")

    def test_without_transport(self):
        """
        GIVEN a context without transport and transfer function.
        WHEN requesting a certificate,
        THEN `InvalidContext` is raised.
        """
        mock_ca = MockCA()
        ctx = context.prepare(truststore=mock_ca.truststore(), creds=mock_ca.client_creds)
        self.addCleanup(context.finish, ctx)
        with self.assertRaises(InvalidContext):
            client.bootstrap(ctx, ec.generate_private_key(ec.SECP256R1()), "CN=Alice")


if __name__ == "__main__":
    unittest.main()
