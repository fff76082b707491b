# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import unittest

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from cmpclient import context
from cmpclient.certreq import merge_extensions, setup_cert_req, subject_for_command
from cmpclient.credentials import Credentials
from cmpclient.enums import CmdKind, SessionPhase
from cmpclient.exceptions import InvalidContext, InvalidParameters
from unit_tests.utils_for_test import MockCA, build_csr, get_san_dns_names


def _san_extension(*names: str) -> x509.Extension:
    san = x509.SubjectAlternativeName([x509.DNSName(name) for name in names])
    return x509.Extension(x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME, False, san)


def _san_names(extensions) -> list:
    for ext in extensions:
        if ext.oid == x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME:
            return ext.value.get_values_for_type(x509.DNSName)
    return []


class TestSetupCertReq(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.mock_ca = MockCA()
        cls.new_key = ec.generate_private_key(ec.SECP256R1())

    def setUp(self):
        self.ctx = context.prepare(truststore=self.mock_ca.truststore(), creds=self.mock_ca.client_creds)

    def tearDown(self):
        context.finish(self.ctx)

    def test_explicit_subject_and_key(self):
        """
        GIVEN a new key and a subject.
        WHEN setting up the certificate request,
        THEN the template holds the key and the parsed subject, and the context is ready for a request.
        """
        template = setup_cert_req(self.ctx, new_key=self.new_key, subject="CN=Alice")
        self.assertIs(template.new_key, self.new_key)
        self.assertEqual(template.subject, x509.Name.from_rfc4514_string("CN=Alice"))
        self.assertIs(self.ctx.template, template)
        self.assertEqual(self.ctx.phase, SessionPhase.REQUEST_READY)

    def test_key_defaults_to_credentials(self):
        """
        GIVEN a context with signature-based credentials.
        WHEN setting up the certificate request without key and CSR,
        THEN the key of the credentials is used.
        """
        template = setup_cert_req(self.ctx)
        self.assertIs(template.new_key, self.mock_ca.client_key)

    def test_no_key_available(self):
        """
        GIVEN a context with only a shared secret.
        WHEN setting up the certificate request without key and CSR,
        THEN `InvalidParameters` is raised.
        """
        ctx = context.prepare(creds=Credentials(secret=b"SiemensIT"))
        with self.assertRaises(InvalidParameters):
            setup_cert_req(ctx, subject="CN=Alice")

    def test_invalid_subject(self):
        """
        GIVEN a subject which is no distinguished name.
        WHEN setting up the certificate request,
        THEN `InvalidParameters` is raised.
        """
        with self.assertRaises(InvalidParameters):
            setup_cert_req(self.ctx, new_key=self.new_key, subject="Alice")

    def test_csr_key_and_subject(self):
        """
        GIVEN a CSR with subject and SAN.
        WHEN setting up the certificate request with only the CSR,
        THEN the public key and the subject of the CSR are used, without private key.
        """
        csr = build_csr(self.new_key, "CN=CSR Subject", sans=["csr.example.com"])
        template = setup_cert_req(self.ctx, csr=csr)
        self.assertIsNone(template.new_key)
        self.assertEqual(template.public_key.public_numbers(), self.new_key.public_key().public_numbers())
        self.assertEqual(template.subject, csr.subject)
        self.assertEqual(_san_names(template.extensions), ["csr.example.com"])

    def test_explicit_san_suppresses_csr_subject(self):
        """
        GIVEN a CSR with subject and explicit extensions containing a SAN.
        WHEN setting up the certificate request,
        THEN the subject of the CSR is dropped and the explicit SAN overrides the one of the CSR.
        """
        csr = build_csr(self.new_key, "CN=CSR Subject", sans=["csr.example.com"])
        template = setup_cert_req(self.ctx, csr=csr, exts=[_san_extension("explicit.example.com")])
        self.assertIsNone(template.subject)
        self.assertTrue(template.subject_suppressed)
        self.assertEqual(_san_names(template.extensions), ["explicit.example.com"])
        self.assertIsNone(subject_for_command(template, CmdKind.CR))

    def test_san_defaults_to_reference_certificate(self):
        """
        GIVEN a context whose client certificate has a SAN.
        WHEN setting up the certificate request without extensions,
        THEN the SAN of the reference certificate is requested.
        """
        template = setup_cert_req(self.ctx, new_key=self.new_key, subject="CN=Alice")
        self.assertEqual(_san_names(template.extensions), get_san_dns_names(self.mock_ca.client_cert))

    def test_kur_defaults_to_reference_subject(self):
        """
        GIVEN a context with a client certificate with subject "CN=Client C0".
        WHEN setting up a key update request without subject,
        THEN `kur` requests the subject of the reference certificate, while `cr` requests none.
        """
        template = setup_cert_req(self.ctx, new_key=self.new_key)
        self.assertIsNone(template.subject)
        self.assertEqual(subject_for_command(template, CmdKind.KUR), self.mock_ca.client_cert.subject)
        self.assertIsNone(subject_for_command(template, CmdKind.IR))

    def test_setup_after_operation_requires_reinit(self):
        """
        GIVEN a context whose operation was performed.
        WHEN setting up a new certificate request,
        THEN `InvalidContext` is raised until `reinit` is called.
        """
        self.ctx.phase = SessionPhase.DONE
        with self.assertRaises(InvalidContext):
            setup_cert_req(self.ctx, new_key=self.new_key)
        context.reinit(self.ctx)
        setup_cert_req(self.ctx, new_key=self.new_key)

    def test_merge_extensions(self):
        """
        GIVEN base extensions and overrides with the same OID.
        WHEN merging them,
        THEN the override replaces the base entry.
        """
        basic = x509.Extension(x509.ExtensionOID.BASIC_CONSTRAINTS, True, x509.BasicConstraints(False, None))
        merged = merge_extensions([_san_extension("a.example.com"), basic], [_san_extension("b.example.com")])
        self.assertEqual(len(merged), 2)
        self.assertEqual(_san_names(merged), ["b.example.com"])


if __name__ == "__main__":
    unittest.main()
