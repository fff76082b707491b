# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import unittest

from pyasn1_alt_modules import rfc8018, rfc9481

from cmpclient import cmputils, protectionutils
from cmpclient.config_vars import ProtectionConfig
from cmpclient.credentials import Credentials
from cmpclient.exceptions import CertVerifyError, InvalidParameters
from unit_tests.utils_for_test import MockCA

SECRET = b"SiemensIT"


class TestPKIMessageProtection(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.mock_ca = MockCA()
        cls.mac_creds = Credentials(secret=SECRET, secret_ref="CMP-client")

    def _build_message(self):
        return cmputils.build_revocation_request(
            self.mock_ca.client_cert, sender="CN=Client C0", recipient="CN=Mock CA"
        )

    @staticmethod
    def _transmit(pki_message):
        return cmputils.parse_pkimessage(cmputils.encode_pkimessage(pki_message))

    def test_mac_protection(self):
        """
        GIVEN a shared secret.
        WHEN protecting a PKIMessage with each supported MAC algorithm and verifying the transmitted message,
        THEN the verification succeeds with the secret and fails with another one.
        """
        for mac in ["password_based_mac", "pbmac1", "hmac"]:
            with self.subTest(mac=mac):
                protected = protectionutils.protect_pkimessage(
                    self._build_message(), self.mac_creds, ProtectionConfig(mac=mac)
                )
                received = self._transmit(protected)
                self.assertTrue(protectionutils.is_mac_protected(received))
                self.assertIsNone(protectionutils.verify_pkimessage_protection(received, secret=SECRET))
                with self.assertRaises(CertVerifyError):
                    protectionutils.verify_pkimessage_protection(received, secret=b"wrong secret")

    def test_mac_alg_ids(self):
        """
        GIVEN the names of the password-based MAC algorithms.
        WHEN preparing their algorithm identifiers,
        THEN the OIDs match, and an unknown name raises `InvalidParameters`.
        """
        alg_id = protectionutils.prepare_mac_alg_id("pbm", iterations=500, salt=b"\x01" * 16)
        self.assertEqual(alg_id["algorithm"], rfc9481.id_PasswordBasedMac)
        alg_id = protectionutils.prepare_mac_alg_id("PBMAC1")
        self.assertEqual(alg_id["algorithm"], rfc8018.id_PBMAC1)
        with self.assertRaises(InvalidParameters):
            protectionutils.prepare_mac_alg_id("cmac")

    def test_signature_protection(self):
        """
        GIVEN the client credentials.
        WHEN protecting a PKIMessage with a signature and verifying the transmitted message,
        THEN the signer certificate is returned and `extraCerts` holds the chain.
        """
        protected = protectionutils.protect_pkimessage(
            self._build_message(), self.mock_ca.client_creds, ProtectionConfig(digest="sha256")
        )
        received = self._transmit(protected)
        self.assertFalse(protectionutils.is_mac_protected(received))
        signer = protectionutils.verify_pkimessage_protection(received)
        self.assertEqual(signer, self.mock_ca.client_cert)
        self.assertEqual(cmputils.get_extra_certs(received), [self.mock_ca.client_cert, self.mock_ca.ca_cert])

    def test_signed_message_with_wrong_signer(self):
        """
        GIVEN a signed PKIMessage whose first extra certificate belongs to another key.
        WHEN verifying the protection,
        THEN `CertVerifyError` is raised.
        """
        other_ca = MockCA(ca_subject="CN=Other CA")
        creds = Credentials(key=self.mock_ca.client_key, cert=other_ca.client_cert)
        protected = protectionutils.protect_pkimessage(self._build_message(), creds, ProtectionConfig(digest="sha256"))
        with self.assertRaises(CertVerifyError):
            protectionutils.verify_pkimessage_protection(self._transmit(protected))

    def test_unprotected_message(self):
        """
        GIVEN an unprotected PKIMessage.
        WHEN verifying the protection,
        THEN `CertVerifyError` is raised.
        """
        with self.assertRaises(CertVerifyError):
            protectionutils.verify_pkimessage_protection(self._transmit(self._build_message()), secret=SECRET)

    def test_mac_protected_without_secret(self):
        """
        GIVEN a MAC-protected PKIMessage.
        WHEN verifying it without a shared secret,
        THEN `CertVerifyError` is raised.
        """
        protected = protectionutils.protect_pkimessage(
            self._build_message(), self.mac_creds, ProtectionConfig(mac="password_based_mac")
        )
        with self.assertRaises(CertVerifyError):
            protectionutils.verify_pkimessage_protection(self._transmit(protected))

    def test_credentials_not_fitting_protection(self):
        """
        GIVEN credentials with only a secret and credentials with only a key.
        WHEN protecting with a signature or a MAC respectively,
        THEN `InvalidParameters` is raised.
        """
        with self.assertRaises(InvalidParameters):
            protectionutils.protect_pkimessage(self._build_message(), self.mac_creds, ProtectionConfig(digest="sha256"))
        with self.assertRaises(InvalidParameters):
            protectionutils.protect_pkimessage(
                self._build_message(), Credentials(key=self.mock_ca.client_key), ProtectionConfig(mac="pbmac1")
            )


if __name__ == "__main__":
    unittest.main()
