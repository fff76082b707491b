# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import hashlib
import unittest
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from pyasn1.codec.der import decoder, encoder
from pyasn1_alt_modules import rfc4211, rfc5280, rfc9480

from cmpclient import cmputils, convertutils
from cmpclient.enums import CmdKind, RevocationReason
from cmpclient.oidutils import id_it_implicitConfirm
from unit_tests.utils_for_test import MockCA, asn1_name_to_x509, prepare_error_body, prepare_pkiconf_body


def _build_ed25519_cert() -> x509.Certificate:
    key = ed25519.Ed25519PrivateKey.generate()
    name = x509.Name.from_rfc4514_string("CN=EdDSA")
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=1))
        .sign(key, None)
    )


class TestCmpUtils(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.mock_ca = MockCA()
        cls.new_key = ec.generate_private_key(ec.SECP256R1())
        cls.header = {"sender": "CN=Client C0", "recipient": "CN=Mock CA"}

    def test_build_ir(self):
        """
        GIVEN a new key and a subject.
        WHEN building an `ir` with implicit confirmation requested,
        THEN the template holds subject and public key, and the header requests implicit confirmation.
        """
        pki_message = cmputils.build_cert_req_message(
            CmdKind.IR, self.new_key, "CN=Joe Mustermann", implicit_confirm=True, **self.header
        )
        self.assertEqual(cmputils.get_cmp_message_type(pki_message), "ir")

        cert_req = pki_message["body"]["ir"][0]["certReq"]
        self.assertEqual(int(cert_req["certReqId"]), cmputils.CERT_REQ_ID)
        template = cert_req["certTemplate"]
        self.assertEqual(
            asn1_name_to_x509(template["subject"]), x509.Name.from_rfc4514_string("CN=Joe Mustermann")
        )
        self.assertTrue(template["publicKey"].isValue)
        self.assertFalse(template["extensions"].isValue)
        self.assertTrue(pki_message["body"]["ir"][0]["popo"]["signature"].isValue)

        self.assertTrue(cmputils.find_oid_in_general_info(pki_message, id_it_implicitConfirm))
        self.assertEqual(len(cmputils.get_header_octets(pki_message, "transactionID")), 16)
        self.assertEqual(len(cmputils.get_header_octets(pki_message, "senderNonce")), 16)
        self.assertIsNone(cmputils.get_header_octets(pki_message, "recipNonce"))

    def test_build_cr_with_extensions(self):
        """
        GIVEN a SubjectAltName extension.
        WHEN building a `cr` without implicit confirmation,
        THEN the extension is placed in the template and `generalInfo` is absent.
        """
        san = x509.Extension(
            x509.SubjectAlternativeName.oid, False, x509.SubjectAlternativeName([x509.DNSName("joe.example.com")])
        )
        pki_message = cmputils.build_cert_req_message(
            CmdKind.CR, self.new_key, "CN=Joe Mustermann", extensions=[san], **self.header
        )
        self.assertEqual(cmputils.get_cmp_message_type(pki_message), "cr")
        extensions = pki_message["body"]["cr"][0]["certReq"]["certTemplate"]["extensions"]
        self.assertEqual(len(extensions), 1)
        self.assertEqual(extensions[0]["extnID"], rfc5280.id_ce_subjectAltName)
        self.assertFalse(cmputils.find_oid_in_general_info(pki_message, id_it_implicitConfirm))

    def test_build_kur(self):
        """
        GIVEN the certificate to be updated.
        WHEN building a `kur`,
        THEN the `oldCertId` control references issuer and serial number, and without certificate it fails.
        """
        pki_message = cmputils.build_cert_req_message(
            CmdKind.KUR, self.new_key, old_cert=self.mock_ca.client_cert, **self.header
        )
        controls = pki_message["body"]["kur"][0]["certReq"]["controls"]
        self.assertEqual(controls[0]["type"], rfc4211.id_regCtrl_oldCertID)
        old_cert_id, _ = decoder.decode(encoder.encode(controls[0]["value"]), asn1Spec=rfc4211.OldCertId())
        self.assertEqual(int(old_cert_id["serialNumber"]), self.mock_ca.client_cert.serial_number)

        with self.assertRaises(ValueError):
            cmputils.build_cert_req_message(CmdKind.KUR, self.new_key, **self.header)
        with self.assertRaises(ValueError):
            cmputils.build_cert_req_message(CmdKind.RR, self.new_key, **self.header)

    def test_build_revocation_request(self):
        """
        GIVEN a certificate.
        WHEN building an `rr` with a reason and without,
        THEN the certificate is referenced, and the CRL reason is only present if given.
        """
        cert = self.mock_ca.client_cert
        pki_message = cmputils.build_revocation_request(cert, RevocationReason.keyCompromise, **self.header)
        rev_details = pki_message["body"]["rr"][0]
        self.assertEqual(int(rev_details["certDetails"]["serialNumber"]), cert.serial_number)
        self.assertEqual(asn1_name_to_x509(rev_details["certDetails"]["issuer"]), cert.issuer)

        extension = rev_details["crlEntryDetails"][0]
        self.assertEqual(extension["extnID"], rfc5280.id_ce_cRLReasons)
        reason, _ = decoder.decode(extension["extnValue"].asOctets(), asn1Spec=rfc5280.CRLReason())
        self.assertEqual(int(reason), 1)

        pki_message = cmputils.build_revocation_request(cert, RevocationReason.NONE, **self.header)
        self.assertFalse(pki_message["body"]["rr"][0]["crlEntryDetails"].isValue)

    def test_calculate_cert_hash(self):
        """
        GIVEN an ECDSA-SHA256 and an Ed25519 certificate.
        WHEN calculating the hash for `certConf`,
        THEN SHA-256 is used implicitly for the first and SHA-512 explicitly for the second.
        """
        asn1_cert = convertutils.cert_to_asn1(self.mock_ca.client_cert)
        cert_hash, hash_alg = cmputils.calculate_cert_hash(asn1_cert)
        self.assertEqual(cert_hash, hashlib.sha256(encoder.encode(asn1_cert)).digest())
        self.assertIsNone(hash_alg)

        asn1_cert = convertutils.cert_to_asn1(_build_ed25519_cert())
        cert_hash, hash_alg = cmputils.calculate_cert_hash(asn1_cert)
        self.assertEqual(cert_hash, hashlib.sha512(encoder.encode(asn1_cert)).digest())
        self.assertEqual(hash_alg, "sha512")

    def test_build_cert_conf(self):
        """
        GIVEN an issued certificate.
        WHEN building the `certConf`,
        THEN the certificate hash and the request identifier are set.
        """
        asn1_cert = convertutils.cert_to_asn1(self.mock_ca.client_cert)
        pki_message = cmputils.build_cert_conf(asn1_cert, recip_nonce=b"1111111122222222", **self.header)
        cert_status = pki_message["body"]["certConf"][0]
        self.assertEqual(cert_status["certHash"].asOctets(), hashlib.sha256(encoder.encode(asn1_cert)).digest())
        self.assertEqual(int(cert_status["certReqId"]), cmputils.CERT_REQ_ID)
        self.assertFalse(cert_status["hashAlg"].isValue)
        self.assertEqual(cmputils.get_header_octets(pki_message, "recipNonce"), b"1111111122222222")

    def test_build_poll_request(self):
        """
        GIVEN a pending request.
        WHEN building the `pollReq`,
        THEN the body references the single request.
        """
        pki_message = cmputils.build_poll_request(transaction_id=b"0123456789abcdef", **self.header)
        self.assertEqual(cmputils.get_cmp_message_type(pki_message), "pollReq")
        self.assertEqual(int(pki_message["body"]["pollReq"][0]["certReqId"]), cmputils.CERT_REQ_ID)
        self.assertEqual(cmputils.get_header_octets(pki_message, "transactionID"), b"0123456789abcdef")

    def test_parse_pkimessage(self):
        """
        GIVEN an encoded `rr`, the same with trailing data and random bytes.
        WHEN parsing them,
        THEN only the first is accepted.
        """
        pki_message = cmputils.build_revocation_request(self.mock_ca.client_cert, **self.header)
        der_data = cmputils.encode_pkimessage(pki_message)

        parsed = cmputils.parse_pkimessage(der_data)
        self.assertEqual(cmputils.get_cmp_message_type(parsed), "rr")
        with self.assertRaises(ValueError):
            cmputils.parse_pkimessage(der_data + b"\x00")
        with self.assertRaises(ValueError):
            cmputils.parse_pkimessage(b"not a PKIMessage")

    def test_get_pkistatusinfo(self):
        """
        GIVEN an `error` and a `pkiconf` message.
        WHEN extracting the `PKIStatusInfo`,
        THEN the status of the error is returned, and the `pkiconf` raises `ValueError`.
        """
        pki_message = rfc9480.PKIMessage()
        pki_message["body"] = prepare_error_body("badRequest", "malformed")
        status_info = cmputils.get_pkistatusinfo(pki_message)
        self.assertEqual(str(status_info["status"]), "rejection")
        self.assertEqual(str(status_info["statusString"][0]), "malformed")

        pki_message = rfc9480.PKIMessage()
        pki_message["body"] = prepare_pkiconf_body()
        with self.assertRaises(ValueError):
            cmputils.get_pkistatusinfo(pki_message)


if __name__ == "__main__":
    unittest.main()
