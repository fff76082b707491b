# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

import unittest

from cryptography.hazmat.primitives.asymmetric import ec

from cmpclient import client, context
from cmpclient.enums import PKIStatus, RevocationReason
from cmpclient.exceptions import InvalidContext, InvalidParameters, ProtocolRejection
from cmpclient.status import snprint_pki_status
from unit_tests.utils_for_test import MockCA, build_certificate


class TestRevoke(unittest.TestCase):
    def setUp(self):
        self.mock_ca = MockCA()
        self.ctx = context.prepare(
            truststore=self.mock_ca.truststore(),
            creds=self.mock_ca.client_creds,
            transfer_fn=self.mock_ca.transfer,
        )

    def tearDown(self):
        context.finish(self.ctx)

    def test_revoke_with_key_compromise(self):
        """
        GIVEN a certificate issued by the CA.
        WHEN revoking it with the reason `keyCompromise`,
        THEN a single `rr` is sent with the reason and the status is `accepted`.
        """
        client.revoke(self.ctx, self.mock_ca.client_cert, RevocationReason.keyCompromise)

        self.assertEqual(self.mock_ca.received, ["rr"])
        self.assertEqual(self.mock_ca.revoked, {self.mock_ca.client_cert.serial_number: 1})
        self.assertEqual(self.ctx.status.status, PKIStatus.accepted)
        self.assertEqual(snprint_pki_status(self.ctx), "PKIStatus: accepted")

    def test_revoke_reason_by_name_and_without_reason(self):
        """
        GIVEN a certificate issued by the CA.
        WHEN revoking it with the reason given by name, and another one without reason,
        THEN both reasons are sent as requested.
        """
        client.revoke(self.ctx, self.mock_ca.client_cert, "superseded")
        self.assertEqual(self.mock_ca.revoked[self.mock_ca.client_cert.serial_number], 4)

        other_key = ec.generate_private_key(ec.SECP256R1())
        other_cert = build_certificate(other_key.public_key(), "CN=Other", self.mock_ca.ca_key, self.mock_ca.ca_cert)
        self.mock_ca.issued[other_cert.serial_number] = other_cert
        context.reinit(self.ctx)
        client.revoke(self.ctx, other_cert, RevocationReason.NONE)
        self.assertEqual(self.mock_ca.revoked[other_cert.serial_number], -1)

    def test_revoke_unknown_certificate(self):
        """
        GIVEN a certificate unknown to the CA.
        WHEN revoking it,
        THEN `ProtocolRejection` with failure info `badCertId` is raised.
        """
        other_ca = MockCA(ca_subject="CN=Other CA")
        with self.assertRaises(ProtocolRejection) as err:
            client.revoke(self.ctx, other_ca.client_cert)
        self.assertEqual(err.exception.get_failinfo(), "badCertId")
        self.assertEqual(self.ctx.status.status, PKIStatus.rejection)

    def test_revoke_invalid_reason(self):
        """
        GIVEN an unknown revocation reason.
        WHEN revoking a certificate,
        THEN `InvalidParameters` is raised and nothing is sent.
        """
        with self.assertRaises(InvalidParameters):
            client.revoke(self.ctx, self.mock_ca.client_cert, "bogus")
        with self.assertRaises(InvalidParameters):
            client.revoke(self.ctx, None)
        self.assertEqual(self.mock_ca.received, [])

    def test_revoke_twice_requires_reinit(self):
        """
        GIVEN a context whose revocation succeeded.
        WHEN revoking again without `reinit`,
        THEN `InvalidContext` is raised.
        """
        client.revoke(self.ctx, self.mock_ca.client_cert)
        with self.assertRaises(InvalidContext):
            client.revoke(self.ctx, self.mock_ca.client_cert)


if __name__ == "__main__":
    unittest.main()
