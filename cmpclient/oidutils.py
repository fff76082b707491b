# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Defines Object Identifiers (OIDs) and mappings used by the CMP client."""

from typing import Dict

from cryptography.hazmat.primitives import hashes
from pyasn1.type import univ
from pyasn1_alt_modules import rfc5480, rfc8017, rfc8018, rfc9480, rfc9481

RSA_SHA_OID_2_NAME = {
    rfc8017.sha1WithRSAEncryption: "rsa-sha1",
    rfc9481.sha224WithRSAEncryption: "rsa-sha224",
    rfc9481.sha256WithRSAEncryption: "rsa-sha256",
    rfc9481.sha384WithRSAEncryption: "rsa-sha384",
    rfc9481.sha512WithRSAEncryption: "rsa-sha512",
}
ECDSA_SHA_OID_2_NAME = {
    rfc9481.ecdsa_with_SHA224: "ecdsa-sha224",
    rfc9481.ecdsa_with_SHA256: "ecdsa-sha256",
    rfc9481.ecdsa_with_SHA384: "ecdsa-sha384",
    rfc9481.ecdsa_with_SHA512: "ecdsa-sha512",
}
ED_OID_2_NAME = {rfc9481.id_Ed25519: "ed25519", rfc9481.id_Ed448: "ed448"}

# These mappings facilitate the identification of the specific HMAC-SHA algorithm
# used for the MAC-based protection of the PKIMessage.
HMAC_OID_2_NAME = {
    rfc9481.id_hmacWithSHA224: "hmac-sha224",
    rfc9481.id_hmacWithSHA256: "hmac-sha256",
    rfc9481.id_hmacWithSHA384: "hmac-sha384",
    rfc9481.id_hmacWithSHA512: "hmac-sha512",
}

SHA_OID_2_NAME = {
    rfc5480.id_sha1: "sha1",
    rfc5480.id_sha224: "sha224",
    rfc5480.id_sha256: "sha256",
    rfc5480.id_sha384: "sha384",
    rfc5480.id_sha512: "sha512",
}

# Maps signature OIDs and hash OIDs to "<key>-<hash>" or "<hash>" names.
OID_HASH_MAP: Dict[univ.ObjectIdentifier, str] = {}
OID_HASH_MAP.update(RSA_SHA_OID_2_NAME)
OID_HASH_MAP.update(ECDSA_SHA_OID_2_NAME)
OID_HASH_MAP.update(HMAC_OID_2_NAME)
OID_HASH_MAP.update(SHA_OID_2_NAME)

SIG_NAME_2_OID = {name: oid for oid, name in RSA_SHA_OID_2_NAME.items()}
SIG_NAME_2_OID.update({name: oid for oid, name in ECDSA_SHA_OID_2_NAME.items()})
SIG_NAME_2_OID.update({name: oid for oid, name in ED_OID_2_NAME.items()})

HASH_NAME_2_OID = {name: oid for oid, name in SHA_OID_2_NAME.items()}
HMAC_NAME_2_OID = {name: oid for oid, name in HMAC_OID_2_NAME.items()}

HASH_NAME_OBJ_MAP = {
    "sha1": hashes.SHA1(),
    "sha224": hashes.SHA224(),
    "sha256": hashes.SHA256(),
    "sha384": hashes.SHA384(),
    "sha512": hashes.SHA512(),
}

# The MAC-based protection algorithms, which can be selected by name.
MAC_NAME_2_OID = {
    "password_based_mac": rfc9481.id_PasswordBasedMac,
    "pbm": rfc9481.id_PasswordBasedMac,
    "pbmac1": rfc8018.id_PBMAC1,
    "hmac": rfc9481.id_hmacWithSHA256,
}
MAC_NAME_2_OID.update(HMAC_NAME_2_OID)

SYMMETRIC_PROT_ALGO = {
    rfc9481.id_PasswordBasedMac: "password_based_mac",
    rfc8018.id_PBMAC1: "pbmac1",
}
SYMMETRIC_PROT_ALGO.update(HMAC_OID_2_NAME)

id_it_implicitConfirm = rfc9480.id_it_implicitConfirm
