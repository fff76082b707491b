# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Computes and verifies the protection of a `PKIMessage`, either signature-based or MAC-based."""

import hmac
import logging
import os
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import constraint, tag, univ
from pyasn1.type.tag import Tag, tagClassContext, tagFormatSimple
from pyasn1_alt_modules import rfc8018, rfc9480, rfc9481
from robot.api.deco import keyword, not_keyword

from cmpclient import convertutils, cryptoutils
from cmpclient.asn1_structures import ProtectedPart
from cmpclient.config_vars import ProtectionConfig
from cmpclient.credentials import Credentials
from cmpclient.exceptions import CertVerifyError, InvalidParameters, OtherLibraryError
from cmpclient.oidutils import HASH_NAME_2_OID, HMAC_NAME_2_OID, HMAC_OID_2_NAME, MAC_NAME_2_OID, SYMMETRIC_PROT_ALGO

# PBMAC1 always uses the same hash for the PRF and the HMAC.
PBMAC1_HASH_ALG = "sha256"
PBMAC1_KEY_LENGTH = 32


@not_keyword
def prepare_protected_part(pki_message: rfc9480.PKIMessage) -> bytes:
    """Return the DER-encoded `ProtectedPart` of a `PKIMessage`, the data covered by its protection.

    :param pki_message: The PKIMessage to prepare the protected part for.
    :return: The data to protect or verify.
    :raises ValueError: If the header or body is missing.
    """
    for x in ["sender", "pvno", "recipient"]:
        if not pki_message["header"][x].isValue:
            raise ValueError(f"The `{x}` field has no value, can not protect the `PKIMessage`.")

    if not pki_message["body"].isValue:
        raise ValueError("The `body` field has no value, can not protect the `PKIMessage`.")

    protected_part = ProtectedPart()
    protected_part["header"] = pki_message["header"]
    protected_part["body"] = pki_message["body"]
    try:
        return encoder.encode(protected_part)
    except PyAsn1Error as e:
        raise ValueError("The encoding of the `ProtectedPart` failed.") from e


def _prepare_alg_id(oid: univ.ObjectIdentifier, params=None) -> rfc9480.AlgorithmIdentifier:
    """Prepare an `AlgorithmIdentifier`, with the DER-encoded parameters, if given."""
    alg_id = rfc9480.AlgorithmIdentifier()
    alg_id["algorithm"] = oid
    if params is not None:
        alg_id["parameters"] = univ.Any(encoder.encode(params))
    return alg_id


def _prepare_pbm_parameters(salt: bytes, iterations: int, hash_alg: str) -> rfc9480.PBMParameter:
    """Prepare the `PBMParameter` structure of RFC 4210 Section 5.1.3.1.

    :param salt: The salt.
    :param iterations: Number of iterations of the OWF (hashing) to perform.
    :param hash_alg: Name of hashing algorithm to use for the OWF and the HMAC.
    :return: The populated `rfc9480.PBMParameter` structure.
    """
    pbm_parameter = rfc9480.PBMParameter()
    pbm_parameter["salt"] = univ.OctetString(salt).subtype(subtypeSpec=constraint.ValueSizeConstraint(0, 128))
    pbm_parameter["iterationCount"] = iterations
    pbm_parameter["owf"] = _prepare_alg_id(HASH_NAME_2_OID[hash_alg], univ.Null(""))
    pbm_parameter["mac"] = _prepare_alg_id(HMAC_NAME_2_OID[f"hmac-{hash_alg}"], univ.Null(""))
    return pbm_parameter


def _prepare_pbmac1_parameters(salt: bytes, iterations: int, length: int, hash_alg: str) -> rfc8018.PBMAC1_params:
    """Prepare the `PBMAC1_params` structure, with PBKDF2 as key derivation function.

    :param salt: The salt of PBKDF2.
    :param iterations: The number of iterations of PBKDF2.
    :param length: The length of the derived key in bytes.
    :param hash_alg: The name of the hash algorithm to use with HMAC, for the PRF and the MAC.
    :return: Populated `rfc8018.PBMAC1_params` object.
    """
    pbkdf2_params = rfc8018.PBKDF2_params()
    pbkdf2_params["salt"]["specified"] = univ.OctetString(salt)
    pbkdf2_params["iterationCount"] = iterations
    pbkdf2_params["keyLength"] = length
    pbkdf2_params["prf"] = _prepare_alg_id(HMAC_NAME_2_OID[f"hmac-{hash_alg}"])

    outer_params = rfc8018.PBMAC1_params()
    outer_params["keyDerivationFunc"] = _prepare_alg_id(rfc8018.id_PBKDF2, pbkdf2_params)
    outer_params["messageAuthScheme"] = _prepare_alg_id(HMAC_NAME_2_OID[f"hmac-{hash_alg}"])
    return outer_params


@not_keyword
def prepare_mac_alg_id(mac: str, iterations: int = 1000, salt: Optional[bytes] = None) -> rfc9480.AlgorithmIdentifier:
    """Prepare the `AlgorithmIdentifier` for MAC-based protection.

    :param mac: The name of the MAC algorithm, see `MAC_NAME_2_OID`.
    :param iterations: The iteration count for the password-based algorithms. Defaults to `1000`.
    :param salt: The salt; if not given, a random 16-byte salt will be generated.
    :return: The prepared `AlgorithmIdentifier` (untagged).
    :raises InvalidParameters: If the MAC algorithm is not supported.
    """
    oid = MAC_NAME_2_OID.get(mac.lower())
    if oid is None:
        raise InvalidParameters(f"Unsupported MAC algorithm: {mac}")

    salt = salt or os.urandom(16)
    if oid == rfc9481.id_PasswordBasedMac:
        return _prepare_alg_id(oid, _prepare_pbm_parameters(salt, iterations, hash_alg="sha256"))

    if oid == rfc8018.id_PBMAC1:
        params = _prepare_pbmac1_parameters(salt, iterations, PBMAC1_KEY_LENGTH, PBMAC1_HASH_ALG)
        return _prepare_alg_id(oid, params)

    return _prepare_alg_id(oid)


def _decode_params(alg_id: rfc9480.AlgorithmIdentifier, spec):
    params, rest = decoder.decode(alg_id["parameters"].asOctets(), asn1Spec=spec)
    if rest != b"":
        raise ValueError(f"The decoding of `{type(spec).__name__}` structure had a remainder!")
    return params


def _compute_pbmac1_from_param(prot_params: rfc8018.PBMAC1_params, password: bytes, data: bytes) -> bytes:
    """Compute the PBMAC1 with the parameters of the `AlgorithmIdentifier`.

    :param prot_params: The decoded `PBMAC1_params` structure.
    :param password: The shared secret used for the key derivation.
    :param data: The data to authenticate.
    :return: The computed message authentication code value.
    """
    pbkdf2_param = _decode_params(prot_params["keyDerivationFunc"], rfc8018.PBKDF2_params())
    hash_alg = HMAC_OID_2_NAME[prot_params["messageAuthScheme"]["algorithm"]].split("-")[1]
    prf_hash_alg = HMAC_OID_2_NAME[pbkdf2_param["prf"]["algorithm"]].split("-")[1]
    if prf_hash_alg != hash_alg:
        raise ValueError(f"The PRF and the MAC of PBMAC1 use different hash algorithms: {prf_hash_alg}, {hash_alg}")

    return cryptoutils.compute_pbmac1(
        data=data,
        key=password,
        iterations=int(pbkdf2_param["iterationCount"]),
        salt=pbkdf2_param["salt"]["specified"].asOctets(),
        length=int(pbkdf2_param["keyLength"]),
        hash_alg=hash_alg,
    )


@not_keyword
def compute_mac_from_alg_id(key: bytes, alg_id: rfc9480.AlgorithmIdentifier, data: bytes) -> bytes:
    """Compute the MAC value based on the provided `AlgorithmIdentifier` structure.

    :param key: The shared secret.
    :param alg_id: The `AlgorithmIdentifier` structure containing the MAC parameters.
    :param data: The data to authenticate.
    :return: The computed MAC value.
    :raises ValueError: If the algorithm or its parameters are not supported.
    """
    protection_type_oid = alg_id["algorithm"]

    if protection_type_oid in HMAC_OID_2_NAME:
        hash_alg = HMAC_OID_2_NAME[protection_type_oid].split("-")[1]
        return cryptoutils.compute_hmac(data=data, key=key, hash_alg=hash_alg)

    if protection_type_oid == rfc8018.id_PBMAC1:
        prot_params = _decode_params(alg_id, rfc8018.PBMAC1_params())
        return _compute_pbmac1_from_param(prot_params, password=key, data=data)

    if protection_type_oid == rfc9481.id_PasswordBasedMac:
        prot_params = _decode_params(alg_id, rfc9480.PBMParameter())
        hash_alg_owf = cryptoutils.get_hash_from_oid(prot_params["owf"]["algorithm"])
        if prot_params["mac"]["algorithm"] not in HMAC_OID_2_NAME:
            raise ValueError("The `PBMParameter` must use HMAC. Other MAC algorithms are not supported.")

        return cryptoutils.compute_password_based_mac(
            data=data,
            key=key,
            iterations=int(prot_params["iterationCount"]),
            salt=prot_params["salt"].asOctets(),
            hash_alg=hash_alg_owf,
            mac_hash_alg=HMAC_OID_2_NAME[prot_params["mac"]["algorithm"]].split("-")[1],
        )

    raise ValueError(f"Unsupported Symmetric MAC Protection: {protection_type_oid}")


@not_keyword
def prepare_pki_protection_field(protection_value: bytes) -> rfc9480.PKIProtection:
    """Return the tagged `PKIProtection` structure."""
    return rfc9480.PKIProtection().fromOctetString(protection_value).subtype(
        explicitTag=Tag(tagClassContext, tagFormatSimple, 0)
    )


@not_keyword
def prepare_extra_certs(certs: List[x509.Certificate]) -> univ.SequenceOf:
    """Build the `extraCerts` field with the given certificates, in the given order."""
    extra_certs_wrapper: univ.SequenceOf = (
        univ.SequenceOf(componentType=rfc9480.CMPCertificate())  # type: ignore
        .subtype(subtypeSpec=constraint.ValueSizeConstraint(1, rfc9480.MAX))
        .subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 1))
    )
    extra_certs_wrapper.extend([convertutils.cert_to_asn1(cert) for cert in certs])
    return extra_certs_wrapper


@keyword(name="Protect PKIMessage")
def protect_pkimessage(  # noqa: D417 undocumented-param
    pki_message: rfc9480.PKIMessage,
    creds: Credentials,
    protection: ProtectionConfig,
    salt: Optional[bytes] = None,
) -> rfc9480.PKIMessage:
    """Protect a PKIMessage with a signature or a MAC, as selected by the protection configuration.

    With signature-based protection, the `extraCerts` field starts with the certificate
    of the signing key, followed by its chain.

    Arguments:
    ---------
        - `pki_message`: The message to protect; its header must be complete.
        - `creds`: The credentials providing the private key and certificate or the shared secret.
        - `protection`: The selected protection.
        - `salt`: The salt for the password-based MAC algorithms. Defaults to random bytes.

    Returns:
    -------
        - The protected PKIMessage.

    Raises:
    ------
        - `InvalidParameters`: If the credentials do not fit the selected protection.
        - `OtherLibraryError`: If the protection could not be computed.

    Examples:
    --------
    | ${prot_msg}= | Protect PKIMessage | ${pki_message} | ${creds} | ${protection} |

    """
    if protection.uses_mac:
        if not creds.has_secret:
            raise InvalidParameters("MAC-based protection requires a shared secret.")
        prot_alg_id = prepare_mac_alg_id(protection.mac, protection.iterations, salt or os.urandom(protection.salt_length))
    else:
        if not creds.has_key_and_cert:
            raise InvalidParameters("Signature-based protection requires a private key and a certificate.")
        prot_alg_id = _prepare_alg_id(cryptoutils.get_alg_oid_from_key_hash(creds.key, protection.digest))

    pki_message["header"]["protectionAlg"] = prot_alg_id.subtype(
        explicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatConstructed, 1), cloneValueFlag=True
    )

    try:
        data = prepare_protected_part(pki_message)
        if protection.uses_mac:
            protection_value = compute_mac_from_alg_id(creds.secret, prot_alg_id, data)
        else:
            protection_value = cryptoutils.sign_data(data=data, key=creds.key, hash_alg=protection.digest)
    except ValueError as err:
        raise OtherLibraryError("Could not compute the PKIMessage protection", lib_error=err) from err

    if not protection.uses_mac:
        pki_message["extraCerts"] = prepare_extra_certs([creds.cert] + list(creds.chain))

    pki_message["protection"] = prepare_pki_protection_field(protection_value)
    logging.debug("Protected the PKIMessage with: %s", prot_alg_id["algorithm"])
    return pki_message


@not_keyword
def is_mac_protected(pki_message: rfc9480.PKIMessage) -> bool:
    """Check whether the message carries MAC-based protection."""
    return pki_message["header"]["protectionAlg"]["algorithm"] in SYMMETRIC_PROT_ALGO


@keyword(name="Verify PKIMessage Protection")
def verify_pkimessage_protection(  # noqa: D417 undocumented-param
    pki_message: rfc9480.PKIMessage, secret: Optional[bytes] = None
) -> Optional[x509.Certificate]:
    """Verify the `PKIProtection` of a received `PKIMessage`.

    The certificate used for signing must be the first certificate in the `extraCerts`
    field of the `PKIMessage`, as per RFC 9483, Section 3.3. Its trust is not checked here.

    Arguments:
    ---------
        - `pki_message`: The `PKIMessage` object whose protection needs to be verified.
        - `secret`: The shared secret for MAC-based protection. Defaults to `None`.

    Returns:
    -------
        - The certificate of the signer, or `None` for MAC-based protection.

    Raises:
    ------
        - `CertVerifyError`: If the message is unprotected, the protection is invalid,
        or the algorithm is unsupported.

    Examples:
    --------
    | ${signer}= | Verify PKIMessage Protection | ${pki_message} |
    | Verify PKIMessage Protection | ${pki_message} | secret=${secret} |

    """
    if not pki_message["header"]["protectionAlg"].isValue or not pki_message["protection"].isValue:
        raise CertVerifyError("The received PKIMessage is not protected.")

    protection_value: bytes = pki_message["protection"].asOctets()
    prot_alg_id = pki_message["header"]["protectionAlg"]
    protection_type_oid = prot_alg_id["algorithm"]

    try:
        data = prepare_protected_part(pki_message)
        if protection_type_oid in SYMMETRIC_PROT_ALGO:
            if secret is None:
                raise CertVerifyError("The received PKIMessage is MAC-protected, but no shared secret is available.")
            expected_value = compute_mac_from_alg_id(secret, prot_alg_id, data)
            if not hmac.compare_digest(protection_value, expected_value):
                raise CertVerifyError(
                    "Invalid MAC-based protection of the received PKIMessage.",
                    error_details=f"expected: {expected_value.hex()}, got: {protection_value.hex()}",
                )
            return None

        if not pki_message["extraCerts"].isValue or len(pki_message["extraCerts"]) == 0:
            raise CertVerifyError("The signer certificate is missing in the `extraCerts` field.")

        signer = convertutils.asn1_to_cert(pki_message["extraCerts"][0])
        hash_alg = cryptoutils.get_hash_from_oid(protection_type_oid, only_hash=True)
        cryptoutils.verify_signature(
            public_key=signer.public_key(), signature=protection_value, data=data, hash_alg=hash_alg
        )
    except InvalidSignature as err:
        raise CertVerifyError("Invalid signature-based protection of the received PKIMessage.") from err
    except (ValueError, TypeError, PyAsn1Error) as err:
        raise CertVerifyError(f"Could not verify the protection of the received PKIMessage: {err}") from err

    logging.info("Verified the signature-based protection, signer: %s", signer.subject.rfc4514_string())
    return signer
