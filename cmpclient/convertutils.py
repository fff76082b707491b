# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Utility functions for converting between `cryptography` objects and `pyasn1` structures."""

from typing import Iterable, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pyasn1.codec.der import decoder, encoder
from pyasn1.type import univ
from pyasn1_alt_modules import rfc5280, rfc9480
from robot.api.deco import keyword, not_keyword

from cmpclient.typingutils import NameLike


@keyword(name="Parse Name")
def parse_name(name: NameLike) -> x509.Name:  # noqa D417 undocumented-param
    """Parse a distinguished name given as string into a `cryptography` `x509.Name`.

    Accepts the RFC 4514 notation (e.g. "CN=Joe Mustermann,O=Siemens,C=DE") and the
    OpenSSL notation (e.g. "/C=DE/O=Siemens/CN=Joe Mustermann"). "Null-DN" is the empty name.

    Arguments:
    ---------
        - `name`: The name as string or as an already parsed `x509.Name`.

    Returns:
    -------
        - The parsed `x509.Name`.

    Raises:
    ------
        - `ValueError`: If the string is not a valid distinguished name.

    Examples:
    --------
    | ${name}= | Parse Name | CN=Joe Mustermann |
    | ${name}= | Parse Name | /C=DE/CN=Joe Mustermann |

    """
    if isinstance(name, x509.Name):
        return name

    name = name.strip()
    if name in ["Null-DN", "NULL-DN", ""]:
        return x509.Name([])

    if "=" not in name:
        raise ValueError("The name must contain at least one attribute, e.g., 'CN=Joe Mustermann'")

    if name.startswith("/"):
        # OpenSSL notation lists the attributes from the root to the leaf.
        parts = [part for part in name.split("/") if part]
        name = ",".join(reversed(parts))

    return x509.Name.from_rfc4514_string(name.replace(", ", ","))


@not_keyword
def prepare_name(name: NameLike, target: Optional[rfc9480.Name] = None) -> rfc9480.Name:
    """Prepare a `rfc9480.Name` object or fill a provided object.

    :param name: The name as `x509.Name` or as string.
    :param target: An optional `pyasn1` Name object in which the data is parsed. Else creates a new object.
    :return: The filled object.
    :raises ValueError: If the decoding of the name had a remainder.
    """
    der_data = parse_name(name).public_bytes()
    name_tmp, rest = decoder.decode(der_data, rfc9480.Name())
    if rest != b"":
        raise ValueError("The decoding of `Name` structure had a remainder!")

    if target is None:
        return name_tmp

    target["rdnSequence"] = name_tmp["rdnSequence"]
    return target


@not_keyword
def prepare_general_name(name: NameLike, target: Optional[rfc9480.GeneralName] = None) -> rfc9480.GeneralName:
    """Prepare a `GeneralName` of type `directoryName`.

    :param name: The directory name.
    :param target: An optional `GeneralName` object to fill. Else creates a new object.
    :return: The populated `GeneralName`.
    """
    name_obj = prepare_name(name)
    general_name = rfc9480.GeneralName() if target is None else target
    general_name["directoryName"]["rdnSequence"] = name_obj["rdnSequence"]
    return general_name


@not_keyword
def cert_to_asn1(cert: x509.Certificate) -> rfc9480.CMPCertificate:
    """Convert a `cryptography` certificate to a `pyasn1` `CMPCertificate`."""
    der_data = cert.public_bytes(serialization.Encoding.DER)
    asn1_cert, rest = decoder.decode(der_data, asn1Spec=rfc9480.CMPCertificate())
    if rest != b"":
        raise ValueError("The decoding of the certificate had a remainder!")
    return asn1_cert


@not_keyword
def asn1_to_cert(asn1_cert: rfc9480.CMPCertificate) -> x509.Certificate:
    """Convert a `pyasn1` `CMPCertificate` to a `cryptography` certificate."""
    return x509.load_der_x509_certificate(encoder.encode(asn1_cert))


@not_keyword
def asn1_to_certs(asn1_certs: Iterable[rfc9480.CMPCertificate]) -> List[x509.Certificate]:
    """Convert a sequence of `pyasn1` certificates, e.g. `extraCerts` or `caPubs`."""
    return [asn1_to_cert(cert) for cert in asn1_certs]


@not_keyword
def subject_public_key_info_from_pubkey(
    public_key, target: Optional[rfc5280.SubjectPublicKeyInfo] = None
) -> rfc5280.SubjectPublicKeyInfo:
    """Convert a public key into a `SubjectPublicKeyInfo` structure.

    :param public_key: The `cryptography` public key.
    :param target: An optional (e.g. tagged) structure to populate.
    :return: The populated `SubjectPublicKeyInfo`.
    """
    der_data = public_key.public_bytes(
        encoding=serialization.Encoding.DER, format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    spki, _ = decoder.decode(der_data, asn1Spec=rfc5280.SubjectPublicKeyInfo())
    if target is None:
        return spki

    target["algorithm"] = spki["algorithm"]
    target["subjectPublicKey"] = spki["subjectPublicKey"]
    return target


@not_keyword
def extensions_to_asn1(
    extensions: Iterable[x509.Extension], target: Optional[rfc5280.Extensions] = None
) -> rfc5280.Extensions:
    """Convert `cryptography` extensions into a `pyasn1` `Extensions` structure.

    :param extensions: The extensions to convert.
    :param target: An optional (e.g. tagged) structure to append to.
    :return: The populated `Extensions` structure.
    """
    target = rfc5280.Extensions() if target is None else target
    for ext in extensions:
        asn1_ext = rfc5280.Extension()
        asn1_ext["extnID"] = univ.ObjectIdentifier(ext.oid.dotted_string)
        asn1_ext["critical"] = ext.critical
        asn1_ext["extnValue"] = univ.OctetString(ext.value.public_bytes())
        target.append(asn1_ext)
    return target


@not_keyword
def copy_asn1_certificate(
    cert: rfc9480.CMPCertificate, target: Optional[rfc9480.CMPCertificate] = None
) -> rfc9480.CMPCertificate:
    """Copy the fields of a (possibly tagged) pyasn1 certificate into a new or provided `CMPCertificate` object.

    :param cert: The source pyasn1 `Certificate` to copy.
    :param target: An optional pyasn1 `CMPCertificate` object to populate with the extracted fields.
    If not provided, a new `CMPCertificate` is created.
    :return: The populated pyasn1 `CMPCertificate` object containing the copied fields.
    """
    tbs_certificate = encoder.encode(cert.getComponentByName("tbsCertificate"))
    signature_algorithm = encoder.encode(cert.getComponentByName("signatureAlgorithm"))
    signature = encoder.encode(cert.getComponentByName("signature"))

    if target is None:
        target = rfc9480.CMPCertificate()

    target.setComponentByName("tbsCertificate", decoder.decode(tbs_certificate, asn1Spec=rfc5280.TBSCertificate())[0])
    target.setComponentByName(
        "signatureAlgorithm", decoder.decode(signature_algorithm, asn1Spec=rfc5280.AlgorithmIdentifier())[0]
    )
    target.setComponentByName("signature", decoder.decode(signature, asn1Spec=univ.BitString())[0])
    return target
