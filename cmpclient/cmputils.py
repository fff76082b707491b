# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Utilities for building and parsing the `PKIMessage` structures exchanged by the CMP client."""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pyasn1.codec.der import decoder, encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, constraint, univ, useful
from pyasn1.type.tag import Tag, tagClassContext, tagFormatConstructed, tagFormatSimple
from pyasn1_alt_modules import rfc4210, rfc4211, rfc5280, rfc6402, rfc9480
from robot.api.deco import keyword, not_keyword

from cmpclient import convertutils, cryptoutils
from cmpclient.asn1_structures import PollReqEntry
from cmpclient.enums import CmdKind, RevocationReason
from cmpclient.exceptions import OtherLibraryError
from cmpclient.oidutils import HASH_NAME_2_OID
from cmpclient.typingutils import NameLike, SignKey

# The only certificate request of a message; the client never batches requests.
CERT_REQ_ID = 0


def _prepare_octet_string_field(value: bytes, tag_number: int) -> univ.OctetString:
    """Prepare an OctetString field with a specific tag number.

    :param value: The value to be encoded in the OctetString.
    :param tag_number: The tag number to use for the OctetString.
    :return: A tagged OctetString.
    """
    return univ.OctetString(value).subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, tag_number))


def _prepare_generalinfo(implicit_confirm: bool = True) -> univ.SequenceOf:
    """Prepare the `generalInfo` field inside the `PKIHeader` structure.

    :param implicit_confirm: If `True`, includes the implicit confirmation request.
    :return: The `generalInfo` structure.
    """
    general_info_wrapper = (
        univ.SequenceOf(componentType=rfc9480.InfoTypeAndValue())  # type: ignore
        .subtype(subtypeSpec=constraint.ValueSizeConstraint(1, rfc9480.MAX))
        .subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 8))
    )

    if implicit_confirm:
        implicit_confirm_obj = rfc9480.InfoTypeAndValue()
        implicit_confirm_obj["infoType"] = rfc9480.id_it_implicitConfirm
        implicit_confirm_obj["infoValue"] = univ.Null("")
        general_info_wrapper.append(implicit_confirm_obj)

    return general_info_wrapper


@not_keyword
def prepare_pki_message(
    sender: NameLike,
    recipient: NameLike,
    transaction_id: Optional[bytes] = None,
    sender_nonce: Optional[bytes] = None,
    recip_nonce: Optional[bytes] = None,
    sender_kid: Optional[bytes] = None,
    implicit_confirm: bool = False,
    pvno: int = 2,
) -> rfc9480.PKIMessage:
    """Prepare the skeleton structure of a PKIMessage, with the body to be set later.

    :param sender: The sender's name, placed as `directoryName`.
    :param recipient: The recipient's name, placed as `directoryName`.
    :param transaction_id: The transaction identifier. Defaults to a random 16-byte value.
    :param sender_nonce: The sender nonce. Defaults to a random 16-byte value.
    :param recip_nonce: The nonce of the peer to echo back. Omitted if not given.
    :param sender_kid: The key identifier of the protection key or secret. Omitted if not given.
    :param implicit_confirm: If `True`, requests implicit confirmation inside `generalInfo`. Defaults to `False`.
    :param pvno: The protocol version number. Defaults to `2`.
    :return: The `PKIMessage` with a populated header and empty body.
    """
    pki_header = rfc9480.PKIHeader()
    pki_header["pvno"] = univ.Integer(pvno)
    pki_header["sender"] = convertutils.prepare_general_name(sender)
    pki_header["recipient"] = convertutils.prepare_general_name(recipient)

    # slightly older, so that small clock deviations of the server do not place the message in the future.
    date_time = datetime.now(timezone.utc) - timedelta(seconds=3)
    message_time = useful.GeneralizedTime().fromDateTime(date_time)
    pki_header["messageTime"] = message_time.subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 0))

    if sender_kid is not None:
        pki_header["senderKID"] = _prepare_octet_string_field(sender_kid, 2)

    pki_header["transactionID"] = _prepare_octet_string_field(transaction_id or os.urandom(16), 4)
    pki_header["senderNonce"] = _prepare_octet_string_field(sender_nonce or os.urandom(16), 5)

    if recip_nonce:
        pki_header["recipNonce"] = _prepare_octet_string_field(recip_nonce, 6)

    if implicit_confirm:
        pki_header["generalInfo"] = _prepare_generalinfo(implicit_confirm=True)

    pki_message = rfc9480.PKIMessage()
    pki_message["header"] = pki_header
    return pki_message


@keyword(name="Prepare CertTemplate")
def prepare_cert_template(  # noqa D417 undocumented-param
    public_key=None,
    subject: Optional[NameLike] = None,
    extensions: Optional[Iterable[x509.Extension]] = None,
    issuer: Optional[NameLike] = None,
    serial_number: Optional[int] = None,
) -> rfc4211.CertTemplate:
    """Prepare a `CertTemplate` with the fields a client may ask for.

    Arguments:
    ---------
        - `public_key`: The public key to be certified. Defaults to `None`.
        - `subject`: The subject of the new certificate. Omitted if `None`.
        - `extensions`: The extensions to request. Omitted if `None` or empty.
        - `issuer`: The issuer of the referenced certificate, e.g. for revocation. Defaults to `None`.
        - `serial_number`: The serial number of the referenced certificate. Defaults to `None`.

    Returns:
    -------
        - The populated `CertTemplate`.

    Examples:
    --------
    | ${template}= | Prepare CertTemplate | ${public_key} | subject=CN=Joe Mustermann |
    | ${template}= | Prepare CertTemplate | issuer=${issuer} | serial_number=${serial_number} |

    """
    cert_template = rfc4211.CertTemplate()

    if serial_number is not None:
        serial_number_obj = univ.Integer(int(serial_number)).subtype(
            implicitTag=Tag(tagClassContext, tagFormatSimple, 1)
        )
        cert_template.setComponentByName("serialNumber", serial_number_obj)

    if issuer is not None:
        issuer_obj = rfc5280.Name().subtype(implicitTag=Tag(tagClassContext, tagFormatConstructed, 3))
        cert_template.setComponentByName("issuer", convertutils.prepare_name(issuer, issuer_obj))

    if subject is not None:
        subject_obj = rfc5280.Name().subtype(implicitTag=Tag(tagClassContext, tagFormatConstructed, 5))
        cert_template.setComponentByName("subject", convertutils.prepare_name(subject, subject_obj))

    if public_key is not None:
        spki = rfc5280.SubjectPublicKeyInfo().subtype(implicitTag=Tag(tagClassContext, tagFormatSimple, 6))
        cert_template.setComponentByName(
            "publicKey", convertutils.subject_public_key_info_from_pubkey(public_key, target=spki)
        )

    extensions = list(extensions or [])
    if extensions:
        extensions_obj = rfc5280.Extensions().subtype(implicitTag=Tag(tagClassContext, tagFormatSimple, 9))
        cert_template.setComponentByName("extensions", convertutils.extensions_to_asn1(extensions, extensions_obj))

    return cert_template


@not_keyword
def prepare_old_cert_id_control(cert: x509.Certificate) -> rfc4211.AttributeTypeAndValue:
    """Prepare the `oldCertId` control, which references the certificate to be updated.

    :param cert: The certificate to be updated.
    :return: The control with the issuer and serial number of the certificate.
    """
    old_cert_id = rfc4211.OldCertId()
    old_cert_id["issuer"] = convertutils.prepare_general_name(cert.issuer)
    old_cert_id["serialNumber"] = cert.serial_number

    attr_instance = rfc4211.AttributeTypeAndValue()
    attr_instance["type"] = rfc4211.id_regCtrl_oldCertID
    attr_instance["value"] = old_cert_id
    return attr_instance


@not_keyword
def prepare_cert_request(
    cert_template: rfc4211.CertTemplate,
    cert_req_id: int = CERT_REQ_ID,
    controls: Optional[List[rfc4211.AttributeTypeAndValue]] = None,
) -> rfc4211.CertRequest:
    """Prepare a `CertRequest` structure.

    :param cert_template: The template of the requested certificate.
    :param cert_req_id: The identifier of the request. Defaults to `0`.
    :param controls: Optional controls, e.g. `oldCertId` for a key update.
    :return: The populated `CertRequest`.
    """
    cert_request = rfc4211.CertRequest()
    cert_request["certReqId"] = univ.Integer(cert_req_id)
    cert_request["certTemplate"] = cert_template

    if controls:
        cert_request["controls"].extend(controls)

    return cert_request


@keyword(name="Prepare Signature POPO")
def prepare_signature_popo(  # noqa: D417 undocumented-param
    signing_key: SignKey, cert_request: rfc4211.CertRequest, hash_alg: Optional[str] = "sha256"
) -> rfc4211.ProofOfPossession:
    """Prepare the signature-based Proof-of-Possession for a certificate request.

    The signature is calculated over the DER-encoded `CertRequest` with the key to be certified.

    Arguments:
    ---------
        - `signing_key`: The private key used for signing the certificate request.
        - `cert_request`: The certificate request to sign.
        - `hash_alg`: The hash algorithm used for signing. Ignored for EdDSA keys. Defaults to `sha256`.

    Returns:
    -------
        - The populated `ProofOfPossession` structure.

    Raises:
    ------
        - `ValueError`: If the key type or hash algorithm is not supported.

    Examples:
    --------
    | ${popo}= | Prepare Signature POPO | ${signing_key} | ${cert_request} | hash_alg=sha256 |

    """
    der_cert_request = encoder.encode(cert_request)
    signature = cryptoutils.sign_data(data=der_cert_request, key=signing_key, hash_alg=hash_alg)
    logging.debug("Calculated POPO: %s", signature.hex())

    alg_id = rfc5280.AlgorithmIdentifier()
    alg_id["algorithm"] = cryptoutils.get_alg_oid_from_key_hash(signing_key, hash_alg)

    popo = rfc4211.ProofOfPossession()
    popo_key = rfc4211.POPOSigningKey().subtype(implicitTag=Tag(tagClassContext, tagFormatConstructed, 1))
    popo_key["algorithmIdentifier"] = alg_id
    popo_key["signature"] = univ.BitString().fromOctetString(signature)
    popo["signature"] = popo_key
    return popo


@not_keyword
def prepare_cert_req_msg(
    new_key: SignKey,
    cert_template: rfc4211.CertTemplate,
    hash_alg: Optional[str] = "sha256",
    controls: Optional[List[rfc4211.AttributeTypeAndValue]] = None,
) -> rfc4211.CertReqMsg:
    """Prepare a `CertReqMsg` with a signature-based POPO.

    :param new_key: The private key to be certified, used for the POPO.
    :param cert_template: The template of the requested certificate.
    :param hash_alg: The hash algorithm of the POPO signature. Defaults to `sha256`.
    :param controls: Optional controls of the request.
    :return: The populated `CertReqMsg`.
    """
    cert_request = prepare_cert_request(cert_template, controls=controls)
    cert_req_msg = rfc4211.CertReqMsg()
    cert_req_msg["certReq"] = cert_request
    cert_req_msg["popo"] = prepare_signature_popo(new_key, cert_request, hash_alg=hash_alg)
    return cert_req_msg


def _prepare_cert_req_msg_body(cmd: CmdKind, cert_req_msg: rfc4211.CertReqMsg) -> rfc9480.PKIBody:
    """Create a `PKIBody` of type `ir`, `cr` or `kur` holding the given request.

    :param cmd: The command kind, which determines the body type and its tag.
    :param cert_req_msg: The request to place inside the body.
    :return: The populated `PKIBody`.
    """
    if cmd not in (CmdKind.IR, CmdKind.CR, CmdKind.KUR):
        raise ValueError(f"The command {cmd.name} does not use a `CertReqMessages` body.")

    pki_body = rfc9480.PKIBody()
    pki_body[cmd.body_name] = rfc9480.CertReqMessages().subtype(
        explicitTag=Tag(tagClassContext, tagFormatSimple, int(cmd))
    )
    pki_body[cmd.body_name].append(cert_req_msg)
    return pki_body


@keyword(name="Build Cert Request Message")
def build_cert_req_message(  # noqa D417 undocumented-param
    cmd: CmdKind,
    new_key: SignKey,
    subject: Optional[NameLike] = None,
    extensions: Optional[Iterable[x509.Extension]] = None,
    old_cert: Optional[x509.Certificate] = None,
    hash_alg: Optional[str] = "sha256",
    **params,
) -> rfc9480.PKIMessage:
    """Build an unprotected `ir`, `cr` or `kur` PKIMessage for a single new certificate.

    Arguments:
    ---------
        - `cmd`: The command kind: `CmdKind.IR`, `CmdKind.CR` or `CmdKind.KUR`.
        - `new_key`: The private key to be certified, used for the POPO.
        - `subject`: The requested subject. Omitted if `None`.
        - `extensions`: The requested extensions. Defaults to `None`.
        - `old_cert`: The certificate to be updated; required for `kur`. Defaults to `None`.
        - `hash_alg`: The hash algorithm of the POPO signature. Defaults to `sha256`.
        - `**params`: The header fields, as accepted by `prepare_pki_message`.

    Returns:
    -------
        - The PKIMessage, without protection.

    Raises:
    ------
        - `ValueError`: If `old_cert` is missing for `kur` or the key is not supported.

    Examples:
    --------
    | ${ir}= | Build Cert Request Message | ${CmdKind.IR} | ${key} | CN=Joe Mustermann | sender=${sender} \
    | recipient=${recipient} |

    """
    controls = None
    if cmd == CmdKind.KUR:
        if old_cert is None:
            raise ValueError("A key update request requires the certificate to be updated.")
        controls = [prepare_old_cert_id_control(old_cert)]

    cert_template = prepare_cert_template(
        public_key=new_key.public_key(), subject=subject, extensions=extensions
    )
    cert_req_msg = prepare_cert_req_msg(new_key, cert_template, hash_alg=hash_alg, controls=controls)

    pki_message = prepare_pki_message(**params)
    pki_message["body"] = _prepare_cert_req_msg_body(cmd, cert_req_msg)
    return pki_message


@keyword(name="Build P10cr From CSR")
def build_p10cr_from_csr(  # noqa D417 undocumented-param
    csr: x509.CertificateSigningRequest, **params
) -> rfc9480.PKIMessage:
    """Create a `p10cr` PKIMessage, which carries the PKCS#10 CSR verbatim.

    Arguments:
    ---------
        - `csr`: The certificate signing request.
        - `**params`: The header fields, as accepted by `prepare_pki_message`.

    Returns:
    -------
        - The PKIMessage with the `p10cr` body, without protection.

    Examples:
    --------
    | ${pki_message}= | Build P10cr From CSR | ${csr} | sender=${sender} | recipient=${recipient} |

    """
    der_csr = csr.public_bytes(serialization.Encoding.DER)
    asn1_csr, _ = decoder.decode(der_csr, asn1Spec=rfc6402.CertificationRequest())

    pki_message = prepare_pki_message(**params)
    pki_body = rfc9480.PKIBody()
    pki_body["p10cr"]["certificationRequestInfo"] = asn1_csr["certificationRequestInfo"]
    pki_body["p10cr"]["signatureAlgorithm"] = asn1_csr["signatureAlgorithm"]
    pki_body["p10cr"]["signature"] = asn1_csr["signature"]
    pki_message["body"] = pki_body
    return pki_message


@not_keyword
def prepare_crl_reason_extensions(reason: RevocationReason) -> rfc5280.Extensions:
    """Prepare the `crlEntryDetails` with the CRL reason extension.

    :param reason: The revocation reason.
    :return: The extensions containing the reason code.
    """
    crl_reason = rfc5280.Extension()
    crl_reason["extnID"] = rfc5280.id_ce_cRLReasons
    crl_reason["critical"] = False
    crl_reason["extnValue"] = univ.OctetString(encoder.encode(rfc5280.CRLReason(int(reason))))

    crl_entry_details = rfc5280.Extensions()
    crl_entry_details.append(crl_reason)
    return crl_entry_details


@keyword(name="Prepare RevDetails")
def prepare_rev_details(  # noqa D417 undocumented-param
    cert: x509.Certificate, reason: RevocationReason = RevocationReason.unspecified
) -> rfc4210.RevDetails:
    """Prepare the `RevDetails` structure for a certificate revocation request.

    The certificate is identified by its issuer and serial number.

    Arguments:
    ---------
        - `cert`: The certificate to be revoked.
        - `reason`: The revocation reason. `RevocationReason.NONE` omits the `crlEntryDetails`.
        Defaults to `unspecified`.

    Returns:
    -------
        - The populated `RevDetails` structure.

    Examples:
    --------
    | ${rev_details}= | Prepare RevDetails | ${cert} | reason=keyCompromise |

    """
    reason = RevocationReason.get(reason)
    rev_details = rfc4210.RevDetails()
    rev_details["certDetails"] = prepare_cert_template(issuer=cert.issuer, serial_number=cert.serial_number)

    if reason != RevocationReason.NONE:
        rev_details["crlEntryDetails"] = prepare_crl_reason_extensions(reason)

    return rev_details


@keyword(name="Build Revocation Request")
def build_revocation_request(  # noqa D417 undocumented-param
    cert: x509.Certificate, reason: RevocationReason = RevocationReason.unspecified, **params
) -> rfc9480.PKIMessage:
    """Build an unprotected `rr` PKIMessage for a single certificate.

    Arguments:
    ---------
        - `cert`: The certificate to be revoked.
        - `reason`: The revocation reason. Defaults to `unspecified`.
        - `**params`: The header fields, as accepted by `prepare_pki_message`.

    Returns:
    -------
        - The PKIMessage with the `rr` body.

    Examples:
    --------
    | ${rr}= | Build Revocation Request | ${cert} | keyCompromise | sender=${sender} | recipient=${recipient} |

    """
    rev_req_content = rfc9480.RevReqContent().subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 11))
    rev_req_content.append(prepare_rev_details(cert, reason))

    pki_message = prepare_pki_message(**params)
    pki_body = rfc9480.PKIBody()
    pki_body["rr"] = rev_req_content
    pki_message["body"] = pki_body
    return pki_message


@keyword(name="Calculate Cert Hash")
def calculate_cert_hash(cert: rfc9480.CMPCertificate) -> Tuple[bytes, Optional[str]]:  # noqa D417 undocumented-param
    """Calculate the certificate hash for a `certConf` PKIMessage.

    The hash algorithm is the one of the certificate's signature. Certificates signed with
    EdDSA use "sha512", which then has to be named in the `hashAlg` field.

    Arguments:
    ---------
        - `cert`: The (untagged) certificate.

    Returns:
    -------
        - A tuple of the hash value and the name of the hash algorithm, if it must be sent explicitly.

    Raises:
    ------
        - `ValueError`: If the signature algorithm of the certificate is unknown.

    Examples:
    --------
    | ${cert_hash} | ${hash_alg}= | Calculate Cert Hash | ${cert} |

    """
    sig_algorithm = cert["signatureAlgorithm"]["algorithm"]
    hash_alg = cryptoutils.get_hash_from_oid(sig_algorithm, only_hash=True)
    explicit_hash_alg = None
    if hash_alg is None:
        hash_alg = explicit_hash_alg = "sha512"

    return cryptoutils.compute_hash(hash_alg, encoder.encode(cert)), explicit_hash_alg


@keyword(name="Prepare PKIStatusInfo")
def prepare_pkistatusinfo(  # noqa D417 undocumented-param
    status: str, failinfo: Optional[str] = None, text: Optional[str] = None
) -> rfc9480.PKIStatusInfo:
    """Create a `PKIStatusInfo` structure, e.g. for rejecting a newly issued certificate.

    Arguments:
    ---------
        - `status`: The name of the status, e.g. "accepted" or "rejection".
        - `failinfo`: Comma separated names of the failure bits, e.g. "incorrectData". Defaults to `None`.
        - `text`: A text for the `statusString`. Defaults to `None`.

    Returns:
    -------
        - The populated `PKIStatusInfo` structure.

    Examples:
    --------
    | ${status_info}= | Prepare PKIStatusInfo | rejection | failinfo=incorrectData |

    """
    pki_status_info = rfc9480.PKIStatusInfo()
    pki_status_info["status"] = rfc9480.PKIStatus(status)
    if failinfo is not None:
        pki_status_info["failInfo"] = rfc9480.PKIFailureInfo(failinfo)
    if text is not None:
        pki_status_info["statusString"].append(char.UTF8String(text))
    return pki_status_info


@keyword(name="Build Cert Conf")
def build_cert_conf(  # noqa D417 undocumented-param
    cert: rfc9480.CMPCertificate,
    cert_req_id: int = CERT_REQ_ID,
    status_info: Optional[rfc9480.PKIStatusInfo] = None,
    **params,
) -> rfc9480.PKIMessage:
    """Create a `certConf` PKIMessage, which accepts or rejects the newly issued certificate.

    Arguments:
    ---------
        - `cert`: The issued certificate.
        - `cert_req_id`: The identifier of the certificate response. Defaults to `0`.
        - `status_info`: The status of a rejected certificate. Defaults to `None`, which accepts it.
        - `**params`: The header fields, as accepted by `prepare_pki_message`.

    Returns:
    -------
        - The `certConf` PKIMessage, without protection.

    Examples:
    --------
    | ${cert_conf}= | Build Cert Conf | ${cert} | transaction_id=${tx_id} | recip_nonce=${nonce} |

    """
    cert_hash, hash_alg = calculate_cert_hash(convertutils.copy_asn1_certificate(cert))

    cert_status = rfc9480.CertStatus()
    cert_status["certHash"] = univ.OctetString(cert_hash)
    cert_status["certReqId"] = univ.Integer(cert_req_id)
    if status_info is not None:
        cert_status["statusInfo"] = status_info
    if hash_alg is not None:
        cert_status["hashAlg"]["algorithm"] = HASH_NAME_2_OID[hash_alg]

    cert_conf = rfc9480.CertConfirmContent().subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 24))
    cert_conf.append(cert_status)

    pki_message = prepare_pki_message(**params)
    pki_body = rfc9480.PKIBody()
    pki_body["certConf"] = cert_conf
    pki_message["body"] = pki_body
    return pki_message


@not_keyword
def build_poll_request(cert_req_id: int = CERT_REQ_ID, **params) -> rfc9480.PKIMessage:
    """Create a `pollReq` PKIMessage, asking for the outcome of a pending request.

    :param cert_req_id: The identifier of the pending request. Defaults to `0`.
    :param params: The header fields, as accepted by `prepare_pki_message`.
    :return: The `pollReq` PKIMessage, without protection.
    """
    body_content = rfc9480.PollReqContent().subtype(explicitTag=Tag(tagClassContext, tagFormatSimple, 25))
    entry = PollReqEntry()
    entry["certReqId"] = univ.Integer(cert_req_id)
    body_content.append(entry)

    pki_message = prepare_pki_message(**params)
    pki_body = rfc9480.PKIBody()
    pki_body.setComponentByName("pollReq", body_content)
    pki_message["body"] = pki_body
    return pki_message


@keyword(name="Encode PKIMessage")
def encode_pkimessage(pki_message: rfc9480.PKIMessage) -> bytes:  # noqa D417 undocumented-param
    """DER-encode a PKIMessage.

    Arguments:
    ---------
        - `pki_message`: The message to encode.

    Returns:
    -------
        - The DER-encoded message.

    Raises:
    ------
        - `OtherLibraryError`: If `pyasn1` cannot encode the structure.

    Examples:
    --------
    | ${der_data}= | Encode PKIMessage | ${pki_message} |

    """
    try:
        return encoder.encode(pki_message)
    except PyAsn1Error as err:
        raise OtherLibraryError("Failed to encode the PKIMessage", lib_error=err) from err


@keyword(name="Parse PKIMessage")
def parse_pkimessage(data: bytes) -> rfc9480.PKIMessage:  # noqa D417 undocumented-param
    """Parse input data to PKIMessage structure and return the resulting object.

    Arguments:
    ---------
        - `data`: The raw input data to be parsed.

    Returns:
    -------
        - The `PKIMessage` structure.

    Raises:
    ------
        - `ValueError` if the input cannot be correctly parsed into a PKIMessage.

    Examples:
    --------
    | ${pki_message}= | Parse PKIMessage | ${response.content} |

    """
    try:
        pki_message, remainder = decoder.decode(data, asn1Spec=rfc9480.PKIMessage())
    except PyAsn1Error as err:
        # The pyasn1 messages are too verbose to be helpful; the raw data is logged by the caller.
        raise ValueError(f"Failed to parse PKIMessage: {str(err)[:100]} ...") from err

    if remainder != b"":
        raise ValueError(f"The decoding of the PKIMessage had a remainder of {len(remainder)} bytes!")

    return pki_message


@keyword(name="Get CMP Message Type")
def get_cmp_message_type(pki_message: rfc9480.PKIMessage) -> str:  # noqa D417 undocumented-param
    """Return the body type of a PKIMessage as a string, e.g., rp, ip.

    Arguments:
    ---------
        - `pki_message`: The object to get the body name from.

    Returns:
    -------
        - The name of the body.

    Examples:
    --------
    | ${body_name}= | Get CMP Message Type | ${pki_message} |

    """
    return pki_message["body"].getName()


@keyword(name="Get PKIStatusInfo")
def get_pkistatusinfo(  # noqa D417 undocumented-param
    pki_message: rfc9480.PKIMessage, index: int = 0
) -> rfc9480.PKIStatusInfo:
    """Extract the `PKIStatusInfo` from the PKIMessage based on the body type.

    The following body types are supported: "error", "rp", "ip", "cp", "kup".

    Arguments:
    ---------
       - `pki_message`: The PKIMessage from which the `PKIStatusInfo` will be extracted.
       - `index`: The index of the status to retrieve in case of multiple responses. Defaults to `0`.

    Returns:
    -------
        - The extracted `PKIStatusInfo` object.

    Raises:
    ------
        - `ValueError`: If the body type carries no status.

    Examples:
    --------
    | ${pki_status_info}= | Get PKIStatusInfo | ${pki_message} |

    """
    index = int(index)
    body_name = get_cmp_message_type(pki_message)
    if body_name == "error":
        return pki_message["body"]["error"]["pKIStatusInfo"]

    if body_name == "rp":
        return pki_message["body"]["rp"]["status"][index]

    if body_name in {"ip", "cp", "kup"}:
        return pki_message["body"][body_name]["response"][index]["status"]

    raise ValueError(f"Body type {body_name} was not expected!")


@not_keyword
def get_cert_response(pki_message: rfc9480.PKIMessage, cert_req_id: int = CERT_REQ_ID) -> rfc9480.CertResponse:
    """Return the `CertResponse` answering the request with the given `certReqId`.

    :param pki_message: The `ip`, `cp` or `kup` PKIMessage.
    :param cert_req_id: The identifier of the request. Defaults to `0`.
    :return: The matching `CertResponse`.
    :raises ValueError: If the body carries no certificate response for the identifier.
    """
    message_type = get_cmp_message_type(pki_message)
    if message_type not in {"ip", "cp", "kup"}:
        raise ValueError(f"The provided `PKIBody` does not contain a certificate. Got: `{message_type}`")

    for response in pki_message["body"][message_type]["response"]:
        if int(response["certReqId"]) == cert_req_id:
            return response

    raise ValueError(f"The response does not contain a `CertResponse` with `certReqId` {cert_req_id}.")


@keyword(name="Get Cert From PKIMessage")
def get_cert_from_pkimessage(  # noqa D417 undocumented-param
    pki_message: rfc9480.PKIMessage, cert_req_id: int = CERT_REQ_ID
) -> rfc9480.CMPCertificate:
    """Extract the newly issued certificate from a `PKIMessage`.

    Arguments:
    ---------
        - `pki_message`: The PKIMessage from which the certificate is to be extracted.
        - `cert_req_id`: The identifier of the request. Defaults to `0`.

    Returns:
    -------
       - The (untagged) certificate.

    Raises:
    ------
        - `ValueError`: If the PKIMessage does not contain a certificate.

    Examples:
    --------
    | ${cert}= | Get Cert From PKIMessage | ${pki_message} |

    """
    response = get_cert_response(pki_message, cert_req_id)

    if not response["certifiedKeyPair"].isValue:
        raise ValueError("The provided PKIMessage did not had the `certifiedKeyPair` field set.")

    if not response["certifiedKeyPair"]["certOrEncCert"].isValue:
        raise ValueError("The provided PKIMessage did not had the `certOrEncCert` field set.")

    if response["certifiedKeyPair"]["certOrEncCert"].getName() != "certificate":
        raise ValueError("The provided PKIMessage contains an encrypted certificate, which is not supported.")

    cert = response["certifiedKeyPair"]["certOrEncCert"]["certificate"]
    # To remove the tagging.
    return convertutils.copy_asn1_certificate(cert)


@not_keyword
def get_extra_certs(pki_message: rfc9480.PKIMessage) -> List[x509.Certificate]:
    """Return the certificates of the `extraCerts` field, or an empty list."""
    if not pki_message["extraCerts"].isValue:
        return []
    return convertutils.asn1_to_certs(pki_message["extraCerts"])


@not_keyword
def get_ca_pubs(pki_message: rfc9480.PKIMessage) -> List[x509.Certificate]:
    """Return the certificates of the `caPubs` field of an `ip`, `cp` or `kup` body, or an empty list."""
    message_type = get_cmp_message_type(pki_message)
    if message_type not in {"ip", "cp", "kup"}:
        return []
    ca_pubs = pki_message["body"][message_type]["caPubs"]
    if not ca_pubs.isValue:
        return []
    return convertutils.asn1_to_certs(ca_pubs)


@not_keyword
def get_header_octets(pki_message: rfc9480.PKIMessage, field: str) -> Optional[bytes]:
    """Return the value of an optional OCTET STRING header field, e.g. `transactionID`, or `None`."""
    value = pki_message["header"][field]
    if not value.isValue:
        return None
    return value.asOctets()


@keyword(name="Find OID In generalInfo")
def find_oid_in_general_info(  # noqa D417 undocumented-param
    pki_message: rfc9480.PKIMessage, oid: univ.ObjectIdentifier
) -> bool:
    """Check if a given OID is present in the `generalInfo` field of the PKIHeader.

    Arguments:
    ---------
        - `pki_message`: The PKIMessage to check.
        - `oid`: The OID to search for, e.g. `id-it-implicitConfirm`.

    Returns:
    -------
        - `True` if the OID is present, `False` otherwise.

    Examples:
    --------
    | ${found}= | Find OID In generalInfo | ${pki_message} | ${id_it_implicitConfirm} |

    """
    general_info = pki_message["header"]["generalInfo"]
    if not general_info.isValue:
        return False

    oid_obj = univ.ObjectIdentifier(oid)
    for entry in general_info:
        if entry["infoType"] == oid_obj:
            return True

    return False
