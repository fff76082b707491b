# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""The enrollment and revocation engine of the CMP client.

Every operation runs one transaction: build and protect the request, exchange it over the
transport of the context, validate the response, resolve polling and confirm the new certificate.
The status reported by the server is recorded in the context before returning or raising.
"""

import logging
import os
import time
from typing import Iterable, Optional, Set, Tuple

from cryptography import x509
from pyasn1.error import PyAsn1Error
from pyasn1_alt_modules import rfc9480
from robot.api.deco import keyword, not_keyword

from cmpclient import certutils, cmputils, convertutils, protectionutils
from cmpclient.certreq import setup_cert_req, subject_for_command
from cmpclient.context import CMPContext, forward_context_logs
from cmpclient.credentials import Credentials
from cmpclient.enums import CmdKind, PKIStatus, RevocationReason, SessionPhase
from cmpclient.exceptions import (
    CertVerifyError,
    CMPClientError,
    InvalidContext,
    InvalidParameters,
    OtherLibraryError,
    ProtocolRejection,
    TransportError,
)
from cmpclient.oidutils import id_it_implicitConfirm
from cmpclient.status import PKIStatusRecord, format_pki_status
from cmpclient.typingutils import NameLike, SignKey

# Upper bound of a single wait while polling, if the server asks for longer.
MAX_POLL_WAIT = 60


def _deadline(ctx: CMPContext) -> Optional[float]:
    if ctx.total_timeout <= 0:
        return None
    return time.monotonic() + ctx.total_timeout


def _remaining(deadline: Optional[float]) -> Optional[float]:
    """Return the remaining seconds, `None` for no limit.

    :raises TransportError: If the total timeout has expired.
    """
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TransportError("The total timeout of the operation has expired", timeout=True)
    return remaining


def _sender_and_kid(ctx: CMPContext) -> Tuple[x509.Name, Optional[bytes]]:
    """Return the sender name and the `senderKID` matching the protection of the context."""
    creds = ctx.creds
    if ctx.protection.uses_mac:
        ref = creds.secret_ref or ""
        if not ref:
            return x509.Name([]), None
        sender = convertutils.parse_name(ref if "=" in ref else f"CN={ref}")
        return sender, ref.encode("utf-8")

    return creds.cert.subject, certutils.get_subject_key_identifier(creds.cert)


def _header_params(ctx: CMPContext, implicit_confirm: bool = False) -> dict:
    sender, sender_kid = _sender_and_kid(ctx)
    return {
        "sender": sender,
        "recipient": ctx.recipient,
        "transaction_id": ctx.transaction_id,
        "sender_nonce": os.urandom(16),
        "recip_nonce": ctx.recip_nonce,
        "sender_kid": sender_kid,
        "implicit_confirm": implicit_confirm,
    }


def _set_status(ctx: CMPContext, status_info: rfc9480.PKIStatusInfo) -> PKIStatusRecord:
    ctx.status = PKIStatusRecord.from_pkistatusinfo(status_info)
    logging.info("Received %s", format_pki_status(ctx.status))
    return ctx.status


def _verify_signer(ctx: CMPContext, signer: x509.Certificate, response: rfc9480.PKIMessage) -> None:
    if ctx.truststore is None or len(ctx.truststore) == 0:
        raise CertVerifyError("The response is signed, but no trust store for verifying the CA is configured.")
    candidates = cmputils.get_extra_certs(response)[1:] + list(ctx.untrusted)
    ctx.truststore.verify_cert_chain(signer, candidates)


def _validate_response(
    ctx: CMPContext, request: rfc9480.PKIMessage, response: rfc9480.PKIMessage, expected: Set[str]
) -> str:
    """Check the protection, the transaction and the body type of the response.

    :return: The body type of the response.
    :raises CertVerifyError: If a check fails.
    """
    secret = ctx.creds.secret if ctx.creds is not None else None
    signer = protectionutils.verify_pkimessage_protection(response, secret=secret)
    if signer is not None:
        _verify_signer(ctx, signer, response)

    if cmputils.get_header_octets(response, "transactionID") != ctx.transaction_id:
        raise CertVerifyError("The `transactionID` of the response does not match the request.")

    sent_nonce = cmputils.get_header_octets(request, "senderNonce")
    if cmputils.get_header_octets(response, "recipNonce") != sent_nonce:
        raise CertVerifyError("The `recipNonce` of the response does not match the `senderNonce` of the request.")

    body_type = cmputils.get_cmp_message_type(response)
    if body_type != "error" and body_type not in expected:
        raise CertVerifyError(
            f"Unexpected response type: {body_type}", error_details=f"expected one of: {', '.join(sorted(expected))}"
        )
    return body_type


def _transfer(
    ctx: CMPContext, request: rfc9480.PKIMessage, expected: Set[str], deadline: Optional[float]
) -> rfc9480.PKIMessage:
    """Protect and send the request, then validate the response.

    An `error` response is recorded and raised as `ProtocolRejection`.
    """
    protectionutils.protect_pkimessage(request, ctx.creds, ctx.protection)
    ctx.sender_nonce = cmputils.get_header_octets(request, "senderNonce")

    logging.info("Sending %s", cmputils.get_cmp_message_type(request))
    logging.debug("Request: %s", request.prettyPrint())
    response = ctx.transport.exchange(request, _remaining(deadline))
    logging.debug("Response: %s", response.prettyPrint())

    try:
        body_type = _validate_response(ctx, request, response, expected)
    except PyAsn1Error as err:
        raise OtherLibraryError("Could not process the response", lib_error=err) from err

    ctx.recip_nonce = cmputils.get_header_octets(response, "senderNonce")
    if body_type == "error":
        record = _set_status(ctx, cmputils.get_pkistatusinfo(response))
        raise ProtocolRejection(f"The server sent an error message: {format_pki_status(record)}", status=record)
    return response


def _poll(ctx: CMPContext, response_type: str, deadline: Optional[float]) -> rfc9480.PKIMessage:
    """Poll with `pollReq` until the server sends the final response."""
    check_after = 0
    while True:
        wait = min(max(check_after, 0), MAX_POLL_WAIT)
        remaining = _remaining(deadline)
        if remaining is not None and wait >= remaining:
            raise TransportError("The total timeout expires before the next poll", timeout=True)
        logging.info("Request is pending, polling again in %d s", wait)
        time.sleep(wait)

        poll_req = cmputils.build_poll_request(cmputils.CERT_REQ_ID, **_header_params(ctx))
        response = _transfer(ctx, poll_req, {"pollRep", response_type}, deadline)
        if cmputils.get_cmp_message_type(response) != "pollRep":
            _set_status(ctx, cmputils.get_pkistatusinfo(response))
            if ctx.status.status != PKIStatus.waiting:
                return response
            continue

        check_after = int(response["body"]["pollRep"][0]["checkAfter"])


def _build_enroll_request(ctx: CMPContext, cmd: CmdKind) -> rfc9480.PKIMessage:
    template = ctx.template
    params = _header_params(ctx, implicit_confirm=ctx.implicit_confirm)
    try:
        if cmd == CmdKind.P10CR:
            return cmputils.build_p10cr_from_csr(template.csr, **params)
        return cmputils.build_cert_req_message(
            cmd,
            template.new_key,
            subject=subject_for_command(template, cmd),
            extensions=template.extensions,
            old_cert=template.old_cert,
            hash_alg=ctx.protection.digest or "sha256",
            **params,
        )
    except (ValueError, PyAsn1Error) as err:
        raise OtherLibraryError("Could not build the certificate request", lib_error=err) from err


def _validate_new_cert(ctx: CMPContext, cert: x509.Certificate, response: rfc9480.PKIMessage) -> list:
    """Validate the chain of the newly issued certificate and return it, without the certificate itself."""
    candidates = cmputils.get_ca_pubs(response) + cmputils.get_extra_certs(response) + list(ctx.untrusted)
    store = ctx.new_cert_truststore or ctx.truststore
    if store is None or len(store) == 0:
        logging.warning("No trust store configured, the chain of the new certificate is not validated")
        return certutils.build_chain_from_list(cert, candidates)[1:]

    chain = store.verify_cert_chain(cert, candidates)
    return chain[1:]


def _reject_new_cert(
    ctx: CMPContext, asn1_cert: rfc9480.CMPCertificate, err: CertVerifyError, deadline: Optional[float]
) -> None:
    """Send a `certConf` rejecting the new certificate, so the CA can close the transaction.

    The exchange is not retried; its failure is logged and the rejection reason is raised by the caller.
    """
    status_info = cmputils.prepare_pkistatusinfo("rejection", failinfo="incorrectData", text=err.message)
    cert_conf = cmputils.build_cert_conf(asn1_cert, cmputils.CERT_REQ_ID, status_info, **_header_params(ctx))
    try:
        _transfer(ctx, cert_conf, {"pkiconf"}, deadline)
    except CMPClientError as conf_err:
        logging.warning("Could not send the rejecting certConf: %s", conf_err.message)
        return
    logging.info("Rejected the new certificate: %s", err.message)


def _check_enroll_preconditions(ctx: CMPContext, cmd) -> CmdKind:
    try:
        cmd = CmdKind(int(cmd))
    except ValueError as err:
        raise InvalidParameters(f"Unknown command: {cmd}") from err
    if cmd not in CmdKind.enrollment_kinds():
        raise InvalidParameters(f"The command {cmd.name} does not enroll a certificate.")

    ctx.ensure_ready_for_operation()
    template = ctx.template
    if ctx.phase != SessionPhase.REQUEST_READY or template is None:
        raise InvalidContext("No certificate request was set up; call `setup_cert_req` first.")
    if cmd == CmdKind.P10CR:
        if template.csr is None:
            raise InvalidContext("A `p10cr` requires a CSR in the certificate request.")
    elif template.new_key is None:
        raise InvalidParameters("The private key of the new key pair is required for the proof-of-possession.")
    if cmd == CmdKind.KUR and template.old_cert is None:
        raise InvalidParameters("A key update requires the certificate to be updated.")
    return cmd


@keyword(name="Enroll")
@forward_context_logs
def enroll(ctx: CMPContext, cmd) -> Credentials:  # noqa D417 undocumented-param
    """Request a new certificate with the pending certificate request of the context.

    Sends an `ir`, `cr`, `p10cr` or `kur`, polls if the server asks to wait, validates the new
    certificate and confirms it with `certConf`, unless implicit confirmation was granted.

    Arguments:
    ---------
        - `ctx`: The context, with a transport and a request set up by `setup_cert_req`.
        - `cmd`: The command: `CmdKind.IR` (0), `CmdKind.CR` (2), `CmdKind.P10CR` (4) or `CmdKind.KUR` (7).

    Returns:
    -------
        - The new `Credentials`: the private key (`None` for `p10cr`), the certificate and its chain.

    Raises:
    ------
        - `InvalidParameters`: If the command is not an enrollment or the request lacks a required key or certificate.
        - `InvalidContext`: If no request was set up, no transport is available or `reinit` is missing.
        - `TransportError`: On connection failure or timeout.
        - `ProtocolRejection`: If the server rejected the request.
        - `CertVerifyError`: If the response or the new certificate fails validation. Without implicit
        confirmation, a rejected new certificate is reported to the CA with a `certConf` first.
        - `OtherLibraryError`: If a message could not be built, encoded or decoded.

    Examples:
    --------
    | Setup Cert Request | ${ctx} | new_key=${key} | subject=CN=Joe Mustermann |
    | ${new_creds}= | Enroll | ${ctx} | ${CmdKind.CR} |

    """
    cmd = _check_enroll_preconditions(ctx, cmd)
    template = ctx.template

    ctx.phase = SessionPhase.DONE
    ctx.status = None
    ctx.new_creds = None
    ctx.start_transaction()
    ctx.transaction_id = os.urandom(16)
    deadline = _deadline(ctx)

    request = _build_enroll_request(ctx, cmd)
    response_type = cmd.response_body_name
    response = _transfer(ctx, request, {response_type}, deadline)

    try:
        record = _set_status(ctx, cmputils.get_pkistatusinfo(response))
        if record.status == PKIStatus.waiting:
            response = _poll(ctx, response_type, deadline)
            record = ctx.status
        if not record.is_positive:
            raise ProtocolRejection(f"The request was not accepted: {format_pki_status(record)}", status=record)

        asn1_cert = cmputils.get_cert_from_pkimessage(response, cmputils.CERT_REQ_ID)
        cert = convertutils.asn1_to_cert(asn1_cert)
    except ValueError as err:
        raise CertVerifyError(f"Invalid certificate response: {err}") from err

    implicit_granted = ctx.implicit_confirm and cmputils.find_oid_in_general_info(response, id_it_implicitConfirm)
    try:
        if not certutils.public_key_matches(cert, template.public_key):
            raise CertVerifyError("The public key of the new certificate does not match the requested key.")
        chain = _validate_new_cert(ctx, cert, response)
    except CertVerifyError as err:
        if not implicit_granted:
            _reject_new_cert(ctx, asn1_cert, err, deadline)
        raise

    if implicit_granted:
        logging.info("The server granted implicit confirmation")
    else:
        cert_conf = cmputils.build_cert_conf(asn1_cert, cmputils.CERT_REQ_ID, **_header_params(ctx))
        _transfer(ctx, cert_conf, {"pkiconf"}, deadline)
        logging.info("The new certificate was confirmed")

    new_creds = Credentials(key=template.new_key, cert=cert, chain=chain)
    ctx.new_creds = new_creds
    logging.info("Enrolled certificate for: %s", cert.subject.rfc4514_string())
    return new_creds


@keyword(name="Imprint")
@forward_context_logs
def imprint(  # noqa D417 undocumented-param
    ctx: CMPContext, new_key: SignKey, subject: NameLike, exts: Optional[Iterable[x509.Extension]] = None
) -> Credentials:
    """Request the initial certificate of an entity with an `ir`.

    Arguments:
    ---------
        - `ctx`: The context.
        - `new_key`: The key pair to be certified.
        - `subject`: The subject, e.g. "CN=Joe Mustermann".
        - `exts`: The extensions to request. Defaults to `None`.

    Returns:
    -------
        - The new `Credentials`.

    Examples:
    --------
    | ${new_creds}= | Imprint | ${ctx} | ${key} | CN=Joe Mustermann |

    """
    setup_cert_req(ctx, new_key=new_key, subject=subject, exts=exts)
    return enroll(ctx, CmdKind.IR)


@keyword(name="Bootstrap")
@forward_context_logs
def bootstrap(  # noqa D417 undocumented-param
    ctx: CMPContext, new_key: SignKey, subject: NameLike, exts: Optional[Iterable[x509.Extension]] = None
) -> Credentials:
    """Request an additional certificate with a `cr`, authenticated by the current credentials.

    Arguments:
    ---------
        - `ctx`: The context.
        - `new_key`: The key pair to be certified.
        - `subject`: The subject, e.g. "CN=Joe Mustermann".
        - `exts`: The extensions to request. Defaults to `None`.

    Returns:
    -------
        - The new `Credentials`.

    Examples:
    --------
    | ${new_creds}= | Bootstrap | ${ctx} | ${key} | CN=Joe Mustermann |

    """
    setup_cert_req(ctx, new_key=new_key, subject=subject, exts=exts)
    return enroll(ctx, CmdKind.CR)


@keyword(name="PKCS10")
@forward_context_logs
def pkcs10(ctx: CMPContext, csr: x509.CertificateSigningRequest) -> Credentials:  # noqa D417 undocumented-param
    """Request a certificate for a PKCS#10 CSR with a `p10cr`.

    Arguments:
    ---------
        - `ctx`: The context.
        - `csr`: The certificate signing request.

    Returns:
    -------
        - The new `Credentials`, without private key.

    Examples:
    --------
    | ${new_creds}= | PKCS10 | ${ctx} | ${csr} |

    """
    setup_cert_req(ctx, csr=csr)
    return enroll(ctx, CmdKind.P10CR)


@keyword(name="Update")
@forward_context_logs
def update(ctx: CMPContext, new_key: SignKey) -> Credentials:  # noqa D417 undocumented-param
    """Update the certificate of the current credentials to a new key with a `kur`.

    Arguments:
    ---------
        - `ctx`: The context, whose credentials hold the certificate to be updated.
        - `new_key`: The new key pair.

    Returns:
    -------
        - The new `Credentials`.

    Examples:
    --------
    | ${new_creds}= | Update | ${ctx} | ${new_key} |

    """
    setup_cert_req(ctx, new_key=new_key)
    return enroll(ctx, CmdKind.KUR)


@keyword(name="Update Anycert")
@forward_context_logs
def update_anycert(  # noqa D417 undocumented-param
    ctx: CMPContext, old_cert: Optional[x509.Certificate], new_key: SignKey
) -> Credentials:
    """Update a given certificate to a new key with a `kur`.

    Arguments:
    ---------
        - `ctx`: The context.
        - `old_cert`: The certificate to be updated, `None` for the certificate of the credentials.
        - `new_key`: The new key pair.

    Returns:
    -------
        - The new `Credentials`.

    Examples:
    --------
    | ${new_creds}= | Update Anycert | ${ctx} | ${old_cert} | ${new_key} |

    """
    setup_cert_req(ctx, new_key=new_key, old_cert=old_cert)
    return enroll(ctx, CmdKind.KUR)


@keyword(name="Revoke")
@forward_context_logs
def revoke(ctx: CMPContext, cert: x509.Certificate, reason=RevocationReason.unspecified) -> None:  # noqa D417
    """Request the revocation of a certificate with an `rr`.

    Arguments:
    ---------
        - `ctx`: The context.
        - `cert`: The certificate to be revoked.
        - `reason`: The CRL reason code or name, `RevocationReason.NONE` (-1) to omit it.
        Defaults to `unspecified`.

    Raises:
    ------
        - `InvalidParameters`: If the certificate or reason is invalid.
        - `InvalidContext`: If no transport is available or `reinit` is missing.
        - `TransportError`: On connection failure or timeout.
        - `ProtocolRejection`: If the server rejected the revocation.
        - `CertVerifyError`: If the response fails validation.

    Examples:
    --------
    | Revoke | ${ctx} | ${cert} | keyCompromise |

    """
    if not isinstance(cert, x509.Certificate):
        raise InvalidParameters("The certificate to be revoked must be given.")
    try:
        reason = RevocationReason.get(reason)
    except ValueError as err:
        raise InvalidParameters(str(err)) from err

    ctx.ensure_ready_for_operation()
    ctx.phase = SessionPhase.DONE
    ctx.status = None
    ctx.start_transaction()
    ctx.transaction_id = os.urandom(16)
    deadline = _deadline(ctx)

    try:
        request = cmputils.build_revocation_request(cert, reason, **_header_params(ctx))
    except (ValueError, PyAsn1Error) as err:
        raise OtherLibraryError("Could not build the revocation request", lib_error=err) from err

    response = _transfer(ctx, request, {"rp"}, deadline)
    record = _set_status(ctx, cmputils.get_pkistatusinfo(response))
    if record.status not in (PKIStatus.accepted, PKIStatus.revocationWarning, PKIStatus.revocationNotification):
        raise ProtocolRejection(f"The revocation was not accepted: {format_pki_status(record)}", status=record)

    logging.info("Revoked certificate with serial number: %d (reason: %s)", cert.serial_number, reason.name)


@not_keyword
def get_new_credentials(ctx: CMPContext) -> Optional[Credentials]:
    """Return the credentials enrolled by the last operation, `None` if there are none."""
    return ctx.new_creds
