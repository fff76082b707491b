# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Resolves the inputs of a certificate request into the pending `CertReqTemplate` of a context."""

import logging
from typing import Iterable, List, Optional

from cryptography import x509
from robot.api.deco import keyword, not_keyword

from cmpclient import convertutils
from cmpclient.context import CertReqTemplate, CMPContext, forward_context_logs
from cmpclient.enums import CmdKind, SessionPhase
from cmpclient.exceptions import InvalidContext, InvalidParameters
from cmpclient.typingutils import NameLike, SignKey


def _contains_san(extensions: Iterable[x509.Extension]) -> bool:
    return any(ext.oid == x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME for ext in extensions)


@not_keyword
def merge_extensions(
    base: Iterable[x509.Extension], overrides: Iterable[x509.Extension]
) -> List[x509.Extension]:
    """Merge two extension lists, where an entry of `overrides` replaces the one with the same OID.

    :param base: The extensions to start with, e.g. those of a CSR.
    :param overrides: The extensions taking precedence.
    :return: The merged list, keeping the order of `base` and appending new OIDs.
    """
    merged = {ext.oid.dotted_string: ext for ext in base}
    merged.update({ext.oid.dotted_string: ext for ext in overrides})
    return list(merged.values())


@keyword(name="Setup Cert Request")
@forward_context_logs
def setup_cert_req(  # noqa D417 undocumented-param
    ctx: CMPContext,
    new_key: Optional[SignKey] = None,
    old_cert: Optional[x509.Certificate] = None,
    subject: Optional[NameLike] = None,
    exts: Optional[Iterable[x509.Extension]] = None,
    csr: Optional[x509.CertificateSigningRequest] = None,
) -> CertReqTemplate:
    """Resolve the pending certificate request of the context, replacing any previous one.

    Every field is resolved independently:
        - key: `new_key`, else the public key of `csr`, else the key of the credentials.
        - reference certificate: `old_cert`, else the certificate of the credentials.
        - subject: `subject`, else the subject of `csr`, which is dropped for `ir` and `cr` if `exts`
        contain a SAN. For `kur`, the subject of the reference certificate is the last fallback.
        - extensions: those of `csr`, individually overridden by `exts`; without any SAN, the SAN of
        the reference certificate is used.

    Arguments:
    ---------
        - `ctx`: The context.
        - `new_key`: The key pair to be certified. Defaults to `None`.
        - `old_cert`: The reference certificate, e.g. the one to be updated. Defaults to `None`.
        - `subject`: The subject as `x509.Name` or string, e.g. "CN=Joe Mustermann". Defaults to `None`.
        - `exts`: The X.509v3 extensions to request. Defaults to `None`.
        - `csr`: A PKCS#10 request, sent verbatim by `p10cr`. Defaults to `None`.

    Returns:
    -------
        - The resolved `CertReqTemplate`, which is also stored in the context.

    Raises:
    ------
        - `InvalidContext`: If the context is finished or an operation was performed without `reinit`.
        - `InvalidParameters`: If no key can be resolved or the subject is not a valid name.

    Examples:
    --------
    | ${template}= | Setup Cert Request | ${ctx} | new_key=${key} | subject=CN=Joe Mustermann |
    | ${template}= | Setup Cert Request | ${ctx} | csr=${csr} |

    """
    ctx.ensure_not_finished()
    if ctx.phase == SessionPhase.DONE:
        raise InvalidContext("An operation was already performed; call `reinit` before the next request.")

    creds = ctx.creds
    public_key = None
    if new_key is not None:
        public_key = new_key.public_key()
    elif csr is not None:
        public_key = csr.public_key()
    elif creds is not None and creds.key is not None:
        new_key = creds.key
        public_key = new_key.public_key()
    else:
        raise InvalidParameters("No key to be certified: give `new_key` or `csr`, or credentials with a key.")

    if old_cert is None and creds is not None:
        old_cert = creds.cert

    explicit_exts = list(exts or [])
    extensions = merge_extensions(csr.extensions if csr is not None else [], explicit_exts)
    if not _contains_san(extensions) and old_cert is not None:
        try:
            san = old_cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            extensions.append(san)
        except x509.ExtensionNotFound:
            pass

    suppressed = False
    resolved_subject = None
    if subject is not None:
        try:
            resolved_subject = convertutils.parse_name(subject)
        except ValueError as err:
            raise InvalidParameters(f"Invalid subject: {subject}", str(err)) from err
    elif csr is not None and len(csr.subject) > 0:
        if _contains_san(explicit_exts):
            suppressed = True
        else:
            resolved_subject = csr.subject

    template = CertReqTemplate(
        new_key=new_key,
        public_key=public_key,
        old_cert=old_cert,
        subject=resolved_subject,
        extensions=extensions,
        csr=csr,
        subject_suppressed=suppressed,
    )
    ctx.template = template
    ctx.phase = SessionPhase.REQUEST_READY
    logging.info(
        "Set up the certificate request, subject: %s, extensions: %d",
        resolved_subject.rfc4514_string() if resolved_subject is not None else "<none>",
        len(extensions),
    )
    return template


@not_keyword
def subject_for_command(template: CertReqTemplate, cmd: CmdKind) -> Optional[x509.Name]:
    """Return the subject to request with the given command.

    For `kur`, a missing subject defaults to the one of the CSR or else of the reference certificate.

    :param template: The resolved request.
    :param cmd: The command kind.
    :return: The subject, or `None` if the subject field is to be omitted.
    """
    if template.subject is not None or cmd != CmdKind.KUR:
        return template.subject
    if template.csr is not None and len(template.csr.subject) > 0:
        return template.csr.subject
    if template.old_cert is not None:
        return template.old_cert.subject
    return None
