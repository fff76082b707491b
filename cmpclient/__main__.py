# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Command line interface of the CMP client.

The exit code is the `ErrorCode` of the outcome, `0` on success.
"""

import argparse
import logging
import sys
from typing import List, Optional

from cryptography import x509

from cmpclient import certutils, client, context, keyutils, loadutils, tlsutils
from cmpclient.config_vars import VerifyParams
from cmpclient.credentials import Credentials, load_credentials, save_credentials
from cmpclient.enums import ErrorCode, RevocationReason
from cmpclient.exceptions import CMPClientError, InvalidParameters
from cmpclient.status import snprint_pki_status

log = logging.getLogger("genCMPClient")


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument("--server", required=True, help="CMP server as host[:port] or URL")
    group.add_argument("--path", default="/", help="HTTP path of the CMP endpoint (default: /)")
    group.add_argument("--keep-alive", type=int, default=1, choices=[0, 1, 2], help="HTTP keep-alive mode")
    group.add_argument("--msg-timeout", type=int, default=0, help="Timeout per exchange in seconds, 0 for none")
    group.add_argument("--total-timeout", type=int, default=0, help="Timeout per operation in seconds, 0 for none")
    group.add_argument("--proxy", help="Proxy as http[s]://host[:port]")
    group.add_argument("--no-proxy", help="Comma separated hosts not to use the proxy for")
    group.add_argument("--tls-trusted", help="Trusted certificates for the TLS server; enables HTTPS")
    group.add_argument("--tls-key", help="Key file for TLS client authentication")
    group.add_argument("--tls-cert", help="Certificate file for TLS client authentication")
    group.add_argument("--tls-keypass", help="Password of the TLS key file")


def _add_cmp_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("CMP")
    group.add_argument("--trusted", help="Comma separated trusted certificates for verifying the CA")
    group.add_argument("--untrusted", help="Comma separated intermediate certificates")
    group.add_argument("--out-trusted", help="Trusted certificates for verifying newly enrolled certificates")
    group.add_argument("--crls", help="Comma separated CRL files or URLs for checking the certificates")
    group.add_argument("--recipient", help="Name of the CA, e.g. CN=CA")
    group.add_argument("--key", help="Key file of the client credentials")
    group.add_argument("--cert", help="Certificate file of the client credentials, followed by its chain")
    group.add_argument("--keypass", help="Password of the key file, e.g. pass:secret or env:VAR")
    group.add_argument("--secret", help="Shared secret for MAC-based protection, e.g. pass:secret")
    group.add_argument("--ref", help="Reference of the shared secret")
    protection = group.add_mutually_exclusive_group()
    protection.add_argument("--digest", help="Hash algorithm for signature-based protection, e.g. sha256")
    protection.add_argument("--mac", help="MAC algorithm, e.g. pbm, pbmac1 or hmac")
    group.add_argument("--implicit-confirm", action="store_true", help="Request implicit confirmation")


def _add_new_key_args(parser: argparse.ArgumentParser, with_subject: bool) -> None:
    parser.add_argument("--newkey", help="Key file of the key to be certified; generated if not given")
    parser.add_argument("--newkeypass", help="Password of the new key file")
    parser.add_argument("--newkeytype", default="ec", help="Type of a generated key: ec, rsa, ed25519, ed448")
    parser.add_argument("--newkeyout", help="File to store the new key in")
    parser.add_argument("--certout", required=True, help="File to store the new certificate and its chain in")
    if with_subject:
        parser.add_argument("--subject", help="Subject, e.g. CN=Joe Mustermann or /CN=Joe Mustermann")
        parser.add_argument("--san", action="append", default=[], help="DNS name for the SAN; repeatable")


def prepare_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per operation."""
    parser = argparse.ArgumentParser(prog="cmpclient", description="CMP (RFC 4210/9480) client")
    parser.add_argument("--verbose", action="store_true", default=False, help="Log debugging information")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in [
        ("imprint", "Request an initial certificate with an ir"),
        ("bootstrap", "Request an additional certificate with a cr"),
    ]:
        sub = commands.add_parser(name, help=help_text)
        _add_connection_args(sub)
        _add_cmp_args(sub)
        _add_new_key_args(sub, with_subject=True)

    sub = commands.add_parser("pkcs10", help="Request a certificate for a PKCS#10 CSR with a p10cr")
    _add_connection_args(sub)
    _add_cmp_args(sub)
    sub.add_argument("--csr", required=True, help="PKCS#10 CSR file")
    sub.add_argument("--certout", required=True, help="File to store the new certificate and its chain in")

    sub = commands.add_parser("update", help="Update a certificate to a new key with a kur")
    _add_connection_args(sub)
    _add_cmp_args(sub)
    _add_new_key_args(sub, with_subject=False)
    sub.add_argument("--oldcert", help="Certificate to be updated; defaults to the client certificate")

    sub = commands.add_parser("revoke", help="Revoke a certificate with an rr")
    _add_connection_args(sub)
    _add_cmp_args(sub)
    sub.add_argument("--oldcert", required=True, help="Certificate to be revoked")
    sub.add_argument("--reason", default="unspecified", help="CRL reason code or name, -1 to omit")

    return parser


def _load_optional_certs(files: Optional[str], desc: str) -> List[x509.Certificate]:
    if not files:
        return []
    certs = []
    for file in files.split(","):
        if file.strip():
            certs.extend(certutils.load_certificates(file.strip(), desc=desc))
    return certs


def _load_optional_truststore(files: Optional[str], desc: str, vpm: VerifyParams) -> Optional[certutils.TrustStore]:
    if not files:
        return None
    return certutils.load_truststore(files, desc=desc, vpm=vpm)


def _load_new_key(args):
    if args.newkey:
        return keyutils.load_key(args.newkey, password=args.newkeypass, desc="new key")
    return keyutils.generate_key(args.newkeytype)


def _build_context(args) -> context.CMPContext:
    vpm = VerifyParams()
    if args.crls:
        vpm.crls = loadutils.load_crls(args.crls, timeout=args.msg_timeout)
        vpm.crl_check = True

    truststore = _load_optional_truststore(args.trusted, "trusted certificates", vpm)
    new_cert_truststore = _load_optional_truststore(args.out_trusted, "trusted certificates for new certificates", vpm)

    creds: Optional[Credentials] = None
    if args.key or args.secret:
        creds = load_credentials(
            key_file=args.key, cert_file=args.cert, key_pass=args.keypass, secret=args.secret, secret_ref=args.ref
        )

    ctx = context.prepare(
        truststore=truststore,
        recipient=args.recipient,
        untrusted=_load_optional_certs(args.untrusted, "untrusted certificates"),
        creds=creds,
        digest=args.digest,
        mac=args.mac,
        total_timeout=args.total_timeout,
        new_cert_truststore=new_cert_truststore,
        implicit_confirm=args.implicit_confirm,
    )

    tls = None
    if args.tls_trusted:
        tls_creds = None
        if args.tls_key and args.tls_cert:
            tls_creds = load_credentials(
                key_file=args.tls_key, cert_file=args.tls_cert, key_pass=args.tls_keypass, desc="TLS credentials"
            )
        tls_store = certutils.load_truststore(args.tls_trusted, desc="TLS trusted certificates")
        tls = tlsutils.new_tls_config(truststore=tls_store, untrusted=ctx.untrusted, creds=tls_creds)

    context.attach_http(
        ctx,
        args.server,
        path=args.path,
        keep_alive=args.keep_alive,
        timeout=args.msg_timeout,
        tls=tls,
        proxy=args.proxy,
        no_proxy=args.no_proxy,
    )
    return ctx


def run_command(args, ctx: context.CMPContext) -> None:
    """Execute the sub-command on the prepared context."""
    if args.command == "revoke":
        old_cert = certutils.load_certificates(args.oldcert, desc="certificate to be revoked")[0]
        try:
            reason = RevocationReason.get(args.reason)
        except ValueError as err:
            raise InvalidParameters(str(err)) from err
        client.revoke(ctx, old_cert, reason)
        return

    if args.command == "pkcs10":
        new_creds = client.pkcs10(ctx, loadutils.load_csr(args.csr))
        save_credentials(new_creds, None, args.certout)
        return

    new_key = _load_new_key(args)
    if args.command == "update":
        old_cert = None
        if args.oldcert:
            old_cert = certutils.load_certificates(args.oldcert, desc="certificate to be updated")[0]
        new_creds = client.update_anycert(ctx, old_cert, new_key)
    else:
        exts = None
        if args.san:
            san = x509.SubjectAlternativeName([x509.DNSName(name) for name in args.san])
            exts = [x509.Extension(x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME, False, san)]
        operation = client.imprint if args.command == "imprint" else client.bootstrap
        new_creds = operation(ctx, new_key, args.subject, exts)

    save_credentials(new_creds, args.newkeyout, args.certout, key_pass=args.newkeypass)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CMP client and return the exit code."""
    args = prepare_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s: %(message)s")
    context.init("genCMPClient", level=logging.DEBUG if args.verbose else logging.INFO)

    ctx = None
    try:
        ctx = _build_context(args)
        run_command(args, ctx)
    except CMPClientError as err:
        log.error("%s failed: %s", args.command, err.message)
        for detail in err.get_error_details():
            log.error("  %s", detail)
        if ctx is not None and ctx.status is not None:
            log.error("%s", snprint_pki_status(ctx))
        return int(err.get_error_code())
    finally:
        context.finish(ctx)

    log.info("%s succeeded", args.command)
    return int(ErrorCode.OK)


if __name__ == "__main__":
    sys.exit(main())
