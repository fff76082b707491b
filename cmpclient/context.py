# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""The session context of the CMP client and its lifecycle: init, prepare, attach, reinit and finish."""

import contextlib
import contextvars
import functools
import logging
import ssl
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from cryptography import x509
from robot.api.deco import keyword, not_keyword

from cmpclient import convertutils, cryptoutils
from cmpclient.certutils import TrustStore
from cmpclient.config_vars import HTTPConfig, ProtectionConfig
from cmpclient.credentials import Credentials
from cmpclient.enums import ErrorCode, SessionPhase
from cmpclient.exceptions import InvalidContext, InvalidParameters, RecipientError
from cmpclient.oidutils import HASH_NAME_2_OID, MAC_NAME_2_OID
from cmpclient.status import PKIStatusRecord
from cmpclient.transport import CustomTransfer, HttpTransport, StreamTransport, TransportBinding
from cmpclient.typingutils import LogFn, NameLike, SignKey, TransferFn, VerifyKey

DEFAULT_COMPONENT_NAME = "genCMPClient"
DEFAULT_DIGEST = "sha256"
DEFAULT_MAC = "password_based_mac"

_component_name = DEFAULT_COMPONENT_NAME
_init_handler: Optional[logging.Handler] = None
_context_handler: Optional[logging.Handler] = None
_active_context: contextvars.ContextVar = contextvars.ContextVar("active_cmp_context", default=None)


class LogForwardingHandler(logging.Handler):
    """Forwards the log records to a callback receiving the level and the formatted message."""

    def __init__(self, log_fn: LogFn, level: int = logging.NOTSET):
        """Wrap the callback."""
        super().__init__(level)
        self.log_fn = log_fn
        self.setFormatter(logging.Formatter(f"{_component_name}: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D102 no docstring
        try:
            self.log_fn(record.levelno, self.format(record))
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


class ContextLogHandler(LogForwardingHandler):
    """Forwards the log records to the `log_fn` of the context driving the current call.

    A single instance is installed on the root logger; records emitted outside of a
    context call, or for a context without callback, are not forwarded.
    """

    def __init__(self):
        """Initialize the handler without a fixed callback."""
        super().__init__(log_fn=None)

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D102 no docstring
        ctx = _active_context.get()
        if ctx is None or ctx.log_fn is None:
            return
        try:
            ctx.log_fn(record.levelno, self.format(record))
        except Exception:  # pylint: disable=broad-exception-caught
            self.handleError(record)


def _install_context_handler() -> None:
    global _context_handler  # pylint: disable=global-statement

    if _context_handler is None:
        _context_handler = ContextLogHandler()
        logging.getLogger().addHandler(_context_handler)


@not_keyword
@contextlib.contextmanager
def context_logging(ctx):
    """Forward the log records emitted inside the block to the callback of `ctx`."""
    token = _active_context.set(ctx)
    try:
        yield ctx
    finally:
        _active_context.reset(token)


@not_keyword
def forward_context_logs(func):
    """Decorate a function taking the context as first argument with `context_logging`."""

    @functools.wraps(func)
    def wrapper(ctx, *args, **kwargs):
        with context_logging(ctx):
            return func(ctx, *args, **kwargs)

    return wrapper


@keyword(name="Init CMP Client")
def init(name: Optional[str] = None, log_fn: Optional[LogFn] = None, level: int = logging.INFO) -> ErrorCode:
    """Initialize the logging of the CMP client, once at application start.

    Arguments:
    ---------
        - `name`: The component name used as prefix of the forwarded messages. Defaults to "genCMPClient".
        - `log_fn`: A callback `log_fn(level, message)` receiving all log records. Defaults to `None`.
        - `level`: The level set on the root logger. Defaults to `logging.INFO`.

    Returns:
    -------
        - `ErrorCode.OK`.

    Examples:
    --------
    | ${rc}= | Init CMP Client | name=myClient |

    """
    global _component_name, _init_handler  # pylint: disable=global-statement

    _component_name = name or DEFAULT_COMPONENT_NAME
    root = logging.getLogger()
    root.setLevel(level)
    if _context_handler is not None:
        _context_handler.setFormatter(logging.Formatter(f"{_component_name}: %(message)s"))
    if _init_handler is not None:
        root.removeHandler(_init_handler)
        _init_handler = None
    if log_fn is not None:
        _init_handler = LogForwardingHandler(log_fn)
        root.addHandler(_init_handler)

    logging.debug("Initialized %s", _component_name)
    return ErrorCode.OK


@not_keyword
def get_component_name() -> str:
    """Return the component name set by `init`."""
    return _component_name


@dataclass
class CertReqTemplate:
    """The pending certificate request of a context, replaced on every `setup_cert_req` call.

    Attributes
    ----------
        new_key: The private key to be certified, `None` if only the public key of a CSR is known.
        public_key: The public key to be certified.
        old_cert: The reference certificate, e.g. the one to be updated.
        subject: The requested subject, `None` if it is taken from the SAN or left to the CA.
        extensions: The requested extensions.
        csr: The PKCS#10 request, used verbatim for `p10cr`.
        subject_suppressed: Whether the default subject was dropped because of a SAN extension.

    """

    new_key: Optional[SignKey] = None
    public_key: Optional[VerifyKey] = None
    old_cert: Optional[x509.Certificate] = None
    subject: Optional[x509.Name] = None
    extensions: List[x509.Extension] = field(default_factory=list)
    csr: Optional[x509.CertificateSigningRequest] = None
    subject_suppressed: bool = False


class CMPContext:
    """The state of a CMP client session.

    A context serves one operation at a time and must not be used from several threads
    concurrently; independent contexts share no mutable state.
    """

    def __init__(
        self,
        protection: ProtectionConfig,
        recipient: x509.Name,
        truststore: Optional[TrustStore] = None,
        untrusted: Optional[List[x509.Certificate]] = None,
        creds: Optional[Credentials] = None,
        total_timeout: int = 0,
        new_cert_truststore: Optional[TrustStore] = None,
        implicit_confirm: bool = False,
    ):
        """Initialize the context; use `prepare` instead of calling this directly."""
        self.protection = protection
        self.recipient = recipient
        self.truststore = truststore
        self.untrusted: List[x509.Certificate] = untrusted or []
        self.creds = creds
        self.total_timeout = total_timeout
        self.new_cert_truststore = new_cert_truststore
        self.implicit_confirm = implicit_confirm

        self.transport: Optional[TransportBinding] = None
        self.phase = SessionPhase.PREPARED
        self.log_fn: Optional[LogFn] = None

        self.template: Optional[CertReqTemplate] = None
        self.status: Optional[PKIStatusRecord] = None
        self.transaction_id: Optional[bytes] = None
        self.sender_nonce: Optional[bytes] = None
        self.recip_nonce: Optional[bytes] = None
        self.new_creds: Optional[Credentials] = None

    def __repr__(self) -> str:
        """Return a short description of the context."""
        transport = self.transport.kind if self.transport is not None else "none"
        return f"CMPContext(phase={self.phase.name}, transport={transport})"

    @property
    def is_finished(self) -> bool:
        """Return `True` after `finish`."""
        return self.phase == SessionPhase.FINISHED

    def ensure_not_finished(self) -> None:
        """Raise `InvalidContext` if the context was finished."""
        if self.is_finished:
            raise InvalidContext("The context was already finished.")

    def ensure_ready_for_operation(self) -> None:
        """Raise `InvalidContext` unless a new enrollment or revocation may start."""
        self.ensure_not_finished()
        if self.phase == SessionPhase.DONE:
            raise InvalidContext("An operation was already performed; call `reinit` before the next one.")
        if self.transport is None:
            raise InvalidContext("No transport is attached and no transfer function was given.")

    def ready_phase(self) -> SessionPhase:
        """Return the phase of a context without pending request."""
        return SessionPhase.TRANSPORT_BOUND if self.transport is not None else SessionPhase.PREPARED

    def bind_transport(self, transport: TransportBinding) -> None:
        """Set the transport, which is only possible once and before the first operation."""
        self.ensure_not_finished()
        if self.transport is not None:
            raise InvalidContext(f"A transport is already active: {self.transport.kind}")
        if self.phase == SessionPhase.DONE:
            raise InvalidContext("An operation was already performed; call `reinit` first.")
        self.transport = transport
        if self.phase == SessionPhase.PREPARED:
            self.phase = SessionPhase.TRANSPORT_BOUND
        logging.info("Attached the %s transport", transport.kind)

    def start_transaction(self) -> None:
        """Forget the state of a previous transaction."""
        self.transaction_id = None
        self.sender_nonce = None
        self.recip_nonce = None


def _check_protection(creds: Optional[Credentials], digest: Optional[str], mac: Optional[str]) -> ProtectionConfig:
    if digest is not None and mac is not None:
        raise InvalidParameters("`digest` and `mac` are mutually exclusive.")

    if mac is not None:
        if mac.lower() not in MAC_NAME_2_OID:
            raise InvalidParameters(f"Unsupported MAC algorithm: {mac}")
        if creds is None or not creds.has_secret:
            raise InvalidParameters("MAC-based protection requires credentials with a shared secret.")
        return ProtectionConfig(mac=mac.lower())

    if digest is not None:
        if digest.lower() not in HASH_NAME_2_OID:
            raise InvalidParameters(f"Unsupported digest algorithm: {digest}")
        if creds is None or not creds.has_key_and_cert:
            raise InvalidParameters("Signature-based protection requires credentials with key and certificate.")
        digest = digest.lower()
    elif creds is not None and creds.has_key_and_cert:
        digest = DEFAULT_DIGEST
    elif creds is not None and creds.has_secret:
        return ProtectionConfig(mac=DEFAULT_MAC)
    else:
        raise InvalidParameters("No message protection can be resolved: give a key and certificate or a secret.")

    try:
        cryptoutils.get_alg_oid_from_key_hash(creds.key, digest)
    except ValueError as err:
        raise InvalidParameters(f"The key cannot sign with the digest {digest}: {err}") from err
    return ProtectionConfig(digest=digest)


def _resolve_recipient(
    recipient: Optional[NameLike],
    creds: Optional[Credentials],
    truststores: Iterable[Optional[TrustStore]],
) -> x509.Name:
    if recipient is not None:
        try:
            return convertutils.parse_name(recipient)
        except ValueError as err:
            raise RecipientError(f"Invalid recipient name: {recipient}", str(err)) from err

    if creds is not None and creds.cert is not None:
        return creds.cert.issuer

    for store in truststores:
        if store is not None and len(store) > 0:
            return store.anchors[0].subject

    logging.warning("No recipient could be determined, using the NULL-DN")
    return x509.Name([])


@keyword(name="Prepare CMP Context")
def prepare(  # noqa D417 undocumented-param
    truststore: Optional[TrustStore] = None,
    recipient: Optional[NameLike] = None,
    untrusted: Optional[Iterable[x509.Certificate]] = None,
    creds: Optional[Credentials] = None,
    creds_truststore: Optional[TrustStore] = None,
    digest: Optional[str] = None,
    mac: Optional[str] = None,
    transfer_fn: Optional[TransferFn] = None,
    total_timeout: int = 0,
    new_cert_truststore: Optional[TrustStore] = None,
    implicit_confirm: bool = False,
    log_fn: Optional[LogFn] = None,
) -> CMPContext:
    """Create a session context. No network resource is opened.

    All reference-type inputs are copied; the caller keeps ownership of the originals.

    Arguments:
    ---------
        - `truststore`: The trust anchors for verifying the responses of the CA. Defaults to `None`.
        - `recipient`: The name of the CA. Defaults to the issuer of the client certificate, else to the
        subject of the first trust anchor, else to the NULL-DN.
        - `untrusted`: Intermediate certificates for building chains. Defaults to `None`.
        - `creds`: The credentials used for protecting the requests. Defaults to `None`.
        - `creds_truststore`: If given, the chain of the client certificate is validated against it.
        - `digest`: The hash algorithm for signature-based protection. Defaults to "sha256" if the
        credentials hold a key and certificate.
        - `mac`: The MAC algorithm for MAC-based protection, e.g. "pbm", "pbmac1" or "hmac". Defaults to
        "password_based_mac" if the credentials only hold a secret.
        - `transfer_fn`: A function sending a request and returning the response, used instead of
        attaching a transport. Defaults to `None`.
        - `total_timeout`: The maximum duration of an operation in seconds, `0` for no limit. Defaults to `0`.
        - `new_cert_truststore`: The trust anchors for validating newly issued certificates. Defaults to
        `truststore`.
        - `implicit_confirm`: Whether to request implicit confirmation. Defaults to `False`.
        - `log_fn`: A callback `log_fn(level, message)` receiving the log records emitted by the calls on this context.

    Returns:
    -------
        - The prepared `CMPContext`.

    Raises:
    ------
        - `InvalidParameters`: If both `digest` and `mac` are given, no protection can be resolved,
        an algorithm is not supported or `total_timeout` is negative.
        - `RecipientError`: If the recipient is not a valid name.
        - `CertVerifyError`: If the client certificate does not chain to `creds_truststore`.

    Examples:
    --------
    | ${ctx}= | Prepare CMP Context | truststore=${store} | creds=${creds} |
    | ${ctx}= | Prepare CMP Context | creds=${mac_creds} | mac=pbmac1 | implicit_confirm=True |

    """
    total_timeout = int(total_timeout)
    if total_timeout < 0:
        raise InvalidParameters(f"`total_timeout` must not be negative, got: {total_timeout}")

    protection = _check_protection(creds, digest, mac)
    transfer = None
    if transfer_fn is not None:
        try:
            transfer = CustomTransfer(transfer_fn)
        except ValueError as err:
            raise InvalidParameters(str(err)) from err
    untrusted_copy = list(untrusted or [])

    if creds_truststore is not None and creds is not None and creds.cert is not None:
        creds_truststore.verify_cert_chain(creds.cert, list(creds.chain) + untrusted_copy)

    recipient_name = _resolve_recipient(recipient, creds, [new_cert_truststore, truststore])

    ctx = CMPContext(
        protection=protection,
        recipient=recipient_name,
        truststore=truststore.copy() if truststore is not None else None,
        untrusted=untrusted_copy,
        creds=creds.copy() if creds is not None else None,
        total_timeout=total_timeout,
        new_cert_truststore=new_cert_truststore.copy() if new_cert_truststore is not None else None,
        implicit_confirm=bool(implicit_confirm),
    )

    if log_fn is not None:
        ctx.log_fn = log_fn
        _install_context_handler()

    with context_logging(ctx):
        if transfer is not None:
            ctx.bind_transport(transfer)
        logging.info(
            "Prepared CMP context, recipient: %s, protection: %s",
            recipient_name.rfc4514_string() or "NULL-DN",
            protection.mac or protection.digest,
        )
    return ctx


@keyword(name="Attach HTTP Transport")
@forward_context_logs
def attach_http(  # noqa D417 undocumented-param
    ctx: CMPContext,
    server: str,
    path: str = "/",
    keep_alive: int = 1,
    timeout: int = 0,
    tls: Optional[ssl.SSLContext] = None,
    proxy: Optional[str] = None,
    no_proxy: Optional[str] = None,
) -> None:
    """Attach a managed HTTP(S) transport to the context. The connection is opened on the first exchange.

    Arguments:
    ---------
        - `ctx`: The context.
        - `server`: The server as `host[:port]` or as URL.
        - `path`: The HTTP path of the CMP endpoint. Defaults to "/".
        - `keep_alive`: `0` closes the connection after each exchange, `1` keeps it alive if possible,
        `2` requires the server to keep it alive. Defaults to `1`.
        - `timeout`: The timeout of a single exchange in seconds, `0` for none. Defaults to `0`.
        - `tls`: The TLS context, see `new_tls_config`; if given, HTTPS is used. Defaults to `None`.
        - `proxy`: The proxy as `http[s]://host[:port]`. Defaults to the environment.
        - `no_proxy`: Comma separated hosts contacted without proxy. Defaults to the environment.

    Raises:
    ------
        - `InvalidContext`: If a transport or a transfer function is already active, or the context is finished.
        - `InvalidParameters`: If the server or path is empty, or a value is out of range.
        - `TransportUnsupported`: If the platform lacks network socket support.

    Examples:
    --------
    | Attach HTTP Transport | ${ctx} | localhost:8000 | path=/pkix/ | timeout=10 |
    | Attach HTTP Transport | ${ctx} | ca.example.com | tls=${tls} | proxy=http://proxy:3128 |

    """
    ctx.ensure_not_finished()
    if ctx.transport is not None:
        raise InvalidContext(f"A transport is already active: {ctx.transport.kind}")
    if not server or not path:
        raise InvalidParameters("The server and the path must not be empty.")
    if int(timeout) < 0 or int(keep_alive) not in (0, 1, 2):
        raise InvalidParameters("`timeout` must not be negative and `keep_alive` must be 0, 1 or 2.")

    config = HTTPConfig(
        server=server, path=path, keep_alive=int(keep_alive), timeout=int(timeout), proxy=proxy, no_proxy=no_proxy
    )
    ctx.bind_transport(HttpTransport(config, tls=tls))


@keyword(name="Attach Stream Transport")
@forward_context_logs
def attach_stream(  # noqa D417 undocumented-param
    ctx: CMPContext, stream, path: str = "/", keep_alive: int = 1, timeout: int = 0
) -> None:
    """Attach an already connected stream, over which the messages are framed as HTTP requests.

    The caller keeps ownership of the stream; it is never closed by the client.

    Arguments:
    ---------
        - `ctx`: The context.
        - `stream`: The connected stream, e.g. a `socket.socket` or an `ssl.SSLSocket`.
        - `path`: The HTTP path of the CMP endpoint. Defaults to "/".
        - `keep_alive`: `0` asks the server to close the connection after the response. Defaults to `1`.
        - `timeout`: The timeout of a single exchange in seconds, `0` for none. Defaults to `0`.

    Raises:
    ------
        - `InvalidContext`: If a transport or a transfer function is already active, or the context is finished.
        - `InvalidParameters`: If the stream cannot be used or a value is out of range.

    Examples:
    --------
    | Attach Stream Transport | ${ctx} | ${sock} | path=/pkix/ |

    """
    ctx.ensure_not_finished()
    if ctx.transport is not None:
        raise InvalidContext(f"A transport is already active: {ctx.transport.kind}")
    if not path or int(timeout) < 0:
        raise InvalidParameters("The path must not be empty and `timeout` must not be negative.")

    try:
        transport = StreamTransport(stream, path=path, keep_alive=int(keep_alive), timeout=int(timeout))
    except ValueError as err:
        raise InvalidParameters(str(err)) from err
    ctx.bind_transport(transport)


@keyword(name="Reinit CMP Context")
@forward_context_logs
def reinit(ctx: CMPContext) -> None:  # noqa D417 undocumented-param
    """Reset the per-operation state, so the context can be used for another operation.

    Clears the pending request, the last status and the transaction state. The trust stores,
    the credentials and the transport are kept. Calling it twice equals calling it once.

    Arguments:
    ---------
        - `ctx`: The context.

    Raises:
    ------
        - `InvalidContext`: If the context was finished.

    Examples:
    --------
    | Reinit CMP Context | ${ctx} |

    """
    ctx.ensure_not_finished()
    ctx.template = None
    ctx.status = None
    ctx.new_creds = None
    ctx.start_transaction()
    ctx.phase = ctx.ready_phase()
    logging.debug("Reinitialized the context")


@keyword(name="Finish CMP Context")
@forward_context_logs
def finish(ctx: Optional[CMPContext]) -> None:  # noqa D417 undocumented-param
    """Release the resources of the context. Does nothing for `None` or a finished context.

    Arguments:
    ---------
        - `ctx`: The context, or `None`.

    Examples:
    --------
    | Finish CMP Context | ${ctx} |

    """
    if ctx is None or ctx.is_finished:
        return

    if ctx.transport is not None:
        ctx.transport.close()
        ctx.transport = None
    ctx.log_fn = None

    ctx.creds = None
    ctx.new_creds = None
    ctx.truststore = None
    ctx.new_cert_truststore = None
    ctx.untrusted = []
    ctx.template = None
    ctx.start_transaction()
    ctx.phase = SessionPhase.FINISHED
    logging.debug("Finished the context")
