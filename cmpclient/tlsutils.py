# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Creation of TLS client contexts for the managed HTTP transport."""

import logging
import os
import ssl
import tempfile
from typing import Iterable, Optional

import certifi
from cryptography.hazmat.primitives import serialization
from requests.adapters import HTTPAdapter
from robot.api.deco import keyword

from cmpclient.certutils import TrustStore
from cmpclient.credentials import Credentials
from cmpclient.exceptions import OtherLibraryError


def _load_client_credentials(context: ssl.SSLContext, creds: Credentials) -> None:
    """Load the key and certificate chain into the context, which only accepts files."""
    key_pem = creds.key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    )
    certs_pem = b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in [creds.cert] + creds.chain)

    fd, path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as pem_file:
            pem_file.write(certs_pem + key_pem)
        context.load_cert_chain(certfile=path)
    finally:
        os.remove(path)


@keyword(name="New TLS Config")
def new_tls_config(  # noqa D417 undocumented-param
    truststore: Optional[TrustStore] = None,
    untrusted: Optional[Iterable] = None,
    creds: Optional[Credentials] = None,
    ciphers: Optional[str] = None,
    security_level: int = -1,
) -> ssl.SSLContext:
    """Create a TLS client context for the managed HTTP transport.

    Arguments:
    ---------
        - `truststore`: The trust anchors for verifying the server. Defaults to the `certifi` bundle.
        - `untrusted`: Intermediate certificates sent along with the client certificate.
        - `creds`: The client credentials for TLS client authentication. Defaults to `None`.
        - `ciphers`: An OpenSSL cipher list, e.g. "ECDHE+AESGCM". Defaults to the OpenSSL default.
        - `security_level`: The OpenSSL security level, a negative value keeps the default. Defaults to `-1`.

    Returns:
    -------
        - The configured `ssl.SSLContext`.

    Raises:
    ------
        - `OtherLibraryError`: If the `ssl` module rejects the configuration.

    Examples:
    --------
    | ${tls}= | New TLS Config | truststore=${store} | creds=${creds} |
    | ${tls}= | New TLS Config | ciphers=ECDHE+AESGCM | security_level=2 |

    """
    try:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if truststore is not None and len(truststore) > 0:
            cadata = "".join(cert.public_bytes(serialization.Encoding.PEM).decode() for cert in truststore.anchors)
            context.load_verify_locations(cadata=cadata)
        else:
            context.load_verify_locations(cafile=certifi.where())

        if creds is not None and creds.has_key_and_cert:
            tls_creds = creds.copy()
            for cert in untrusted or []:
                if cert not in tls_creds.chain:
                    tls_creds.chain.append(cert)
            _load_client_credentials(context, tls_creds)

        if ciphers is not None or security_level >= 0:
            cipher_list = ciphers or "DEFAULT"
            if security_level >= 0:
                cipher_list += f":@SECLEVEL={int(security_level)}"
            context.set_ciphers(cipher_list)
    except ssl.SSLError as err:
        raise OtherLibraryError("Could not set up the TLS context", lib_error=err, lib_code=err.errno) from err

    logging.info("Created TLS context, client authentication: %s", creds is not None and creds.has_key_and_cert)
    return context


class SSLContextAdapter(HTTPAdapter):
    """A `requests` adapter which uses a given `ssl.SSLContext` for all HTTPS connections."""

    def __init__(self, ssl_context: ssl.SSLContext, **kwargs):
        """Initialize the adapter with the TLS context to use."""
        self.ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):  # noqa: D102 no docstring
        kwargs["ssl_context"] = self.ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):  # noqa: D102 no docstring
        kwargs["ssl_context"] = self.ssl_context
        return super().proxy_manager_for(*args, **kwargs)

    def cert_verify(self, conn, url, verify, cert):  # noqa: D102 no docstring
        super().cert_verify(conn, url, verify, cert)
        # Only the trust anchors of the context are used.
        conn.ca_certs = None
        conn.ca_cert_dir = None
