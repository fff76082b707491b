# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Holds the credentials of the client: a key pair with certificate chain, or a shared secret."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from robot.api.deco import keyword

from cmpclient import certutils, keyutils
from cmpclient.exceptions import CredentialLoadError, LoadCertsError, StoreCredentialsError
from cmpclient.typingutils import SignKey


@dataclass
class Credentials:
    """A private key with its certificate and chain, and/or a shared secret for MAC-based protection.

    Attributes
    ----------
        key: The private key.
        cert: The certificate of the key.
        chain: The chain of the certificate, issuing CA first, without `cert` itself.
        secret: The shared secret for MAC-based protection.
        secret_ref: The reference of the shared secret, used as `senderKID`.

    """

    key: Optional[SignKey] = None
    cert: Optional[x509.Certificate] = None
    chain: List[x509.Certificate] = field(default_factory=list)
    secret: Optional[bytes] = None
    secret_ref: Optional[str] = None

    @property
    def has_key_and_cert(self) -> bool:
        """Return `True` if the credentials can be used for signature-based protection."""
        return self.key is not None and self.cert is not None

    @property
    def has_secret(self) -> bool:
        """Return `True` if the credentials can be used for MAC-based protection."""
        return bool(self.secret)

    def copy(self) -> "Credentials":
        """Return a copy, which does not share the mutable chain list."""
        return Credentials(
            key=self.key, cert=self.cert, chain=list(self.chain), secret=self.secret, secret_ref=self.secret_ref
        )


@keyword(name="Load Credentials")
def load_credentials(  # noqa D417 undocumented-param
    key_file: Optional[str] = None,
    cert_file: Optional[str] = None,
    key_pass: Optional[str] = None,
    secret: Optional[str] = None,
    secret_ref: Optional[str] = None,
    engine: Optional[str] = None,
    desc: Optional[str] = None,
) -> Credentials:
    """Load the credentials of the client.

    A PKCS#12 file given as `key_file` can provide the key, the certificate and the chain at once.
    Otherwise, `cert_file` contains the own certificate first, followed by its chain.

    Arguments:
    ---------
        - `key_file`: The file of the private key. Defaults to `None`.
        - `cert_file`: The file of the certificate and its chain. Defaults to `None`.
        - `key_pass`: The password of the key file, e.g. "pass:11111". Defaults to `None`.
        - `secret`: The shared secret for MAC-based protection, e.g. "pass:SiemensIT". Defaults to `None`.
        - `secret_ref`: The reference of the shared secret, used as `senderKID`. Defaults to `None`.
        - `engine`: The crypto engine to use. Only `None` is supported.
        - `desc`: A description of the credentials, used in error messages. Defaults to "credentials".

    Returns:
    -------
        - The loaded `Credentials`.

    Raises:
    ------
        - `CredentialLoadError`: If nothing usable was given, or a file cannot be loaded, or the
        key does not match the certificate.

    Examples:
    --------
    | ${creds}= | Load Credentials | key_file=./data/keys/client.pem | cert_file=./data/certs/client.pem |
    | ${creds}= | Load Credentials | secret=pass:SiemensIT | secret_ref=CMP-client |

    """
    desc = desc or "credentials"
    creds = Credentials(secret_ref=secret_ref)

    if secret is not None:
        creds.secret = keyutils.resolve_password(secret)

    if key_file is not None and key_file.lower().endswith((".p12", ".pfx")):
        creds.key, creds.cert, creds.chain = _load_pkcs12(key_file, key_pass, desc)
    elif key_file is not None:
        creds.key = keyutils.load_key(key_file, password=key_pass, engine=engine, desc=f"key of {desc}")

    if cert_file is not None:
        try:
            certs = certutils.load_certificates(cert_file, desc=f"certificate of {desc}")
        except LoadCertsError as err:
            raise CredentialLoadError(err.message, err.error_details) from err
        creds.cert, creds.chain = certs[0], certs[1:]

    if not creds.has_secret and creds.key is None:
        raise CredentialLoadError(f"Neither a key nor a secret given for {desc}")

    if creds.cert is not None and creds.key is None:
        raise CredentialLoadError(f"Certificate given without private key for {desc}")

    if creds.key is not None and creds.cert is not None:
        if not certutils.public_key_matches(creds.cert, creds.key.public_key()):
            raise CredentialLoadError(f"The private key does not match the certificate of {desc}")

    return creds


def _load_pkcs12(file: str, password: Optional[str], desc: str):
    """Load the key, certificate and chain of a PKCS#12 file."""
    try:
        with open(file, "rb") as p12_file:
            data = p12_file.read()
        key, cert, chain = pkcs12.load_key_and_certificates(data, keyutils.resolve_password(password))
    except OSError as err:
        raise CredentialLoadError(f"Could not read {desc} from {file}", str(err)) from err
    except (ValueError, TypeError, UnsupportedAlgorithm) as err:
        raise CredentialLoadError(f"Could not decode {desc} from {file}", str(err)) from err

    logging.info("Loaded %s from PKCS#12 file %s", desc, file)
    return key, cert, list(chain or [])


@keyword(name="Save Credentials")
def save_credentials(  # noqa D417 undocumented-param
    creds: Credentials, key_file: Optional[str], cert_file: str, key_pass: Optional[str] = None
) -> None:
    """Write enrolled credentials to files: the key to `key_file`, the certificate and its chain to `cert_file`.

    Arguments:
    ---------
        - `creds`: The credentials to store.
        - `key_file`: The file for the private key, `None` to store only the certificate.
        - `cert_file`: The file for the certificate, followed by its chain, in PEM format.
        - `key_pass`: The password to encrypt the private key with. Defaults to `None`.

    Raises:
    ------
        - `StoreCredentialsError`: If the credentials are incomplete or a file cannot be written.

    Examples:
    --------
    | Save Credentials | ${new_creds} | ./out/key.pem | ./out/cert.pem |

    """
    if creds.cert is None:
        raise StoreCredentialsError("The credentials do not contain a certificate")
    if key_file is not None:
        if creds.key is None:
            raise StoreCredentialsError("The credentials do not contain a private key")
        keyutils.save_key(creds.key, key_file, password=key_pass)

    data = b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in [creds.cert] + creds.chain)
    try:
        with open(cert_file, "wb") as out_file:
            out_file.write(data)
    except OSError as err:
        raise StoreCredentialsError(f"Could not write the certificate to {cert_file}", str(err)) from err
    logging.info("Stored the new credentials in %s and %s", key_file, cert_file)
