# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Utility functions for generating, loading and saving private keys."""

import logging
import os
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from robot.api.deco import keyword, not_keyword

from cmpclient.exceptions import CredentialLoadError, GenerateKeyError, StoreCredentialsError
from cmpclient.typingutils import SignKey

CURVE_NAMES_TO_INSTANCES = {
    "secp256r1": ec.SECP256R1(),
    "prime256v1": ec.SECP256R1(),
    "secp384r1": ec.SECP384R1(),
    "secp521r1": ec.SECP521R1(),
}


@not_keyword
def resolve_password(password: Optional[str]) -> Optional[bytes]:
    """Resolve a password given in OpenSSL notation ("pass:<text>" or "env:<var>") or as plain text.

    :param password: The password, e.g. "pass:11111", "env:KEY_PASS" or plain text.
    :return: The password as bytes or `None`.
    :raises CredentialLoadError: If the referenced environment variable is not set.
    """
    if password is None:
        return None
    if isinstance(password, bytes):
        return password
    if password.startswith("pass:"):
        return password[len("pass:") :].encode("utf-8")
    if password.startswith("env:"):
        value = os.environ.get(password[len("env:") :])
        if value is None:
            raise CredentialLoadError(f"Environment variable of password not set: {password}")
        return value.encode("utf-8")
    return password.encode("utf-8")


@keyword(name="Generate Key")
def generate_key(algorithm: str = "ec", **params) -> SignKey:  # noqa: D417 for RF docs
    """Generate a `cryptography` key based on the specified algorithm.

    Arguments:
    ---------
        - `algorithm`: The algorithm to use: "rsa", "ec" (alias "ecdsa"), "ed25519" or "ed448". Defaults to "ec".
        - `**params`: `length` for RSA (defaults to 2048) and `curve` for EC (defaults to "secp256r1").

    Returns:
    -------
        - The generated private key.

    Raises:
    ------
        - `GenerateKeyError`: If the algorithm or its parameters are not supported.

    Examples:
    --------
    | ${key}= | Generate Key | rsa | length=3072 |
    | ${key}= | Generate Key | ec | curve=secp384r1 |

    """
    algorithm = algorithm.lower()
    try:
        if algorithm == "rsa":
            return rsa.generate_private_key(public_exponent=65537, key_size=int(params.get("length", 2048)))
        if algorithm in ["ec", "ecdsa"]:
            curve = CURVE_NAMES_TO_INSTANCES[params.get("curve", "secp256r1")]
            return ec.generate_private_key(curve=curve)
        if algorithm == "ed25519":
            return ed25519.Ed25519PrivateKey.generate()
        if algorithm == "ed448":
            return ed448.Ed448PrivateKey.generate()
    except (KeyError, ValueError) as err:
        raise GenerateKeyError(f"Could not generate a {algorithm} key: {err}") from err

    raise GenerateKeyError(f"Unsupported key algorithm: {algorithm}")


@keyword(name="Load Key")
def load_key(  # noqa: D417 for RF docs
    file: str, password: Optional[str] = None, engine: Optional[str] = None, desc: Optional[str] = None
) -> SignKey:
    """Load a private key from a PEM, DER or PKCS#12 file.

    Arguments:
    ---------
        - `file`: The path to the file containing the key.
        - `password`: The password to decrypt the key file, e.g. "pass:11111". Defaults to `None`.
        - `engine`: The crypto engine to use. Only `None` is supported.
        - `desc`: A description of the key, used in error messages. Defaults to "private key".

    Returns:
    -------
        - The loaded private key.

    Raises:
    ------
        - `CredentialLoadError`: If the file cannot be read or decoded, or the password is wrong.

    Examples:
    --------
    | ${key}= | Load Key | ./data/keys/private-key-ecdsa.pem |
    | ${key}= | Load Key | ./data/keys/client.p12 | password=pass:11111 |

    """
    desc = desc or "private key"
    if engine is not None:
        raise CredentialLoadError(f"Could not load {desc}: crypto engines are not supported ({engine})")

    pass_bytes = resolve_password(password)
    try:
        with open(file, "rb") as key_file:
            data = key_file.read()
    except OSError as err:
        raise CredentialLoadError(f"Could not read {desc} from {file}", str(err)) from err

    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            key = serialization.load_pem_private_key(data, password=pass_bytes)
        elif file.lower().endswith((".p12", ".pfx")):
            key, _, _ = pkcs12.load_key_and_certificates(data, pass_bytes)
        else:
            key = serialization.load_der_private_key(data, password=pass_bytes)
    except (ValueError, TypeError, UnsupportedAlgorithm) as err:
        raise CredentialLoadError(f"Could not decode {desc} from {file}", str(err)) from err

    if key is None:
        raise CredentialLoadError(f"No {desc} found in {file}")

    logging.info("Loaded %s from %s", desc, file)
    return key


@keyword(name="Save Key")
def save_key(key: SignKey, path: str, password: Optional[str] = None) -> None:  # noqa: D417 undocumented-params
    """Save a private key to a PEM file, optionally encrypting it with a passphrase.

    Arguments:
    ---------
        - `key`: The private key object to save.
        - `path`: The file path where the key will be saved.
        - `password`: Optional passphrase to encrypt the key. If None, save without encryption.

    Raises:
    ------
        - `StoreCredentialsError`: If the file cannot be written.

    Examples:
    --------
    | Save Key | ${key} | /path/to/save/key.pem | pass:password123 |

    """
    passphrase = resolve_password(password)
    encrypt_algo = serialization.NoEncryption()
    if passphrase:
        encrypt_algo = serialization.BestAvailableEncryption(passphrase)

    data = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encrypt_algo,
    )
    try:
        with open(path, "wb") as key_file:
            key_file.write(data)
    except OSError as err:
        raise StoreCredentialsError(f"Could not write the private key to {path}", str(err)) from err
