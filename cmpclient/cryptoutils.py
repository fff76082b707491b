# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Provides the cryptographic primitives used for the proof-of-possession and the `PKIMessage` protection."""

import logging
import os
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pyasn1.type import univ
from pyasn1_alt_modules import rfc9481
from robot.api.deco import keyword, not_keyword

from cmpclient.oidutils import HASH_NAME_OBJ_MAP, OID_HASH_MAP, SIG_NAME_2_OID
from cmpclient.typingutils import SignKey, StrOrBytes, VerifyKey

KEY_CLASS_MAPPING = {
    "RSAPrivateKey": "rsa",
    "RSAPublicKey": "rsa",
    "EllipticCurvePrivateKey": "ecdsa",
    "EllipticCurvePublicKey": "ecdsa",
    "Ed25519PrivateKey": "ed25519",
    "Ed25519PublicKey": "ed25519",
    "Ed448PrivateKey": "ed448",
    "Ed448PublicKey": "ed448",
}


@not_keyword
def hash_name_to_instance(alg: str) -> hashes.HashAlgorithm:
    """Return an instance of a hash algorithm object based on its name.

    :param alg: The name of hashing algorithm, e.g., 'sha256'.
    :return: `cryptography.hazmat.primitives.hashes` instance.
    :raises ValueError: If the hash algorithm is not supported.
    """
    try:
        # to also get the hash function with rsa-sha1 and so on.
        if "-" in alg:
            return HASH_NAME_OBJ_MAP[alg.split("-")[1]]
        return HASH_NAME_OBJ_MAP[alg.lower()]
    except KeyError as err:
        raise ValueError(f"Unsupported hash algorithm: {alg}") from err


@not_keyword
def compute_hash(alg_name: str, data: bytes) -> bytes:
    """Calculate the hash of data using an algorithm given by its name.

    :param alg_name: The Name of algorithm, e.g., 'sha256', see HASH_NAME_OBJ_MAP.
    :param data: The buffer we want to hash.
    :return: The resulting hash.
    :raises ValueError: If the specified hash algorithm is not supported.
    """
    digest = hashes.Hash(hash_name_to_instance(alg_name))
    digest.update(data)
    return digest.finalize()


@not_keyword
def get_hash_from_oid(oid: univ.ObjectIdentifier, only_hash: bool = False) -> Optional[str]:
    """Determine the name of a hashing function used in a signature algorithm given by its oid.

    :param oid: `pyasn1 univ.ObjectIdentifier`, OID of signing algorithm
    :param only_hash: A flag indicating if only the hash name shall be returned if one is contained.
    :return: The name of the hashing algorithm, e.g., 'sha256' or `None`, if the
    signature algorithm does not use one.
    :raises ValueError: If the OID is unknown.
    """
    if oid in {rfc9481.id_Ed25519, rfc9481.id_Ed448}:
        return None

    try:
        name = OID_HASH_MAP[oid]
    except KeyError as err:
        raise ValueError(f"Unknown signature algorithm OID: {oid}") from err

    if only_hash and "-" in name:
        return name.split("-")[1]
    return name


@not_keyword
def get_alg_oid_from_key_hash(key: SignKey, hash_alg: Optional[str]) -> univ.ObjectIdentifier:
    """Return the OID of the signature algorithm for a key and hash algorithm, e.g. `ecdsa-with-SHA256`.

    :param key: The private key.
    :param hash_alg: Name of hashing algorithm, e.g., 'sha256'. Ignored for EdDSA keys.
    :return: The OID of the signature algorithm.
    :raises ValueError: If the combination is not supported.
    """
    key_type = KEY_CLASS_MAPPING.get(type(key).__name__)
    if key_type is None:
        raise ValueError(f"Unsupported key type for signing: {type(key).__name__}")

    name = key_type if key_type in {"ed25519", "ed448"} else f"{key_type}-{hash_alg}"
    if name not in SIG_NAME_2_OID:
        raise ValueError(f"Unsupported signature algorithm for ({type(key).__name__}, {hash_alg})")
    return SIG_NAME_2_OID[name]


@keyword(name="Sign Data")
def sign_data(  # noqa D417 undocumented-param
    data: bytes, key: SignKey, hash_alg: Optional[str] = "sha256"
) -> bytes:
    """Sign `data` with a private key, e.g. for the POPO or the `PKIMessage` protection.

    Arguments:
    ---------
        - `data`: The data to be signed.
        - `key`: The private key object used to sign the data.
        - `hash_alg`: Hash algorithm for signing (e.g., "sha256"). Not used for EdDSA keys.

    Returns:
    -------
        - The computed signature as bytes.

    Raises:
    ------
        - `ValueError`: If the key type is unsupported or a required hash algorithm is missing.

    Examples:
    --------
    | ${sig}= | Sign Data | ${data} | ${private_key} | sha256 |

    """
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return key.sign(data)

    if not hash_alg:
        raise ValueError(f"The {type(key).__name__} requires a hash algorithm.")

    hash_instance = hash_name_to_instance(hash_alg)
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(data, padding.PKCS1v15(), hash_instance)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return key.sign(data, ec.ECDSA(hash_instance))
    if isinstance(key, dsa.DSAPrivateKey):
        return key.sign(data, hash_instance)

    raise ValueError(f"Unsupported key type for signing: {type(key).__name__}.")


@keyword(name="Verify Signature")
def verify_signature(  # noqa D417 undocumented-param
    public_key: VerifyKey, signature: bytes, data: bytes, hash_alg: Optional[str] = None
) -> None:
    """Verify a digital signature using the provided public key, data and hash algorithm.

    Arguments:
    ---------
        - `public_key`: The public key used to verify the signature.
        - `signature`: signature data.
        - `data`: The original data that was signed.
        - `hash_alg`: Name of the hash algorithm used for verification (e.g., "sha256").
        Must be `None` for EdDSA keys.

    Raises:
    ------
        - `InvalidSignature`: If the signature is invalid.
        - `ValueError`: If an unsupported key type is provided.

    Examples:
    --------
    | Verify Signature | ${public_key} | ${signature} | ${data} | sha256 |

    """
    if isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        public_key.verify(signature, data)
        return

    if not hash_alg:
        raise ValueError(f"The {type(public_key).__name__} requires a hash algorithm.")

    hash_instance = hash_name_to_instance(hash_alg)
    if isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, data, padding.PKCS1v15(), hash_instance)
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, data, ec.ECDSA(hash_instance))
    elif isinstance(public_key, dsa.DSAPublicKey):
        public_key.verify(signature, data, hash_instance)
    else:
        raise ValueError(f"Unsupported public key type: {type(public_key).__name__}.")


@not_keyword
def compute_hmac(data: bytes, key: StrOrBytes, hash_alg: str = "sha256") -> bytes:
    """Compute the HMAC of the protected part with the shared secret or a key derived from it.

    :param data: The data to authenticate.
    :param key: The MAC key.
    :param hash_alg: The hash algorithm name to use. Defaults to "sha256".
    :return: The MAC value.
    """
    mac = hmac.HMAC(ensure_bytes(key), hash_name_to_instance(hash_alg))
    mac.update(data)
    value = mac.finalize()
    logging.debug("HMAC value: %s", value.hex())
    return value


@not_keyword
def compute_password_based_mac(
    data: bytes,
    key: StrOrBytes,
    iterations: int = 1000,
    salt: Optional[bytes] = None,
    hash_alg: str = "sha256",
    *,
    mac_hash_alg: Optional[str] = None,
) -> bytes:
    """Compute the password-based MAC of RFC 4210, Section 5.1.3.1, with HMAC as MAC algorithm.

    :param data: The data to authenticate.
    :param key: The shared secret.
    :param iterations: The number of iterations of the one-way function.
    :param salt: The salt; if not given, a random 16-byte salt will be generated.
    :param hash_alg: The name of the one-way function, e.g. "sha256".
    :param mac_hash_alg: The name of the hash algorithm to use for the `HMAC` algorithm.
    Defaults to the same as `hash_alg`.
    :return: The MAC value.
    """
    owf_output = ensure_bytes(key) + (salt or os.urandom(16))
    for _ in range(iterations):
        owf_output = compute_hash(hash_alg, owf_output)

    return compute_hmac(data=data, key=owf_output, hash_alg=mac_hash_alg or hash_alg)


@not_keyword
def compute_pbmac1(
    data: bytes,
    key: StrOrBytes,
    iterations: int = 262144,
    salt: Optional[bytes] = None,
    length: int = 32,
    hash_alg: str = "sha512",
) -> bytes:
    """Compute a PBMAC1 as defined in RFC 8018, with PBKDF2 for deriving the key and HMAC as MAC.

    :param data: The data to authenticate.
    :param key: The password.
    :param iterations: The iteration count of PBKDF2.
    :param salt: The salt; if not given, a random 16-byte salt will be generated.
    :param length: The length of the derived key in bytes.
    :param hash_alg: The hash algorithm of the PRF and the HMAC.
    :return: The MAC value.
    """
    kdf = PBKDF2HMAC(
        algorithm=hash_name_to_instance(hash_alg),
        length=length,
        salt=salt or os.urandom(16),
        iterations=iterations,
    )
    derived_key = kdf.derive(ensure_bytes(key))
    return compute_hmac(key=derived_key, hash_alg=hash_alg, data=data)


@not_keyword
def ensure_bytes(value: Union[str, bytes]) -> bytes:
    """Return the value as bytes, encoding strings as UTF-8."""
    if isinstance(value, str):
        return value.encode("utf-8")
    return value
