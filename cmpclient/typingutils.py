# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Type aliases to enhance code readability, maintainability, and type safety.

Type aliases are used to create descriptive names for commonly used types, making the codebase
easier to understand and work with.
"""

from typing import Callable, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.dsa import DSAPrivateKey, DSAPublicKey
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey, EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.ed448 import Ed448PrivateKey, Ed448PublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from pyasn1_alt_modules import rfc9480

# The private keys which can sign a `PKIMessage` or a proof-of-possession.
SignKey = Union[
    RSAPrivateKey,
    EllipticCurvePrivateKey,
    Ed25519PrivateKey,
    Ed448PrivateKey,
    DSAPrivateKey,
]

VerifyKey = Union[
    RSAPublicKey,
    EllipticCurvePublicKey,
    Ed25519PublicKey,
    Ed448PublicKey,
    DSAPublicKey,
]

# A subject given either as parsed name or as string in RFC 4514 or OpenSSL notation.
NameLike = Union[str, x509.Name]

# Either a bare string or bytes, e.g. a shared secret.
StrOrBytes = Union[str, bytes]

# A caller-provided function that sends a request and returns the response.
TransferFn = Callable[[rfc9480.PKIMessage], rfc9480.PKIMessage]

# Log callback: receives the `logging` level and the formatted message.
LogFn = Callable[[int, str], None]
