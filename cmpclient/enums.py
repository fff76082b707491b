# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Enums for use with the CMP client.

These Enums keep the session handling readable and facilitate comparisons and switches in the
CMP protocol handling code.
"""

import enum
from typing import List


class ErrorCode(enum.IntEnum):
    """Closed set of result codes surfaced to callers."""

    OK = 0
    OTHER_LIB_ERR = 99
    CERT_VERIFY = 246
    PROTOCOL_REJECTION = 247
    TRANSPORT = 248
    INVALID_PARAMETERS = 249
    INVALID_CONTEXT = 250
    RECIPIENT = 251
    STORE_CREDS = 252
    GENERATE_KEY = 253
    LOAD_CREDS = 254
    LOAD_CERTS = 255


class CmdKind(enum.IntEnum):
    """The request kinds, numbered like the corresponding `PKIBody` choices."""

    IR = 0
    CR = 2
    P10CR = 4
    KUR = 7
    RR = 11

    @property
    def body_name(self) -> str:
        """Return the name of the `PKIBody` choice for this command."""
        return self.name.lower()

    @property
    def response_body_name(self) -> str:
        """Return the name of the `PKIBody` choice the server is expected to answer with."""
        return {"ir": "ip", "cr": "cp", "p10cr": "cp", "kur": "kup", "rr": "rp"}[self.body_name]

    @classmethod
    def enrollment_kinds(cls) -> List["CmdKind"]:
        """Return the command kinds which issue a certificate."""
        return [cls.IR, cls.CR, cls.P10CR, cls.KUR]


class PKIStatus(enum.IntEnum):
    """The `PKIStatus` values defined in RFC 4210 Section 5.2.3."""

    accepted = 0
    grantedWithMods = 1
    rejection = 2
    waiting = 3
    revocationWarning = 4
    revocationNotification = 5
    keyUpdateWarning = 6

    def is_positive(self) -> bool:
        """Return `True` if the status allows to continue with the transaction."""
        return self not in (PKIStatus.rejection, PKIStatus.waiting)


# Bit positions of the `PKIFailureInfo` BIT STRING, RFC 4210 Section 5.2.3 and RFC 9480.
FAILINFO_NAMES = [
    "badAlg",
    "badMessageCheck",
    "badRequest",
    "badTime",
    "badCertId",
    "badDataFormat",
    "wrongAuthority",
    "incorrectData",
    "missingTimeStamp",
    "badPOP",
    "certRevoked",
    "certConfirmed",
    "wrongIntegrity",
    "badRecipientNonce",
    "timeNotAvailable",
    "unacceptedPolicy",
    "unacceptedExtension",
    "addInfoNotAvailable",
    "badSenderNonce",
    "badCertTemplate",
    "signerNotTrusted",
    "transactionIdInUse",
    "unsupportedVersion",
    "notAuthorized",
    "systemUnavail",
    "systemFailure",
    "duplicateCertReq",
]


class RevocationReason(enum.IntEnum):
    """CRLReason codes of RFC 5280 Section 5.3.1, plus `NONE` for omitting the reason."""

    NONE = -1
    unspecified = 0
    keyCompromise = 1
    cACompromise = 2
    affiliationChanged = 3
    superseded = 4
    cessationOfOperation = 5
    certificateHold = 6
    removeFromCRL = 8
    privilegeWithdrawn = 9
    aACompromise = 10

    @staticmethod
    def get(value) -> "RevocationReason":
        """Return the member matching a name (case-insensitive) or a number.

        :param value: The reason as `int`, `RevocationReason` or name.
        :return: The corresponding member.
        :raises ValueError: If the value does not name a known reason.
        """
        if isinstance(value, RevocationReason):
            return value
        if isinstance(value, int):
            return RevocationReason(value)
        value = str(value).strip()
        if value.lstrip("-").isdigit():
            return RevocationReason(int(value))
        for member in RevocationReason:
            if member.name.lower() == value.lower():
                return member
        raise ValueError(f"Unknown revocation reason: {value}")


class SessionPhase(enum.Enum):
    """The phases a `CMPContext` passes through."""

    PREPARED = enum.auto()
    TRANSPORT_BOUND = enum.auto()
    REQUEST_READY = enum.auto()
    DONE = enum.auto()
    FINISHED = enum.auto()

