# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Defines the ASN.1 structures which are not exported by `pyasn1_alt_modules` in the needed form."""

from pyasn1.type import namedtype, univ
from pyasn1_alt_modules import rfc9480


class ProtectedPart(univ.Sequence):
    """Defines the ASN.1 structure for the `ProtectedPart`.

    ProtectedPart ::= SEQUENCE {
        header PKIHeader,
        body PKIBody
    """

    componentType = namedtype.NamedTypes(
        namedtype.NamedType("header", rfc9480.PKIHeader()), namedtype.NamedType("body", rfc9480.PKIBody())
    )


class PollReqEntry(univ.Sequence):
    """Defines a single entry of the `PollReqContent` structure.

    PollReqContent ::= SEQUENCE OF SEQUENCE {
        certReqId INTEGER
    """

    componentType = namedtype.NamedTypes(namedtype.NamedType("certReqId", univ.Integer()))


class PollRepEntry(univ.Sequence):
    """Defines a single entry of the `PollRepContent` structure.

    PollRepContent ::= SEQUENCE OF SEQUENCE {
        certReqId INTEGER,
        checkAfter INTEGER,  -- time in seconds
        reason PKIFreeText OPTIONAL }
    """

    componentType = namedtype.NamedTypes(
        namedtype.NamedType("certReqId", univ.Integer()),
        namedtype.NamedType("checkAfter", univ.Integer()),
        namedtype.OptionalNamedType("reason", rfc9480.PKIFreeText()),
    )
