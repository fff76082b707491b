# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Records and renders the `PKIStatusInfo` of the last exchange."""

from dataclasses import dataclass, field
from typing import List, Optional, Union

from pyasn1_alt_modules import rfc9480
from robot.api.deco import keyword, not_keyword

from cmpclient.enums import FAILINFO_NAMES, PKIStatus

NO_STATUS = "<no PKIStatus>"


@dataclass
class PKIStatusRecord:
    """The status reported by the peer in its last response.

    Attributes
    ----------
        status: The `PKIStatus`, or the raw integer if the value is unknown.
        failinfo: The names of the set `PKIFailureInfo` bits.
        texts: The entries of the `statusString`.

    """

    status: Union[PKIStatus, int]
    failinfo: List[str] = field(default_factory=list)
    texts: List[str] = field(default_factory=list)

    @property
    def status_name(self) -> str:
        """Return the name of the status."""
        if isinstance(self.status, PKIStatus):
            return self.status.name
        return f"<unknown PKIStatus {self.status}>"

    @property
    def is_positive(self) -> bool:
        """Return `True` if the status is neither `rejection` nor `waiting`."""
        return isinstance(self.status, PKIStatus) and self.status.is_positive()

    @staticmethod
    def from_pkistatusinfo(status_info: rfc9480.PKIStatusInfo) -> "PKIStatusRecord":
        """Convert a `PKIStatusInfo` structure.

        :param status_info: The structure to convert.
        :return: The record.
        """
        value = int(status_info["status"])
        try:
            status: Union[PKIStatus, int] = PKIStatus(value)
        except ValueError:
            status = value

        failinfo = []
        if status_info["failInfo"].isValue:
            bits = status_info["failInfo"]
            for index, name in enumerate(FAILINFO_NAMES):
                if index < len(bits) and bits[index] == 1:
                    failinfo.append(name)

        texts = []
        if status_info["statusString"].isValue:
            texts = [str(text) for text in status_info["statusString"]]

        return PKIStatusRecord(status=status, failinfo=failinfo, texts=texts)


@not_keyword
def format_pki_status(record: Optional[PKIStatusRecord]) -> str:
    """Render the record as `PKIStatus: <name>; PKIFailureInfo: <bits>; StatusString: "<texts>"`.

    The failure info and status string parts are omitted if empty.
    """
    if record is None:
        return NO_STATUS

    parts = [f"PKIStatus: {record.status_name}"]
    if record.failinfo:
        parts.append("PKIFailureInfo: " + ", ".join(record.failinfo))
    if record.texts:
        parts.append("StatusString: " + ", ".join(f'"{text}"' for text in record.texts))
    return "; ".join(parts)


@keyword(name="Snprint PKIStatus")
def snprint_pki_status(ctx, bufsize: int = 1024) -> str:  # noqa D417 undocumented-param
    """Render the status of the last exchange of the context as bounded-length string.

    Never fails: without a recorded status, the placeholder "<no PKIStatus>" is returned.
    Like a C buffer of `bufsize` bytes with terminating zero, the result holds at most
    `bufsize - 1` characters.

    Arguments:
    ---------
        - `ctx`: The `CMPContext`, or `None`.
        - `bufsize`: The size of the buffer. Defaults to `1024`.

    Returns:
    -------
        - The (possibly truncated) string, empty if `bufsize` is less than `1`.

    Examples:
    --------
    | ${text}= | Snprint PKIStatus | ${ctx} |
    | Should Contain | ${text} | badCertTemplate |

    """
    bufsize = int(bufsize)
    if bufsize <= 0:
        return ""
    record = getattr(ctx, "status", None) if ctx is not None else None
    return format_pki_status(record)[: bufsize - 1]
