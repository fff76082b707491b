# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Dataclasses for the configuration values used by the CMP client."""

import os
from abc import ABC
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import List, Optional

from cryptography import x509


@dataclass
class ConfigVal(ABC):
    """Base class for configuration values."""

    def to_dict(self) -> dict:
        """Convert the configuration to a dictionary."""
        out = {}
        for x in fields(self):
            out[x.name] = getattr(self, x.name)
        return out


@dataclass
class HTTPConfig(ConfigVal):
    """Configuration of a managed HTTP transport.

    Attributes
    ----------
        server: The server address as `host[:port]` or as URL.
        path: The HTTP path of the CMP endpoint. Defaults to "/".
        keep_alive: `0` closes the connection after each exchange, `1` keeps it alive if possible,
        `2` requires the server to keep it alive. Defaults to `1`.
        timeout: The timeout in seconds for a single exchange, `0` means no limit. Defaults to `0`.
        proxy: The proxy to use, as `http[s]://host[:port]`. Defaults to the environment.
        no_proxy: Comma separated list of hosts for which no proxy is used. Defaults to the environment.

    """

    server: str
    path: str = "/"
    keep_alive: int = 1
    timeout: int = 0
    proxy: Optional[str] = None
    no_proxy: Optional[str] = None

    def __post_init__(self):
        """Fill the proxy settings from the environment, if not set."""
        if self.proxy is None:
            self.proxy = os.environ.get("CMP_PROXY") or os.environ.get("https_proxy") or os.environ.get("http_proxy")
        if self.no_proxy is None:
            self.no_proxy = os.environ.get("no_proxy") or os.environ.get("NO_PROXY")

    def bypasses_proxy(self, host: str) -> bool:
        """Check whether the given host is listed in `no_proxy`."""
        if not self.no_proxy:
            return False
        entries = [entry.strip().lstrip(".") for entry in self.no_proxy.split(",") if entry.strip()]
        return any(host == entry or host.endswith("." + entry) for entry in entries)


@dataclass
class VerifyParams(ConfigVal):
    """Parameters for validating certificate chains.

    Attributes
    ----------
        check_time: The time at which the certificates must be valid. Defaults to now.
        crl_check: Whether the end-entity certificate must be checked against the CRLs. Defaults to `False`.
        crl_check_all: Whether all certificates of the chain must be checked against the CRLs. Defaults to `False`.
        crls: The CRLs used for revocation checking.
        partial_chain: Whether a non-self-signed trust anchor terminates the chain. Defaults to `True`.

    """

    check_time: Optional[datetime] = None
    crl_check: bool = False
    crl_check_all: bool = False
    crls: List[x509.CertificateRevocationList] = field(default_factory=list)
    partial_chain: bool = True


@dataclass
class ProtectionConfig(ConfigVal):
    """The selected protection of the outgoing messages.

    Attributes
    ----------
        digest: The hash algorithm for signature-based protection, e.g. "sha256".
        mac: The MAC algorithm for MAC-based protection, e.g. "password_based_mac", "pbmac1" or "hmac".
        iterations: The iteration count for the password-based MAC algorithms. Defaults to `1000`.
        salt_length: The length of the random salt. Defaults to `16`.

    """

    digest: Optional[str] = None
    mac: Optional[str] = None
    iterations: int = 1000
    salt_length: int = 16

    @property
    def uses_mac(self) -> bool:
        """Return `True` if MAC-based protection is selected."""
        return self.mac is not None
