# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Loaders for certificate signing requests and certificate revocation lists."""

import logging
from typing import List, Optional, Union

import requests
from cryptography import x509
from robot.api.deco import keyword, not_keyword

from cmpclient.exceptions import LoadCertsError


@keyword(name="Load CSR")
def load_csr(file: str, desc: Optional[str] = None) -> x509.CertificateSigningRequest:  # noqa D417 undocumented-param
    """Load a PKCS#10 certificate signing request from a PEM or DER file.

    Arguments:
    ---------
        - `file`: The path to the file.
        - `desc`: A description of the CSR, used in error messages. Defaults to "CSR".

    Returns:
    -------
        - The loaded CSR.

    Raises:
    ------
        - `LoadCertsError`: If the file cannot be read or decoded, or its signature is invalid.

    Examples:
    --------
    | ${csr}= | Load CSR | ./data/csrs/client.csr |

    """
    desc = desc or "CSR"
    try:
        with open(file, "rb") as csr_file:
            data = csr_file.read()
    except OSError as err:
        raise LoadCertsError(f"Could not read {desc} from {file}", str(err)) from err

    try:
        if b"-----BEGIN" in data:
            csr = x509.load_pem_x509_csr(data)
        else:
            csr = x509.load_der_x509_csr(data)
    except ValueError as err:
        raise LoadCertsError(f"Could not decode {desc} from {file}", str(err)) from err

    if not csr.is_signature_valid:
        raise LoadCertsError(f"The signature of the {desc} in {file} is invalid")
    return csr


@not_keyword
def fetch_value_from_location(location: str, timeout: Union[str, int] = 20) -> bytes:
    """Fetch some value from a given url.

    :param location: The location to fetch the value from.
    :param timeout: The timeout for the request in seconds, `0` means no limit. Default is `20` seconds.
    :return: The fetched value as bytes.
    :raise LoadCertsError: If the data cannot be fetched.
    """
    timeout = int(timeout) or None
    try:
        response = requests.get(location, timeout=timeout)
        response.raise_for_status()
        return response.content
    except requests.RequestException as err:
        raise LoadCertsError(f"Failed to fetch value from {location}", str(err)) from err


def _decode_crls(data: bytes, source: str, desc: str) -> List[x509.CertificateRevocationList]:
    try:
        if b"-----BEGIN X509 CRL-----" not in data:
            return [x509.load_der_x509_crl(data)]
        crls = []
        for block in data.split(b"-----END X509 CRL-----")[:-1]:
            start = block.index(b"-----BEGIN X509 CRL-----")
            crls.append(x509.load_pem_x509_crl(block[start:] + b"-----END X509 CRL-----\n"))
        return crls
    except ValueError as err:
        raise LoadCertsError(f"Could not decode {desc} from {source}", str(err)) from err


@keyword(name="Load CRLs")
def load_crls(  # noqa D417 undocumented-param
    files: str, timeout: Union[str, int] = 0, desc: Optional[str] = None
) -> List[x509.CertificateRevocationList]:
    """Load CRLs from a comma separated list of files or HTTP(S) URLs.

    Arguments:
    ---------
        - `files`: The sources, e.g. "./data/crls/ca.crl,http://ca.example.com/ca.crl".
        - `timeout`: The timeout in seconds for fetching a CRL by URL, `0` means no limit. Defaults to `0`.
        - `desc`: A description of the CRLs, used in error messages. Defaults to "CRLs".

    Returns:
    -------
        - The loaded CRLs.

    Raises:
    ------
        - `LoadCertsError`: If a source cannot be loaded or contains no CRL.

    Examples:
    --------
    | ${crls}= | Load CRLs | ./data/crls/ca.crl |
    | ${crls}= | Load CRLs | http://ca.example.com/ca.crl | timeout=10 |

    """
    desc = desc or "CRLs"
    sources = [source.strip() for source in files.split(",") if source.strip()]
    if not sources:
        raise LoadCertsError(f"No sources given for loading {desc}")

    crls = []
    for source in sources:
        if source.startswith(("http://", "https://")):
            data = fetch_value_from_location(source, timeout=timeout)
        else:
            try:
                with open(source, "rb") as crl_file:
                    data = crl_file.read()
            except OSError as err:
                raise LoadCertsError(f"Could not read {desc} from {source}", str(err)) from err

        loaded = _decode_crls(data, source, desc)
        if not loaded:
            raise LoadCertsError(f"No {desc} found in {source}")
        logging.info("Loaded %d %s from %s", len(loaded), desc, source)
        crls.extend(loaded)

    return crls
