# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Utility functions for loading certificates, building certificate chains and validating them."""

import copy
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from robot.api.deco import keyword, not_keyword

from cmpclient import cryptoutils
from cmpclient.config_vars import VerifyParams
from cmpclient.exceptions import CertVerifyError, LoadCertsError

MAX_CHAIN_LENGTH = 10


@keyword(name="Load Certificates")
def load_certificates(file: str, desc: Optional[str] = None) -> List[x509.Certificate]:  # noqa D417 undocumented-param
    """Load all certificates contained in a PEM file, or the single certificate of a DER file.

    Arguments:
    ---------
        - `file`: The path to the file.
        - `desc`: A description of the certificates, used in error messages. Defaults to "certificates".

    Returns:
    -------
        - The loaded certificates, in the order of the file.

    Raises:
    ------
        - `LoadCertsError`: If the file cannot be read, cannot be decoded or contains no certificate.

    Examples:
    --------
    | ${certs}= | Load Certificates | ./data/trustanchors/root.pem |

    """
    desc = desc or "certificates"
    try:
        with open(file, "rb") as cert_file:
            data = cert_file.read()
    except OSError as err:
        raise LoadCertsError(f"Could not read {desc} from {file}", str(err)) from err

    try:
        if b"-----BEGIN" in data:
            certs = x509.load_pem_x509_certificates(data)
        else:
            certs = [x509.load_der_x509_certificate(data)]
    except ValueError as err:
        raise LoadCertsError(f"Could not decode {desc} from {file}", str(err)) from err

    if not certs:
        raise LoadCertsError(f"No {desc} found in {file}")

    logging.debug("Loaded %d %s from %s", len(certs), desc, file)
    return certs


@not_keyword
def is_self_signed(cert: x509.Certificate) -> bool:
    """Check if the certificate is self-signed, i.e. its own subject is its issuer and the signature verifies."""
    return cert.issuer == cert.subject and check_is_cert_signer(cert, cert)


@not_keyword
def check_is_cert_signer(cert: x509.Certificate, poss_issuer: x509.Certificate) -> bool:
    """Check if a certificate was signed by another certificate.

    :param cert: The certificate to verify.
    :param poss_issuer: The possible issuer certificate.
    :return: True if the certificate was signed by the possible issuer, otherwise False.
    """
    if cert.issuer != poss_issuer.subject:
        return False

    hash_alg = cert.signature_hash_algorithm.name if cert.signature_hash_algorithm is not None else None
    try:
        cryptoutils.verify_signature(
            public_key=poss_issuer.public_key(),
            signature=cert.signature,
            data=cert.tbs_certificate_bytes,
            hash_alg=hash_alg,
        )
        return True
    except (ValueError, TypeError, InvalidSignature) as err:
        logging.info("%s", err)
    return False


@not_keyword
def build_chain_from_list(ee_cert: x509.Certificate, certs: Iterable[x509.Certificate]) -> List[x509.Certificate]:
    """Build a certificate chain starting from the end-entity certificate towards the root certificate.

    :param ee_cert: The end-entity certificate to start the chain with.
    :param certs: The certificates that may contain the intermediate and root certificates.
    :return: The chain from the end-entity certificate on, as far as it could be completed.
    """
    certs = list(certs)
    chain = [ee_cert]
    current_cert = ee_cert

    for _ in range(min(len(certs), MAX_CHAIN_LENGTH)):
        if is_self_signed(current_cert):
            break
        issuer = next(
            (cert for cert in certs if cert not in chain and check_is_cert_signer(current_cert, cert)),
            None,
        )
        if issuer is None:
            logging.info("Could not complete the certificate chain for: %s", ee_cert.subject.rfc4514_string())
            break
        chain.append(issuer)
        current_cert = issuer

    return chain


@not_keyword
def public_key_matches(cert: x509.Certificate, public_key) -> bool:
    """Check if the certificate contains the given public key."""
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    return cert.public_key().public_bytes(serialization.Encoding.DER, fmt) == public_key.public_bytes(
        serialization.Encoding.DER, fmt
    )


@not_keyword
def get_subject_key_identifier(cert: x509.Certificate) -> Optional[bytes]:
    """Return the Subject Key Identifier of the certificate, if the extension is present."""
    try:
        return cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value.digest
    except x509.ExtensionNotFound:
        return None


class TrustStore:
    """A set of trust anchors together with the parameters for validating certificate chains.

    The store does not change during an operation; use `copy` to obtain an independent instance.
    """

    def __init__(self, anchors: Optional[Iterable[x509.Certificate]] = None, vpm: Optional[VerifyParams] = None):
        """Initialize the trust store.

        :param anchors: The trusted certificates.
        :param vpm: The parameters for the validation. Defaults to `VerifyParams()`.
        """
        self.anchors: List[x509.Certificate] = list(anchors or [])
        self.vpm = vpm or VerifyParams()

    def __len__(self) -> int:
        """Return the number of trust anchors."""
        return len(self.anchors)

    def __contains__(self, cert: x509.Certificate) -> bool:
        """Check if the certificate is one of the trust anchors."""
        return any(anchor == cert for anchor in self.anchors)

    def add_cert(self, cert: x509.Certificate) -> None:
        """Add a trust anchor, ignoring duplicates."""
        if cert not in self:
            self.anchors.append(cert)

    def copy(self) -> "TrustStore":
        """Return an independent copy of the trust store."""
        vpm = copy.copy(self.vpm)
        vpm.crls = list(self.vpm.crls)
        return TrustStore(self.anchors, vpm)

    def _check_time(self) -> datetime:
        check_time = self.vpm.check_time or datetime.now(timezone.utc)
        if check_time.tzinfo is None:
            check_time = check_time.replace(tzinfo=timezone.utc)
        return check_time

    def _check_validity(self, cert: x509.Certificate) -> None:
        check_time = self._check_time()
        if check_time < cert.not_valid_before_utc:
            raise CertVerifyError(f"Certificate is not yet valid: {cert.subject.rfc4514_string()}")
        if check_time > cert.not_valid_after_utc:
            raise CertVerifyError(f"Certificate has expired: {cert.subject.rfc4514_string()}")

    def _check_revocation(self, cert: x509.Certificate, issuer: x509.Certificate) -> None:
        crls = [crl for crl in self.vpm.crls if crl.issuer == cert.issuer]
        if not crls:
            raise CertVerifyError(f"No CRL found for issuer: {cert.issuer.rfc4514_string()}")

        for crl in crls:
            if not crl.is_signature_valid(issuer.public_key()):
                raise CertVerifyError(f"Invalid CRL signature of issuer: {cert.issuer.rfc4514_string()}")
            if crl.get_revoked_certificate_by_serial_number(cert.serial_number) is not None:
                raise CertVerifyError(f"Certificate is revoked: {cert.subject.rfc4514_string()}")

    def _find_issuer(self, cert: x509.Certificate, candidates: Iterable[x509.Certificate]) -> Optional[x509.Certificate]:
        for candidate in candidates:
            if check_is_cert_signer(cert, candidate):
                return candidate
        return None

    @staticmethod
    def _check_ca_constraints(issuer: x509.Certificate, ca_certs_below: int, is_anchor: bool) -> None:
        """Check that the issuer may sign certificates.

        A trust anchor without `BasicConstraints` is accepted (e.g. a v1 root certificate),
        an intermediate certificate must be marked as CA.

        :param issuer: The issuer certificate.
        :param ca_certs_below: The number of intermediate CA certificates between the issuer and the end entity.
        :param is_anchor: Whether the issuer is a trust anchor.
        :raises CertVerifyError: If the issuer is not a CA, lacks `keyCertSign` or its path length is exceeded.
        """
        name = issuer.subject.rfc4514_string()
        try:
            basic_constraints = issuer.extensions.get_extension_for_class(x509.BasicConstraints).value
        except x509.ExtensionNotFound:
            basic_constraints = None

        if basic_constraints is None:
            if not is_anchor:
                raise CertVerifyError(
                    f"The issuer certificate is not a CA certificate: {name}",
                    error_details="missing BasicConstraints extension",
                )
        elif not basic_constraints.ca:
            raise CertVerifyError(f"The issuer certificate is not a CA certificate: {name}")
        elif basic_constraints.path_length is not None and ca_certs_below > basic_constraints.path_length:
            raise CertVerifyError(
                f"The path length constraint of the issuer certificate is exceeded: {name}",
                error_details=f"pathLenConstraint: {basic_constraints.path_length}, CA certificates: {ca_certs_below}",
            )

        try:
            key_usage = issuer.extensions.get_extension_for_class(x509.KeyUsage).value
        except x509.ExtensionNotFound:
            return
        if not key_usage.key_cert_sign:
            raise CertVerifyError(f"The issuer certificate is not allowed to sign certificates: {name}")

    def verify_cert_chain(
        self, cert: x509.Certificate, untrusted: Optional[Iterable[x509.Certificate]] = None
    ) -> List[x509.Certificate]:
        """Build and validate the chain of the certificate up to one of the trust anchors.

        :param cert: The certificate to validate.
        :param untrusted: Intermediate certificates which may be used to build the chain.
        :return: The validated chain, starting with `cert` and ending with the trust anchor.
        :raises CertVerifyError: If no valid chain to a trust anchor could be built.
        """
        if not self.anchors:
            raise CertVerifyError("The trust store does not contain any trust anchor")

        pool = list(untrusted or [])
        chain = [cert]
        current = cert
        for depth in range(MAX_CHAIN_LENGTH):
            self._check_validity(current)
            if current in self and (self.vpm.partial_chain or is_self_signed(current)):
                return chain

            issuer = self._find_issuer(current, self.anchors)
            from_anchors = issuer is not None
            if issuer is None:
                issuer = self._find_issuer(current, [c for c in pool if c not in chain])
            if issuer is None:
                raise CertVerifyError(
                    f"Unable to get the issuer certificate of: {current.subject.rfc4514_string()}",
                    error_details=f"issuer: {current.issuer.rfc4514_string()}",
                )

            self._check_ca_constraints(issuer, len(chain) - 1, is_anchor=from_anchors)
            if self.vpm.crl_check_all or (self.vpm.crl_check and depth == 0):
                self._check_revocation(current, issuer)

            chain.append(issuer)
            if from_anchors:
                self._check_validity(issuer)
                return chain
            current = issuer

        raise CertVerifyError("The certificate chain is too long")


@keyword(name="Load Truststore")
def load_truststore(  # noqa D417 undocumented-param
    trusted_certs: str, desc: Optional[str] = None, vpm: Optional[VerifyParams] = None
) -> TrustStore:
    """Load a trust store from a comma separated list of certificate files.

    Arguments:
    ---------
        - `trusted_certs`: The files containing the trusted certificates, e.g. "root.pem,sub_ca.pem".
        - `desc`: A description of the trust store, used in error messages. Defaults to "trusted certificates".
        - `vpm`: The parameters for validating certificate chains. Defaults to `None`.

    Returns:
    -------
        - The loaded `TrustStore`.

    Raises:
    ------
        - `LoadCertsError`: If a file cannot be loaded or no certificate was found.

    Examples:
    --------
    | ${store}= | Load Truststore | ./data/trustanchors/root.pem |

    """
    desc = desc or "trusted certificates"
    files = [file.strip() for file in trusted_certs.split(",") if file.strip()]
    if not files:
        raise LoadCertsError(f"No files given for loading {desc}")

    store = TrustStore(vpm=vpm)
    for file in files:
        for cert in load_certificates(file, desc=desc):
            store.add_cert(cert)

    logging.info("Loaded %d %s", len(store), desc)
    return store
