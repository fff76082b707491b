# SPDX-FileCopyrightText: Copyright 2024 Siemens AG
#
# SPDX-License-Identifier: Apache-2.0

"""Contains the custom exceptions raised by the CMP client."""

from typing import List, Optional, Union

from cmpclient.enums import ErrorCode


class CMPClientError(Exception):
    """Base class for CMP client errors."""

    error_code: ErrorCode = ErrorCode.OTHER_LIB_ERR
    error_details: List[str]

    def __init__(self, message: str, error_details: Optional[Union[List[str], str]] = None):
        """Initialize the exception with the message.

        :param message: The message to display.
        :param error_details: Additional details about the error.
        """
        self.message = message
        if error_details is None:
            self.error_details = []
        elif isinstance(error_details, str):
            self.error_details = [error_details]
        else:
            self.error_details = list(error_details)
        super().__init__(message)

    def get_error_code(self) -> ErrorCode:
        """Return the error code."""
        return self.error_code

    def get_error_details(self) -> List[str]:
        """Return the error details."""
        return self.error_details


class InvalidParameters(CMPClientError):
    """Raised when the caller supplied a contradictory or incomplete configuration."""

    error_code = ErrorCode.INVALID_PARAMETERS


class InvalidContext(CMPClientError):
    """Raised when an operation is invoked on a context missing a required prerequisite."""

    error_code = ErrorCode.INVALID_CONTEXT


class CredentialLoadError(CMPClientError):
    """Raised when a private key or credentials could not be loaded."""

    error_code = ErrorCode.LOAD_CREDS


class LoadCertsError(CMPClientError):
    """Raised when certificates, CSRs, CRLs or a trust store could not be loaded."""

    error_code = ErrorCode.LOAD_CERTS


class TransportError(CMPClientError):
    """Raised on connection failure, timeout or stream closure during an exchange."""

    error_code = ErrorCode.TRANSPORT

    def __init__(self, message: str, error_details: Optional[Union[List[str], str]] = None, timeout: bool = False):
        """Initialize the exception.

        :param message: The message to display.
        :param error_details: Additional details about the error.
        :param timeout: Whether the failure was caused by an expired timeout.
        """
        self.timeout = timeout
        super().__init__(message, error_details)


class TransportUnsupported(TransportError):
    """Raised when the platform lacks network socket support."""


class ProtocolRejection(CMPClientError):
    """Raised when the peer returned a non-accepted `PKIStatus`."""

    error_code = ErrorCode.PROTOCOL_REJECTION

    def __init__(self, message: str, status=None, error_details: Optional[Union[List[str], str]] = None):
        """Initialize the exception with the received status.

        :param message: The message to display.
        :param status: The `PKIStatusRecord` reported by the peer.
        :param error_details: Additional details about the error.
        """
        self.status = status
        if error_details is None and status is not None:
            error_details = list(status.texts)
        super().__init__(message, error_details)

    def get_failinfo(self) -> str:
        """Return the failure info bit names, as a comma separated string."""
        if self.status is None:
            return ""
        return ",".join(self.status.failinfo)


class CertVerifyError(CMPClientError):
    """Raised when the issued certificate or the response protection failed validation."""

    error_code = ErrorCode.CERT_VERIFY


class OtherLibraryError(CMPClientError):
    """Raised for failures of a collaborating library with no finer classification."""

    error_code = ErrorCode.OTHER_LIB_ERR

    def __init__(self, message: str, lib_error: Optional[BaseException] = None, lib_code: Optional[int] = None):
        """Initialize the exception and keep the original error as payload.

        :param message: The message to display.
        :param lib_error: The exception raised by the library.
        :param lib_code: An error code reported by the library, if any.
        """
        self.lib_error = lib_error
        self.lib_code = lib_code
        details = [f"{type(lib_error).__name__}: {lib_error}"] if lib_error is not None else None
        super().__init__(message, details)


class GenerateKeyError(CMPClientError):
    """Raised when a new key pair could not be generated."""

    error_code = ErrorCode.GENERATE_KEY


class StoreCredentialsError(CMPClientError):
    """Raised when newly enrolled credentials could not be stored."""

    error_code = ErrorCode.STORE_CREDS


class RecipientError(CMPClientError):
    """Raised when the recipient of the messages cannot be determined or parsed."""

    error_code = ErrorCode.RECIPIENT
