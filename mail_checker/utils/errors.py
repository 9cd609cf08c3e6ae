"""
Centralized error hierarchy for the webmail checker.

This module provides a base exception class and specific error types for
the session engine, the login flow and the mailbox parser, along with a
helper for converting technical errors to user-friendly messages.

Errors fall in three groups:

- non-fatal: ``CookieDomainError`` (the cookie is dropped, work continues)
- fatal to a check and invalidating the session: credential lookup,
  login loop, missing login form, network failure, deadline
- fatal to a check but keeping the session: ``MalformedMailboxDataError``
  and ``CheckCancelledError``
"""
from typing import Union


class MailCheckerError(Exception):
    """
    Base exception class for all webmail checker errors.

    All application-specific exceptions inherit from this class to enable
    centralized error handling and user-friendly message mapping.
    """
    pass


class CookieDomainError(MailCheckerError):
    """Raised when a cookie's domain is not acceptable for the request host."""
    pass


class NetworkError(MailCheckerError):
    """Raised when an HTTP exchange fails at the network level."""
    pass


class CredentialLookupError(MailCheckerError):
    """Raised when the secret for an account cannot be retrieved."""
    pass


class CredentialNotFoundError(CredentialLookupError):
    """Raised when no secret is stored for the account and realm."""
    pass


class CredentialAccessDeniedError(CredentialLookupError):
    """Raised when a stored secret exists but cannot be read."""
    pass


class LoginError(MailCheckerError):
    """Base class for failures of the login flow itself."""
    pass


class LoginFormError(LoginError):
    """Raised when the login page does not carry a usable form."""
    pass


class LoginLoopError(LoginError):
    """Raised when submitting credentials lands on the login page again."""
    pass


class LoginURLRequestError(MailCheckerError, ValueError):
    """Raised when the login flow is asked to fetch the login page itself."""
    pass


class MalformedMailboxDataError(MailCheckerError):
    """Raised when the mailbox page does not carry the expected script data."""
    pass


class CheckCancelledError(MailCheckerError):
    """Raised inside a check that was superseded or cancelled."""
    pass


class CheckTimeoutError(NetworkError):
    """Raised when a check runs past its overall deadline."""
    pass


class CheckInProgressError(MailCheckerError):
    """Raised when a check is requested while another one is running."""
    pass


def invalidates_session(exc: BaseException) -> bool:
    """
    Tell whether an error means the account must be logged out.

    Args:
        exc: The exception raised by a check.

    Returns:
        True for credential, login and network failures (and for anything
        unexpected); False for parse errors and cancellation, which leave
        the authenticated session intact.
    """
    if isinstance(exc, (MalformedMailboxDataError, CheckCancelledError,
                        CheckInProgressError)):
        return False
    return True


def human_friendly_message(exc: Union[MailCheckerError, Exception]) -> str:
    """
    Convert technical error exceptions to user-friendly messages.

    Args:
        exc: The exception to convert.

    Returns:
        A user-friendly error message string.
    """
    error_msg = str(exc) if str(exc) else ""

    if isinstance(exc, CredentialNotFoundError):
        return (
            "No saved password was found for this account. "
            "Add the account again to store its password."
        )
    elif isinstance(exc, CredentialAccessDeniedError):
        return (
            "The saved password for this account could not be read. "
            "The key file may have changed; add the account again."
        )
    elif isinstance(exc, LoginLoopError):
        return (
            "Sign-in was rejected. Please check:\n\n"
            "• Your email address and password are correct\n"
            "• The account does not require an extra verification step"
        )
    elif isinstance(exc, LoginFormError):
        return (
            "The sign-in page has an unexpected layout and could not be "
            "filled in automatically."
        )
    elif isinstance(exc, CheckTimeoutError):
        return (
            "Checking mail took too long. This might be due to a slow "
            "connection or server issues. Please try again."
        )
    elif isinstance(exc, NetworkError):
        return (
            "Could not reach the mail server. Please check your internet "
            "connection and try again."
        )
    elif isinstance(exc, MalformedMailboxDataError):
        return (
            "You are signed in, but the mailbox page could not be read. "
            "The service may have changed its page layout."
        )
    elif isinstance(exc, CheckCancelledError):
        return "The mail check was cancelled."
    elif isinstance(exc, CheckInProgressError):
        return "A mail check is already running for this account."
    elif isinstance(exc, MailCheckerError):
        if error_msg:
            return f"An error occurred: {error_msg}"
        return "An unexpected error occurred. Please try again."
    elif isinstance(exc, ConnectionError):
        return (
            "Could not connect to the server. Please check your internet "
            "connection and try again."
        )
    elif isinstance(exc, TimeoutError):
        return (
            "The operation timed out. This might be due to a slow connection "
            "or server issues. Please try again."
        )
    elif isinstance(exc, ValueError):
        return f"Invalid input: {error_msg}"

    error_msg = error_msg or "Unknown error"
    return f"An error occurred: {error_msg}"
