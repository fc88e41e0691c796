"""Custom exceptions for the Forever Paws client core"""

from typing import Optional


class ForeverPawsError(Exception):
    """Base exception for Forever Paws"""
    pass


class NetworkError(ForeverPawsError):
    """Transport-level failure after every retry tier was exhausted"""

    TLS_HANDSHAKE = "tls_handshake"
    HOST_UNREACHABLE = "host_unreachable"
    TIMEOUT = "timeout"
    CONNECTION_RESET = "connection_reset"
    UNKNOWN = "unknown"

    def __init__(self, message: str, kind: str = UNKNOWN, attempts: int = 0):
        self.kind = kind
        self.attempts = attempts
        super().__init__(message)


class ApiError(ForeverPawsError):
    """HTTP-level error returned by the gateway or the backend"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationFailed(ForeverPawsError):
    """Bad credentials or an invalid/expired token. Never retried."""
    pass


class NotAuthenticated(ForeverPawsError):
    """Operation requires a signed-in user"""
    pass


class SessionSuperseded(ForeverPawsError):
    """The token an operation started with was replaced by a later sign-in/sign-out"""
    pass


class InvalidInput(ForeverPawsError):
    """Input rejected before any network call"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class EmailAlreadyRegistered(ForeverPawsError):
    """Sign-up attempted with an email that already has an account"""
    pass


class EmptyCart(ForeverPawsError):
    """Checkout attempted with no items in the cart"""
    pass


class CartItemNotFound(ForeverPawsError):
    """Cart item does not exist for the current user"""
    pass


class OrderNotFound(ForeverPawsError):
    """Order does not exist for the current user"""
    pass


class InvalidStatusTransition(ForeverPawsError):
    """Order or payment status change not allowed by the order state machine"""
    pass


class CheckoutError(ForeverPawsError):
    """Checkout could not be committed; the cart is left untouched"""
    pass


class PersistenceError(ForeverPawsError):
    """Local store read/write failure"""
    pass


class CredentialStoreError(ForeverPawsError):
    """Credential store write failure surfaced to the caller"""
    pass


class ConfigError(ForeverPawsError):
    """Configuration error"""
    pass


CONNECTIVITY_MESSAGE = "Unable to reach Forever Paws. Check your connection and try again."


def user_message(exc: Exception) -> str:
    """Map an exception to the message shown to the user."""
    if isinstance(exc, NetworkError):
        return CONNECTIVITY_MESSAGE
    if isinstance(exc, AuthenticationFailed):
        return "Incorrect email or password, or your session has expired. Please sign in again."
    if isinstance(exc, InvalidInput):
        return exc.reason
    if isinstance(exc, EmailAlreadyRegistered):
        return "This email is already registered. Try signing in instead."
    if isinstance(exc, EmptyCart):
        return "Your cart is empty."
    if isinstance(exc, (CheckoutError, PersistenceError)):
        return "We could not place your order. Your cart has not been changed."
    if isinstance(exc, OrderNotFound):
        return "Order not found."
    if isinstance(exc, NotAuthenticated):
        return "Please sign in to continue."
    if isinstance(exc, ApiError):
        return "The server could not complete the request. Please try again later."
    return "Something went wrong. Please try again."
