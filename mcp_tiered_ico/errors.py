"""
Custom Exception Classes for the Tiered ICO Engine

This module defines the exception classes raised by the sale engine and its
collaborators (ledger, timelock, treasury). Every error aborts the operation that
raised it; the engine rolls back any partial effect before the exception reaches
the caller, so catching one of these never leaves a half-applied contribution.

Exception Categories:
- Authorization Errors: caller is not the owner/controller
- Lifecycle Errors: one-shot transitions re-entered, phase not reached or passed
- Parameter Errors: zero addresses, zero or negative numeric arguments
- Supply Errors: ledger ceiling or sale cap breached
- Arithmetic Errors: checked uint256 arithmetic failures
- Host Errors: configuration, validation and rate limiting in the MCP server

Usage:
    Catch SaleError to handle any engine-side rejection, or a specific subclass
    when the caller can act on it (e.g. retry a deposit with a smaller amount
    after CapExceeded).
"""


class SaleError(Exception):
    """Base class for every error raised by the sale engine and its collaborators."""


# --- Authorization ---

class Unauthorized(SaleError):
    """Raised when the caller fails the owner or owner-or-controller check."""


# --- Lifecycle ---

class AlreadyInitialized(SaleError):
    """Raised when a one-shot transition (parameters, start) is attempted twice."""


class AlreadyComputed(SaleError):
    """Raised when the supply cap plan has already been derived."""


class NotReady(SaleError):
    """Raised when the phase required by an operation has not been reached."""


class SaleNotStarted(SaleError):
    """Raised when contributions arrive before the sale has been started."""


class SaleClosed(SaleError):
    """Raised when contributions arrive after the sale has ended."""


# --- Parameters and addresses ---

class InvalidParameter(SaleError):
    """Raised for zero addresses and zero or non-positive numeric arguments."""


class InvalidAddress(SaleError):
    """Raised by the ledger when minting or transferring to the zero address."""


class TimelockNotSet(SaleError):
    """Raised when locked tokens are minted before a timelock address is registered."""


# --- Balances and supply ---

class CapExceeded(SaleError):
    """Raised when an issuance or contribution would breach its ceiling."""


class AccountFrozen(SaleError):
    """Raised when a frozen account tries to move tokens."""


class InsufficientBalance(SaleError):
    """Raised when a token balance or allowance is too small for a transfer."""


class InsufficientFundsError(SaleError):
    """Raised when a contributor's funds do not cover the contributed amount."""


# --- Arithmetic ---

class ArithmeticOverflow(SaleError, ArithmeticError):
    """Raised when a result exceeds the uint256 range."""


class ArithmeticUnderflow(SaleError, ArithmeticError):
    """Raised when a result would be negative."""


class DivisionByZero(SaleError, ArithmeticError):
    """Raised on division by zero."""


# --- Host ---

class RateLimitExceededError(Exception):
    """Raised when a contributor exceeds the deposit rate limit."""


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""


class ValidationError(Exception):
    """Raised when input validation fails."""
