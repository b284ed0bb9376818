# Error taxonomy for wallet orchestration

from .utils import get_error_message


class WalletError(Exception):
    """Base class for every error surfaced by the orchestrator."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageError(WalletError):
    """All storage construction strategies were exhausted."""


class ModuleUnavailableError(WalletError):
    """The native wallet capability could not be loaded."""


class ValidationError(WalletError):
    pass


class InvalidInvoiceFormat(ValidationError):
    pass


class InsufficientBalance(ValidationError):
    pass


class QuoteError(WalletError):
    pass


class NetworkError(QuoteError):
    pass


class CannotRemoveActiveMint(WalletError):
    def __init__(self, mint_url: str):
        super().__init__(
            "Cannot remove the currently active mint. "
            "Please set another mint as active first."
        )
        self.mint_url = mint_url


class ConcurrencyRejected(WalletError):
    """A send was attempted while another one is in flight."""


def translate_error(exc: BaseException, action: str) -> WalletError:
    """
    Map an exception raised by the native capability onto the taxonomy.

    Errors already in the taxonomy are returned as-is. Connection, timeout
    and OS level failures become NetworkError, everything else QuoteError.
    """
    if isinstance(exc, WalletError):
        return exc
    message = f"{action} failed: {get_error_message(exc)}"
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return NetworkError(message)
    return QuoteError(message)
