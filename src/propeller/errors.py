"""Exception hierarchy for propeller swaps."""


class PropellerError(Exception):
    """Base error for every failure surfaced by a swap attempt."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(PropellerError):
    """Missing RPC endpoint, unknown chain or missing contract address."""


class WalletNotConnected(PropellerError):
    """No signing capability available for a chain the route needs."""

    def __init__(self, family: str):
        self.family = family
        super().__init__(f"Please connect your {family} wallet")


class InvalidSwapRequest(PropellerError):
    """Precondition failure detected before any on-chain call."""


class ConversionOutputUnparseable(PropellerError):
    """The pool add output amount could not be read from the program log."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"Could not parse propeller add output amount from log of {transaction_id}"
        )


class ChainRequestError(PropellerError):
    """An RPC submission or confirmation failed, or a transaction reverted."""


class TargetEventTimeout(PropellerError):
    """The target chain completion event did not arrive in time."""

    def __init__(self, memo_hex: str, timeout: float):
        self.memo_hex = memo_hex
        self.timeout = timeout
        super().__init__(
            f"Target chain event for memo {memo_hex} not observed after {timeout}s"
        )


class SwapInProgressError(PropellerError):
    """A swap is already running for this session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Swap already in progress for session {session_id}")


class VaaNotFoundError(PropellerError):
    """Signed bridge message could not be fetched from the guardians."""
