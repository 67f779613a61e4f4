from typing import Optional


class ProverError(Exception):
    """Base Exception for withdrawal proving operations."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error
        # pipeline stage that raised, filled in by `OPProver`
        self.stage: Optional[str] = None


class InvalidChainError(ProverError):
    """Raised when the connected chain or contract table does not match the configuration"""

    pass


class ConfigurationError(ProverError, ValueError):
    """Raised when an environment setting or the signing key is missing or malformed"""

    pass


class TransportError(ProverError):
    """Raised when an RPC call fails at the transport or node level."""

    def __init__(
        self, method: str, message: str, original_error: Optional[Exception] = None
    ):
        super().__init__(f"`{method}` failed: {message}", original_error)
        self.method = method


class UnsupportedMethod(TransportError):
    """Raised when the node does not implement the requested RPC method"""

    pass


class RPCTimeout(TransportError):
    """Raised when the endpoint does not answer within the configured timeout"""

    pass


class NotFound(ProverError):
    """Raised when on-chain state the pipeline needs does not exist."""

    pass


class TransactionNotFound(NotFound):
    """Raised when the L2 transaction is absent or not yet included"""

    pass


class EventNotFound(NotFound):
    """Raised when the transaction did not emit a `MessagePassed` event"""

    pass


class IntegrityError(ProverError):
    """Raised when a recomputed hash does not match its on-chain commitment. Never submit after this."""

    pass


class OutputRootMismatch(IntegrityError):
    """Raised when no candidate output root version reproduces the game's root claim"""

    pass


class ProofUnavailable(ProverError):
    """Raised when no configured L2 endpoint can serve the storage proof"""

    pass


class ProofRejected(ProverError):
    """Raised when the proving call reverts in simulation or broadcast."""

    def __init__(self, reason: str, original_error: Optional[Exception] = None):
        super().__init__(f"proveWithdrawalTransaction rejected: {reason}", original_error)
        self.reason = reason


class ExpectedOutcome(ProverError):
    """Outcomes that need caller action (wait, or move on to finalization) rather than a fix."""

    pass


class NoCoveringGame(ExpectedOutcome):
    """Raised when no dispute game in the lookback window covers the withdrawal block"""

    def __init__(self, l2_block_number: int, message: str):
        super().__init__(message)
        self.l2_block_number = l2_block_number


class AlreadyProven(ExpectedOutcome):
    """Raised when the withdrawal already has recorded proof submitters"""

    def __init__(self, withdrawal_hash: str, num_submitters: int):
        super().__init__(
            f"Withdrawal {withdrawal_hash} already proven by {num_submitters} submitter(s)"
        )
        self.withdrawal_hash = withdrawal_hash
        self.num_submitters = num_submitters
