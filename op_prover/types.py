from enum import IntEnum, StrEnum
from typing import List, NamedTuple, Optional, TypedDict

from eth_typing import ChecksumAddress
from hexbytes import HexBytes


class WithdrawalTransaction(NamedTuple):
    """
    Field order matches the `Types.WithdrawalTransaction` struct so the tuple
    can be passed to the portal as-is.
    """

    nonce: int
    sender: ChecksumAddress
    target: ChecksumAddress
    value: int
    gasLimit: int
    data: bytes


class ExtractedWithdrawal(TypedDict):
    withdrawal: WithdrawalTransaction
    withdrawal_hash: HexBytes
    l2_block_number: int


class GameStatus(IntEnum):
    IN_PROGRESS = 0
    CHALLENGER_WINS = 1
    DEFENDER_WINS = 2


class DisputeGame(TypedDict):
    index: int
    game_type: int
    timestamp: int
    proxy: ChecksumAddress
    l2_block_number: int


class OutputRootProof(NamedTuple):
    """
    - `version`: 32-byte left-padded version tag (`0x00` legacy, `0x01` Isthmus).
    - `stateRoot`: 32-byte post-state root of the L2 block.
    - `messagePasserStorageRoot`: 32-byte storage root of the
    `L2ToL1MessagePasser` contract in that block.
    - `latestBlockhash`: 32-byte canonical block hash.
    """

    version: bytes
    stateRoot: bytes
    messagePasserStorageRoot: bytes
    latestBlockhash: bytes


class StorageProof(TypedDict):
    address: ChecksumAddress
    storage_hash: HexBytes
    account_proof: List[bytes]
    storage_proof: List[bytes]


class VerifiedOutputRoot(NamedTuple):
    version: int
    proof: OutputRootProof
    storage_proof: Optional[StorageProof]


class ProveArgs(NamedTuple):
    """Arguments of `OptimismPortal2.proveWithdrawalTransaction`, in order."""

    withdrawal: WithdrawalTransaction
    dispute_game_index: int
    output_root_proof: OutputRootProof
    withdrawal_proof: List[bytes]


class ProvenWithdrawalResponse(TypedDict):
    dispute_game_address: ChecksumAddress
    timestamp: int


class ProveStatus(StrEnum):
    SUBMITTED = "submitted"
    ALREADY_PROVEN = "already_proven"
    NO_COVERING_GAME = "no_covering_game"


class ProveResult(NamedTuple):
    status: ProveStatus
    withdrawal_hash: HexBytes
    game_index: Optional[int] = None
    tx_hash: Optional[str] = None


class Stage(StrEnum):
    EXTRACT = "extract"
    LOCATE = "locate"
    VERIFY = "verify"
    ASSEMBLE = "assemble"
    SUBMIT = "submit"
