"""
Hashing primitives shared by every stage of the prover.

All functions are pure. Field order and ABI types are fixed by the
`Hashing.hashWithdrawal` and `Hashing.hashOutputRootProof` libraries of the
OP-Stack contracts and must not change.
"""

from typing import Union

from eth_abi.abi import encode
from hexbytes import HexBytes
from web3 import Web3

from .types import OutputRootProof, WithdrawalTransaction
from .utils.config import SENT_MESSAGES_SLOT

WITHDRAWAL_ABI_TYPES = ["uint256", "address", "address", "uint256", "uint256", "bytes"]


def content_hash(withdrawal: WithdrawalTransaction) -> HexBytes:
    """
    Compute the withdrawal hash: `keccak256(abi.encode(nonce, sender, target,
    value, gasLimit, data))`.
    """
    return HexBytes(Web3.keccak(encode(WITHDRAWAL_ABI_TYPES, list(withdrawal))))


def version_bytes(version: Union[int, bytes]) -> bytes:
    """Left-pad a single-byte version tag to 32 bytes."""
    if isinstance(version, int):
        if not 0 <= version <= 0xFF:
            raise ValueError(f"Output root version must fit in one byte, got {version}")

        return version.to_bytes(32, byteorder="big")

    raw = bytes(version)

    if len(raw) == 32:
        return raw

    if len(raw) != 1:
        raise ValueError(f"Output root version must be 1 or 32 bytes, got {len(raw)}")

    return raw.rjust(32, b"\x00")


def _word(name: str, value: bytes) -> bytes:
    raw = bytes(value)

    if len(raw) != 32:
        raise ValueError(f"`{name}` must be 32 bytes, got {len(raw)}")

    return raw


def output_root(
    version: Union[int, bytes],
    state_root: bytes,
    storage_root: bytes,
    block_hash: bytes,
) -> HexBytes:
    """
    Compute `keccak256(version ‖ stateRoot ‖ messagePasserStorageRoot ‖
    latestBlockhash)` over the 128-byte concatenation.
    """
    preimage = (
        version_bytes(version)
        + _word("state_root", state_root)
        + _word("storage_root", storage_root)
        + _word("block_hash", block_hash)
    )

    return HexBytes(Web3.keccak(preimage))


def hash_output_root_proof(proof: OutputRootProof) -> HexBytes:
    return output_root(
        proof.version,
        proof.stateRoot,
        proof.messagePasserStorageRoot,
        proof.latestBlockhash,
    )


def storage_slot_key(withdrawal_hash: bytes) -> HexBytes:
    """
    Storage slot of `sentMessages[withdrawal_hash]` in the
    `L2ToL1MessagePasser`: `keccak256(withdrawal_hash ‖ uint256(0))`.
    """
    return HexBytes(
        Web3.keccak(
            _word("withdrawal_hash", withdrawal_hash)
            + SENT_MESSAGES_SLOT.to_bytes(32, byteorder="big")
        )
    )
