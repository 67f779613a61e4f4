"""
Recompute a dispute game's output root from L2 data and match it against the
game's on-chain root claim.

Two output root versions are in use on OP-Stack deployments:

* ``0x00`` (legacy): the message passer storage root must come from an
  `eth_getProof` account proof of the `L2ToL1MessagePasser`.
* ``0x01`` (Isthmus): the block header's ``withdrawalsRoot`` already holds
  that storage root, so no separate proof is needed.

Which one a deployment uses is not assumed; candidates are tried in the
configured order and the first match wins.
"""

import logging
from typing import Optional, Sequence

from hexbytes import HexBytes

from .chain_reader import ChainReader
from .custom_errors import (
    OutputRootMismatch,
    ProofUnavailable,
    TransportError,
    UnsupportedMethod,
)
from .encoding import hash_output_root_proof, version_bytes
from .types import DisputeGame, OutputRootProof, StorageProof, VerifiedOutputRoot
from .utils.config import (
    OUTPUT_ROOT_VERSION_ISTHMUS,
    OUTPUT_ROOT_VERSION_LEGACY,
)

logger = logging.getLogger(__name__)

DEFAULT_VERSIONS = (OUTPUT_ROOT_VERSION_ISTHMUS, OUTPUT_ROOT_VERSION_LEGACY)


def verify_output_root(
    reader: ChainReader,
    game: DisputeGame,
    root_claim: bytes,
    versions: Sequence[int] = DEFAULT_VERSIONS,
    slots: Sequence[bytes] = (),
) -> VerifiedOutputRoot:
    """
    Find the output root version whose preimage hashes to `root_claim`.

    Parameters
    ----------
    reader : ChainReader

    game : DisputeGame
        Game selected by the locator; its checkpoint block is the block the
        output root is rebuilt for.

    root_claim : bytes
        The game's on-chain `rootClaim()`.

    versions : Sequence[int], optional
        Versions to try, in order.

    slots : Sequence[bytes], optional
        Storage slots to include when a legacy storage proof is fetched, so
        the same proof can be reused as the withdrawal proof.

    Returns
    -------
    VerifiedOutputRoot
        Matching version, the `OutputRootProof` struct and, for the legacy
        version, the storage proof that supplied the storage root.
    """
    if not versions:
        raise ValueError("At least one output root version is required")

    block_number = game["l2_block_number"]
    header = reader.get_l2_block(block_number)

    state_root = header.get("stateRoot")
    block_hash = header.get("hash")

    if not state_root:
        raise TransportError(
            "eth_getBlockByNumber", f"Error finding `stateRoot` in block {block_number}"
        )

    if not block_hash:
        raise TransportError(
            "eth_getBlockByNumber", f"Error finding `hash` in block {block_number}"
        )

    claim = HexBytes(root_claim)
    unavailable: Optional[UnsupportedMethod] = None

    for version in versions:
        storage_proof: Optional[StorageProof] = None

        if version == OUTPUT_ROOT_VERSION_ISTHMUS:
            withdrawals_root = header.get("withdrawalsRoot")

            if not withdrawals_root:
                logger.info("Block %d has no `withdrawalsRoot`, skipping version 0x01", block_number)
                continue

            storage_root = bytes(withdrawals_root)
        elif version == OUTPUT_ROOT_VERSION_LEGACY:
            try:
                storage_proof = reader.get_storage_proof(
                    reader.message_passer_address, slots, block_number
                )
            except UnsupportedMethod as e:
                logger.warning("Cannot evaluate version 0x00: %s", e)
                unavailable = e
                continue

            storage_root = bytes(storage_proof["storage_hash"])
        else:
            raise ValueError(f"Unknown output root version: {version}")

        proof = OutputRootProof(
            version=version_bytes(version),
            stateRoot=bytes(state_root),
            messagePasserStorageRoot=storage_root,
            latestBlockhash=bytes(block_hash),
        )

        computed = hash_output_root_proof(proof)

        if computed == claim:
            logger.info(
                "Output root of game %d matched with version 0x%02x", game["index"], version
            )
            return VerifiedOutputRoot(version, proof, storage_proof)

        logger.info(
            "Version 0x%02x: computed %s != root claim %s",
            version,
            computed.to_0x_hex(),
            claim.to_0x_hex(),
        )

    if unavailable is not None:
        raise ProofUnavailable(
            f"No version matched game {game['index']} and version 0x00 needs `eth_getProof`, "
            "which no configured L2 endpoint supports",
            unavailable,
        )

    raise OutputRootMismatch(
        f"Claim doesn't match for game {game['index']} at block {block_number}: "
        f"tried versions {[hex(v) for v in versions]}, root claim {claim.to_0x_hex()}"
    )
