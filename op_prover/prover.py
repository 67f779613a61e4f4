"""
Withdrawal proving pipeline for OP-Stack forks (L2 -> L1).

This module provides a composable class that turns a finished L2 withdrawal
transaction into a submitted `proveWithdrawalTransaction` call on the L1
`OptimismPortal2`.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from hexbytes import HexBytes

from .chain_reader import ChainReader
from .custom_errors import (
    AlreadyProven,
    IntegrityError,
    InvalidChainError,
    NoCoveringGame,
    ProofUnavailable,
    ProverError,
    UnsupportedMethod,
)
from .encoding import storage_slot_key
from .extractor import extract_withdrawal
from .game_locator import find_covering_game
from .output_root import verify_output_root
from .types import (
    DisputeGame,
    ExtractedWithdrawal,
    ProveArgs,
    ProveResult,
    ProveStatus,
    ProvenWithdrawalResponse,
    Stage,
    VerifiedOutputRoot,
)
from .utils.chain import get_account
from .utils.config import (
    CHAIN_IDS,
    OP_STACK_ETHEREUM,
    OP_STACK_ETHEREUM_CONTRACTS,
    OUTPUT_ROOT_VERSION_ISTHMUS,
    ProverSettings,
    load_settings,
)

logger = logging.getLogger(__name__)


@contextmanager
def _stage(stage: Stage) -> Iterator[None]:
    try:
        yield
    except ProverError as e:
        if e.stage is None:
            e.stage = stage
        raise


class OPProver:
    """
    Proves L2 -> L1 withdrawals on an OP-Stack chain whose L1 side runs
    `OptimismPortal2` with permissionless dispute games.

    Parameters
    ----------
    settings: ProverSettings, optional
        Run configuration. Loaded from the environment when omitted.

    account: LocalAccount, optional
        Local private-key account used to sign the proving transaction.
        If omitted, it is instantiated from `PRIVATE_KEY` in `.env` the first
        time it is needed (read-only helpers never need it).

    reader: ChainReader, optional
        Chain access. Built from `settings` when omitted.

    MORE INFO
    ----------
    A withdrawal starts on L2 with `L2ToL1MessagePasser.initiateWithdrawal`
    which emits `MessagePassed` and records the withdrawal hash in the
    `sentMessages` mapping. To prove it on L1 the portal needs:

    1. the withdrawal tuple (hash must match the one emitted on L2),
    2. the index of a dispute game whose checkpoint block is at or after the
       withdrawal block,
    3. the `OutputRootProof` preimage of that game's root claim,
    4. the storage proof of `sentMessages[withdrawalHash]` against the
       message passer storage root (empty for Isthmus output roots, where the
       block header carries that root).

    Each stage is a separate method so a caller can stop between stages;
    nothing is written on chain before `submit_prove`. Proving starts the
    challenge period; finalization is a separate, later step.
    """

    def __init__(
        self,
        settings: Optional[ProverSettings] = None,
        account: Optional[LocalAccount] = None,
        reader: Optional[ChainReader] = None,
    ):
        self.settings = settings or load_settings()
        self.reader = reader or ChainReader.from_settings(self.settings)
        self._account = account

    @property
    def account(self) -> LocalAccount:
        if self._account is None:
            self._account = get_account()

        return self._account

    def check_deployment(self) -> None:
        """
        Make sure both endpoints are on the configured chains and that the
        portal points at the dispute game factory from the contract table.
        """
        l1_chain_id = self.reader.get_chain_id()
        if l1_chain_id != CHAIN_IDS[self.settings.l1_chain]:
            raise InvalidChainError(
                f"L1 endpoint is on chain {l1_chain_id}, expected {CHAIN_IDS[self.settings.l1_chain]}"
            )

        l2_chain_id = self.reader.get_l2_chain_id()
        if l2_chain_id != CHAIN_IDS[self.settings.l2_chain]:
            raise InvalidChainError(
                f"L2 endpoint is on chain {l2_chain_id}, expected {CHAIN_IDS[self.settings.l2_chain]}"
            )

        expected_factory = OP_STACK_ETHEREUM_CONTRACTS[self.settings.l2_chain][
            OP_STACK_ETHEREUM.DISPUTE_GAME_FACTORY
        ]["address"]
        factory = self.reader.read_dispute_game_factory()

        if factory != expected_factory:
            raise InvalidChainError(
                f"Portal uses dispute game factory {factory}, contract table has {expected_factory}"
            )

    def extract_withdrawal(
        self, init_wd_tx_hash: HexBytes, log_index: int = 0
    ) -> ExtractedWithdrawal:
        return extract_withdrawal(self.reader, init_wd_tx_hash, log_index)

    def find_dispute_game(self, l2_block_number: int) -> DisputeGame:
        """
        Locate the earliest dispute game of the respected game type covering
        `l2_block_number`.

        Raises `NoCoveringGame` when the withdrawal is too recent for every
        game in the lookback window.
        """
        game_type = self.settings.respected_game_type
        if game_type is None:
            game_type = self.reader.read_respected_game_type()

        return find_covering_game(
            self.reader,
            l2_block_number,
            window=self.settings.game_lookback,
            workers=self.settings.game_scan_workers,
            strict=self.settings.strict_game_scan,
            game_type=game_type,
        )

    def verify_output_root(
        self, game: DisputeGame, withdrawal_hash: bytes
    ) -> VerifiedOutputRoot:
        """
        Rebuild the game's output root and check it against `rootClaim()`.

        The version that matched is tried first on later calls of this
        instance; the others stay as fallbacks.
        """
        root_claim = self.reader.read_game_root_claim(game["proxy"])

        verified = verify_output_root(
            self.reader,
            game,
            root_claim,
            versions=self.settings.output_root_versions,
            slots=[storage_slot_key(withdrawal_hash)],
        )

        self.settings = self.settings.with_preferred_version(verified.version)

        return verified

    def get_withdrawal_proof(
        self,
        game: DisputeGame,
        withdrawal_hash: bytes,
        verified: VerifiedOutputRoot,
    ) -> List[bytes]:
        """
        Storage proof nodes for `sentMessages[withdrawal_hash]` at the game's
        checkpoint block. Empty for Isthmus output roots.
        """
        if verified.version == OUTPUT_ROOT_VERSION_ISTHMUS:
            return []

        storage_proof = verified.storage_proof

        if storage_proof is None:
            try:
                storage_proof = self.reader.get_storage_proof(
                    self.reader.message_passer_address,
                    [storage_slot_key(withdrawal_hash)],
                    game["l2_block_number"],
                )
            except UnsupportedMethod as e:
                raise ProofUnavailable(
                    "`eth_getProof` is not supported by any configured L2 endpoint", e
                ) from e

        if not storage_proof["storage_proof"]:
            raise ProofUnavailable("No storage proofs returned")

        return storage_proof["storage_proof"]

    def check_sent_message(self, withdrawal_hash: bytes, l2_block_number: int) -> None:
        """
        Confirm `sentMessages[withdrawal_hash]` is set at `l2_block_number`.
        Skipped with a warning when `eth_getStorageAt` is unavailable.
        """
        try:
            value = self.reader.get_l2_storage_at(
                self.reader.message_passer_address,
                storage_slot_key(withdrawal_hash),
                l2_block_number,
            )
        except UnsupportedMethod as e:
            logger.warning("Skipping `sentMessages` check: %s", e)
            return

        if int.from_bytes(bytes(value), "big") == 0:
            raise IntegrityError(
                f"Withdrawal {HexBytes(withdrawal_hash).to_0x_hex()} is not recorded in the "
                f"message passer at block {l2_block_number}"
            )

    def build_prove_args(
        self,
        extracted: ExtractedWithdrawal,
        game: DisputeGame,
        verified: VerifiedOutputRoot,
    ) -> ProveArgs:
        withdrawal_hash = extracted["withdrawal_hash"]

        self.check_sent_message(withdrawal_hash, game["l2_block_number"])

        return ProveArgs(
            withdrawal=extracted["withdrawal"],
            dispute_game_index=game["index"],
            output_root_proof=verified.proof,
            withdrawal_proof=self.get_withdrawal_proof(game, withdrawal_hash, verified),
        )

    def submit_prove(self, args: ProveArgs, withdrawal_hash: bytes) -> HexBytes:
        """
        Guard, simulate and broadcast `proveWithdrawalTransaction`.

        Raises `AlreadyProven` without sending anything when the portal
        already records a proof submitter for `withdrawal_hash`, and
        `ProofRejected` when the simulation reverts.
        """
        num_submitters = self.reader.read_num_proof_submitters(withdrawal_hash)

        if num_submitters > 0:
            raise AlreadyProven(HexBytes(withdrawal_hash).to_0x_hex(), num_submitters)

        balance = self.reader.get_balance(self.account.address)
        if balance < self.settings.min_balance_wei:
            logger.warning(
                "Low balance on %s (%d wei), may not have enough for gas",
                self.account.address,
                balance,
            )

        self.reader.simulate_prove(args, self.account.address)
        logger.info("Simulation successful, sending transaction")

        txn_hash = self.reader.submit_prove(
            args, self.account, self.settings.gas_multiplier
        )
        logger.info("Prove transaction submitted: %s", txn_hash.to_0x_hex())

        return txn_hash

    def prove_withdrawal_transaction(
        self, init_wd_tx_hash: HexBytes, log_index: int = 0
    ) -> ProveResult:
        """
        Run the whole pipeline for one withdrawal.

        Parameters
        ----------
        init_wd_tx_hash : HexBytes
            L2 transaction that initiated the withdrawal.

        log_index : int, optional
            Which `MessagePassed` event to prove if the transaction emitted
            several.

        Returns
        -------
        ProveResult
            ``SUBMITTED`` with the L1 transaction hash, or one of the expected
            outcomes ``NO_COVERING_GAME`` / ``ALREADY_PROVEN``. Any other
            failure raises a `ProverError` whose ``stage`` names the step.
        """
        with _stage(Stage.EXTRACT):
            extracted = self.extract_withdrawal(init_wd_tx_hash, log_index)

        withdrawal_hash = extracted["withdrawal_hash"]

        try:
            with _stage(Stage.LOCATE):
                self.check_deployment()
                game = self.find_dispute_game(extracted["l2_block_number"])
        except NoCoveringGame as e:
            logger.info("%s", e)
            return ProveResult(ProveStatus.NO_COVERING_GAME, withdrawal_hash)

        with _stage(Stage.VERIFY):
            verified = self.verify_output_root(game, withdrawal_hash)

        with _stage(Stage.ASSEMBLE):
            args = self.build_prove_args(extracted, game, verified)

        try:
            with _stage(Stage.SUBMIT):
                txn_hash = self.submit_prove(args, withdrawal_hash)
        except AlreadyProven as e:
            logger.info("%s", e)
            return ProveResult(ProveStatus.ALREADY_PROVEN, withdrawal_hash, game["index"])

        return ProveResult(
            ProveStatus.SUBMITTED, withdrawal_hash, game["index"], txn_hash.to_0x_hex()
        )

    def get_proven_withdrawal_info(
        self,
        withdrawal_hash: bytes,
        submitter: Optional[ChecksumAddress] = None,
    ) -> ProvenWithdrawalResponse:
        """
        Retrieve the dispute game and timestamp recorded when `submitter`
        proved `withdrawal_hash`. A zero timestamp means unproven.
        """
        return self.reader.read_proven_withdrawal(
            withdrawal_hash, submitter or self.account.address
        )

    def is_proven(self, withdrawal_hash: bytes) -> bool:
        return self.reader.read_num_proof_submitters(withdrawal_hash) > 0

    def is_finalized_withdrawal(self, withdrawal_hash: bytes) -> bool:
        return self.reader.read_finalized_withdrawal(withdrawal_hash)
