"""
Read access to the settlement chain (L1) and the rollup (L2), plus the single
write used by the prover: broadcasting `proveWithdrawalTransaction`.

Every call is a fresh round trip; nothing is cached. Failures are converted
into the typed errors of `custom_errors` and always name the RPC method that
failed. L2 reads walk the configured endpoint list in order when an endpoint
fails at the transport level; L1 uses a single endpoint.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar, cast

import requests
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from eth_utils.conversions import to_bytes
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import (
    BlockNotFound,
    ContractLogicError,
    MethodUnavailable,
    Web3Exception,
    Web3RPCError,
)
from web3.exceptions import TransactionNotFound as Web3TransactionNotFound
from web3.types import BlockData, TxParams, TxReceipt

from .custom_errors import (
    InvalidChainError,
    NotFound,
    ProofRejected,
    ProverError,
    RPCTimeout,
    TransactionNotFound,
    TransportError,
    UnsupportedMethod,
)
from .types import GameStatus, ProveArgs, ProvenWithdrawalResponse, StorageProof
from .utils.chain import add_gas_buffer, get_abi, get_contract_error_info
from .utils.config import (
    ABI_FAULT_DISPUTE_GAME,
    OP_STACK_ETHEREUM,
    OP_STACK_ETHEREUM_CONTRACTS,
    OP_STACK_L2,
    OP_STACK_L2_CONTRACTS,
    ChainName,
    ProverSettings,
)
from .utils.providers import get_rpc_urls, get_web3, get_web3_pool

logger = logging.getLogger(__name__)

T = TypeVar("T")

METHOD_NOT_FOUND = -32601

_UNSUPPORTED_HINTS = (
    "method not found",
    "does not exist",
    "not supported",
    "unsupported method",
    "not available",
)


def _rpc_error_payload(error: Exception) -> Optional[dict]:
    if isinstance(error, Web3RPCError):
        response = error.rpc_response
        if isinstance(response, dict) and isinstance(response.get("error"), dict):
            return response["error"]
        return None

    # older providers raise ValueError({"code": ..., "message": ...})
    if error.args and isinstance(error.args[0], dict):
        return error.args[0]

    return None


def classify_rpc_error(method: str, error: Exception) -> TransportError:
    """Map a provider-level exception onto the transport error taxonomy."""
    if isinstance(error, requests.exceptions.Timeout):
        return RPCTimeout(method, f"timed out: {error}", error)

    if isinstance(error, MethodUnavailable):
        return UnsupportedMethod(method, str(error), error)

    payload = _rpc_error_payload(error)

    if payload is not None:
        code = payload.get("code")
        message = str(payload.get("message", payload))
    else:
        code = None
        message = str(error)

    if code == METHOD_NOT_FOUND or any(
        hint in message.lower() for hint in _UNSUPPORTED_HINTS
    ):
        return UnsupportedMethod(method, message, error)

    return TransportError(method, message, error)


def rpc_call(method: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run a single RPC-backed call, translating failures into typed errors.

    `method` names the JSON-RPC method (or contract function) for error
    reporting only.
    """
    try:
        return fn(*args, **kwargs)
    except ProverError:
        raise
    except Web3TransactionNotFound as e:
        raise TransactionNotFound(f"`{method}`: {e}", e) from e
    except BlockNotFound as e:
        raise NotFound(f"`{method}`: {e}", e) from e
    except (
        Web3Exception,
        requests.exceptions.RequestException,
        ValueError,
        OSError,
    ) as e:
        raise classify_rpc_error(method, e) from e


def _as_bytes(node: Any) -> bytes:
    return to_bytes(hexstr=node) if isinstance(node, str) else bytes(node)


class ChainReader:
    """
    Façade over the L1 contracts (portal, dispute-game factory, game proxies)
    and the L2 node(s) of an OP-Stack rollup.

    Parameters
    ----------
    l1_provider: Web3
        Connection to the settlement chain.

    l2_providers: Sequence[Web3]
        L2 connections in priority order. Later entries are only used when the
        earlier ones fail at the transport level (unreachable, timeout,
        unsupported method).

    l2_chain: ChainName
        Rollup whose contract table is used.
    """

    def __init__(
        self,
        l1_provider: Web3,
        l2_providers: Sequence[Web3],
        l2_chain: ChainName = ChainName.MEGAETH,
    ):
        if not l2_providers:
            raise ValueError("At least one L2 provider is required")

        l1_contracts = OP_STACK_ETHEREUM_CONTRACTS.get(l2_chain)
        l2_contracts = OP_STACK_L2_CONTRACTS.get(l2_chain)

        if not l1_contracts or not l2_contracts:
            raise InvalidChainError(f"No contract table for chain `{l2_chain}`")

        self.l1_provider = l1_provider
        self.l2_providers = list(l2_providers)
        self.l2_chain = l2_chain

        portal_info = l1_contracts[OP_STACK_ETHEREUM.OPTIMISM_PORTAL]
        factory_info = l1_contracts[OP_STACK_ETHEREUM.DISPUTE_GAME_FACTORY]

        self.portal = l1_provider.eth.contract(
            address=portal_info["address"], abi=get_abi(portal_info["ABI"])
        )
        self.dispute_game_factory = l1_provider.eth.contract(
            address=factory_info["address"], abi=get_abi(factory_info["ABI"])
        )
        self.message_passer_address: ChecksumAddress = l2_contracts[
            OP_STACK_L2.L2_TO_L1_MESSAGE_PASSER
        ]["address"]

        self._game_abi = get_abi(ABI_FAULT_DISPUTE_GAME)

    @classmethod
    def from_settings(cls, settings: ProverSettings) -> "ChainReader":
        l1_url = get_rpc_urls(settings.l1_chain)[0]
        l2_pool = get_web3_pool(settings.l2_chain, settings.rpc_timeout)

        return cls(get_web3(l1_url, settings.rpc_timeout), l2_pool, settings.l2_chain)

    def _l2_call(self, method: str, call: Callable[[Web3], T]) -> T:
        errors: List[TransportError] = []

        for position, w3 in enumerate(self.l2_providers):
            try:
                return rpc_call(method, call, w3)
            except TransportError as e:
                logger.warning("L2 endpoint #%d failed: %s", position, e)
                errors.append(e)

        if all(isinstance(e, UnsupportedMethod) for e in errors):
            raise errors[-1]

        raise next(e for e in reversed(errors) if not isinstance(e, UnsupportedMethod))

    def _game(self, proxy: ChecksumAddress):
        return self.l1_provider.eth.contract(address=proxy, abi=self._game_abi)

    # L2 reads

    def get_l2_receipt(self, tx_hash: HexBytes) -> TxReceipt:
        receipt = self._l2_call(
            "eth_getTransactionReceipt",
            lambda w3: w3.eth.get_transaction_receipt(tx_hash),
        )

        if not receipt:
            raise TransactionNotFound(
                f"No receipt for {HexBytes(tx_hash).to_0x_hex()}; not included yet?"
            )

        return receipt

    def get_l2_block(self, block_number: int) -> BlockData:
        return self._l2_call(
            "eth_getBlockByNumber", lambda w3: w3.eth.get_block(block_number)
        )

    def get_l2_block_number(self) -> int:
        return self._l2_call("eth_blockNumber", lambda w3: w3.eth.block_number)

    def get_l2_chain_id(self) -> int:
        return self._l2_call("eth_chainId", lambda w3: w3.eth.chain_id)

    def get_l2_storage_at(
        self, address: ChecksumAddress, slot: bytes, block_number: int
    ) -> HexBytes:
        return HexBytes(
            self._l2_call(
                "eth_getStorageAt",
                lambda w3: w3.eth.get_storage_at(
                    address, int.from_bytes(bytes(slot), "big"), block_number
                ),
            )
        )

    def get_storage_proof(
        self,
        address: ChecksumAddress,
        slots: Sequence[bytes],
        block_number: int,
    ) -> StorageProof:
        """
        Fetch an `eth_getProof` account + storage proof at a historical block.

        Raises `UnsupportedMethod` when no configured endpoint implements
        `eth_getProof`.
        """
        slot_keys = [HexBytes(slot).to_0x_hex() for slot in slots]

        proof = self._l2_call(
            "eth_getProof",
            lambda w3: w3.eth.get_proof(address, slot_keys, block_number),  # type: ignore[arg-type]
        )

        storage_proofs = proof.get("storageProof") or []

        return {
            "address": to_checksum_address(address),
            "storage_hash": HexBytes(proof["storageHash"]),
            "account_proof": [_as_bytes(node) for node in proof.get("accountProof", [])],
            "storage_proof": (
                [_as_bytes(node) for node in storage_proofs[0]["proof"]]
                if storage_proofs
                else []
            ),
        }

    # L1 reads

    def get_chain_id(self) -> int:
        return rpc_call("eth_chainId", lambda: self.l1_provider.eth.chain_id)

    def get_balance(self, address: ChecksumAddress) -> int:
        return rpc_call("eth_getBalance", self.l1_provider.eth.get_balance, address)

    def read_game_count(self) -> int:
        return rpc_call(
            "gameCount", self.dispute_game_factory.functions.gameCount().call
        )

    def read_game_at(self, index: int) -> Tuple[int, int, ChecksumAddress]:
        game_type, timestamp, proxy = rpc_call(
            "gameAtIndex",
            self.dispute_game_factory.functions.gameAtIndex(index).call,
        )

        return game_type, timestamp, to_checksum_address(proxy)

    def read_game_root_claim(self, proxy: ChecksumAddress) -> HexBytes:
        return HexBytes(
            rpc_call("rootClaim", self._game(proxy).functions.rootClaim().call)
        )

    def read_game_l2_block(self, proxy: ChecksumAddress) -> int:
        return rpc_call(
            "l2BlockNumber", self._game(proxy).functions.l2BlockNumber().call
        )

    def read_game_status(self, proxy: ChecksumAddress) -> GameStatus:
        return GameStatus(
            rpc_call("status", self._game(proxy).functions.status().call)
        )

    def read_dispute_game_factory(self) -> ChecksumAddress:
        return to_checksum_address(
            rpc_call(
                "disputeGameFactory", self.portal.functions.disputeGameFactory().call
            )
        )

    def read_respected_game_type(self) -> int:
        return rpc_call(
            "respectedGameType", self.portal.functions.respectedGameType().call
        )

    def read_proven_withdrawal(
        self, withdrawal_hash: bytes, submitter: ChecksumAddress
    ) -> ProvenWithdrawalResponse:
        proven_withdrawal = rpc_call(
            "provenWithdrawals",
            self.portal.functions.provenWithdrawals(
                bytes(withdrawal_hash), submitter
            ).call,
        )

        return {
            "dispute_game_address": to_checksum_address(proven_withdrawal[0]),
            "timestamp": proven_withdrawal[1],
        }

    def read_num_proof_submitters(self, withdrawal_hash: bytes) -> int:
        return rpc_call(
            "numProofSubmitters",
            self.portal.functions.numProofSubmitters(bytes(withdrawal_hash)).call,
        )

    def read_finalized_withdrawal(self, withdrawal_hash: bytes) -> bool:
        return rpc_call(
            "finalizedWithdrawals",
            self.portal.functions.finalizedWithdrawals(bytes(withdrawal_hash)).call,
        )

    # proving

    def _prove_function(self, args: ProveArgs):
        return self.portal.functions.proveWithdrawalTransaction(
            tuple(args.withdrawal),
            args.dispute_game_index,
            tuple(args.output_root_proof),
            list(args.withdrawal_proof),
        )

    def _rejection(self, error: ContractLogicError) -> ProofRejected:
        error_info = get_contract_error_info(self.portal, error)

        if error_info:
            return ProofRejected(error_info.signature, error)

        return ProofRejected(getattr(error, "message", None) or str(error), error)

    def simulate_prove(self, args: ProveArgs, sender: ChecksumAddress) -> None:
        """
        Dry-run the proving call with `eth_call` against the latest L1 state.
        A revert surfaces as `ProofRejected` carrying the revert reason.
        """
        try:
            rpc_call(
                "eth_call", self._prove_function(args).call, {"from": sender}
            )
        except TransportError as e:
            if isinstance(e.original_error, ContractLogicError):
                raise self._rejection(e.original_error) from e.original_error
            raise

    def submit_prove(
        self,
        args: ProveArgs,
        account: LocalAccount,
        gas_multiplier: Optional[float] = None,
    ) -> HexBytes:
        """
        Sign and broadcast `proveWithdrawalTransaction`. Returns the
        transaction hash once the node accepts it; does not wait for mining.

        Not idempotent: a second submission for a proven withdrawal reverts.
        """
        prove_withdrawal_transaction = self._prove_function(args)

        try:
            gas_estimate = rpc_call(
                "eth_estimateGas",
                prove_withdrawal_transaction.estimate_gas,
                {"from": account.address},
            )
        except TransportError as e:
            if isinstance(e.original_error, ContractLogicError):
                raise self._rejection(e.original_error) from e.original_error
            raise

        nonce = rpc_call(
            "eth_getTransactionCount",
            self.l1_provider.eth.get_transaction_count,
            account.address,
            "pending",
        )

        txn_payload: TxParams = rpc_call(
            "eth_gasPrice",
            prove_withdrawal_transaction.build_transaction,
            {
                "from": account.address,
                "nonce": nonce,
                "chainId": self.get_chain_id(),
                "gas": add_gas_buffer(gas_estimate, gas_multiplier),
            },
        )

        signed_txn = account.sign_transaction(cast(dict, txn_payload))

        try:
            txn_hash = rpc_call(
                "eth_sendRawTransaction",
                self.l1_provider.eth.send_raw_transaction,
                signed_txn.raw_transaction,
            )
        except TransportError as e:
            if "revert" in str(e).lower():
                raise ProofRejected(str(e), e) from e
            raise

        return HexBytes(txn_hash)
