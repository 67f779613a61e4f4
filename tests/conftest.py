"""Pytest fixtures and an in-memory chain reader for prover tests."""

from typing import Dict, List, Optional, Tuple

import pytest
from eth_abi.abi import encode
from eth_account import Account
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

from op_prover.custom_errors import NotFound, TransactionNotFound
from op_prover.encoding import content_hash, output_root
from op_prover.types import GameStatus, WithdrawalTransaction
from op_prover.utils.config import (
    MESSAGE_PASSED_TOPIC,
    OP_STACK_ETHEREUM,
    OP_STACK_ETHEREUM_CONTRACTS,
    OP_STACK_L2,
    OP_STACK_L2_CONTRACTS,
    ChainName,
    ProverSettings,
)

MESSAGE_PASSER = OP_STACK_L2_CONTRACTS[ChainName.MEGAETH][
    OP_STACK_L2.L2_TO_L1_MESSAGE_PASSER
]["address"]

DISPUTE_GAME_FACTORY = OP_STACK_ETHEREUM_CONTRACTS[ChainName.MEGAETH][
    OP_STACK_ETHEREUM.DISPUTE_GAME_FACTORY
]["address"]

WITHDRAWAL_TX_HASH = HexBytes(
    "0xe376d88deca5146918175a1d2cf977805b051aed3216928c39628a47dfc5b465"
)

# 0.0002 ETH relayed through the L2 cross domain messenger
WITHDRAWAL = WithdrawalTransaction(
    nonce=0x0001000000000000000000000000000000000000000000000000000000000003,
    sender=to_checksum_address("0x4200000000000000000000000000000000000007"),
    target=to_checksum_address("0x6c7198250087b29a8040ec63903bc130f4831cc9"),
    value=0x00B5E620F48000,
    gasLimit=0x07DF76,
    data=bytes.fromhex("d764ad0b") + bytes(31) + b"\x01",
)

SIGNER_KEY = "0x" + "11" * 32


def word(label: str) -> HexBytes:
    return HexBytes(Web3.keccak(text=label))


def proxy_for(index: int):
    return to_checksum_address((0x1000 + index).to_bytes(20, "big"))


def make_message_passed_log(
    withdrawal: WithdrawalTransaction,
    withdrawal_hash: Optional[bytes] = None,
    address: str = MESSAGE_PASSER,
) -> dict:
    if withdrawal_hash is None:
        withdrawal_hash = content_hash(withdrawal)

    return {
        "address": address,
        "topics": [
            MESSAGE_PASSED_TOPIC,
            HexBytes(withdrawal.nonce.to_bytes(32, "big")),
            HexBytes(bytes(12) + bytes(HexBytes(withdrawal.sender))),
            HexBytes(bytes(12) + bytes(HexBytes(withdrawal.target))),
        ],
        "data": HexBytes(
            encode(
                ["uint256", "uint256", "bytes", "bytes32"],
                [withdrawal.value, withdrawal.gasLimit, withdrawal.data, bytes(withdrawal_hash)],
            )
        ),
    }


def make_receipt(logs: List[dict], block_number: int, tx_hash: bytes = WITHDRAWAL_TX_HASH) -> dict:
    return {
        "transactionHash": HexBytes(tx_hash),
        "blockNumber": block_number,
        "logs": logs,
    }


def make_block(block_number: int, withdrawals_root: Optional[bytes] = None) -> dict:
    block = {
        "number": block_number,
        "stateRoot": word(f"state-{block_number}"),
        "hash": word(f"hash-{block_number}"),
    }

    if withdrawals_root is not None:
        block["withdrawalsRoot"] = HexBytes(withdrawals_root)

    return block


class FakeChainReader:
    """
    In-memory stand-in for `ChainReader`. Games are `{index: l2_block}` or
    `{index: (l2_block, game_type)}`; every call is recorded in `calls`.
    """

    message_passer_address = MESSAGE_PASSER

    def __init__(
        self,
        receipts: Optional[Dict[bytes, dict]] = None,
        games: Optional[Dict[int, object]] = None,
        blocks: Optional[Dict[int, dict]] = None,
        root_claims: Optional[Dict[int, bytes]] = None,
        storage_hash: Optional[bytes] = None,
        storage_proof_nodes: Optional[List[bytes]] = None,
        proof_error: Optional[Exception] = None,
        num_proof_submitters: int = 0,
        simulate_error: Optional[Exception] = None,
        statuses: Optional[Dict[int, GameStatus]] = None,
        sent_message_value: int = 1,
        l1_chain_id: int = 1,
        l2_chain_id: int = 4326,
    ):
        self.receipts = {HexBytes(k): v for k, v in (receipts or {}).items()}
        self.games: Dict[int, Tuple[int, int]] = {}
        for index, entry in (games or {}).items():
            self.games[index] = entry if isinstance(entry, tuple) else (entry, 0)
        self.blocks = blocks or {}
        self.root_claims = root_claims or {}
        self.storage_hash = storage_hash
        self.storage_proof_nodes = storage_proof_nodes or [b"\xaa" * 40, b"\xbb" * 33]
        self.proof_error = proof_error
        self.num_proof_submitters = num_proof_submitters
        self.simulate_error = simulate_error
        self.statuses = statuses or {}
        self.sent_message_value = sent_message_value
        self.l1_chain_id = l1_chain_id
        self.l2_chain_id = l2_chain_id

        self.calls: List[str] = []
        self.submitted: List[object] = []
        self._proxies = {}

    def _index(self, proxy) -> int:
        return self._proxies[proxy]

    # L2

    def get_l2_receipt(self, tx_hash):
        self.calls.append("get_l2_receipt")
        receipt = self.receipts.get(HexBytes(tx_hash))
        if receipt is None:
            raise TransactionNotFound(f"No receipt for {HexBytes(tx_hash).to_0x_hex()}")
        return receipt

    def get_l2_block(self, block_number):
        self.calls.append("get_l2_block")
        if block_number not in self.blocks:
            raise NotFound(f"block {block_number}")
        return self.blocks[block_number]

    def get_l2_chain_id(self):
        self.calls.append("get_l2_chain_id")
        return self.l2_chain_id

    def get_l2_storage_at(self, address, slot, block_number):
        self.calls.append("get_l2_storage_at")
        return HexBytes(self.sent_message_value.to_bytes(32, "big"))

    def get_storage_proof(self, address, slots, block_number):
        self.calls.append("get_storage_proof")
        if self.proof_error is not None:
            raise self.proof_error
        return {
            "address": address,
            "storage_hash": HexBytes(self.storage_hash or word("storage")),
            "account_proof": [b"\x01" * 40],
            "storage_proof": list(self.storage_proof_nodes),
        }

    # L1

    def get_chain_id(self):
        self.calls.append("get_chain_id")
        return self.l1_chain_id

    def get_balance(self, address):
        self.calls.append("get_balance")
        return 10**18

    def read_game_count(self):
        self.calls.append("read_game_count")
        return max(self.games) + 1 if self.games else 0

    def read_game_at(self, index):
        self.calls.append("read_game_at")
        if index not in self.games:
            raise NotFound(f"game {index}")
        proxy = proxy_for(index)
        self._proxies[proxy] = index
        return self.games[index][1], 1_700_000_000 + index, proxy

    def read_game_l2_block(self, proxy):
        self.calls.append("read_game_l2_block")
        return self.games[self._index(proxy)][0]

    def read_game_root_claim(self, proxy):
        self.calls.append("read_game_root_claim")
        return HexBytes(self.root_claims[self._index(proxy)])

    def read_game_status(self, proxy):
        self.calls.append("read_game_status")
        return self.statuses.get(self._index(proxy), GameStatus.IN_PROGRESS)

    def read_dispute_game_factory(self):
        self.calls.append("read_dispute_game_factory")
        return DISPUTE_GAME_FACTORY

    def read_respected_game_type(self):
        self.calls.append("read_respected_game_type")
        return 0

    def read_num_proof_submitters(self, withdrawal_hash):
        self.calls.append("read_num_proof_submitters")
        return self.num_proof_submitters

    def read_proven_withdrawal(self, withdrawal_hash, submitter):
        self.calls.append("read_proven_withdrawal")
        return {"dispute_game_address": proxy_for(0), "timestamp": 0}

    def read_finalized_withdrawal(self, withdrawal_hash):
        self.calls.append("read_finalized_withdrawal")
        return False

    def simulate_prove(self, args, sender):
        self.calls.append("simulate_prove")
        if self.simulate_error is not None:
            raise self.simulate_error

    def submit_prove(self, args, account, gas_multiplier=None):
        self.calls.append("submit_prove")
        self.submitted.append(args)
        return HexBytes(Web3.keccak(text=f"prove-{len(self.submitted)}"))


@pytest.fixture
def account():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture
def settings():
    return ProverSettings(game_scan_workers=4)


@pytest.fixture
def isthmus_chain():
    """
    Chain state with 50 games (961..1010) where game 1008 is the first to
    checkpoint the withdrawal block 3585860 and its claim is a 0x01 root.
    """
    withdrawal_block = 3585860
    games = {index: withdrawal_block + (index - 1008) * 1000 for index in range(961, 1011)}

    game_block = games[1008]
    withdrawals_root = word("withdrawals-root")
    block = make_block(game_block, withdrawals_root)

    return FakeChainReader(
        receipts={
            WITHDRAWAL_TX_HASH: make_receipt(
                [make_message_passed_log(WITHDRAWAL)], withdrawal_block
            )
        },
        games=games,
        blocks={game_block: block},
        root_claims={
            1008: output_root(1, block["stateRoot"], withdrawals_root, block["hash"])
        },
    )
