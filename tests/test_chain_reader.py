from unittest.mock import MagicMock

import pytest
import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import (
    BlockNotFound,
    ContractCustomError,
    ContractLogicError,
    MethodUnavailable,
    Web3RPCError,
)
from web3.exceptions import TransactionNotFound as Web3TransactionNotFound

from op_prover import chain_reader
from op_prover.chain_reader import ChainReader, classify_rpc_error, rpc_call
from op_prover.custom_errors import (
    IntegrityError,
    NotFound,
    ProofRejected,
    RPCTimeout,
    TransactionNotFound,
    TransportError,
    UnsupportedMethod,
)
from op_prover.types import ProveArgs
from op_prover.utils.chain import add_gas_buffer, get_abi, get_contract_error_info
from op_prover.utils.config import ABI_OPTIMISM_PORTAL, ChainName, ProverSettings
from op_prover.utils.providers import get_rpc_urls

from conftest import MESSAGE_PASSER, WITHDRAWAL, WITHDRAWAL_TX_HASH, word

METHOD_NOT_FOUND = ValueError(
    {"code": -32601, "message": "the method eth_getProof does not exist/is not available"}
)

PROOF_RESPONSE = {
    "address": MESSAGE_PASSER,
    "storageHash": "0x" + "ab" * 32,
    "accountProof": ["0xf90211", "0xf8518080"],
    "storageProof": [
        {"key": "0x" + "00" * 32, "value": 1, "proof": ["0xf871a0", "0xe2a020"]}
    ],
}


def make_reader(l2_count=2):
    l1 = MagicMock(name="l1")
    l2 = [MagicMock(name=f"l2_{i}") for i in range(l2_count)]

    return ChainReader(l1, l2), l1, l2


def prove_args():
    return ProveArgs(
        withdrawal=WITHDRAWAL,
        dispute_game_index=1008,
        output_root_proof=(bytes(31) + b"\x01", word("s"), word("m"), word("b")),
        withdrawal_proof=[],
    )


class TestClassifyRpcError:
    def test_timeout(self):
        error = classify_rpc_error("eth_getProof", requests.exceptions.ReadTimeout("slow"))

        assert isinstance(error, RPCTimeout)
        assert error.method == "eth_getProof"

    def test_method_unavailable(self):
        error = classify_rpc_error("eth_getProof", MethodUnavailable("nope"))

        assert isinstance(error, UnsupportedMethod)

    def test_method_not_found_code(self):
        error = classify_rpc_error("eth_getProof", METHOD_NOT_FOUND)

        assert isinstance(error, UnsupportedMethod)
        assert str(error).startswith("`eth_getProof` failed")

    def test_rpc_error_response(self):
        rpc_error = Web3RPCError(
            "rpc error",
            rpc_response={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": -32601, "message": "Method not found"},
            },
        )

        assert isinstance(classify_rpc_error("eth_getProof", rpc_error), UnsupportedMethod)

    def test_other_node_errors(self):
        error = classify_rpc_error(
            "eth_getBlockByNumber", ValueError({"code": -32000, "message": "header not found"})
        )

        assert type(error) is TransportError
        assert "header not found" in str(error)


class TestRpcCall:
    def test_passes_result_through(self):
        assert rpc_call("eth_chainId", lambda: 1) == 1

    def test_block_not_found(self):
        def missing():
            raise BlockNotFound("block 12 not found")

        with pytest.raises(NotFound):
            rpc_call("eth_getBlockByNumber", missing)

    def test_prover_errors_untouched(self):
        def broken():
            raise IntegrityError("bad hash")

        with pytest.raises(IntegrityError):
            rpc_call("eth_call", broken)

    def test_connection_error(self):
        def offline():
            raise requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError) as exc_info:
            rpc_call("eth_chainId", offline)

        assert exc_info.value.method == "eth_chainId"


class TestL2Fallback:
    def test_falls_back_on_unsupported_method(self):
        reader, _, (first, second) = make_reader()
        first.eth.get_proof.side_effect = METHOD_NOT_FOUND
        second.eth.get_proof.return_value = PROOF_RESPONSE

        proof = reader.get_storage_proof(MESSAGE_PASSER, [word("slot")], 100)

        assert proof["storage_hash"] == HexBytes("0x" + "ab" * 32)
        assert proof["account_proof"] == [bytes.fromhex("f90211"), bytes.fromhex("f8518080")]
        assert proof["storage_proof"] == [bytes.fromhex("f871a0"), bytes.fromhex("e2a020")]

        second.eth.get_proof.assert_called_once_with(
            MESSAGE_PASSER, [word("slot").to_0x_hex()], 100
        )

    def test_all_endpoints_unsupported(self):
        reader, _, l2 = make_reader()
        for w3 in l2:
            w3.eth.get_proof.side_effect = METHOD_NOT_FOUND

        with pytest.raises(UnsupportedMethod):
            reader.get_storage_proof(MESSAGE_PASSER, [word("slot")], 100)

    def test_reports_transport_failure_over_unsupported(self):
        reader, _, (first, second) = make_reader()
        first.eth.get_proof.side_effect = requests.exceptions.ReadTimeout("slow")
        second.eth.get_proof.side_effect = METHOD_NOT_FOUND

        with pytest.raises(RPCTimeout):
            reader.get_storage_proof(MESSAGE_PASSER, [word("slot")], 100)

    def test_missing_receipt_is_not_retried(self):
        reader, _, (first, second) = make_reader()
        first.eth.get_transaction_receipt.side_effect = Web3TransactionNotFound("unknown")

        with pytest.raises(TransactionNotFound):
            reader.get_l2_receipt(WITHDRAWAL_TX_HASH)

        second.eth.get_transaction_receipt.assert_not_called()

    def test_empty_receipt(self):
        reader, _, (first, _second) = make_reader()
        first.eth.get_transaction_receipt.return_value = None

        with pytest.raises(TransactionNotFound):
            reader.get_l2_receipt(WITHDRAWAL_TX_HASH)

    def test_requires_an_l2_provider(self):
        with pytest.raises(ValueError):
            ChainReader(MagicMock(), [])

    def test_from_settings_builds_one_l1_provider(self, monkeypatch):
        pools = []
        real_pool = chain_reader.get_web3_pool

        def recording_pool(chain_name, timeout):
            pools.append(chain_name)
            return real_pool(chain_name, timeout)

        monkeypatch.setattr(chain_reader, "get_web3_pool", recording_pool)

        reader = ChainReader.from_settings(ProverSettings(rpc_timeout=4.0))

        assert pools == [ChainName.MEGAETH]
        assert reader.l1_provider.provider.endpoint_uri == get_rpc_urls(ChainName.ETH_MAINNET)[0]
        assert reader.l1_provider.provider.exception_retry_configuration is None
        assert len(reader.l2_providers) == len(get_rpc_urls(ChainName.MEGAETH))


class TestL1Reads:
    def test_read_game_at_checksums_proxy(self):
        reader, _, _ = make_reader()
        reader.dispute_game_factory.functions.gameAtIndex.return_value.call.return_value = (
            0,
            1_700_000_000,
            "0x" + "ab" * 20,
        )

        game_type, timestamp, proxy = reader.read_game_at(5)

        assert (game_type, timestamp) == (0, 1_700_000_000)
        assert proxy == Web3.to_checksum_address("0x" + "ab" * 20)
        reader.dispute_game_factory.functions.gameAtIndex.assert_called_with(5)


class TestProving:
    def test_simulation_revert_reason(self):
        reader, _, _ = make_reader()
        prove = reader.portal.functions.proveWithdrawalTransaction.return_value
        prove.call.side_effect = ContractLogicError("execution reverted: OptimismPortal: paused")

        with pytest.raises(ProofRejected) as exc_info:
            reader.simulate_prove(prove_args(), MESSAGE_PASSER)

        assert exc_info.value.reason == "execution reverted: OptimismPortal: paused"

    def test_estimate_gas_revert(self, account):
        reader, l1, _ = make_reader()
        prove = reader.portal.functions.proveWithdrawalTransaction.return_value
        prove.estimate_gas.side_effect = ContractLogicError("execution reverted")

        with pytest.raises(ProofRejected):
            reader.submit_prove(prove_args(), account)

        l1.eth.send_raw_transaction.assert_not_called()

    def test_submit_signs_and_broadcasts(self, account):
        reader, l1, _ = make_reader()
        prove = reader.portal.functions.proveWithdrawalTransaction.return_value
        prove.estimate_gas.return_value = 100_000
        prove.build_transaction.side_effect = lambda params: {
            **params,
            "to": Web3.to_checksum_address("0x7f82f57F0Dd546519324392e408b01fcC7D709e8"),
            "value": 0,
            "gasPrice": 10**9,
            "data": "0x",
        }
        l1.eth.get_transaction_count.return_value = 3
        l1.eth.chain_id = 1
        l1.eth.send_raw_transaction.return_value = HexBytes(b"\x01" * 32)

        txn_hash = reader.submit_prove(prove_args(), account)

        assert txn_hash == HexBytes(b"\x01" * 32)

        [params] = prove.build_transaction.call_args.args
        assert params["nonce"] == 3
        assert params["gas"] == add_gas_buffer(100_000)
        l1.eth.get_transaction_count.assert_called_once_with(account.address, "pending")
        l1.eth.send_raw_transaction.assert_called_once()


def test_contract_error_info_decodes_custom_error():
    portal = Web3().eth.contract(abi=get_abi(ABI_OPTIMISM_PORTAL))
    selector = HexBytes(Web3.keccak(text="InvalidDisputeGame()")[:4]).to_0x_hex()

    info = get_contract_error_info(portal, ContractCustomError(selector, data=selector))

    assert info.name == "InvalidDisputeGame"
    assert info.signature == "InvalidDisputeGame()"
    assert info.selector == selector


def test_contract_error_info_ignores_plain_reverts():
    portal = Web3().eth.contract(abi=get_abi(ABI_OPTIMISM_PORTAL))

    assert get_contract_error_info(portal, ContractLogicError("execution reverted")) is None
