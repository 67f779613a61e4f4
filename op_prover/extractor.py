import logging
from typing import Any, List, Mapping

from eth_abi.abi import decode
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes
from web3.types import TxReceipt

from .chain_reader import ChainReader
from .custom_errors import EventNotFound, IntegrityError
from .encoding import content_hash
from .types import ExtractedWithdrawal, WithdrawalTransaction
from .utils.config import MESSAGE_PASSED_TOPIC

logger = logging.getLogger(__name__)

MESSAGE_PASSED_DATA_TYPES = ["uint256", "uint256", "bytes", "bytes32"]


def find_message_passed_logs(
    receipt: TxReceipt, message_passer_address: str
) -> List[Mapping[str, Any]]:
    """Every log in `receipt` emitted by the message passer with the `MessagePassed` topic."""
    message_passer = message_passer_address.lower()

    return [
        log
        for log in receipt["logs"]
        if str(log["address"]).lower() == message_passer
        and log["topics"]
        and HexBytes(log["topics"][0]) == MESSAGE_PASSED_TOPIC
    ]


def decode_message_passed(log: Mapping[str, Any]):
    """
    Decode a raw `MessagePassed` log.

    Indexed topics carry `nonce`, `sender` and `target`; the data payload is
    `abi.encode(value, gasLimit, data, withdrawalHash)`.

    Returns
    -------
    (WithdrawalTransaction, HexBytes)
        The withdrawal tuple and the hash the contract emitted for it.
    """
    topics = [HexBytes(topic) for topic in log["topics"]]

    if len(topics) != 4:
        raise EventNotFound(
            f"`MessagePassed` log must have 4 topics, got {len(topics)}"
        )

    value, gas_limit, data, withdrawal_hash = decode(
        MESSAGE_PASSED_DATA_TYPES, bytes(HexBytes(log["data"]))
    )

    withdrawal = WithdrawalTransaction(
        nonce=int.from_bytes(topics[1], "big"),
        sender=to_checksum_address(topics[2][-20:]),
        target=to_checksum_address(topics[3][-20:]),
        value=value,
        gasLimit=gas_limit,
        data=bytes(data),
    )

    return withdrawal, HexBytes(withdrawal_hash)


def extract_withdrawal(
    reader: ChainReader, tx_hash: HexBytes, log_index: int = 0
) -> ExtractedWithdrawal:
    """
    Recover the canonical withdrawal emitted by an L2 `initiateWithdrawal`
    transaction and check it against the emitted withdrawal hash.

    Parameters
    ----------
    reader : ChainReader

    tx_hash : HexBytes
        L2 transaction that emitted the ``MessagePassed`` event.

    log_index : int, optional
        Which ``MessagePassed`` event to use when the transaction emitted
        several. Defaults to the first one.

    Returns
    -------
    ExtractedWithdrawal
    """
    receipt = reader.get_l2_receipt(tx_hash)

    logs = find_message_passed_logs(receipt, reader.message_passer_address)

    if not logs:
        raise EventNotFound(
            f"`txn_hash` {HexBytes(tx_hash).to_0x_hex()} does not emit `MessagePassed` event."
        )

    if not 0 <= log_index < len(logs):
        raise EventNotFound(
            f"`log_index` {log_index} out of range, transaction emitted {len(logs)} `MessagePassed` event(s)"
        )

    if len(logs) > 1:
        logger.info("Transaction emitted %d withdrawals, using #%d", len(logs), log_index)

    withdrawal, withdrawal_hash = decode_message_passed(logs[log_index])

    computed_hash = content_hash(withdrawal)

    if computed_hash != withdrawal_hash:
        raise IntegrityError(
            f"`computed hash != withdrawal hash`: {computed_hash.to_0x_hex()} != {withdrawal_hash.to_0x_hex()}"
        )

    logger.info(
        "Withdrawal %s: nonce=%d value=%d gasLimit=%d",
        withdrawal_hash.to_0x_hex(),
        withdrawal.nonce,
        withdrawal.value,
        withdrawal.gasLimit,
    )

    return {
        "withdrawal": withdrawal,
        "withdrawal_hash": withdrawal_hash,
        "l2_block_number": int(receipt["blockNumber"]),
    }
