import logging
import os
import sys

from dotenv import load_dotenv
from hexbytes import HexBytes

from op_prover.custom_errors import ProverError
from op_prover.prover import OPProver
from op_prover.types import ProveStatus
from op_prover.utils.config import ENV, load_settings


def main() -> int:
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    raw_hash = sys.argv[1] if len(sys.argv) > 1 else os.getenv(ENV.WITHDRAWAL_TX_HASH)

    if not raw_hash:
        print(f"usage: {sys.argv[0]} <l2_withdrawal_tx_hash>  (or set {ENV.WITHDRAWAL_TX_HASH})")
        return 1

    try:
        txn_hash = HexBytes(raw_hash)
    except ValueError:
        print(f"Invalid transaction hash: {raw_hash}")
        return 1

    try:
        prover = OPProver(load_settings())
        result = prover.prove_withdrawal_transaction(txn_hash)
    except ProverError as e:
        print("-" * 75)
        if e.stage is None:
            print(f"Proving failed: {e}")
        else:
            print(f"Proving failed at stage `{e.stage}`: {e}")
        print("-" * 75)
        return 1

    print("-" * 75)
    print(f"Withdrawal hash: {result.withdrawal_hash.to_0x_hex()}")

    if result.status == ProveStatus.SUBMITTED:
        print(f"Dispute game: {result.game_index}")
        print(f"Prove txn: {result.tx_hash}")
        print(f"View on Etherscan: https://etherscan.io/tx/{result.tx_hash}")
    elif result.status == ProveStatus.ALREADY_PROVEN:
        print("Already proven. Skip to finalization after the challenge period.")
    else:
        print("No dispute game covers this withdrawal yet. Try again later.")
        print("-" * 75)
        return 2

    print("-" * 75)

    return 0


if __name__ == "__main__":
    sys.exit(main())
