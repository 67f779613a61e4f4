import os
import json
from typing import Dict, Iterator, NamedTuple, Optional, Sequence, Tuple
from dotenv import load_dotenv
from eth_account.signers.local import LocalAccount
from eth_typing import ABIComponent
from eth_utils.abi import function_signature_to_4byte_selector
from hexbytes import HexBytes
from web3 import Account
from web3.contract import Contract
from web3.exceptions import ContractCustomError

from ..custom_errors import ConfigurationError
from .config import BUFFER, ENV, MULTIPLIER


def add_gas_buffer(
    gas_estimate: int, multiplier: Optional[float] = None, buffer: Optional[int] = None
) -> int:
    if multiplier is None:
        multiplier = MULTIPLIER
    elif multiplier < 1.0:
        raise ValueError("`multiplier` should be >= 1.0 to ensure sufficient gas")

    if buffer is None:
        buffer = BUFFER
    elif buffer < 0:
        raise ValueError("`buffer` must be non-negative")

    return int(gas_estimate * multiplier) + buffer


def get_account() -> LocalAccount:
    load_dotenv()

    pvt_key = os.getenv(ENV.PRIVATE_KEY) or os.getenv(ENV.DEPLOYER_PRIVATE_KEY)

    if not pvt_key:
        raise ConfigurationError(f"Store private key in .env as `{ENV.PRIVATE_KEY}`")

    if not pvt_key.startswith("0x"):
        pvt_key = "0x" + pvt_key

    try:
        return Account.from_key(pvt_key)
    except ValueError as e:
        raise ConfigurationError(f"`{ENV.PRIVATE_KEY}` is not a valid private key", e) from e


def get_abi(path: str) -> list:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"ABI file not found: {path}")

    with open(path, "r") as file:
        return json.load(file)


class ContractErrorInfo(NamedTuple):
    """
    Custom error matched against a contract ABI.

    - `name`: e.g. ``InvalidDisputeGame``
    - `signature`: e.g. ``InvalidDisputeGame()``
    - `inputs`: ABI input components of the error
    - `selector`: 0x-prefixed 4-byte selector
    """

    name: str
    signature: str
    inputs: Sequence[ABIComponent]
    selector: str


def _abi_errors(abi: list) -> Iterator[Tuple[str, str, Sequence[ABIComponent]]]:
    for item in abi:
        if item.get("type") != "error" or not item.get("name"):
            continue

        inputs = item.get("inputs", [])
        types = ",".join(inp["type"] for inp in inputs if inp.get("type"))

        yield item["name"], f"{item['name']}({types})", inputs


def get_contract_error_info(
    contract: Contract, error: Exception
) -> Optional[ContractErrorInfo]:
    """
    Decode a `ContractCustomError` raised by a call on `contract` into the
    matching ABI error. Returns ``None`` for plain reverts or selectors the
    ABI does not declare.
    """
    if not isinstance(error, ContractCustomError):
        return None

    # revert data may carry encoded arguments after the selector
    raw = error.data if isinstance(error.data, str) else error.args[0]
    wanted = HexBytes(raw)[:4]

    by_selector: Dict[bytes, Tuple[str, str, Sequence[ABIComponent]]] = {
        function_signature_to_4byte_selector(signature): (name, signature, inputs)
        for name, signature, inputs in _abi_errors(contract.abi)
    }

    match = by_selector.get(bytes(wanted))

    if match is None:
        return None

    name, signature, inputs = match

    return ContractErrorInfo(
        name=name,
        signature=signature,
        inputs=inputs,
        selector=HexBytes(wanted).to_0x_hex(),
    )
