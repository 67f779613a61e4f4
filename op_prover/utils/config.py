import os
from enum import Enum, StrEnum
from typing import Dict, Final, List, NamedTuple, Optional, Tuple, TypedDict

from dotenv import load_dotenv
from eth_typing import ChecksumAddress
from eth_utils.address import to_checksum_address
from hexbytes import HexBytes

from ..custom_errors import ConfigurationError


class ENV(StrEnum):
    L1_RPC_URL = "L1_RPC_URL"
    L2_RPC_URL = "L2_RPC_URL"
    L2_FALLBACK_RPC_URLS = "L2_FALLBACK_RPC_URLS"
    PRIVATE_KEY = "PRIVATE_KEY"
    DEPLOYER_PRIVATE_KEY = "DEPLOYER_PRIVATE_KEY"
    RPC_TIMEOUT = "RPC_TIMEOUT"
    GAME_LOOKBACK_WINDOW = "GAME_LOOKBACK_WINDOW"
    GAME_SCAN_WORKERS = "GAME_SCAN_WORKERS"
    OUTPUT_ROOT_VERSIONS = "OUTPUT_ROOT_VERSIONS"
    WITHDRAWAL_TX_HASH = "WITHDRAWAL_TX_HASH"


class ChainName(StrEnum):
    ETH_MAINNET = "ETH_MAINNET"
    MEGAETH = "MEGAETH"


class ContractType(TypedDict):
    address: ChecksumAddress
    ABI: str


def _contract(address: str, abi_path: str) -> ContractType:
    return {
        "address": to_checksum_address(address),
        "ABI": abi_path,
    }


# CHAINS

CHAIN_IDS: Final[Dict[ChainName, int]] = {
    ChainName.ETH_MAINNET: 1,
    ChainName.MEGAETH: 4326,
}

DEFAULT_RPC_URLS: Final[Dict[ChainName, List[str]]] = {
    ChainName.ETH_MAINNET: ["https://ethereum-rpc.publicnode.com"],
    ChainName.MEGAETH: [
        "https://mainnet.megaeth.com/rpc",
        "https://alpha.megaeth.com/rpc",
    ],
}

DEFAULT_RPC_TIMEOUT = 20.0


# GAS ESTIMATE

MULTIPLIER = 1.2
BUFFER = 20_000

# warn below 0.001 ETH
MIN_BALANCE_WEI = 10**15


# PROTOCOL CONSTANTS

ABI_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "ABI")

ABI_OPTIMISM_PORTAL = os.path.join(ABI_DIR, "OptimismPortal2.json")
ABI_DISPUTE_GAME_FACTORY = os.path.join(ABI_DIR, "DisputeGameFactory.json")
ABI_FAULT_DISPUTE_GAME = os.path.join(ABI_DIR, "FaultDisputeGame.json")
ABI_L2_TO_L1_MESSAGE_PASSER = os.path.join(ABI_DIR, "L2ToL1MessagePasser.json")

# keccak256("MessagePassed(uint256,address,address,uint256,uint256,bytes,bytes32)")
MESSAGE_PASSED_TOPIC: Final = HexBytes(
    "0x02a52367d10742d8032712c1bb8e0144ff1ec5ffda1ed7d70bb05a2744955054"
)

# sentMessages mapping is slot 0 of the L2ToL1MessagePasser
SENT_MESSAGES_SLOT = 0

OUTPUT_ROOT_VERSION_LEGACY = 0
OUTPUT_ROOT_VERSION_ISTHMUS = 1
KNOWN_OUTPUT_ROOT_VERSIONS: Final = (
    OUTPUT_ROOT_VERSION_LEGACY,
    OUTPUT_ROOT_VERSION_ISTHMUS,
)


class OP_STACK_ETHEREUM(Enum):
    OPTIMISM_PORTAL = "OPTIMISM_PORTAL"
    DISPUTE_GAME_FACTORY = "DISPUTE_GAME_FACTORY"


class OP_STACK_L2(Enum):
    L2_TO_L1_MESSAGE_PASSER = "L2_TO_L1_MESSAGE_PASSER"
    L2_STANDARD_BRIDGE = "L2_STANDARD_BRIDGE"
    L2_CROSS_DOMAIN_MESSENGER = "L2_CROSS_DOMAIN_MESSENGER"


OP_STACK_ETHEREUM_CONTRACTS: Final[
    Dict[ChainName, Dict[OP_STACK_ETHEREUM, ContractType]]
] = {
    ChainName.MEGAETH: {
        OP_STACK_ETHEREUM.OPTIMISM_PORTAL: _contract(
            "0x7f82f57F0Dd546519324392e408b01fcC7D709e8", ABI_OPTIMISM_PORTAL
        ),
        OP_STACK_ETHEREUM.DISPUTE_GAME_FACTORY: _contract(
            "0x8546840adf796875cd9aacc5b3b048f6b2c9d563", ABI_DISPUTE_GAME_FACTORY
        ),
    },
}


OP_STACK_L2_CONTRACTS: Final[Dict[ChainName, Dict[OP_STACK_L2, ContractType]]] = {
    ChainName.MEGAETH: {
        OP_STACK_L2.L2_TO_L1_MESSAGE_PASSER: _contract(
            "0x4200000000000000000000000000000000000016", ABI_L2_TO_L1_MESSAGE_PASSER
        ),
        # no ABI needed, listed so every predeploy lives in one table
        OP_STACK_L2.L2_STANDARD_BRIDGE: _contract(
            "0x4200000000000000000000000000000000000010", ""
        ),
        OP_STACK_L2.L2_CROSS_DOMAIN_MESSENGER: _contract(
            "0x4200000000000000000000000000000000000007", ""
        ),
    },
}


# PROVER SETTINGS


class ProverSettings(NamedTuple):
    """
    Tunables for a proving run. Passed explicitly into `OPProver`; nothing
    here is read from global state after construction.

    - `output_root_versions`: order in which root versions are tried.
    - `game_lookback`: number of most recent dispute games scanned.
    - `game_scan_workers`: parallel `l2BlockNumber` reads (1 = sequential).
    - `strict_game_scan`: scan the full window instead of stopping at the
      first game below the withdrawal block.
    - `respected_game_type`: restrict games to this type; `None` reads it
      from the portal.
    """

    l1_chain: ChainName = ChainName.ETH_MAINNET
    l2_chain: ChainName = ChainName.MEGAETH
    output_root_versions: Tuple[int, ...] = (
        OUTPUT_ROOT_VERSION_ISTHMUS,
        OUTPUT_ROOT_VERSION_LEGACY,
    )
    game_lookback: int = 50
    game_scan_workers: int = 8
    strict_game_scan: bool = True
    respected_game_type: Optional[int] = None
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    min_balance_wei: int = MIN_BALANCE_WEI
    gas_multiplier: float = MULTIPLIER

    def with_preferred_version(self, version: int) -> "ProverSettings":
        """Move `version` to the front of the try order, keeping the rest."""
        rest = tuple(v for v in self.output_root_versions if v != version)
        return self._replace(output_root_versions=(version,) + rest)


def parse_versions(raw: str) -> Tuple[int, ...]:
    versions = []

    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue

        version = int(part, 16) if part.startswith("0x") else int(part)

        if version not in KNOWN_OUTPUT_ROOT_VERSIONS:
            raise ValueError(f"Unknown output root version: {part}")

        if version not in versions:
            versions.append(version)

    if not versions:
        raise ValueError("`OUTPUT_ROOT_VERSIONS` must name at least one version")

    return tuple(versions)


def _settings_from_env() -> ProverSettings:
    settings = ProverSettings()

    versions = os.getenv(ENV.OUTPUT_ROOT_VERSIONS)
    if versions:
        settings = settings._replace(output_root_versions=parse_versions(versions))

    lookback = os.getenv(ENV.GAME_LOOKBACK_WINDOW)
    if lookback:
        if int(lookback) <= 0:
            raise ValueError("`GAME_LOOKBACK_WINDOW` must be positive")
        settings = settings._replace(game_lookback=int(lookback))

    workers = os.getenv(ENV.GAME_SCAN_WORKERS)
    if workers:
        settings = settings._replace(game_scan_workers=max(1, int(workers)))

    timeout = os.getenv(ENV.RPC_TIMEOUT)
    if timeout:
        settings = settings._replace(rpc_timeout=float(timeout))

    return settings


def load_settings() -> ProverSettings:
    load_dotenv()

    try:
        return _settings_from_env()
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings in environment: {e}", e) from e
