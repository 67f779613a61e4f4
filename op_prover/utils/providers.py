import os
from typing import Dict, List

from dotenv import load_dotenv
from web3 import Web3

from .config import DEFAULT_RPC_TIMEOUT, DEFAULT_RPC_URLS, ENV, ChainName


load_dotenv()


_PRIMARY_ENV: Dict[ChainName, ENV] = {
    ChainName.ETH_MAINNET: ENV.L1_RPC_URL,
    ChainName.MEGAETH: ENV.L2_RPC_URL,
}

_FALLBACK_ENV: Dict[ChainName, ENV] = {
    ChainName.MEGAETH: ENV.L2_FALLBACK_RPC_URLS,
}


def get_rpc_urls(chain_name: ChainName) -> List[str]:
    """
    Ordered endpoint list for a chain: the env primary (if set), then env
    fallbacks, then the built-in defaults. Duplicates are dropped.
    """
    if chain_name not in DEFAULT_RPC_URLS:
        raise ValueError(f"Unknown chain: {chain_name}")

    urls: List[str] = []

    primary = os.getenv(_PRIMARY_ENV[chain_name])
    if primary:
        urls.append(primary.strip())

    fallback_env = _FALLBACK_ENV.get(chain_name)
    fallbacks = os.getenv(fallback_env) if fallback_env else None
    if fallbacks:
        urls.extend(url.strip() for url in fallbacks.split(",") if url.strip())

    urls.extend(DEFAULT_RPC_URLS[chain_name])

    return list(dict.fromkeys(urls))


def get_web3(url: str, timeout: float = DEFAULT_RPC_TIMEOUT) -> Web3:
    # one request per call; endpoint fallback in `ChainReader` is the only retry
    w3 = Web3(
        Web3.HTTPProvider(
            url,
            request_kwargs={"timeout": timeout},
            exception_retry_configuration=None,
        )
    )

    return w3


def get_web3_pool(chain_name: ChainName, timeout: float = DEFAULT_RPC_TIMEOUT) -> List[Web3]:
    return [get_web3(url, timeout) for url in get_rpc_urls(chain_name)]
