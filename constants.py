#!/usr/bin/env python3
from typing import Dict, FrozenSet, List

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
PARASWAP_API_BASE_URL = 'https://apiv5.paraswap.io'
PARASWAP_NETWORK_ID = 137  # Polygon PoS
PARASWAP_EXCLUDED_DEXS = 'ParaSwapPool,ParaSwapLimitOrders'

# --- Environment Variable Names ---
RPC_URL_ENV_VAR = 'RPC_URL'
PRIVATE_KEY_ENV_VAR = 'PRIVATE_KEY'
ARBITRAGE_EXECUTOR_ENV_VAR = 'ARBITRAGE_EXECUTOR_ADDRESS'
PARASWAP_API_URL_ENV_VAR = 'PARASWAP_API_URL'

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

# --- Token Configuration (Polygon, lowercase for case-insensitive matching) ---
TOKENS: Dict[str, Dict[str, object]] = {
    'USDC': {'address': '0x2791bca1f2de4661ed88a30c99a7a9449aa84174', 'decimals': 6},
    'USDT': {'address': '0xc2132d05d31c914a87c6611c10748aeb04b58e8f', 'decimals': 6},
    'DAI': {'address': '0x8f3cf7ad23cd3cadbd9735aff958023239c6a063', 'decimals': 18},
    'WMATIC': {'address': '0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270', 'decimals': 18},
    'WETH': {'address': '0x7ceb23fd6bc0add59e62ac25578270cff1b9f619', 'decimals': 18},
    'WBTC': {'address': '0x1bfd67037b42cf73acf2047067bd4f2c47d9bfd6', 'decimals': 8},
    'QUICK': {'address': '0x831753dd7087cac61ab5644b308642cc1c33dc13', 'decimals': 18},
    'SUSHI': {'address': '0x0b3f868e0be5597d5db7feb59e1cadbb0fdda50a', 'decimals': 18},
    'AAVE': {'address': '0xd6df932a45c0f255f85145f286ea0b292b21c90b', 'decimals': 18},
    'LINK': {'address': '0x53e0bca35ec356bd5dddfebbd1fc0fd03fabad39', 'decimals': 18},
    'CRV': {'address': '0x172370d5cd63279efa6d502dab29171933a610af', 'decimals': 18},
    'BAL': {'address': '0x9a71012b13ca4d3d0cdc72a177df3ef03b0e76a3', 'decimals': 18},
    'GHST': {'address': '0x385eeac5cb85a38a9a07a70c73e0a3271cfb54a7', 'decimals': 18},
}

DEFAULT_BASE_TOKEN = 'USDC'

# --- DEX Configuration ---
# Keys are normalised exchange names: lowercase, no spaces, dashes or underscores.
DEX_ROUTERS: Dict[str, str] = {
    'quickswap': '0xa5e0829caced8ffdd4de3c43696c57f7d7a678ff',
    'quickswapv2': '0xa5e0829caced8ffdd4de3c43696c57f7d7a678ff',
    'sushiswap': '0x1b02da8cb0d097eb8d57a175b88c7d8b47997506',
    'sushiswapv2': '0x1b02da8cb0d097eb8d57a175b88c7d8b47997506',
    'uniswapv3': '0xe592427a0aece92de3edee1f18e0157c05861564',
    'quickswapv3': '0xf5b509bb0909a69b1c207e495f687a596c168e12',
    'curve': '0x445fe580ef8d70ff569ab36e80c647af338db351',
    'curvev1': '0x445fe580ef8d70ff569ab36e80c647af338db351',
}

DEX_FAMILIES: Dict[str, str] = {
    'quickswap': 'constant-product-v2',
    'quickswapv2': 'constant-product-v2',
    'sushiswap': 'constant-product-v2',
    'sushiswapv2': 'constant-product-v2',
    'uniswapv3': 'concentrated-liquidity-v3',
    'quickswapv3': 'concentrated-liquidity-v3',
    'curve': 'stableswap',
    'curvev1': 'stableswap',
}

# Stableswap pools keyed by the unordered pair of token symbols they hold.
STABLESWAP_POOLS: Dict[FrozenSet[str], str] = {
    frozenset({'USDC', 'USDT'}): '0x445fe580ef8d70ff569ab36e80c647af338db351',
    frozenset({'USDC', 'DAI'}): '0x445fe580ef8d70ff569ab36e80c647af338db351',
    frozenset({'USDT', 'DAI'}): '0x445fe580ef8d70ff569ab36e80c647af338db351',
}

DEFAULT_V3_FEE = 3000  # 0.30% tier

# --- Reference Defaults ---
DEFAULT_SCAN_INTERVAL = 300
DEFAULT_PACING_DELAY = 1.0
DEFAULT_CACHE_TTL = 30.0
DEFAULT_MIN_REQUEST_INTERVAL = 1.0
DEFAULT_BASE_COOLDOWN = 2.0
DEFAULT_MAX_COOLDOWN = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT = 10
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_GAS_MARGIN_PCT = 10
DEFAULT_CONFIRMATION_TIMEOUT = 30.0
DEFAULT_HUB_PORT = 3002
DEFAULT_LOG_CAPACITY = 100
DEFAULT_PING_INTERVAL = 30.0
DEFAULT_PONG_TIMEOUT = 5.0

# --- Settlement Contract ---
_SWAP_INFO_COMPONENTS: List[Dict[str, str]] = [
    {'name': 'router', 'type': 'address'},
    {'name': 'path', 'type': 'address[]'},
    {'name': 'amountOutMin', 'type': 'uint256'},
    {'name': 'extraData', 'type': 'bytes'},
]

ARBITRAGE_EXECUTOR_ABI = [
    {
        'inputs': [
            {'name': 'asset', 'type': 'address'},
            {'name': 'amount', 'type': 'uint256'},
            {'name': 'swap1', 'type': 'tuple', 'components': _SWAP_INFO_COMPONENTS},
            {'name': 'swap2', 'type': 'tuple', 'components': _SWAP_INFO_COMPONENTS},
        ],
        'name': 'executeArbitrage',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function',
    }
]
