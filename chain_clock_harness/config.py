"""
Harness Configuration

Launch and provisioning settings. Every value can be passed explicitly,
otherwise it falls back to an environment variable and then to a default.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List


DEFAULT_NUM_WALLETS = 10
DEFAULT_COINS_PER_ASSET = 10**18
DEFAULT_CHAIN_ID = 31337
DEFAULT_SOLC_VERSION = '0.8.20'

NATIVE_ASSET = 'native'


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got: {value!r}")


@dataclass(frozen=True)
class AssetToken:
    """ERC20 token used as an extra funded asset"""
    address: str
    balance_slot: int = 0


@dataclass
class WalletsConfig:
    """
    Account pool settings

    Args:
        num_wallets: Number of accounts to create
        assets_per_wallet: Number of assets funded on each account.
                           Asset 0 is the native coin, the rest come from asset_tokens
        coins_per_asset: Initial balance of every asset (smallest unit)
        asset_tokens: ERC20 tokens backing assets 1..n
    """
    num_wallets: int = DEFAULT_NUM_WALLETS
    assets_per_wallet: int = 1
    coins_per_asset: int = DEFAULT_COINS_PER_ASSET
    asset_tokens: List[AssetToken] = field(default_factory=list)

    def __post_init__(self):
        if self.num_wallets < 1:
            raise ValueError(f"num_wallets must be at least 1, got {self.num_wallets}")
        if self.assets_per_wallet < 1:
            raise ValueError(f"assets_per_wallet must be at least 1, got {self.assets_per_wallet}")
        if self.coins_per_asset < 0:
            raise ValueError(f"coins_per_asset must not be negative, got {self.coins_per_asset}")


@dataclass(frozen=True)
class Trigger:
    """
    Block production policy

    manual:   one block per submitted transaction, otherwise only on explicit advance
    interval: blocks produced every block_time seconds by the node itself
    """
    mode: str = 'manual'
    block_time: Optional[int] = None

    MANUAL = 'manual'
    INTERVAL = 'interval'

    @classmethod
    def manual(cls) -> 'Trigger':
        return cls(mode=cls.MANUAL)

    @classmethod
    def interval(cls, block_time: int = 1) -> 'Trigger':
        if block_time < 1:
            raise ValueError(f"Interval block time must be at least 1 second, got {block_time}")
        return cls(mode=cls.INTERVAL, block_time=block_time)

    @property
    def is_interval(self) -> bool:
        return self.mode == self.INTERVAL

    def __post_init__(self):
        if self.mode not in (self.MANUAL, self.INTERVAL):
            raise ValueError(f"Unsupported block production trigger: {self.mode}")
        if self.mode == self.INTERVAL and not self.block_time:
            raise ValueError("Interval trigger requires block_time")


class NodeConfig:
    """Network launch settings"""

    def __init__(
        self,
        block_production: Trigger = None,
        block_time_unit: int = 1,
        chain_id: int = None,
        port: int = None,
        fork_url: str = None,
        gas_price: Optional[int] = 0,
        anvil_path: str = None,
        startup_timeout: int = 30,
        request_timeout: int = 60,
        verbose: bool = True
    ):
        """
        Args:
            block_production: Trigger policy (default: manual)
            block_time_unit: Seconds added to the chain timestamp by each produced block
            chain_id: Chain ID (env CHAIN_CLOCK_CHAIN_ID, default 31337)
            port: RPC port (env CHAIN_CLOCK_ANVIL_PORT, default: first free port)
            fork_url: Optional RPC URL to fork from (env CHAIN_CLOCK_FORK_URL)
            gas_price: Gas price and base fee of the node. The default 0 makes
                       transactions free, so small test balances can still pay
                       for deployment; None keeps Anvil's own pricing
            anvil_path: Anvil binary (env CHAIN_CLOCK_ANVIL_PATH, default: searched)
            startup_timeout: Seconds to wait for the node to accept connections
            request_timeout: HTTP timeout for each RPC request
            verbose: Print progress messages
        """
        if block_time_unit < 1:
            raise ValueError(f"block_time_unit must be at least 1 second, got {block_time_unit}")

        self.block_production = block_production or Trigger.manual()
        self.block_time_unit = block_time_unit
        self.chain_id = chain_id if chain_id is not None else _env_int('CHAIN_CLOCK_CHAIN_ID', DEFAULT_CHAIN_ID)
        self.port = port if port is not None else _env_int('CHAIN_CLOCK_ANVIL_PORT', None)
        self.fork_url = fork_url or os.getenv('CHAIN_CLOCK_FORK_URL') or None
        self.gas_price = gas_price
        self.anvil_path = anvil_path or os.getenv('CHAIN_CLOCK_ANVIL_PATH') or None
        self.startup_timeout = startup_timeout
        self.request_timeout = request_timeout
        self.verbose = verbose

    def __repr__(self):
        return (
            f"NodeConfig(block_production={self.block_production!r}, "
            f"block_time_unit={self.block_time_unit}, chain_id={self.chain_id}, "
            f"port={self.port}, fork_url={self.fork_url!r})"
        )


def default_solc_version() -> str:
    return os.getenv('CHAIN_CLOCK_SOLC_VERSION', DEFAULT_SOLC_VERSION)


def default_artifact_dir() -> str:
    return os.getenv('CHAIN_CLOCK_ARTIFACT_DIR', os.path.join('out', 'release'))
