"""
Account Provisioner

Creates a fixed-size pool of funded test accounts on a launched network.
Balances are written directly with Anvil cheatcodes, so provisioning does
not depend on any pre-funded account.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from eth_abi import encode
from eth_account import Account as EthAccount
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address
from web3 import Web3

from .config import WalletsConfig, NodeConfig, AssetToken, NATIVE_ASSET
from .errors import ProvisioningError
from .identity import IdentitySource, default_identity_source
from .network import NetworkController, TRANSPORT_EXCEPTIONS

# balanceOf(address)
BALANCE_OF_SELECTOR = bytes.fromhex('70a08231')


@dataclass(frozen=True)
class Account:
    """Funded test account"""
    signer: LocalAccount
    balances: Dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def address(self) -> str:
        return self.signer.address

    @property
    def key(self) -> bytes:
        return self.signer.key

    def __repr__(self):
        return f"Account({self.address})"


def erc20_balance_slot(holder_address: str, balance_slot: int) -> str:
    """
    Storage key of balances[holder] for a Solidity mapping at balance_slot

    Returns:
        0x-prefixed 32-byte hex key
    """
    holder = to_checksum_address(holder_address)
    address_padded = holder[2:].lower().rjust(64, '0')
    slot_padded = format(balance_slot, '064x')
    return '0x' + keccak(bytes.fromhex(address_padded + slot_padded)).hex()


class AccountProvisioner:
    """Account Provisioner"""

    def __init__(self, w3: Web3, identity: IdentitySource = None, verbose: bool = True):
        """
        Args:
            w3: Connection to a launched network
            identity: Source of private keys (default: OS entropy)
            verbose: Print progress messages
        """
        self.w3 = w3
        self.identity = identity or default_identity_source()
        self.verbose = verbose

    def provision(self, wallets_config: WalletsConfig) -> List[Account]:
        """
        Create and fund the account pool

        Args:
            wallets_config: Pool size, assets per account and balance per asset

        Returns:
            Funded accounts, in creation order

        Raises:
            ProvisioningError: assets cannot be allocated or funding failed
        """
        extra_assets = wallets_config.assets_per_wallet - 1
        if extra_assets > len(wallets_config.asset_tokens):
            raise ProvisioningError(
                f"{wallets_config.assets_per_wallet} assets per wallet requested but only "
                f"{len(wallets_config.asset_tokens)} asset tokens configured besides the native coin",
                step='provision'
            )
        tokens = wallets_config.asset_tokens[:extra_assets]

        accounts = []
        for _ in range(wallets_config.num_wallets):
            signer = EthAccount.from_key(self.identity.private_key())
            balances = {NATIVE_ASSET: self._set_native_balance(signer.address, wallets_config.coins_per_asset)}
            for token in tokens:
                balances[to_checksum_address(token.address)] = self._set_token_balance(
                    token, signer.address, wallets_config.coins_per_asset
                )
            accounts.append(Account(signer=signer, balances=balances))

        if self.verbose:
            print(f"✓ Provisioned {len(accounts)} test accounts")
            for account in accounts:
                print(f"  • {account.address}: {wallets_config.assets_per_wallet} asset(s) x {wallets_config.coins_per_asset}")
        return accounts

    def _request(self, method: str, params: list, address: str):
        try:
            response = self.w3.provider.make_request(method, params)
        except TRANSPORT_EXCEPTIONS as e:
            raise ProvisioningError(f"{method} failed: network unreachable ({e})", step='provision', account=address) from e
        if 'error' in response:
            raise ProvisioningError(f"{method} failed: {response['error']}", step='provision', account=address)
        return response.get('result')

    def _set_native_balance(self, address: str, amount: int) -> int:
        """Set native coin balance using Anvil cheatcode"""
        address = to_checksum_address(address)
        self._request('anvil_setBalance', [address, hex(amount)], address)

        actual = self.w3.eth.get_balance(address)
        if actual != amount:
            raise ProvisioningError(
                f"Native balance verification failed: expected {amount}, got {actual}",
                step='provision',
                account=address
            )
        return actual

    def _set_token_balance(self, token: AssetToken, holder_address: str, amount: int) -> int:
        """Set ERC20 balance by writing the balances mapping slot directly"""
        token_addr = to_checksum_address(token.address)
        holder_addr = to_checksum_address(holder_address)

        storage_key = erc20_balance_slot(holder_addr, token.balance_slot)
        self._request('anvil_setStorageAt', [token_addr, storage_key, '0x' + format(amount, '064x')], holder_addr)

        data = '0x' + BALANCE_OF_SELECTOR.hex() + encode(['address'], [holder_addr]).hex()
        try:
            result = self.w3.eth.call({'to': token_addr, 'data': data})
        except TRANSPORT_EXCEPTIONS as e:
            raise ProvisioningError(f"balanceOf failed on {token_addr} ({e})", step='provision', account=holder_addr) from e

        actual = int.from_bytes(bytes(result), 'big') if result else 0
        if actual != amount:
            raise ProvisioningError(
                f"Token balance verification failed on {token_addr} (slot {token.balance_slot}): "
                f"expected {amount}, got {actual}",
                step='provision',
                account=holder_addr
            )
        return actual


def launch_provider_and_get_accounts(
    wallets_config: WalletsConfig = None,
    node_config: NodeConfig = None,
    identity: IdentitySource = None
) -> Tuple[NetworkController, List[Account]]:
    """
    Launch a network and provision a funded account pool on it

    The network is stopped again if provisioning fails. The default node
    config prices gas at 0, so small balances can still deploy and call;
    with gas_price=None the accounts need enough coin for Anvil's fees.

    Returns:
        (running network controller, funded accounts)
    """
    wallets_config = wallets_config or WalletsConfig()
    network = NetworkController(node_config)
    w3 = network.launch()
    try:
        accounts = AccountProvisioner(w3, identity=identity, verbose=network.verbose).provision(wallets_config)
    except Exception:
        network.stop()
        raise
    return network, accounts
