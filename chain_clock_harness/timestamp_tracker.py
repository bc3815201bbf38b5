"""
TimestampTracker contract facade

Typed bindings for the bundled timestamp-tracking contract
(contracts/TimestampTracker.sol). Each method returns a MethodCall, so the
caller picks simulate() or call() at the call site.
"""

from pathlib import Path

from web3 import Web3

from .artifacts import ContractArtifact, StorageConfiguration, artifact_paths, compile_artifact, load_artifact
from .client import ContractClient, MethodCall
from .config import default_artifact_dir
from .deployment import DeploymentManager
from .identity import IdentitySource


CONTRACT_NAME = 'TimestampTracker'
ARTIFACT_NAME = 'timestamp_tracker'
SOURCE_PATH = Path(__file__).parent / 'contracts' / 'TimestampTracker.sol'

# revert reason of check_if_current_time_older_than_last_update_time
TIME_NOT_ADVANCED = 'TIME_NOT_ADVANCED'


def build_artifact(out_dir=None, solc_version: str = None, verbose: bool = True) -> ContractArtifact:
    """Compile TimestampTracker.sol into out_dir (default: CHAIN_CLOCK_ARTIFACT_DIR or out/release)"""
    return compile_artifact(
        SOURCE_PATH,
        CONTRACT_NAME,
        out_dir or default_artifact_dir(),
        artifact_name=ARTIFACT_NAME,
        solc_version=solc_version,
        verbose=verbose
    )


class TimestampTrackerContract:
    """TimestampTracker bound to one account"""

    def __init__(self, client: ContractClient):
        self.client = client

    @classmethod
    def deploy(
        cls,
        w3: Web3,
        account,
        artifact_dir=None,
        storage_config: StorageConfiguration = None,
        identity: IdentitySource = None,
        verbose: bool = True
    ) -> 'TimestampTrackerContract':
        """
        Load the artifact bundle and deploy a fresh instance with a random salt

        Args:
            w3: Connection to a launched network
            account: Deployer, and the account the returned facade signs with
            artifact_dir: Bundle directory (default: CHAIN_CLOCK_ARTIFACT_DIR or out/release)
            storage_config: Initial storage (default: the bundle's storage slots file)
            identity: Salt source
        """
        artifact_dir = artifact_dir or default_artifact_dir()
        artifact = load_artifact(artifact_dir, ARTIFACT_NAME)
        if storage_config is None:
            storage_config = StorageConfiguration().add_slot_overrides_from_file(
                artifact_paths(artifact_dir, ARTIFACT_NAME)['storage_slots']
            )

        manager = DeploymentManager(w3, identity=identity, verbose=verbose)
        return cls(manager.deploy(artifact, storage_config, account))

    def with_account(self, account) -> 'TimestampTrackerContract':
        return TimestampTrackerContract(self.client.rebind(account))

    @property
    def address(self) -> str:
        return self.client.address

    @property
    def account(self):
        return self.client.account

    def get_timestamp(self) -> MethodCall:
        return self.client.methods.get_timestamp()

    def get_last_update_time(self) -> MethodCall:
        return self.client.methods.get_last_update_time()

    def refresh_last_update_time(self) -> MethodCall:
        return self.client.methods.refresh_last_update_time()

    def check_if_current_time_older_than_last_update_time(self) -> MethodCall:
        return self.client.methods.check_if_current_time_older_than_last_update_time()
