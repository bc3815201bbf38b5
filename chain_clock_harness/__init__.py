"""
Chain Clock Harness - deploy, invoke and advance time on a disposable Anvil network

Provisions funded test accounts, deploys contract instances with a random
CREATE2 salt and drives time-dependent contract behaviour by producing
blocks on demand.
"""

__version__ = "0.1.0"

from .accounts import Account, AccountProvisioner, launch_provider_and_get_accounts
from .artifacts import ContractArtifact, StorageConfiguration, compile_artifact, load_artifact
from .client import ContractClient, InvocationResult, MethodCall
from .config import AssetToken, NodeConfig, Trigger, WalletsConfig
from .deployment import ContractInstance, DeploymentManager, compute_contract_address
from .errors import (
    ArtifactError,
    ContractRevert,
    DeploymentError,
    HarnessError,
    NetworkError,
    NetworkLaunchError,
    ProvisioningError,
    SetupError,
    TransportError,
)
from .identity import IdentitySource, SeededIdentitySource, SystemIdentitySource
from .network import NetworkController
