"""
Contract Deployment Manager

Deploys a contract artifact through a CREATE2 factory. The contract address
is derived from the factory, a fresh random salt and the init code (runtime
bytecode plus initial storage), so the same artifact can be deployed any
number of times without address collisions.
"""

from dataclasses import dataclass
from typing import Any

from eth_utils import keccak, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .artifacts import ContractArtifact, StorageConfiguration, StorageSlots
from .errors import DeploymentError, ArtifactError
from .identity import IdentitySource, default_identity_source
from .network import TRANSPORT_EXCEPTIONS
from .transactions import prepare_transaction, sign_and_send


# Anvil ships this deterministic deployer; calldata is salt (32 bytes) ++ init code
CREATE2_FACTORY_ADDRESS = to_checksum_address('0x4e59b44847b379578588920ca78fbf26c0b4956c')

# Runtime installed with anvil_setCode when the node has no factory:
# copy init code from calldata[32:], CREATE2 it with calldata[0:32] as salt,
# return the new address or bubble up the revert data
CREATE2_FACTORY_RUNTIME = bytes.fromhex(
    '366020900380602060003760003590600034f580156020576000526020'
    '6000f35b3d600060003e3d6000fd'
)

PUSH1 = b'\x60'
PUSH2 = b'\x61'
PUSH32 = b'\x7f'
DUP1 = b'\x80'
CODECOPY = b'\x39'
RETURN = b'\xf3'
SSTORE = b'\x55'

RUNTIME_DEPLOYER_SIZE = 13
SLOT_INIT_SIZE = 67


def build_init_code(runtime: bytes, storage: StorageSlots) -> bytes:
    """
    Init code that writes the initial storage slots and returns the runtime

    Layout: one PUSH32 value / PUSH32 key / SSTORE per slot, then
    CODECOPY(0, offset, len) / RETURN(0, len) over the trailing runtime.
    """
    prelude = b''.join(
        PUSH32 + value + PUSH32 + key + SSTORE
        for key, value in sorted(storage.items())
    )
    offset = len(prelude) + RUNTIME_DEPLOYER_SIZE
    if len(runtime) > 0xffff or offset > 0xffff:
        raise ArtifactError(
            f"Init code too large: runtime {len(runtime)} bytes, {len(storage)} storage slots",
            step='deploy'
        )

    deployer = (
        PUSH2 + len(runtime).to_bytes(2, 'big')
        + DUP1
        + PUSH2 + offset.to_bytes(2, 'big')
        + PUSH1 + b'\x00'
        + CODECOPY
        + PUSH1 + b'\x00'
        + RETURN
    )
    return prelude + deployer + runtime


def compute_contract_address(init_code: bytes, salt: bytes, factory: str = CREATE2_FACTORY_ADDRESS) -> str:
    """
    CREATE2 address: keccak256(0xff ++ factory ++ salt ++ keccak256(init_code))[12:]
    """
    if len(salt) != 32:
        raise ValueError(f"Salt must be 32 bytes, got {len(salt)}")
    factory_bytes = bytes.fromhex(to_checksum_address(factory)[2:])
    digest = keccak(b'\xff' + factory_bytes + salt + keccak(init_code))
    return to_checksum_address(digest[12:])


@dataclass(frozen=True)
class ContractInstance:
    """Deployed, addressable contract"""
    artifact: ContractArtifact
    address: str
    salt: bytes
    deployer: str
    storage: StorageSlots
    receipt: Any = None

    @property
    def abi(self):
        return self.artifact.abi

    @property
    def name(self) -> str:
        return self.artifact.name


class DeploymentManager:
    """Contract Deployment Manager"""

    def __init__(
        self,
        w3: Web3,
        identity: IdentitySource = None,
        factory_address: str = CREATE2_FACTORY_ADDRESS,
        verbose: bool = True
    ):
        """
        Args:
            w3: Connection to a launched network
            identity: Salt source (default: OS entropy)
            factory_address: CREATE2 factory to deploy through
            verbose: Print progress messages
        """
        self.w3 = w3
        self.identity = identity or default_identity_source()
        self.factory_address = to_checksum_address(factory_address)
        self.verbose = verbose
        self._factory_ready = False

    def _print(self, message: str):
        if self.verbose:
            print(message)

    def ensure_factory(self):
        """Install the CREATE2 factory on the node if it has none"""
        if self._factory_ready:
            return
        try:
            code = self.w3.eth.get_code(self.factory_address)
            if not code:
                response = self.w3.provider.make_request(
                    'anvil_setCode',
                    [self.factory_address, '0x' + CREATE2_FACTORY_RUNTIME.hex()]
                )
                if 'error' in response:
                    raise DeploymentError(f"Cannot install CREATE2 factory: {response['error']}", step='deploy')
                self._print(f"  • CREATE2 factory installed at {self.factory_address}")
        except TRANSPORT_EXCEPTIONS as e:
            raise DeploymentError(f"Cannot reach network to check CREATE2 factory ({e})", step='deploy') from e
        self._factory_ready = True

    def deploy_instance(
        self,
        artifact: ContractArtifact,
        storage_config: StorageConfiguration = None,
        deployer=None,
        timeout: int = 30
    ) -> ContractInstance:
        """
        Deploy an artifact and return the deployed instance

        Args:
            artifact: Loaded contract bundle
            storage_config: Initial storage resolution (default: bundled slots)
            deployer: Account signing the deployment
            timeout: Seconds to wait for the deployment receipt

        Raises:
            ArtifactError: storage override file corrupt, init code too large
            DeploymentError: estimation, signing, funding or collision failure
        """
        if deployer is None:
            raise DeploymentError("A deployer account is required", step='deploy', method=artifact.name)

        deployer_address = deployer.address
        storage_config = storage_config or StorageConfiguration()
        storage = storage_config.resolve(artifact)

        salt = self.identity.salt()
        init_code = build_init_code(artifact.bytecode, storage)
        address = compute_contract_address(init_code, salt, self.factory_address)

        self._print(f"✓ Deploying {artifact.name} ...")
        self.ensure_factory()

        def fail(message: str, cause: Exception = None):
            error = DeploymentError(message, step='deploy', account=deployer_address, method=artifact.name)
            if cause is not None:
                raise error from cause
            raise error

        try:
            if self.w3.eth.get_code(address):
                fail(f"Address collision: {address} already has code (salt 0x{salt.hex()})")

            transaction = prepare_transaction(self.w3, deployer_address, {
                'to': self.factory_address,
                'data': '0x' + (salt + init_code).hex(),
            })
            receipt = sign_and_send(self.w3, deployer, transaction, timeout=timeout)
        except ContractLogicError as e:
            fail(f"Deployment reverted: {e}", e)
        except TimeExhausted as e:
            fail(f"Deployment not confirmed within {timeout}s", e)
        except (ValueError, Web3Exception) as e:
            # node rejections (insufficient funds, nonce, signature)
            fail(f"Deployment rejected: {e}", e)
        except TRANSPORT_EXCEPTIONS as e:
            fail(f"Deployment could not be submitted ({e})", e)

        if receipt['status'] != 1:
            fail(f"Deployment failed with status: {receipt['status']}")

        deployed_code = self.w3.eth.get_code(address)
        if bytes(deployed_code) != artifact.bytecode:
            fail(f"No matching code at derived address {address} after deployment")

        self._print(f"  • {artifact.name} deployed: {address} ✅")
        self._print(f"  • Salt: 0x{salt.hex()}")
        self._print(f"  • Block: {receipt['blockNumber']}")

        return ContractInstance(
            artifact=artifact,
            address=address,
            salt=salt,
            deployer=deployer_address,
            storage=storage,
            receipt=receipt
        )

    def deploy(
        self,
        artifact: ContractArtifact,
        storage_config: StorageConfiguration = None,
        deployer=None,
        timeout: int = 30
    ):
        """
        Deploy an artifact and return a client bound to the deployer

        Returns:
            ContractClient signing as deployer
        """
        from .client import ContractClient

        instance = self.deploy_instance(artifact, storage_config, deployer, timeout=timeout)
        return ContractClient(self.w3, instance, deployer)
