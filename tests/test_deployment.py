from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import ContractLogicError

from chain_clock_harness.artifacts import StorageConfiguration, load_artifact
from chain_clock_harness.client import ContractClient
from chain_clock_harness.deployment import (
    CREATE2_FACTORY_ADDRESS,
    CREATE2_FACTORY_RUNTIME,
    RUNTIME_DEPLOYER_SIZE,
    SLOT_INIT_SIZE,
    DeploymentManager,
    build_init_code,
    compute_contract_address,
)
from chain_clock_harness.errors import ArtifactError, DeploymentError
from chain_clock_harness.identity import SeededIdentitySource
from chain_clock_harness.timestamp_tracker import ARTIFACT_NAME

from helpers import FAKE_RUNTIME


def word(value: int) -> bytes:
    return value.to_bytes(32, "big")


class TestInitCode:
    def test_without_storage(self):
        init_code = build_init_code(FAKE_RUNTIME, {})

        assert len(init_code) == RUNTIME_DEPLOYER_SIZE + len(FAKE_RUNTIME)
        assert init_code.endswith(FAKE_RUNTIME)
        # PUSH2 len, DUP1, PUSH2 offset, PUSH1 0, CODECOPY, PUSH1 0, RETURN
        assert init_code[:RUNTIME_DEPLOYER_SIZE] == (
            b"\x61" + len(FAKE_RUNTIME).to_bytes(2, "big")
            + b"\x80"
            + b"\x61" + RUNTIME_DEPLOYER_SIZE.to_bytes(2, "big")
            + b"\x60\x00\x39\x60\x00\xf3"
        )

    def test_storage_prelude(self):
        init_code = build_init_code(FAKE_RUNTIME, {word(1): word(7), word(0): word(42)})

        prelude_size = 2 * SLOT_INIT_SIZE
        assert len(init_code) == prelude_size + RUNTIME_DEPLOYER_SIZE + len(FAKE_RUNTIME)
        # slots are written in key order: PUSH32 value, PUSH32 key, SSTORE
        assert init_code[:SLOT_INIT_SIZE] == b"\x7f" + word(42) + b"\x7f" + word(0) + b"\x55"
        assert init_code[SLOT_INIT_SIZE:prelude_size] == b"\x7f" + word(7) + b"\x7f" + word(1) + b"\x55"
        offset = int.from_bytes(init_code[prelude_size + 5:prelude_size + 7], "big")
        assert init_code[offset:] == FAKE_RUNTIME

    def test_runtime_too_large(self):
        with pytest.raises(ArtifactError, match="too large"):
            build_init_code(b"\x00" * 0x10000, {})


class TestContractAddress:
    # EIP-1014 examples 0 and 1
    @pytest.mark.parametrize("factory, expected", [
        ("0x0000000000000000000000000000000000000000", "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"),
        ("0xdeadbeef00000000000000000000000000000000", "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3"),
    ])
    def test_create2_reference_vectors(self, factory, expected):
        assert compute_contract_address(b"\x00", bytes(32), factory) == expected

    def test_salt_changes_address(self):
        init_code = build_init_code(FAKE_RUNTIME, {})
        source = SeededIdentitySource(3)
        assert compute_contract_address(init_code, source.salt()) != compute_contract_address(init_code, source.salt())

    def test_storage_changes_address(self):
        salt = bytes(32)
        plain = compute_contract_address(build_init_code(FAKE_RUNTIME, {}), salt)
        seeded = compute_contract_address(build_init_code(FAKE_RUNTIME, {word(0): word(1)}), salt)
        assert plain != seeded

    def test_address_is_deterministic(self):
        init_code = build_init_code(FAKE_RUNTIME, {word(0): word(1)})
        salt = SeededIdentitySource(9).salt()
        assert compute_contract_address(init_code, salt) == compute_contract_address(init_code, salt)

    def test_salt_size_checked(self):
        with pytest.raises(ValueError):
            compute_contract_address(b"\x00", b"\x00" * 31)


def make_chain(w3, artifact, deployed_code=None, receipt_status=1):
    """Wire a mock node: factory present, derived address empty until the deployment is mined"""
    code = {CREATE2_FACTORY_ADDRESS: CREATE2_FACTORY_RUNTIME}

    def get_code(address):
        return code.get(address, b"")

    def wait_for_receipt(tx_hash, timeout):
        if receipt_status == 1:
            for address in w3.pending_addresses:
                code[address] = deployed_code if deployed_code is not None else artifact.bytecode
        return {"status": receipt_status, "blockNumber": 12, "transactionHash": b"\x11" * 32, "gasUsed": 90000}

    w3.pending_addresses = []
    w3.eth.get_code.side_effect = get_code
    w3.eth.get_transaction_count.return_value = 0
    w3.eth.gas_price = 0
    w3.eth.chain_id = 31337
    w3.eth.estimate_gas.return_value = 100000
    w3.eth.wait_for_transaction_receipt.side_effect = wait_for_receipt
    return code


def deploy(w3, artifact, seed=1, storage_config=None):
    deployer = MagicMock(address="0x1111111111111111111111111111111111111111", key=b"\x01" * 32)
    manager = DeploymentManager(w3, identity=SeededIdentitySource(seed), verbose=False)

    expected_salt = SeededIdentitySource(seed).salt()
    storage = (storage_config or StorageConfiguration()).resolve(artifact)
    expected_address = compute_contract_address(build_init_code(artifact.bytecode, storage), expected_salt)
    w3.pending_addresses.append(expected_address)

    return manager.deploy(artifact, storage_config, deployer), expected_address, expected_salt


class TestDeploymentManager:
    @pytest.fixture
    def artifact(self, bundle_dir):
        return load_artifact(bundle_dir, ARTIFACT_NAME)

    def test_deploy_returns_client_bound_to_deployer(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)

        client, expected_address, expected_salt = deploy(mock_w3, artifact)

        assert isinstance(client, ContractClient)
        assert client.address == expected_address
        assert client.account.address == "0x1111111111111111111111111111111111111111"
        assert client.instance.salt == expected_salt
        assert client.instance.deployer == client.account.address

        transaction = mock_w3.eth.estimate_gas.call_args[0][0]
        assert transaction["to"] == CREATE2_FACTORY_ADDRESS
        assert transaction["data"].startswith("0x" + expected_salt.hex())

    def test_installs_factory_when_missing(self, mock_w3, artifact):
        code = make_chain(mock_w3, artifact)
        del code[CREATE2_FACTORY_ADDRESS]

        deploy(mock_w3, artifact)

        mock_w3.provider.make_request.assert_any_call(
            "anvil_setCode", [CREATE2_FACTORY_ADDRESS, "0x" + CREATE2_FACTORY_RUNTIME.hex()]
        )

    def test_existing_factory_is_reused(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)

        deploy(mock_w3, artifact)

        mock_w3.provider.make_request.assert_not_called()

    def test_storage_overrides_reach_init_code(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)
        storage_config = StorageConfiguration().add_slot_overrides({0: 42})

        client, expected_address, _ = deploy(mock_w3, artifact, storage_config=storage_config)

        assert client.address == expected_address
        assert client.instance.storage == {word(0): word(42)}

    def test_collision_detected_before_sending(self, mock_w3, artifact):
        code = make_chain(mock_w3, artifact)
        init_code = build_init_code(artifact.bytecode, {})
        code[compute_contract_address(init_code, SeededIdentitySource(5).salt())] = artifact.bytecode

        with pytest.raises(DeploymentError, match="collision"):
            deploy(mock_w3, artifact, seed=5)
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_failed_receipt(self, mock_w3, artifact):
        make_chain(mock_w3, artifact, receipt_status=0)

        with pytest.raises(DeploymentError, match="status: 0") as exc_info:
            deploy(mock_w3, artifact)
        assert exc_info.value.step == "deploy"
        assert exc_info.value.method == ARTIFACT_NAME

    def test_code_mismatch(self, mock_w3, artifact):
        make_chain(mock_w3, artifact, deployed_code=b"\xfe")

        with pytest.raises(DeploymentError, match="No matching code"):
            deploy(mock_w3, artifact)

    def test_estimation_revert(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)
        mock_w3.eth.estimate_gas.side_effect = ContractLogicError("execution reverted")

        with pytest.raises(DeploymentError, match="reverted"):
            deploy(mock_w3, artifact)

    def test_insufficient_funds(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)
        mock_w3.eth.send_raw_transaction.side_effect = ValueError({"code": -32003, "message": "Insufficient funds for gas * price + value"})

        with pytest.raises(DeploymentError, match="rejected"):
            deploy(mock_w3, artifact)

    def test_network_unreachable(self, mock_w3, artifact):
        make_chain(mock_w3, artifact)
        mock_w3.eth.get_transaction_count.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(DeploymentError, match="could not be submitted"):
            deploy(mock_w3, artifact)

    def test_deployer_required(self, mock_w3, artifact):
        manager = DeploymentManager(mock_w3, verbose=False)
        with pytest.raises(DeploymentError, match="deployer"):
            manager.deploy(artifact)
