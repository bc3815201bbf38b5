from unittest.mock import MagicMock

import pytest
import requests
from solcx.exceptions import SolcInstallationError

from chain_clock_harness.accounts import AccountProvisioner
from chain_clock_harness.config import NodeConfig, WalletsConfig
from chain_clock_harness.network import find_anvil
from chain_clock_harness.timestamp_tracker import build_artifact

from helpers import launch, write_bundle


@pytest.fixture
def bundle_dir(tmp_path):
    return write_bundle(tmp_path / "out" / "release")


@pytest.fixture
def mock_w3():
    w3 = MagicMock()
    w3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "result": True}
    return w3


@pytest.fixture(scope="session")
def anvil_path():
    path = find_anvil(NodeConfig(verbose=False).anvil_path)
    if path is None:
        pytest.skip("Anvil binary required. Install Foundry or set `CHAIN_CLOCK_ANVIL_PATH`.")
    return path


@pytest.fixture(scope="session")
def tracker_artifact_dir(anvil_path, tmp_path_factory):
    out_dir = tmp_path_factory.mktemp("out") / "release"
    try:
        build_artifact(out_dir, verbose=False)
    except (SolcInstallationError, requests.exceptions.RequestException, OSError) as e:
        pytest.skip(f"solc could not be installed: {e}")
    return out_dir


@pytest.fixture
def network(anvil_path):
    network = launch(anvil_path)
    yield network
    network.stop()


@pytest.fixture
def wallets(network):
    config = WalletsConfig(num_wallets=3, assets_per_wallet=1, coins_per_asset=1_000_000_000)
    return AccountProvisioner(network.w3, verbose=False).provision(config)
