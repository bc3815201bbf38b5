import json
from pathlib import Path

from chain_clock_harness.config import NodeConfig
from chain_clock_harness.network import NetworkController
from chain_clock_harness.timestamp_tracker import ARTIFACT_NAME


TIMESTAMP_TRACKER_ABI = [
    {
        "type": "function",
        "name": "get_timestamp",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint64", "internalType": "uint64"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "get_last_update_time",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint64", "internalType": "uint64"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "refresh_last_update_time",
        "inputs": [],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "check_if_current_time_older_than_last_update_time",
        "inputs": [],
        "outputs": [],
        "stateMutability": "view",
    },
]

# runtime bytes only need to be well-formed hex for the offline tests
FAKE_RUNTIME = bytes.fromhex("6080604052348015600f57600080fd5b50")


def write_bundle(directory: Path, name: str = ARTIFACT_NAME, bytecode: str = None, abi=None, storage_slots=None):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.bin").write_text(bytecode if bytecode is not None else FAKE_RUNTIME.hex())
    (directory / f"{name}-abi.json").write_text(json.dumps(abi if abi is not None else TIMESTAMP_TRACKER_ABI))
    if storage_slots is not None:
        (directory / f"{name}-storage_slots.json").write_text(json.dumps(storage_slots))
    return directory


def launch(anvil_path: str, **kwargs) -> NetworkController:
    """Launch a quiet node"""
    network = NetworkController(NodeConfig(anvil_path=anvil_path, verbose=False, **kwargs))
    network.launch()
    return network
