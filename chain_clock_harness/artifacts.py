"""
Contract Artifacts

Loads a compiled contract bundle from build output and resolves the initial
persistent storage it is deployed with.

Bundle layout (in one directory, addressed by contract name):
    <name>.bin                  hex runtime bytecode
    <name>-abi.json             ABI
    <name>-storage_slots.json   optional, [{"key": "<hex32>", "value": "<hex32>"}, ...]
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from .config import default_solc_version
from .errors import ArtifactError


StorageSlots = Dict[bytes, bytes]
PathLike = Union[str, Path]


def _to_word(value, what: str, source: str) -> bytes:
    """Parse a hex string or int into a 32-byte big-endian word"""
    if isinstance(value, int):
        if value < 0:
            raise ArtifactError(f"Negative {what} in {source}: {value}", step='load_artifact')
        raw = value.to_bytes(32, 'big') if value < 2**256 else None
    elif isinstance(value, str):
        text = value[2:] if value.startswith(('0x', '0X')) else value
        try:
            raw = bytes.fromhex(text.rjust(64, '0')) if len(text) <= 64 else None
        except ValueError:
            raise ArtifactError(f"Invalid hex {what} in {source}: {value!r}", step='load_artifact')
    else:
        raise ArtifactError(f"Invalid {what} in {source}: {value!r}", step='load_artifact')

    if raw is None:
        raise ArtifactError(f"{what.capitalize()} wider than 32 bytes in {source}: {value!r}", step='load_artifact')
    return raw


def parse_storage_slots(entries: Any, source: str = '<memory>') -> StorageSlots:
    """
    Parse a storage slot list into a {key: value} map of 32-byte words

    Args:
        entries: List of {"key": ..., "value": ...} objects
        source: Where the entries came from, for error messages
    """
    if not isinstance(entries, list):
        raise ArtifactError(f"Storage slots must be a JSON list in {source}", step='load_artifact')

    slots = {}
    for entry in entries:
        if not isinstance(entry, dict) or 'key' not in entry or 'value' not in entry:
            raise ArtifactError(f"Storage slot entries need 'key' and 'value' in {source}: {entry!r}", step='load_artifact')
        slots[_to_word(entry['key'], 'key', source)] = _to_word(entry['value'], 'value', source)
    return slots


def dump_storage_slots(slots: StorageSlots) -> List[Dict[str, str]]:
    return [{'key': key.hex(), 'value': value.hex()} for key, value in sorted(slots.items())]


def _read_json(path: Path) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ArtifactError(f"Corrupt JSON in {path}: {e}", step='load_artifact') from e
    except OSError as e:
        raise ArtifactError(f"Cannot read {path}: {e}", step='load_artifact') from e


@dataclass(frozen=True)
class ContractArtifact:
    """Compiled contract: runtime bytecode, ABI and bundled initial storage"""
    name: str
    bytecode: bytes
    abi: List[Dict[str, Any]]
    storage_slots: StorageSlots = field(default_factory=dict)

    def function_abi(self, method: str) -> Optional[Dict[str, Any]]:
        for entry in self.abi:
            if entry.get('type') == 'function' and entry.get('name') == method:
                return entry
        return None

    @property
    def function_names(self) -> List[str]:
        return [entry['name'] for entry in self.abi if entry.get('type') == 'function']


def artifact_paths(artifact_dir: PathLike, name: str) -> Dict[str, Path]:
    artifact_dir = Path(artifact_dir)
    return {
        'bin': artifact_dir / f"{name}.bin",
        'abi': artifact_dir / f"{name}-abi.json",
        'storage_slots': artifact_dir / f"{name}-storage_slots.json",
    }


def load_artifact(artifact_dir: PathLike, name: str) -> ContractArtifact:
    """
    Load a contract bundle from build output

    Args:
        artifact_dir: Directory holding the bundle
        name: Contract name (file prefix)

    Raises:
        ArtifactError: bytecode or ABI missing or corrupt
    """
    paths = artifact_paths(artifact_dir, name)

    if not paths['bin'].exists():
        raise ArtifactError(f"Bytecode not found: {paths['bin']}", step='load_artifact')
    if not paths['abi'].exists():
        raise ArtifactError(f"ABI not found: {paths['abi']}", step='load_artifact')

    try:
        bytecode_hex = paths['bin'].read_text(encoding='utf-8').strip()
        if bytecode_hex.startswith(('0x', '0X')):
            bytecode_hex = bytecode_hex[2:]
        bytecode = bytes.fromhex(bytecode_hex)
    except ValueError as e:  # includes UnicodeDecodeError
        raise ArtifactError(f"Corrupt bytecode in {paths['bin']}: {e}", step='load_artifact') from e
    if not bytecode:
        raise ArtifactError(f"Empty bytecode in {paths['bin']}", step='load_artifact')

    abi = _read_json(paths['abi'])
    if not isinstance(abi, list):
        raise ArtifactError(f"ABI must be a JSON list in {paths['abi']}", step='load_artifact')
    if not all(isinstance(entry, dict) for entry in abi):
        raise ArtifactError(f"ABI entries must be JSON objects in {paths['abi']}", step='load_artifact')

    storage_slots = {}
    if paths['storage_slots'].exists():
        storage_slots = parse_storage_slots(_read_json(paths['storage_slots']), str(paths['storage_slots']))

    return ContractArtifact(name=name, bytecode=bytecode, abi=abi, storage_slots=storage_slots)


class StorageConfiguration:
    """
    Initial persistent storage of a deployment

    Resolution order: the override file if it exists, otherwise the slots
    bundled with the artifact; explicit slot overrides are applied last.
    """

    def __init__(self, override_file: PathLike = None, slot_overrides: StorageSlots = None):
        self.override_file = Path(override_file) if override_file else None
        self.slot_overrides = dict(slot_overrides or {})

    def add_slot_overrides_from_file(self, path: PathLike) -> 'StorageConfiguration':
        return StorageConfiguration(override_file=path, slot_overrides=self.slot_overrides)

    def add_slot_overrides(self, slots: Dict[Any, Any]) -> 'StorageConfiguration':
        parsed = {
            _to_word(key, 'key', 'slot overrides'): _to_word(value, 'value', 'slot overrides')
            for key, value in slots.items()
        }
        return StorageConfiguration(override_file=self.override_file, slot_overrides={**self.slot_overrides, **parsed})

    def resolve(self, artifact: ContractArtifact) -> StorageSlots:
        """
        Raises:
            ArtifactError: override file exists but is corrupt
        """
        if self.override_file is not None and self.override_file.exists():
            slots = parse_storage_slots(_read_json(self.override_file), str(self.override_file))
        else:
            slots = dict(artifact.storage_slots)
        slots.update(self.slot_overrides)
        return slots


def compile_artifact(
    source_path: PathLike,
    contract_name: str,
    out_dir: PathLike,
    artifact_name: str = None,
    solc_version: str = None,
    storage_slots: StorageSlots = None,
    verbose: bool = True
) -> ContractArtifact:
    """
    Compile a Solidity contract with solc and write its bundle to out_dir

    The bundle stores runtime bytecode; the deployment manager wraps it in its
    own init code, so constructors are not supported.

    Args:
        source_path: Solidity source file
        contract_name: Contract to extract from the source
        out_dir: Output directory
        artifact_name: Bundle name (default: contract_name)
        solc_version: Compiler version (env CHAIN_CLOCK_SOLC_VERSION, default 0.8.20)
        storage_slots: Initial storage bundled with the artifact (default: none)
        verbose: Print progress messages
    """
    import solcx
    from solcx.exceptions import SolcError, SolcNotInstalled

    source_path = Path(source_path)
    artifact_name = artifact_name or contract_name
    solc_version = solc_version or default_solc_version()

    if not source_path.exists():
        raise ArtifactError(f"Contract source not found: {source_path}", step='compile')

    try:
        try:
            compiled = solcx.compile_files(
                [str(source_path)],
                output_values=['abi', 'bin-runtime'],
                solc_version=solc_version
            )
        except SolcNotInstalled:
            if verbose:
                print(f"  • Installing solc {solc_version}...")
            solcx.install_solc(solc_version)
            compiled = solcx.compile_files(
                [str(source_path)],
                output_values=['abi', 'bin-runtime'],
                solc_version=solc_version
            )
    except SolcError as e:
        raise ArtifactError(f"Compilation of {source_path} failed: {e}", step='compile') from e

    key = next((k for k in compiled if k.split(':')[-1] == contract_name), None)
    if key is None:
        raise ArtifactError(f"Contract {contract_name} not found in {source_path}", step='compile')

    contract_interface = compiled[key]
    paths = artifact_paths(out_dir, artifact_name)
    paths['bin'].parent.mkdir(parents=True, exist_ok=True)
    paths['bin'].write_text(contract_interface['bin-runtime'])
    with open(paths['abi'], 'w') as f:
        json.dump(contract_interface['abi'], f, indent=2)
    with open(paths['storage_slots'], 'w') as f:
        json.dump(dump_storage_slots(storage_slots or {}), f, indent=2)

    if verbose:
        print(f"✓ Compiled {contract_name} -> {paths['bin'].parent}")
    return load_artifact(out_dir, artifact_name)
