#!/usr/bin/env python3
"""
Chain Clock Harness Setup Checker

Verifies that the node binary, the Solidity compiler and the contract
artifact bundle are available.
"""

import sys
from pathlib import Path

from .artifacts import artifact_paths
from .config import NodeConfig, default_artifact_dir, default_solc_version
from .network import find_anvil
from .timestamp_tracker import ARTIFACT_NAME, SOURCE_PATH


def check_file_exists(filepath: Path, description: str) -> bool:
    """Check if a file exists"""
    if filepath.exists():
        print(f"✅ {description}: {filepath}")
        return True
    else:
        print(f"❌ {description}: {filepath} NOT FOUND")
        return False


def check_anvil(anvil_path: str = None) -> bool:
    path = find_anvil(anvil_path)
    if path:
        print(f"✅ Anvil: {path}")
        return True
    print("❌ Anvil not found (install Foundry: curl -L https://foundry.paradigm.xyz | bash && foundryup)")
    return False


def check_solc(version: str) -> bool:
    import solcx

    installed = [str(v) for v in solcx.get_installed_solc_versions()]
    if version in installed:
        print(f"✅ solc {version} installed")
        return True
    print(f"⚠️  solc {version} not installed (installed: {', '.join(installed) or 'none'}); it is installed on first compile")
    return False


def main(artifact_dir: str = None) -> int:
    print("=" * 80)
    print("🔍 Chain Clock Harness Setup Checker")
    print("=" * 80)
    print()

    all_checks_passed = True

    print("🔧 Node:")
    all_checks_passed &= check_anvil(NodeConfig(verbose=False).anvil_path)
    print()

    # a missing compiler is not fatal, compile_artifact installs it
    print("📚 Compiler:")
    check_solc(default_solc_version())
    print()

    print("📦 Contract:")
    all_checks_passed &= check_file_exists(SOURCE_PATH, "TimestampTracker source")
    paths = artifact_paths(artifact_dir or default_artifact_dir(), ARTIFACT_NAME)
    all_checks_passed &= check_file_exists(paths['bin'], "Bytecode")
    all_checks_passed &= check_file_exists(paths['abi'], "ABI")
    print()

    print("=" * 80)
    if all_checks_passed:
        print("✅ ALL CHECKS PASSED - Harness is ready to use!")
    else:
        print("❌ SOME CHECKS FAILED - Please review errors above")
        print()
        print("Build the artifact bundle with:")
        print("  python -c 'from chain_clock_harness.timestamp_tracker import build_artifact; build_artifact()'")
        return 1
    print("=" * 80)

    return 0


if __name__ == "__main__":
    sys.exit(main())
