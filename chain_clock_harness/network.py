"""
Network Controller

Responsibilities:
1. Launch a disposable local Anvil node with the configured block production trigger
2. Provide a Web3 connection to it
3. Produce blocks on demand (advance) so contract time can be driven by the test
4. Snapshot / revert chain state and tear the node down
"""

import os
import queue
import shutil
import socket
import subprocess
import threading
import time
from typing import Optional, Dict, Any, List

import requests
from web3 import Web3
from web3.providers.rpc import HTTPProvider

from .config import NodeConfig
from .errors import NetworkLaunchError, NetworkError


ANVIL_SEARCH_PATHS = [
    os.path.expanduser('~/.foundry/bin/anvil'),
    '/usr/local/bin/anvil',
    'anvil',
]

# JSON-RPC transport failures that mean the node is unreachable
TRANSPORT_EXCEPTIONS = (requests.exceptions.RequestException, ConnectionError, OSError)


def find_anvil(explicit_path: str = None) -> Optional[str]:
    """
    Locate a working anvil binary

    Args:
        explicit_path: Path to try first

    Returns:
        Path of the binary, or None if no candidate runs
    """
    candidates = [explicit_path] if explicit_path else []
    candidates += ANVIL_SEARCH_PATHS

    for path in candidates:
        resolved = shutil.which(path) or (path if os.path.isfile(path) else None)
        if not resolved:
            continue
        try:
            subprocess.run(
                [resolved, '--version'],
                capture_output=True,
                check=True,
                text=True,
                timeout=5
            )
            return resolved
        except (subprocess.CalledProcessError, FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
            continue
    return None


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def is_port_in_use(port: int) -> bool:
    """Check if port is in use"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('127.0.0.1', port)) == 0


def make_local_web3(rpc_url: str, request_timeout: int = 60) -> Web3:
    """
    Create a Web3 instance for a local node

    Local connections must not go through any proxy configured in the
    environment, so the HTTP session ignores proxy settings.
    """
    session = requests.Session()
    session.proxies = {
        'http': None,
        'https': None,
    }
    session.trust_env = False

    provider = HTTPProvider(
        rpc_url,
        session=session,
        request_kwargs={'timeout': request_timeout}
    )
    return Web3(provider)


class NetworkController:
    """Disposable Anvil network instance"""

    def __init__(self, config: NodeConfig = None):
        """
        Args:
            config: Launch settings (default: manual trigger, fresh chain)
        """
        self.config = config or NodeConfig()
        self.verbose = self.config.verbose

        self.anvil_cmd: Optional[str] = None
        self.anvil_process: Optional[subprocess.Popen] = None
        self.port: Optional[int] = None
        self.rpc_url: Optional[str] = None
        self.w3: Optional[Web3] = None
        self._stderr_output: List[str] = []

    def _print(self, message: str):
        if self.verbose:
            print(message)

    @property
    def is_running(self) -> bool:
        return self.anvil_process is not None and self.anvil_process.poll() is None

    def launch(self) -> Web3:
        """
        Start the node and connect to it

        Returns:
            Connected Web3 instance

        Raises:
            NetworkLaunchError: anvil missing, exited early, timed out or unreachable
        """
        if self.w3 is not None:
            raise NetworkLaunchError("Network already launched", step='launch')

        self._start_anvil()

        self.rpc_url = f"http://127.0.0.1:{self.port}"
        self.w3 = make_local_web3(self.rpc_url, self.config.request_timeout)

        try:
            connected = self.w3.is_connected()
        except TRANSPORT_EXCEPTIONS:
            connected = False
        if not connected:
            self._cleanup_anvil()
            self.w3 = None
            raise NetworkLaunchError(f"Cannot connect to Anvil: {self.rpc_url}", step='launch')

        try:
            # every produced block advances the chain clock by exactly one unit
            self._rpc('anvil_setBlockTimestampInterval', [self.config.block_time_unit], step='launch')
            if not self.config.block_production.is_interval:
                self._rpc('evm_setAutomine', [True], step='launch')
        except NetworkError as e:
            self._cleanup_anvil()
            self.w3 = None
            raise NetworkLaunchError(e.message, step='launch') from e

        trigger = self.config.block_production
        self._print(f"✓ Anvil connected successfully")
        self._print(f"  Chain ID: {self.w3.eth.chain_id}")
        self._print(f"  Anvil RPC: {self.rpc_url}")
        self._print(f"  Block production: {trigger.mode}" + (f" ({trigger.block_time}s)" if trigger.is_interval else ""))
        if self.config.fork_url:
            self._print(f"  Fork: {self.config.fork_url}")

        return self.w3

    def stop(self):
        """Stop the node"""
        self._cleanup_anvil()
        self.w3 = None
        self._print("✓ Network stopped")

    def __enter__(self):
        self.launch()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def _require_w3(self, step: str) -> Web3:
        if self.w3 is None:
            raise NetworkError("Network not launched", step=step)
        return self.w3

    def _rpc(self, method: str, params: list, step: str, account: str = None) -> Any:
        """
        Issue a raw JSON-RPC request and return its result

        Raises:
            NetworkError: transport failure or RPC error response
        """
        w3 = self._require_w3(step)
        try:
            response = w3.provider.make_request(method, params)
        except TRANSPORT_EXCEPTIONS as e:
            raise NetworkError(f"{method} failed: network unreachable ({e})", step=step, account=account) from e

        if 'error' in response:
            error = response['error']
            message = error.get('message', error) if isinstance(error, dict) else error
            raise NetworkError(f"{method} failed: {message}", step=step, account=account)
        return response.get('result')

    @property
    def block_number(self) -> int:
        w3 = self._require_w3('block_number')
        try:
            return w3.eth.block_number
        except TRANSPORT_EXCEPTIONS as e:
            raise NetworkError(f"Cannot query block number ({e})", step='block_number') from e

    def block_timestamp(self, block_identifier='latest') -> int:
        """Timestamp of the given block"""
        w3 = self._require_w3('block_timestamp')
        try:
            return w3.eth.get_block(block_identifier)['timestamp']
        except TRANSPORT_EXCEPTIONS as e:
            raise NetworkError(f"Cannot query block {block_identifier} ({e})", step='block_timestamp') from e

    @property
    def latest_timestamp(self) -> int:
        return self.block_timestamp('latest')

    def advance(self, blocks: int, account=None) -> int:
        """
        Produce blocks and return once all of them are committed

        Args:
            blocks: Number of blocks to produce
            account: Account requesting the blocks. Only used for error context,
                     any account may advance the chain.

        Returns:
            Block number after advancing

        Raises:
            NetworkError: node unreachable or fewer blocks produced than requested
        """
        if blocks < 0:
            raise ValueError(f"Cannot advance by a negative number of blocks: {blocks}")

        account_address = getattr(account, 'address', account)
        start = self.block_number
        if blocks == 0:
            return start

        self._rpc('anvil_mine', [hex(blocks)], step='advance', account=account_address)

        end = self.block_number
        produced = end - start
        if produced < blocks:
            raise NetworkError(
                f"Requested {blocks} blocks but only {produced} were produced",
                step='advance',
                account=account_address
            )
        if produced > blocks and not self.config.block_production.is_interval:
            raise NetworkError(
                f"Requested {blocks} blocks but {produced} were produced",
                step='advance',
                account=account_address
            )

        self._print(f"⛏️  Produced {blocks} blocks (height {start} -> {end})")
        return end

    def snapshot(self) -> str:
        """
        Create snapshot of current chain state

        Returns:
            Snapshot ID
        """
        snapshot_id = self._rpc('evm_snapshot', [], step='snapshot')
        self._print(f"✓ Snapshot created: {snapshot_id}")
        return snapshot_id

    def revert(self, snapshot_id: str) -> bool:
        """
        Revert to a snapshot. Anvil consumes the snapshot on revert.

        Returns:
            Whether revert was successful
        """
        result = bool(self._rpc('evm_revert', [snapshot_id], step='revert'))
        if result:
            self._print(f"✓ Reverted to snapshot: {snapshot_id}")
        else:
            self._print(f"⚠️  Failed to revert snapshot: {snapshot_id}")
        return result

    def check_health(self) -> bool:
        """Whether the node process is alive and answers RPC requests"""
        if not self.is_running or self.w3 is None:
            return False
        try:
            self.w3.eth.block_number
            return True
        except TRANSPORT_EXCEPTIONS:
            return False

    def get_diagnostics(self) -> Dict[str, Any]:
        """
        Diagnostic information about the node

        Returns:
            Dictionary with process, RPC and chain status
        """
        diagnostics = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S'),
            'anvil_process_alive': self.is_running,
            'anvil_process_pid': self.anvil_process.pid if self.anvil_process else None,
            'rpc_url': self.rpc_url,
            'rpc_responsive': False,
            'rpc_response_time_ms': None,
            'current_block_number': None,
            'block_production': self.config.block_production.mode,
            'errors': []
        }

        if self.anvil_process is None:
            diagnostics['errors'].append('Anvil process not started')
        elif self.anvil_process.poll() is not None:
            diagnostics['anvil_exit_code'] = self.anvil_process.returncode
            diagnostics['errors'].append(f'Anvil process exited with code {self.anvil_process.returncode}')

        if self.w3 is not None:
            try:
                start_time = time.time()
                block_num = self.w3.eth.block_number
                diagnostics['rpc_response_time_ms'] = round((time.time() - start_time) * 1000, 2)
                diagnostics['rpc_responsive'] = True
                diagnostics['current_block_number'] = block_num
            except TRANSPORT_EXCEPTIONS as e:
                diagnostics['errors'].append(f'RPC call failed: {str(e)[:200]}')

        if self._stderr_output:
            diagnostics['stderr_tail'] = self._stderr_output[-10:]

        return diagnostics

    def _build_command(self) -> List[str]:
        trigger = self.config.block_production
        cmd = [
            self.anvil_cmd,
            '--port', str(self.port),
            '--host', '127.0.0.1',
            '--chain-id', str(self.config.chain_id),
        ]
        if trigger.is_interval:
            cmd += ['--block-time', str(trigger.block_time)]
        if self.config.gas_price is not None:
            cmd += [
                '--gas-price', str(self.config.gas_price),
                '--block-base-fee-per-gas', str(self.config.gas_price),
            ]
        if self.config.fork_url:
            cmd += ['--fork-url', self.config.fork_url]
        return cmd

    def _start_anvil(self):
        """Start Anvil process and wait until its port accepts connections"""
        self.anvil_cmd = find_anvil(self.config.anvil_path)
        if not self.anvil_cmd:
            raise NetworkLaunchError(
                "Anvil not found! Please install Foundry:\n"
                "  curl -L https://foundry.paradigm.xyz | bash\n"
                "  foundryup",
                step='launch'
            )

        self.port = self.config.port or find_free_port()
        if is_port_in_use(self.port):
            raise NetworkLaunchError(f"Port {self.port} is already in use", step='launch')

        cmd = self._build_command()
        self._print(f"🔨 Starting Anvil on port {self.port}...")

        # local node, never routed through a proxy
        anvil_env = os.environ.copy()
        for var in ['http_proxy', 'https_proxy', 'HTTP_PROXY', 'HTTPS_PROXY', 'all_proxy', 'ALL_PROXY']:
            anvil_env.pop(var, None)
        anvil_env['no_proxy'] = '*'
        anvil_env['NO_PROXY'] = '*'

        try:
            self.anvil_process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=anvil_env
            )
        except OSError as e:
            raise NetworkLaunchError(f"Cannot start Anvil: {e}", step='launch') from e

        # stderr is drained on a thread so a full pipe never blocks the node
        stderr_queue = queue.Queue()
        process = self.anvil_process

        def read_stderr():
            for line in iter(process.stderr.readline, b''):
                stderr_queue.put(line.decode('utf-8', errors='ignore').strip())

        threading.Thread(target=read_stderr, daemon=True).start()

        deadline = time.time() + self.config.startup_timeout
        while time.time() < deadline:
            time.sleep(0.2)
            self._drain(stderr_queue)

            if is_port_in_use(self.port):
                return

            if self.anvil_process.poll() is not None:
                returncode = self.anvil_process.returncode
                time.sleep(0.2)
                self._drain(stderr_queue)
                error_msg = '\n'.join(self._stderr_output[-20:]) or "No error message"
                self._cleanup_anvil()
                raise NetworkLaunchError(
                    f"Anvil process exited unexpectedly (code {returncode})\n"
                    f"Error message: {error_msg[:500]}",
                    step='launch'
                )

        self._drain(stderr_queue)
        stderr_log = '\n'.join(self._stderr_output[-30:]) or "No output captured"
        self._cleanup_anvil()
        raise NetworkLaunchError(
            f"Anvil start timed out ({self.config.startup_timeout}s)\n"
            f"Anvil stderr output (last 30 lines):\n{stderr_log}",
            step='launch'
        )

    def _drain(self, stderr_queue: queue.Queue):
        while True:
            try:
                line = stderr_queue.get_nowait()
            except queue.Empty:
                break
            if line:
                self._stderr_output.append(line)

    def _cleanup_anvil(self):
        """Cleanup Anvil process"""
        if self.anvil_process:
            try:
                self.anvil_process.terminate()
                self.anvil_process.wait(timeout=5)
                self._print("✓ Anvil process terminated")
            except subprocess.TimeoutExpired:
                self.anvil_process.kill()
                self.anvil_process.wait(timeout=5)
                self._print("✓ Anvil process forcibly terminated")
            self.anvil_process = None
