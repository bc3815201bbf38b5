"""
Contract Client Facade

Binds a deployed contract instance to a caller account. Every contract
method is exposed as a MethodCall with two invocation variants:

    client.methods.get_timestamp().simulate()   # eth_call, no state change
    client.methods.get_timestamp().call()       # signed transaction, waits for inclusion

Each result records the block it reflects. A simulation observes the block it
was pinned to (the latest committed block unless told otherwise); a committed
call observes its inclusion block.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .deployment import ContractInstance
from .errors import ContractRevert, TransportError
from .network import TRANSPORT_EXCEPTIONS
from .transactions import prepare_transaction, sign_and_send


SIMULATE = 'simulate'
CALL = 'call'

# failures meaning the invocation never reached a verdict from the contract
INVOCATION_TRANSPORT_EXCEPTIONS = TRANSPORT_EXCEPTIONS + (TimeExhausted, Web3Exception, ValueError)

READ_ONLY_MUTABILITY = ('view', 'pure')

TRACE_OPTIONS = {'disableStorage': True, 'disableMemory': True, 'disableStack': True}


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a successful invocation"""
    method: str
    mode: str
    value: Any
    block_number: int
    block_timestamp: int
    tx_hash: Optional[str] = None
    receipt: Any = None
    gas_used: Optional[int] = None


def revert_reason(error: Exception) -> Optional[str]:
    """Human readable reason of a ContractLogicError"""
    message = getattr(error, 'message', None) or (error.args[0] if error.args else '')
    message = str(message)
    for prefix in ('execution reverted: ', 'execution reverted'):
        if message.startswith(prefix):
            message = message[len(prefix):]
            break
    return message.strip() or None


def _abi_type(param: Dict[str, Any]) -> str:
    abi_type = param['type']
    if abi_type.startswith('tuple'):
        inner = ','.join(_abi_type(component) for component in param.get('components', []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def output_types(abi_entry: Dict[str, Any]) -> List[str]:
    return [_abi_type(output) for output in abi_entry.get('outputs', [])]


class MethodCall:
    """One contract method with bound arguments, invocable in either mode"""

    def __init__(self, client: 'ContractClient', abi_entry: Dict[str, Any], args: tuple):
        self.client = client
        self.abi_entry = abi_entry
        self.name = abi_entry['name']
        self.args = args

    def __repr__(self):
        return f"MethodCall({self.name}{self.args}, account={self.client.account.address})"

    @property
    def mutates_state(self) -> bool:
        """ABI mutability flag: False for view/pure methods"""
        mutability = self.abi_entry.get('stateMutability')
        if mutability is None:
            return not self.abi_entry.get('constant', False)
        return mutability not in READ_ONLY_MUTABILITY

    @property
    def has_outputs(self) -> bool:
        return bool(self.abi_entry.get('outputs'))

    def _function(self):
        return getattr(self.client.contract.functions, self.name)(*self.args)

    def _normalize(self, value):
        return value if self.has_outputs else None

    def _transport_error(self, step: str, error: Exception) -> TransportError:
        return TransportError(
            f"{self.name} could not be completed: {error}",
            step=step,
            account=self.client.account.address,
            method=self.name
        )

    def _revert(self, step: str, reason: Optional[str], receipt=None) -> ContractRevert:
        return ContractRevert(
            reason,
            step=step,
            account=self.client.account.address,
            method=self.name,
            receipt=receipt
        )

    def simulate(self, block_identifier='latest') -> InvocationResult:
        """
        Execute against chain state without committing a transaction

        The block identifier is resolved to a concrete block before executing,
        so the result is tied to exactly one block's state and timestamp.

        Raises:
            ContractRevert: contract logic rejected the call
            TransportError: node unreachable or request failed
        """
        w3 = self.client.w3
        sender = self.client.account.address
        function = self._function()
        try:
            block = w3.eth.get_block(block_identifier)
            value = function.call({'from': sender}, block_identifier=block['number'])
        except ContractLogicError as e:
            raise self._revert(SIMULATE, revert_reason(e)) from e
        except INVOCATION_TRANSPORT_EXCEPTIONS as e:
            raise self._transport_error(SIMULATE, e) from e

        return InvocationResult(
            method=self.name,
            mode=SIMULATE,
            value=self._normalize(value),
            block_number=block['number'],
            block_timestamp=block['timestamp']
        )

    def call(self, timeout: int = 30) -> InvocationResult:
        """
        Submit a signed transaction and wait for its inclusion

        Raises:
            ContractRevert: rejected during gas estimation or mined with status 0
            TransportError: could not be submitted or confirmed in time
        """
        w3 = self.client.w3
        account = self.client.account
        function = self._function()
        try:
            transaction = prepare_transaction(
                w3,
                account.address,
                function.build_transaction({'from': account.address, 'gasPrice': w3.eth.gas_price})
            )
            receipt = sign_and_send(w3, account, transaction, timeout=timeout)
        except ContractLogicError as e:
            raise self._revert(CALL, revert_reason(e)) from e
        except INVOCATION_TRANSPORT_EXCEPTIONS as e:
            raise self._transport_error(CALL, e) from e

        if receipt['status'] != 1:
            raise self._revert(CALL, None, receipt=receipt)

        try:
            block = w3.eth.get_block(receipt['blockNumber'])
            value = self._committed_value(function, receipt)
        except ContractLogicError as e:
            raise self._revert(CALL, revert_reason(e), receipt=receipt) from e
        except INVOCATION_TRANSPORT_EXCEPTIONS as e:
            raise self._transport_error(CALL, e) from e

        return InvocationResult(
            method=self.name,
            mode=CALL,
            value=value,
            block_number=receipt['blockNumber'],
            block_timestamp=block['timestamp'],
            tx_hash=Web3.to_hex(receipt['transactionHash']),
            receipt=receipt,
            gas_used=receipt['gasUsed']
        )

    def _committed_value(self, function, receipt):
        """
        Return value of a mined transaction

        Read-only methods are replayed at the inclusion block; state-changing
        methods are decoded from the transaction trace.
        """
        if not self.has_outputs:
            return None

        if not self.mutates_state:
            return function.call(
                {'from': self.client.account.address},
                block_identifier=receipt['blockNumber']
            )

        w3 = self.client.w3
        tx_hash = Web3.to_hex(receipt['transactionHash'])
        response = w3.provider.make_request('debug_traceTransaction', [tx_hash, TRACE_OPTIONS])
        trace = response.get('result')
        if 'error' in response or not isinstance(trace, dict):
            raise TransportError(
                f"Cannot trace {tx_hash}: {response.get('error', 'no trace returned')}",
                step=CALL,
                account=self.client.account.address,
                method=self.name
            )
        return_value = trace.get('returnValue') or ''
        if return_value.startswith('0x'):
            return_value = return_value[2:]
        decoded = w3.codec.decode(output_types(self.abi_entry), bytes.fromhex(return_value))
        return decoded[0] if len(decoded) == 1 else decoded


class ContractMethods:
    """Attribute access to the contract's methods"""

    def __init__(self, client: 'ContractClient'):
        self._client = client

    def __getattr__(self, name: str):
        abi_entry = self._client.instance.artifact.function_abi(name)
        if abi_entry is None:
            raise AttributeError(f"{self._client.instance.name} has no method {name!r}")

        def bind(*args) -> MethodCall:
            return MethodCall(self._client, abi_entry, args)

        return bind

    def __dir__(self):
        return self._client.instance.artifact.function_names


class ContractClient:
    """Contract instance bound to a signing account"""

    def __init__(self, w3: Web3, instance: ContractInstance, account):
        """
        Args:
            w3: Connection to the network the instance lives on
            instance: Deployed contract
            account: Account that signs committed calls and sends simulations
        """
        self.w3 = w3
        self.instance = instance
        self.account = account
        self.contract = w3.eth.contract(address=instance.address, abi=instance.abi)
        self.methods = ContractMethods(self)

    def __repr__(self):
        return f"ContractClient({self.instance.name} at {self.address}, account={self.account.address})"

    @property
    def address(self) -> str:
        return self.instance.address

    def rebind(self, account) -> 'ContractClient':
        """
        Same instance, different signer

        Nothing is deployed and this client is left unchanged.
        """
        return ContractClient(self.w3, self.instance, account)
