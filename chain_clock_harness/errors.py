"""
Harness Errors

Every failure raised by the harness carries the step it happened in and,
where known, the account and contract method involved.
"""

from typing import Optional


class HarnessError(Exception):
    """Base class for all harness failures"""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        account: Optional[str] = None,
        method: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.step = step
        self.account = account
        self.method = method

    def context(self) -> str:
        parts = []
        if self.step:
            parts.append(f"step={self.step}")
        if self.account:
            parts.append(f"account={self.account}")
        if self.method:
            parts.append(f"method={self.method}")
        return ', '.join(parts)

    def __str__(self):
        context = self.context()
        if context:
            return f"{self.message} [{context}]"
        return self.message


class SetupError(HarnessError):
    """Provisioning or network launch failed; aborts the scenario"""


class NetworkLaunchError(SetupError):
    """Node could not be started or reached"""


class ProvisioningError(SetupError):
    """Test accounts could not be created or funded"""


class NetworkError(HarnessError):
    """Chain query or block production failed after launch"""


class DeploymentError(HarnessError):
    """Contract could not be deployed"""


class ArtifactError(DeploymentError):
    """Bytecode, ABI or storage slot file missing or corrupt"""


class TransportError(HarnessError):
    """Invocation could not be submitted or confirmed"""


class ContractRevert(HarnessError):
    """The invoked contract logic rejected the call"""

    def __init__(
        self,
        reason: Optional[str],
        step: Optional[str] = None,
        account: Optional[str] = None,
        method: Optional[str] = None,
        receipt=None
    ):
        message = f"Contract reverted: {reason}" if reason else "Contract reverted"
        super().__init__(message, step=step, account=account, method=method)
        self.reason = reason
        self.receipt = receipt
