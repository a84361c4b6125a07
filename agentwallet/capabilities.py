"""
Capability Interfaces
=====================

Collaborators the execution pipeline consumes, one method each, injected per
invocation. Callbacks may be plain functions or coroutines.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Protocol, TypeVar, Union

from .crypto import SignatureResponse
from .tools import ToolInfo

T = TypeVar("T")

MaybeAwaitable = Union[T, Awaitable[T]]


async def resolve(value: MaybeAwaitable[T]) -> T:
    """Await ``value`` if a callback returned a coroutine"""
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class ExecutionResult:
    """Raw result of a tool execution"""
    response: str = ""
    logs: str = ""
    signatures: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PolicyChoice:
    """Answer of a SetNewToolPolicyCallback"""
    use_policy: bool
    policy_values: Any = None
    version: str = "1.0.0"

    @classmethod
    def coerce(cls, value: Any) -> "PolicyChoice":
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(
                use_policy=bool(value.get("use_policy")),
                policy_values=value.get("policy_values"),
                version=value.get("version", "1.0.0"),
            )
        raise TypeError(f"Unsupported policy choice: {value!r}")


class PermissionCallback(Protocol):
    def __call__(self, tool: ToolInfo) -> MaybeAwaitable[bool]:
        ...


class ParameterCallback(Protocol):
    def __call__(self, tool: ToolInfo, missing_params: List[str]) -> MaybeAwaitable[Optional[Dict[str, Any]]]:
        ...


class SetNewToolPolicyCallback(Protocol):
    def __call__(self, tool: ToolInfo, current_policy: Any) -> MaybeAwaitable[Any]:
        ...


class FailedPolicyCallback(Protocol):
    def __call__(self, tool: ToolInfo, params: Dict[str, Any], policy: Any,
                 error: Exception) -> MaybeAwaitable[Optional[Dict[str, Any]]]:
        ...


class PolicyRegisteredCallback(Protocol):
    def __call__(self, tx_hash: str) -> MaybeAwaitable[None]:
        ...


@dataclass(frozen=True)
class SelectorChoice:
    title: str
    value: Any


class Selector(Protocol):
    """Returns the value of one of ``choices``, or None when the user cancels"""

    def __call__(self, message: str, choices: List[SelectorChoice]) -> MaybeAwaitable[Optional[Any]]:
        ...


class ToolSigner(Protocol):
    """Signer abstraction holding the PKP: signs transactions and runs tools"""

    pkp_address: str

    async def sign(self, message_hash: str) -> SignatureResponse:
        ...

    async def execute_tool(self, ipfs_cid: str, params: Dict[str, Any]) -> ExecutionResult:
        ...


@dataclass
class ExecutionOptions:
    """Optional callbacks for a single tool invocation"""
    permission_callback: Optional[PermissionCallback] = None
    parameter_callback: Optional[ParameterCallback] = None
    set_new_tool_policy_callback: Optional[SetNewToolPolicyCallback] = None
    failed_policy_callback: Optional[FailedPolicyCallback] = None
    on_policy_registered: Optional[PolicyRegisteredCallback] = None
