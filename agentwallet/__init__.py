"""
agentwallet - Tool Policy & Permission Enforcement for PKP Agents
=================================================================

Delegatees run tools on behalf of a Programmable Key Pair (PKP). The PKP
owner decides which tools each delegatee may run and under which policy.

Features:
- PolicyStore ledger component (owner-gated tools, delegatees, policies, parameters)
- Registry client that signs and broadcasts policy mutations
- Admin orchestration with safety filtering
- Execution pipeline gating every tool run behind permission and policy checks

Usage:
    from agentwallet import AgentWalletConfig, ToolAgent, ToolCatalog

    agent = ToolAgent(AgentWalletConfig.from_env(), ToolCatalog([my_tool]))
    await agent.init(signer, provider)

    outcome = await agent.execute_tool(
        my_tool.ipfs_cid,
        {"amount": "1"},
        permission_callback=lambda tool: True,
    )
"""

from .admin import AdminOrchestrator, RegisteredToolsResult
from .agent import ToolAgent
from .capabilities import ExecutionOptions, ExecutionResult, PolicyChoice, SelectorChoice
from .config import AgentWalletConfig, configure, get_config
from .crypto import LocalKeySigner, SignatureResponse
from .errors import (
    AgentWalletError,
    ConfigurationError,
    ErrorKind,
    LedgerError,
    NotInitialized,
    PermissionDenied,
    PolicyManagerNotInitialized,
    PolicyRegistrationFailed,
    ToolExecutionFailed,
)
from .pipeline import ExecutionPipeline, PipelineStage, ToolExecutionResult
from .registry import PolicyMutation, RegistryClient, compute_gas_limit
from .tools import ToolCatalog, ToolInfo

# Version
__version__ = "1.0.0"

__all__ = [
    # Core API
    "ToolAgent",
    "ExecutionPipeline",
    "ExecutionOptions",
    "ExecutionResult",
    "ToolExecutionResult",
    "PipelineStage",
    "PolicyChoice",

    # Registry
    "RegistryClient",
    "PolicyMutation",
    "compute_gas_limit",

    # Administration
    "AdminOrchestrator",
    "RegisteredToolsResult",
    "SelectorChoice",

    # Tools
    "ToolCatalog",
    "ToolInfo",

    # Configuration
    "configure",
    "get_config",
    "AgentWalletConfig",

    # Signing
    "LocalKeySigner",
    "SignatureResponse",

    # Errors
    "AgentWalletError",
    "ErrorKind",
    "ConfigurationError",
    "NotInitialized",
    "PermissionDenied",
    "PolicyManagerNotInitialized",
    "PolicyRegistrationFailed",
    "ToolExecutionFailed",
    "LedgerError",
]
