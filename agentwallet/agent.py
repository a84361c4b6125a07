"""
Tool Agent
==========

Two-phase entry point for delegatees running tools:

    agent = ToolAgent(config, catalog)          # configured: immutable settings
    await agent.init(signer, provider)          # initialized: live signer
    outcome = await agent.execute_tool(cid, {"amount": "1"})

Anything called before ``init`` raises NotInitialized.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .audit import AuditLog
from .capabilities import ExecutionOptions, ToolSigner
from .config import AgentWalletConfig
from .errors import ConfigurationError, NotInitialized
from .pipeline import ExecutionPipeline, ToolExecutionResult
from .registry import LedgerProvider, RegistryClient, ToolPolicy
from .tools import ToolInfo, ToolResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Session:
    signer: ToolSigner
    registry: RegistryClient
    pipeline: ExecutionPipeline


class ToolAgent:
    """Runs catalog tools as the configured delegatee"""

    def __init__(self, config: AgentWalletConfig, catalog: ToolResolver):
        if config.pkp_token_id is None:
            raise ConfigurationError("pkp_token_id is required")
        if not config.delegatee_address:
            raise ConfigurationError("delegatee_address is required")
        self.config = config
        self.catalog = catalog
        self._session: Optional[_Session] = None

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    async def init(self, signer: ToolSigner, provider: LedgerProvider) -> "ToolAgent":
        """Attach the live signer and ledger connection"""
        registry = RegistryClient(provider, self.config.policy_store_address or None)
        if not registry.is_initialized:
            logger.warning("No policy store address configured; tools run without policies")

        pipeline = ExecutionPipeline(
            registry=registry,
            catalog=self.catalog,
            signer=signer,
            pkp_token_id=self.config.pkp_token_id,
            delegatee=self.config.delegatee_address,
            audit_log=AuditLog(self.config.log_file),
        )
        self._session = _Session(signer=signer, registry=registry, pipeline=pipeline)
        logger.info(f"Agent initialized for PKP {self.config.pkp_token_id} on {self.config.network}")
        return self

    def _require_session(self) -> _Session:
        if self._session is None:
            raise NotInitialized("Agent is not initialized; call init() first")
        return self._session

    async def execute_tool(
        self,
        ipfs_cid: str,
        initial_params: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        **callbacks: Any,
    ) -> ToolExecutionResult:
        """Execute a tool; callbacks may be passed as ExecutionOptions or keywords"""
        session = self._require_session()
        if options is None:
            options = ExecutionOptions(**callbacks)
        return await session.pipeline.execute(ipfs_cid, initial_params, options)

    async def check_tool_permission(self, tool: ToolInfo) -> bool:
        session = self._require_session()
        return await session.registry.is_tool_permitted_for_delegatee(
            self.config.pkp_token_id, tool.ipfs_cid, self.config.delegatee_address
        )

    async def get_tool_policy(self, ipfs_cid: str) -> ToolPolicy:
        session = self._require_session()
        return await session.registry.get_policy(
            self.config.pkp_token_id, ipfs_cid, self.config.delegatee_address
        )
