"""
Admin Orchestrator - PKP Tool, Policy & Delegatee Management
============================================================

Aggregates the on-chain state of a PKP against tool metadata and performs
owner mutations with safety filtering.

Registered tools are partitioned into:
    - known tools with policies
    - known tools without policies
    - unknown tools with policies (registered on-chain before their metadata
      was published)
CIDs that are unknown and carry no policy are listed separately.

Filters are applied broadest first: PKP-level emptiness, then tool-level,
then delegatee-level. Each level fails with its own error so callers can tell
"no tools at all" from "no tools with enabled policies".
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .capabilities import Selector, SelectorChoice, resolve
from .errors import (
    AdminOperationCancelled,
    NoDelegateesWithEnabledPolicies,
    NoEnabledPolicies,
    NoPermittedTools,
    NoToolsWithPolicies,
    ToolNotPermitted,
)
from .registry import PolicyMutation, RegistryClient, SignCallback
from .tools import ToolResolver

logger = logging.getLogger(__name__)


@dataclass
class DelegateePolicy:
    policy: bytes
    version: str
    enabled: bool
    parameters: Dict[str, bytes] = field(default_factory=dict)


@dataclass
class ToolMetadata:
    """Known tool without policies"""
    ipfs_cid: str
    name: str
    description: str
    network: str
    delegatees: List[str] = field(default_factory=list)


@dataclass
class RegisteredToolWithPolicies(ToolMetadata):
    delegatee_policies: Dict[str, DelegateePolicy] = field(default_factory=dict)

    @property
    def has_enabled_policy(self) -> bool:
        return any(policy.enabled for policy in self.delegatee_policies.values())

    @property
    def delegatees_with_enabled_policies(self) -> List[str]:
        return [
            delegatee for delegatee in self.delegatees
            if delegatee in self.delegatee_policies and self.delegatee_policies[delegatee].enabled
        ]


@dataclass
class UnknownToolWithPolicies:
    """Policies exist on-chain but the CID has no published metadata yet"""
    ipfs_cid: str
    delegatees: List[str] = field(default_factory=list)
    delegatee_policies: Dict[str, DelegateePolicy] = field(default_factory=dict)


@dataclass
class RegisteredToolsResult:
    tools_with_policies: Dict[str, RegisteredToolWithPolicies] = field(default_factory=dict)
    tools_without_policies: Dict[str, ToolMetadata] = field(default_factory=dict)
    tools_unknown_with_policies: Dict[str, UnknownToolWithPolicies] = field(default_factory=dict)
    tools_unknown_without_policies: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.tools_with_policies or self.tools_without_policies
                    or self.tools_unknown_with_policies)

    def contains(self, ipfs_cid: str) -> bool:
        return (ipfs_cid in self.tools_with_policies or ipfs_cid in self.tools_without_policies
                or ipfs_cid in self.tools_unknown_with_policies)

    def restricted_to(self, ipfs_cids: Iterable[str]) -> "RegisteredToolsResult":
        """Copy keeping only the given CIDs"""
        keep = set(ipfs_cids)
        return replace(
            self,
            tools_with_policies={k: v for k, v in self.tools_with_policies.items() if k in keep},
            tools_without_policies={k: v for k, v in self.tools_without_policies.items() if k in keep},
            tools_unknown_with_policies={
                k: v for k, v in self.tools_unknown_with_policies.items() if k in keep
            },
            tools_unknown_without_policies=[
                cid for cid in self.tools_unknown_without_policies if cid in keep
            ],
        )

    def selectable_tools(self) -> List[ToolMetadata]:
        return [*self.tools_with_policies.values(), *self.tools_without_policies.values()]


def tools_with_enabled_policies(registered: RegisteredToolsResult) -> List[RegisteredToolWithPolicies]:
    return [tool for tool in registered.tools_with_policies.values() if tool.has_enabled_policy]


class AdminOrchestrator:
    """Owner-side management of a PKP's tools, delegatees and policies"""

    def __init__(self, registry: RegistryClient, catalog: ToolResolver,
                 owner_address: str, sign_callback: SignCallback):
        self.registry = registry
        self.catalog = catalog
        self.owner_address = owner_address.lower()
        self.sign_callback = sign_callback

    async def _submit(self, mutation: PolicyMutation) -> Any:
        return await self.registry.submit_policy_mutation(self.owner_address, self.sign_callback, mutation)

    # === Aggregation ===

    async def get_registered_tools_and_delegatees_for_pkp(self, pkp: int) -> Optional[RegisteredToolsResult]:
        """Registered tools of ``pkp`` partitioned by metadata and policy presence"""
        ipfs_cids = await self.registry.get_registered_tools(pkp)
        if not ipfs_cids:
            return None

        all_delegatees = await self.registry.get_delegatees(pkp)
        result = RegisteredToolsResult()

        for ipfs_cid in ipfs_cids:
            delegatees = await self.registry.get_delegatees_for_tool(pkp, ipfs_cid)
            policies = await self._delegatee_policies(pkp, ipfs_cid, all_delegatees)
            metadata = await resolve(self.catalog.resolve(ipfs_cid))

            if metadata is None:
                if policies:
                    result.tools_unknown_with_policies[ipfs_cid] = UnknownToolWithPolicies(
                        ipfs_cid=ipfs_cid, delegatees=delegatees, delegatee_policies=policies
                    )
                else:
                    result.tools_unknown_without_policies.append(ipfs_cid)
                continue

            if policies:
                result.tools_with_policies[ipfs_cid] = RegisteredToolWithPolicies(
                    ipfs_cid=ipfs_cid,
                    name=metadata.name,
                    description=metadata.description,
                    network=metadata.network,
                    delegatees=delegatees,
                    delegatee_policies=policies,
                )
            else:
                result.tools_without_policies[ipfs_cid] = ToolMetadata(
                    ipfs_cid=ipfs_cid,
                    name=metadata.name,
                    description=metadata.description,
                    network=metadata.network,
                    delegatees=delegatees,
                )

        if result.tools_unknown_with_policies:
            logger.warning(
                f"PKP {pkp} has policies for tools without metadata: "
                f"{', '.join(result.tools_unknown_with_policies)}"
            )
        return result

    async def _delegatee_policies(self, pkp: int, ipfs_cid: str,
                                  delegatees: List[str]) -> Dict[str, DelegateePolicy]:
        policies = {}
        for delegatee in delegatees:
            current = await self.registry.get_policy(pkp, ipfs_cid, delegatee)
            if current.is_empty:
                continue
            policies[delegatee] = DelegateePolicy(
                policy=current.policy,
                version=current.version,
                enabled=await self.registry.is_policy_enabled(pkp, ipfs_cid, delegatee),
                parameters=await self.get_tool_parameters(pkp, ipfs_cid, delegatee),
            )
        return policies

    async def get_tool_parameters(self, pkp: int, ipfs_cid: str, delegatee: str) -> Dict[str, bytes]:
        names = await self.registry.get_parameter_names(pkp, ipfs_cid, delegatee)
        return {name: await self.registry.get_parameter(pkp, ipfs_cid, delegatee, name) for name in names}

    async def get_delegatees(self, pkp: int) -> List[str]:
        return await self.registry.get_delegatees(pkp)

    async def get_permitted_tools_for_delegatee(self, pkp: int, delegatee: str) -> List[str]:
        return await self.registry.get_permitted_tools_for_delegatee(pkp, delegatee)

    # === Safety filters ===

    async def _permitted_tools_for_delegatee(self, pkp: int, delegatee: str) -> RegisteredToolsResult:
        registered = await self.get_registered_tools_and_delegatees_for_pkp(pkp)
        if registered is None or registered.is_empty:
            raise NoPermittedTools("No permitted tools found.", {"pkp": pkp})

        permitted = await self.get_permitted_tools_for_delegatee(pkp, delegatee)
        filtered = registered.restricted_to(permitted)
        if filtered.is_empty:
            raise NoPermittedTools(
                "No permitted tools found for this delegatee.", {"pkp": pkp, "delegatee": delegatee}
            )
        return filtered

    async def _tools_with_enabled_policies(self, pkp: int) -> List[RegisteredToolWithPolicies]:
        registered = await self.get_registered_tools_and_delegatees_for_pkp(pkp)
        if registered is None or not registered.tools_with_policies:
            raise NoToolsWithPolicies("No permitted tools with policies found.", {"pkp": pkp})

        enabled = tools_with_enabled_policies(registered)
        if not enabled:
            raise NoEnabledPolicies("No tools with enabled policies found.", {"pkp": pkp})
        return enabled

    @staticmethod
    def _enabled_delegatees(tool: RegisteredToolWithPolicies) -> List[str]:
        delegatees = tool.delegatees_with_enabled_policies
        if not delegatees:
            raise NoDelegateesWithEnabledPolicies(
                "No delegatees with enabled policies found for the selected tool.",
                {"ipfs_cid": tool.ipfs_cid},
            )
        return delegatees

    # === Permissions ===

    async def register_tools(self, pkp: int, ipfs_cids: List[str]) -> Any:
        return await self._submit(PolicyMutation.register_tools(pkp, ipfs_cids))

    async def add_delegatees(self, pkp: int, delegatees: List[str]) -> Any:
        return await self._submit(PolicyMutation.add_delegatees(pkp, delegatees))

    async def permit_tool_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> Any:
        return await self._submit(PolicyMutation.permit_tool(pkp, ipfs_cid, delegatee))

    async def unpermit_tool_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> Any:
        """Unpermit a tool the delegatee was actually granted"""
        permitted = await self._permitted_tools_for_delegatee(pkp, delegatee)
        if not permitted.contains(ipfs_cid):
            raise ToolNotPermitted(
                f"Tool {ipfs_cid} is not permitted for delegatee {delegatee}.",
                {"pkp": pkp, "ipfs_cid": ipfs_cid, "delegatee": delegatee},
            )
        handle = await self._submit(PolicyMutation.unpermit_tool(pkp, ipfs_cid, delegatee))
        logger.info(f"Unpermitted {ipfs_cid} for {delegatee}")
        return handle

    async def select_and_unpermit_tool(self, pkp: int, selector: Selector) -> Any:
        """Delegatee, then tool, chosen through ``selector``"""
        registered = await self.get_registered_tools_and_delegatees_for_pkp(pkp)
        if registered is None or registered.is_empty:
            raise NoPermittedTools("No permitted tools found.", {"pkp": pkp})

        delegatee = await self._select(
            selector,
            "Select a delegatee to unpermit tool for:",
            [SelectorChoice(d, d) for d in await self.get_delegatees(pkp)],
            "Unpermit tool for delegatee cancelled.",
        )
        permitted = await self._permitted_tools_for_delegatee(pkp, delegatee)
        tool = await self._select(
            selector,
            "Select a tool to unpermit for delegatee:",
            [SelectorChoice(f"{t.name} ({t.ipfs_cid})", t) for t in permitted.selectable_tools()],
            "Unpermit tool for delegatee cancelled.",
        )
        return await self.unpermit_tool_for_delegatee(pkp, tool.ipfs_cid, delegatee)

    # === Policies ===

    async def set_tool_policy_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str,
                                            policy: Any, version: str = "1.0.0") -> Any:
        return await self._submit(PolicyMutation.set_policy(pkp, ipfs_cid, delegatee, policy, version))

    async def remove_tool_policy_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> Any:
        return await self._submit(PolicyMutation.remove_policy(pkp, ipfs_cid, delegatee))

    async def enable_tool_policy_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> Any:
        return await self._submit(PolicyMutation.enable_policy(pkp, ipfs_cid, delegatee))

    async def disable_tool_policy_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str) -> Any:
        """Disable an enabled policy; tool-level filter runs before the delegatee-level one"""
        enabled_tools = {tool.ipfs_cid: tool for tool in await self._tools_with_enabled_policies(pkp)}
        tool = enabled_tools.get(ipfs_cid)
        if tool is None:
            raise NoEnabledPolicies(f"Tool {ipfs_cid} has no enabled policies.", {"ipfs_cid": ipfs_cid})

        if delegatee.lower() not in self._enabled_delegatees(tool):
            raise NoDelegateesWithEnabledPolicies(
                f"Delegatee {delegatee} has no enabled policy for tool {ipfs_cid}.",
                {"ipfs_cid": ipfs_cid, "delegatee": delegatee},
            )
        handle = await self._submit(PolicyMutation.disable_policy(pkp, ipfs_cid, delegatee))
        logger.info(f"Disabled policy of {ipfs_cid} for {delegatee}")
        return handle

    async def select_and_disable_tool_policy(self, pkp: int, selector: Selector) -> Any:
        """Tool, then delegatee, chosen through ``selector``"""
        enabled_tools = await self._tools_with_enabled_policies(pkp)
        tool = await self._select(
            selector,
            "Select a tool to disable policy:",
            [SelectorChoice(f"{t.name} ({t.ipfs_cid})", t) for t in enabled_tools],
            "Tool policy disabling cancelled.",
        )
        delegatee = await self._select(
            selector,
            "Select a delegatee to disable policy:",
            [SelectorChoice(d, d) for d in self._enabled_delegatees(tool)],
            "Disable tool policy cancelled.",
        )
        return await self.disable_tool_policy_for_delegatee(pkp, tool.ipfs_cid, delegatee)

    # === Parameters ===

    async def set_tool_parameters_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str,
                                                parameters: Dict[str, Union[bytes, str]]) -> Any:
        return await self._submit(PolicyMutation.batch_set_parameters(
            pkp, ipfs_cid, delegatee, list(parameters), list(parameters.values())
        ))

    async def remove_tool_parameters_for_delegatee(self, pkp: int, ipfs_cid: str, delegatee: str,
                                                   names: List[str]) -> Any:
        return await self._submit(PolicyMutation.batch_remove_parameters(pkp, ipfs_cid, delegatee, names))

    @staticmethod
    async def _select(selector: Selector, message: str, choices: List[SelectorChoice],
                      cancelled_message: str) -> Any:
        selected = await resolve(selector(message, choices))
        if selected is None:
            raise AdminOperationCancelled(cancelled_message)
        return selected
