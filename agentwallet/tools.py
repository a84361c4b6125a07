"""
Tool Catalog
============

Tool metadata resolution (name or CID to ``ToolInfo``).

The catalog is an external collaborator: metadata publication happens
elsewhere, and on-chain registration can run ahead of it. ``ToolCatalog`` is
the in-memory implementation; anything with a ``resolve`` method works.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from .encoding import decode_policy_value, encode_policy_value

logger = logging.getLogger(__name__)


class PolicyCodec(Protocol):
    def encode(self, policy: Any) -> bytes:
        ...

    def decode(self, blob: bytes) -> Any:
        ...


class DefaultPolicyCodec:
    """Codec matching the registry client's policy value encoding"""

    def encode(self, policy: Any) -> bytes:
        return encode_policy_value(policy)

    def decode(self, blob: bytes) -> Any:
        return decode_policy_value(blob)


@dataclass(frozen=True)
class ParameterIssue:
    param: str
    error: str


# Returns True when valid, otherwise a list of issues (or (param, error) pairs)
ParameterValidator = Callable[[Dict[str, Any]], Union[bool, List[Any]]]
# Raises when params violate the decoded policy
PolicyValidator = Callable[[Dict[str, Any], Any], None]


@dataclass
class ToolInfo:
    """Externally-resolved tool metadata plus tool-specific logic"""
    name: str
    description: str
    ipfs_cid: str
    network: str = "datil-dev"
    parameters: Dict[str, str] = field(default_factory=dict)  # name -> description
    policy_codec: PolicyCodec = field(default_factory=DefaultPolicyCodec)
    parameter_validator: Optional[ParameterValidator] = None
    policy_validator: Optional[PolicyValidator] = None

    @property
    def parameter_names(self) -> List[str]:
        return list(self.parameters)

    def missing_parameters(self, params: Dict[str, Any]) -> List[str]:
        return [name for name in self.parameters if name not in params]

    def validate_parameters(self, params: Dict[str, Any]) -> List[ParameterIssue]:
        """Tool-specific parameter checks; empty list means valid"""
        if self.parameter_validator is None:
            return []
        result = self.parameter_validator(params)
        if result is True:
            return []
        if result is False:
            return [ParameterIssue("*", "invalid parameters")]
        issues = []
        for item in result:
            if isinstance(item, ParameterIssue):
                issues.append(item)
            else:
                param, error = item
                issues.append(ParameterIssue(str(param), str(error)))
        return issues

    def decode_policy(self, blob: bytes) -> Any:
        return self.policy_codec.decode(blob)

    def validate_params_against_policy(self, params: Dict[str, Any], policy: Any) -> None:
        """Raise if params violate ``policy``. Tools without a validator accept everything."""
        if self.policy_validator is not None:
            self.policy_validator(params, policy)


class ToolResolver(Protocol):
    def resolve(self, name_or_cid: str) -> Optional[ToolInfo]:
        ...


class ToolCatalog:
    """In-memory tool metadata registry"""

    def __init__(self, tools: Iterable[ToolInfo] = ()):
        self._by_cid: Dict[str, ToolInfo] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolInfo) -> None:
        if tool.ipfs_cid in self._by_cid:
            logger.warning(f"Replacing catalog entry for {tool.ipfs_cid}")
        self._by_cid[tool.ipfs_cid] = tool

    def resolve(self, name_or_cid: str) -> Optional[ToolInfo]:
        return self.get_tool_by_ipfs_cid(name_or_cid) or self.get_tool_by_name(name_or_cid)

    def get_tool_by_ipfs_cid(self, ipfs_cid: str) -> Optional[ToolInfo]:
        return self._by_cid.get(ipfs_cid)

    def get_tool_by_name(self, name: str, network: Optional[str] = None) -> Optional[ToolInfo]:
        for tool in self._by_cid.values():
            if tool.name == name and (network is None or tool.network == network):
                return tool
        return None

    def list_all_tools(self) -> List[ToolInfo]:
        return list(self._by_cid.values())

    def list_tools_by_network(self, network: str) -> List[ToolInfo]:
        return [tool for tool in self._by_cid.values() if tool.network == network]

    def __len__(self) -> int:
        return len(self._by_cid)
