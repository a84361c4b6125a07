"""
PolicyStore - Ledger-Resident Policy State
==========================================

Authoritative mapping from (PKP, tool, delegatee) to a policy blob and to a
set of named parameter blobs, plus tool registration and delegatee
permissions per PKP.

Rules every mutating function follows:
- the proven sender must be the PKP owner
- the delegatee is never the zero address
- policy and parameter state needs the tool registered under the PKP
- all checks run before the first write, and every write emits an event

Parameter names form a set exposed as a list: insertion appends only when
the name is absent, removal swaps the found entry with the last one. Order
among remaining names is not preserved after a removal.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from ..crypto import ZERO_ADDRESS, is_address
from ..encoding import POLICY_STORE_ABI
from ..errors import (
    ArrayLengthMismatch,
    InvalidDelegatee,
    LedgerRevert,
    NotPkpOwner,
    PkpNotFound,
    PolicyNotFound,
    ToolNotRegistered,
)

logger = logging.getLogger(__name__)

Triple = Tuple[int, str, str]


@dataclass
class LedgerEvent:
    """Auditable record of a state change"""
    name: str
    args: Dict[str, Any]


@dataclass
class PolicyRecord:
    policy: bytes
    version: str
    enabled: bool = True


@dataclass
class PkpRecord:
    owner: str
    tools: List[str] = field(default_factory=list)
    delegatees: List[str] = field(default_factory=list)
    permitted: Dict[str, List[str]] = field(default_factory=dict)  # tool -> delegatees


def operation_count(function: str, args: Sequence[Any]) -> int:
    """Number of storage operations a mutation performs (drives gas)"""
    if function in ("register_tools", "add_delegatees"):
        return max(len(args[1]), 1)
    if function in ("batch_set_parameters", "batch_remove_parameters"):
        return max(len(args[3]), 1)
    return 1


class PolicyStore:
    """In-process PolicyStore contract"""

    def __init__(self):
        self._pkps: Dict[int, PkpRecord] = {}
        self._policies: Dict[Triple, PolicyRecord] = {}
        self._parameter_names: Dict[Triple, List[str]] = {}
        self._parameter_values: Dict[Tuple[int, str, str, str], bytes] = {}
        self.events: List[LedgerEvent] = []

    # === Genesis ===

    def register_pkp(self, token_id: int, owner: str) -> None:
        """Record a minted PKP and its owner. Minting itself is out of scope."""
        if not is_address(owner) or owner.lower() == ZERO_ADDRESS:
            raise LedgerRevert(f"Invalid PKP owner: {owner!r}")
        self._pkps[token_id] = PkpRecord(owner=owner.lower())
        self._emit("PkpRegistered", pkp=token_id, owner=owner.lower())

    # === Transaction entry points ===

    def execute(self, sender: str, function: str, args: Sequence[Any]) -> List[LedgerEvent]:
        """Run a mutation atomically; returns the events it emitted"""
        signature = POLICY_STORE_ABI.get(function)
        if signature is None or signature.view:
            raise LedgerRevert(f"Not a mutating function: {function}")

        snapshot = self._snapshot()
        first_event = len(self.events)
        try:
            getattr(self, function)(sender, *args)
        except Exception:
            self._restore(snapshot)
            raise
        return self.events[first_event:]

    def call(self, function: str, args: Sequence[Any]) -> Any:
        signature = POLICY_STORE_ABI.get(function)
        if signature is None or not signature.view:
            raise LedgerRevert(f"Not a view function: {function}")
        return getattr(self, function)(*args)

    def fork(self) -> "PolicyStore":
        """Independent copy used for dry runs"""
        return copy.deepcopy(self)

    # === Registration & permissions ===

    def register_tools(self, sender: str, pkp: int, tools: Sequence[str]) -> None:
        record = self._only_owner(sender, pkp)
        added = [tool for tool in dict.fromkeys(tools) if tool not in record.tools]
        record.tools.extend(added)
        self._emit("ToolsRegistered", pkp=pkp, tools=list(tools))

    def add_delegatees(self, sender: str, pkp: int, delegatees: Sequence[str]) -> None:
        normalized = [self._valid_delegatee(d) for d in delegatees]
        record = self._only_owner(sender, pkp)
        for delegatee in normalized:
            if delegatee not in record.delegatees:
                record.delegatees.append(delegatee)
        self._emit("DelegateesAdded", pkp=pkp, delegatees=normalized)

    def permit_tool_for_delegatee(self, sender: str, pkp: int, tool: str, delegatee: str) -> None:
        record, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        if delegatee not in record.delegatees:
            record.delegatees.append(delegatee)
        permitted = record.permitted.setdefault(tool, [])
        if delegatee not in permitted:
            permitted.append(delegatee)
        self._emit("ToolPermitted", pkp=pkp, tool=tool, delegatee=delegatee)

    def unpermit_tool_for_delegatee(self, sender: str, pkp: int, tool: str, delegatee: str) -> None:
        record, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        permitted = record.permitted.get(tool, [])
        if delegatee in permitted:
            permitted.remove(delegatee)
        self._emit("ToolUnpermitted", pkp=pkp, tool=tool, delegatee=delegatee)

    # === Policies ===

    def set_policy(self, sender: str, pkp: int, tool: str, delegatee: str,
                   policy: bytes, version: str) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        key = (pkp, tool, delegatee)
        existing = self._policies.get(key)
        enabled = existing.enabled if existing else True
        self._policies[key] = PolicyRecord(policy=bytes(policy), version=version, enabled=enabled)
        self._emit("ToolPolicySet", pkp=pkp, tool=tool, delegatee=delegatee, version=version)

    def remove_policy(self, sender: str, pkp: int, tool: str, delegatee: str) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        self._policies.pop((pkp, tool, delegatee), None)
        self._emit("ToolPolicyRemoved", pkp=pkp, tool=tool, delegatee=delegatee)

    def enable_policy(self, sender: str, pkp: int, tool: str, delegatee: str) -> None:
        self._set_policy_enabled(sender, pkp, tool, delegatee, True)

    def disable_policy(self, sender: str, pkp: int, tool: str, delegatee: str) -> None:
        self._set_policy_enabled(sender, pkp, tool, delegatee, False)

    def _set_policy_enabled(self, sender: str, pkp: int, tool: str, delegatee: str,
                            enabled: bool) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        record = self._policies.get((pkp, tool, delegatee))
        if record is None:
            raise PolicyNotFound(f"No policy for tool {tool} and delegatee {delegatee}")
        record.enabled = enabled
        self._emit(
            "ToolPolicyEnabled" if enabled else "ToolPolicyDisabled",
            pkp=pkp, tool=tool, delegatee=delegatee,
        )

    # === Parameters ===

    def set_parameter(self, sender: str, pkp: int, tool: str, delegatee: str,
                      name: str, value: bytes) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        self._check_parameters([name], [value])
        self._set_parameter(pkp, tool, delegatee, name, value)

    def remove_parameter(self, sender: str, pkp: int, tool: str, delegatee: str, name: str) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        self._remove_parameter(pkp, tool, delegatee, name)

    def batch_set_parameters(self, sender: str, pkp: int, tool: str, delegatee: str,
                             names: Sequence[str], values: Sequence[bytes]) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        if len(names) != len(values):
            raise ArrayLengthMismatch(
                f"names and values length mismatch: {len(names)} != {len(values)}"
            )
        self._check_parameters(names, values)
        for name, value in zip(names, values):
            self._set_parameter(pkp, tool, delegatee, name, value)

    def batch_remove_parameters(self, sender: str, pkp: int, tool: str, delegatee: str,
                                names: Sequence[str]) -> None:
        _, delegatee = self._check_triple(sender, pkp, tool, delegatee)
        for name in names:
            self._remove_parameter(pkp, tool, delegatee, name)

    def _set_parameter(self, pkp: int, tool: str, delegatee: str, name: str, value: bytes) -> None:
        names = self._parameter_names.setdefault((pkp, tool, delegatee), [])
        if name not in names:
            names.append(name)
        self._parameter_values[(pkp, tool, delegatee, name)] = bytes(value)
        self._emit("ParameterSet", pkp=pkp, tool=tool, delegatee=delegatee, name=name)

    def _remove_parameter(self, pkp: int, tool: str, delegatee: str, name: str) -> None:
        names = self._parameter_names.get((pkp, tool, delegatee), [])
        for index, existing in enumerate(names):
            if existing == name:
                names[index] = names[-1]
                names.pop()
                break
        self._parameter_values.pop((pkp, tool, delegatee, name), None)
        self._emit("ParameterRemoved", pkp=pkp, tool=tool, delegatee=delegatee, name=name)

    # === Views ===

    def get_pkp_owner(self, pkp: int) -> str:
        record = self._pkps.get(pkp)
        return record.owner if record else ZERO_ADDRESS

    def get_registered_tools(self, pkp: int) -> List[str]:
        record = self._pkps.get(pkp)
        return list(record.tools) if record else []

    def get_delegatees(self, pkp: int) -> List[str]:
        record = self._pkps.get(pkp)
        return list(record.delegatees) if record else []

    def get_delegatees_for_tool(self, pkp: int, tool: str) -> List[str]:
        record = self._pkps.get(pkp)
        return list(record.permitted.get(tool, [])) if record else []

    def get_permitted_tools_for_delegatee(self, pkp: int, delegatee: str) -> List[str]:
        record = self._pkps.get(pkp)
        if record is None:
            return []
        delegatee = delegatee.lower()
        return [tool for tool in record.tools if delegatee in record.permitted.get(tool, [])]

    def is_tool_permitted_for_delegatee(self, pkp: int, tool: str, delegatee: str) -> bool:
        return delegatee.lower() in self.get_delegatees_for_tool(pkp, tool)

    def get_policy(self, pkp: int, tool: str, delegatee: str) -> Tuple[bytes, str]:
        record = self._policies.get((pkp, tool, delegatee.lower()))
        if record is None:
            return b"", ""
        return record.policy, record.version

    def is_policy_enabled(self, pkp: int, tool: str, delegatee: str) -> bool:
        record = self._policies.get((pkp, tool, delegatee.lower()))
        return bool(record and record.enabled)

    def get_parameter_names(self, pkp: int, tool: str, delegatee: str) -> List[str]:
        return list(self._parameter_names.get((pkp, tool, delegatee.lower()), []))

    def get_parameter(self, pkp: int, tool: str, delegatee: str, name: str) -> bytes:
        return self._parameter_values.get((pkp, tool, delegatee.lower(), name), b"")

    # === Checks ===

    def _valid_delegatee(self, delegatee: str) -> str:
        if not is_address(delegatee) or delegatee.lower() == ZERO_ADDRESS:
            raise InvalidDelegatee(f"Invalid delegatee: {delegatee!r}")
        return delegatee.lower()

    def _only_owner(self, sender: str, pkp: int) -> PkpRecord:
        record = self._pkps.get(pkp)
        if record is None:
            raise PkpNotFound(f"PKP {pkp} does not exist")
        if not isinstance(sender, str) or sender.lower() != record.owner:
            raise NotPkpOwner(f"{sender} is not the owner of PKP {pkp}")
        return record

    def _check_triple(self, sender: str, pkp: int, tool: str, delegatee: str) -> Tuple[PkpRecord, str]:
        delegatee = self._valid_delegatee(delegatee)
        record = self._only_owner(sender, pkp)
        if tool not in record.tools:
            raise ToolNotRegistered(f"Tool {tool} is not registered for PKP {pkp}")
        return record, delegatee

    def _check_parameters(self, names: Sequence[Any], values: Sequence[Any]) -> None:
        for name, value in zip(names, values):
            if not isinstance(name, str):
                raise LedgerRevert(f"Parameter name must be a string: {name!r}")
            if not isinstance(value, (bytes, bytearray)):
                raise LedgerRevert(f"Parameter {name} value must be bytes, got {type(value).__name__}")

    # === Internals ===

    def _emit(self, event_name: str, **args: Any) -> None:
        event = LedgerEvent(name=event_name, args=args)
        self.events.append(event)
        logger.debug(f"Ledger event {event_name}: {args}")

    def _snapshot(self) -> Tuple[Any, ...]:
        return copy.deepcopy(
            (self._pkps, self._policies, self._parameter_names, self._parameter_values, len(self.events))
        )

    def _restore(self, snapshot: Tuple[Any, ...]) -> None:
        self._pkps, self._policies, self._parameter_names, self._parameter_values, event_count = snapshot
        del self.events[event_count:]
