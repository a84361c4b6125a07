"""
Error Definitions
=================

Tagged error variants for the policy engine.

Every core error carries a kind, a human-readable message and a context
bag. Ledger reverts live in a separate hierarchy: they are not tagged core
errors and only become one when the registry client wraps them.
"""

from enum import Enum
from typing import Any, Dict, Optional

POLICY_MANAGER_NOT_INITIALIZED = "Tool policy manager not initialized"
PERMISSION_DENIED_BY_USER = "Permission denied by user"


class ErrorKind(str, Enum):
    """Closed set of error tags"""
    NOT_INITIALIZED = "not_initialized"
    POLICY_MANAGER_NOT_INITIALIZED = "policy_manager_not_initialized"
    TOOL_NOT_FOUND = "tool_not_found"
    PERMISSION_DENIED = "permission_denied"
    POLICY_REGISTRATION_FAILED = "policy_registration_failed"
    PARAMETER_COLLECTION_CANCELLED = "parameter_collection_cancelled"
    PARAMETER_INVALID = "parameter_invalid"
    POLICY_VALIDATION_FAILED = "policy_validation_failed"
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    STRUCTURED_EXECUTION_ERROR = "structured_execution_error"
    LOG_SCAN_EXECUTION_ERROR = "log_scan_execution_error"
    NO_PERMITTED_TOOLS = "no_permitted_tools"
    TOOL_NOT_PERMITTED = "tool_not_permitted"
    NO_TOOLS_WITH_POLICIES = "no_tools_with_policies"
    NO_ENABLED_POLICIES = "no_enabled_policies"
    NO_DELEGATEES_WITH_ENABLED_POLICIES = "no_delegatees_with_enabled_policies"
    ADMIN_OPERATION_CANCELLED = "admin_operation_cancelled"
    CONFIGURATION = "configuration"
    ENCODING = "encoding"


class AgentWalletError(Exception):
    """Base exception for agentwallet"""

    kind: ErrorKind = ErrorKind.TOOL_EXECUTION_FAILED

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class NotInitialized(AgentWalletError):
    """Raised when an agent is used before init()"""
    kind = ErrorKind.NOT_INITIALIZED


class PolicyManagerNotInitialized(AgentWalletError):
    """Raised when no PolicyStore address is configured"""
    kind = ErrorKind.POLICY_MANAGER_NOT_INITIALIZED

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(POLICY_MANAGER_NOT_INITIALIZED, context)


class ToolNotFound(AgentWalletError):
    """Raised when a tool id does not resolve in the catalog"""
    kind = ErrorKind.TOOL_NOT_FOUND


class PermissionDenied(AgentWalletError):
    """Raised when the caller has no permission for a tool"""
    kind = ErrorKind.PERMISSION_DENIED


class PolicyRegistrationFailed(AgentWalletError):
    """Raised when a policy mutation transaction could not be submitted"""
    kind = ErrorKind.POLICY_REGISTRATION_FAILED

    def __init__(self, message: str, ipfs_cid: Optional[str] = None, policy: Any = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, {"ipfs_cid": ipfs_cid, "policy": policy, "error": cause})
        self.ipfs_cid = ipfs_cid
        self.policy = policy
        self.cause = cause


class ParameterCollectionCancelled(AgentWalletError):
    """Raised when parameter collection is cancelled"""
    kind = ErrorKind.PARAMETER_COLLECTION_CANCELLED


class ParameterInvalid(AgentWalletError):
    """Raised when collected parameters are missing or malformed"""
    kind = ErrorKind.PARAMETER_INVALID


class PolicyValidationFailed(AgentWalletError):
    """Raised when parameters do not meet the active policy"""
    kind = ErrorKind.POLICY_VALIDATION_FAILED


class ToolExecutionFailed(AgentWalletError):
    """Raised when tool execution fails for an unexpected reason"""
    kind = ErrorKind.TOOL_EXECUTION_FAILED


class StructuredExecutionError(AgentWalletError):
    """Error reported by a tool through a JSON status field"""
    kind = ErrorKind.STRUCTURED_EXECUTION_ERROR


class LogScanExecutionError(AgentWalletError):
    """Error found by scanning execution logs"""
    kind = ErrorKind.LOG_SCAN_EXECUTION_ERROR


class NoPermittedTools(AgentWalletError):
    kind = ErrorKind.NO_PERMITTED_TOOLS


class ToolNotPermitted(AgentWalletError):
    kind = ErrorKind.TOOL_NOT_PERMITTED


class NoToolsWithPolicies(AgentWalletError):
    kind = ErrorKind.NO_TOOLS_WITH_POLICIES


class NoEnabledPolicies(AgentWalletError):
    kind = ErrorKind.NO_ENABLED_POLICIES


class NoDelegateesWithEnabledPolicies(AgentWalletError):
    kind = ErrorKind.NO_DELEGATEES_WITH_ENABLED_POLICIES


class AdminOperationCancelled(AgentWalletError):
    kind = ErrorKind.ADMIN_OPERATION_CANCELLED


class ConfigurationError(AgentWalletError):
    """Raised when configuration is invalid"""
    kind = ErrorKind.CONFIGURATION


class EncodingError(AgentWalletError):
    """Raised when call data or policy values cannot be encoded"""
    kind = ErrorKind.ENCODING


# Ledger-side failures

class LedgerError(Exception):
    """Base exception for ledger failures"""
    pass


class LedgerRevert(LedgerError):
    """A ledger call reverted; no state was changed"""
    pass


class InvalidDelegatee(LedgerRevert):
    pass


class ToolNotRegistered(LedgerRevert):
    pass


class NotPkpOwner(LedgerRevert):
    pass


class ArrayLengthMismatch(LedgerRevert):
    pass


class PkpNotFound(LedgerRevert):
    pass


class PolicyNotFound(LedgerRevert):
    pass


class OutOfGas(LedgerRevert):
    pass


class TransactionRejected(LedgerError):
    """Raised when a raw transaction is malformed, badly signed or replayed"""
    pass
