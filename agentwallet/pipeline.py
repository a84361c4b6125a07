"""
Execution Pipeline - Tool Invocation Gate
=========================================

Gates a tool invocation behind permission, policy and parameter checks:

    IDLE → TOOL_RESOLVED → PERMISSION_CHECKED → PARAMETERS_COLLECTED
         → POLICY_FETCHED → PARAMETERS_VALIDATED → EXECUTED → SUCCESS | FAILURE

Each stage fully completes before the next one starts; nothing is retried
except the single failed-policy re-validation.

Error boundary:
    - tagged errors (AgentWalletError) become ``ToolExecutionResult(success=False)``
    - anything else is wrapped in ToolExecutionFailed and raised
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .audit import AuditLog
from .capabilities import ExecutionOptions, ExecutionResult, PolicyChoice, ToolSigner, resolve
from .errors import (
    POLICY_MANAGER_NOT_INITIALIZED,
    PERMISSION_DENIED_BY_USER,
    AgentWalletError,
    LogScanExecutionError,
    ParameterCollectionCancelled,
    ParameterInvalid,
    PermissionDenied,
    PolicyManagerNotInitialized,
    PolicyValidationFailed,
    StructuredExecutionError,
    ToolExecutionFailed,
    ToolNotFound,
)
from .registry import PolicyMutation, RegistryClient
from .tools import ToolInfo, ToolResolver

logger = logging.getLogger(__name__)

_LOG_ERROR_RE = re.compile(r"Error:([^\n]+)")


class PipelineStage(str, Enum):
    IDLE = "idle"
    TOOL_RESOLVED = "tool_resolved"
    PERMISSION_CHECKED = "permission_checked"
    PARAMETERS_COLLECTED = "parameters_collected"
    POLICY_FETCHED = "policy_fetched"
    PARAMETERS_VALIDATED = "parameters_validated"
    EXECUTED = "executed"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class ToolExecutionResult:
    """Outcome of a tool invocation"""
    success: bool
    result: Optional[ExecutionResult] = None
    reason: Optional[str] = None
    error: Optional[AgentWalletError] = None
    stage: PipelineStage = PipelineStage.SUCCESS


def format_structured_error(payload: Dict[str, Any]) -> str:
    """Failure reason from a ``{"status": "error", ...}`` response"""
    message = str(payload.get("error", ""))
    details = payload.get("details")
    if isinstance(details, dict):
        if details.get("reason"):
            message += f"\nReason: {details['reason']}"
        if details.get("code"):
            message += f"\nCode: {details['code']}"
        nested = details.get("error")
        if isinstance(nested, dict) and nested.get("message"):
            message += f"\nDetails: {nested['message']}"
    return message


def scan_logs_for_error(logs: str) -> Optional[str]:
    """Text following the first ``Error:`` marker up to the end of its line"""
    if not logs or "Error:" not in logs:
        return None
    match = _LOG_ERROR_RE.search(logs)
    if match is None:
        return None
    return match.group(1).strip()


def _parse_response(response: Any) -> Optional[Dict[str, Any]]:
    if isinstance(response, dict):
        return response
    if not isinstance(response, str) or not response:
        return None
    try:
        parsed = json.loads(response)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def interpret_execution_result(result: ExecutionResult) -> ToolExecutionResult:
    """Classify a raw execution result; the structured response wins over the log scan"""
    payload = _parse_response(result.response)
    if payload is not None and payload.get("status") == "error":
        reason = format_structured_error(payload)
        return ToolExecutionResult(
            success=False,
            result=result,
            reason=reason,
            error=StructuredExecutionError(reason, {"response": payload}),
            stage=PipelineStage.FAILURE,
        )

    log_error = scan_logs_for_error(result.logs)
    if log_error is not None:
        reason = f"Lit Action error: {log_error}"
        return ToolExecutionResult(
            success=False,
            result=result,
            reason=reason,
            error=LogScanExecutionError(reason, {"logs": result.logs}),
            stage=PipelineStage.FAILURE,
        )

    return ToolExecutionResult(success=True, result=result, stage=PipelineStage.SUCCESS)


def _is_policy_manager_uninitialized(error: Exception) -> bool:
    return isinstance(error, PolicyManagerNotInitialized) or str(error) == POLICY_MANAGER_NOT_INITIALIZED


class _Run:
    """Per-invocation state; stages only move forward"""

    def __init__(self, ipfs_cid: str):
        self.ipfs_cid = ipfs_cid
        self.stage = PipelineStage.IDLE

    def advance(self, stage: PipelineStage) -> None:
        logger.debug(f"{self.ipfs_cid}: {self.stage.value} -> {stage.value}")
        self.stage = stage


class ExecutionPipeline:
    """Runs tools for ``delegatee`` on behalf of PKP ``pkp_token_id``"""

    def __init__(
        self,
        registry: RegistryClient,
        catalog: ToolResolver,
        signer: ToolSigner,
        pkp_token_id: int,
        delegatee: str,
        audit_log: Optional[AuditLog] = None,
    ):
        self.registry = registry
        self.catalog = catalog
        self.signer = signer
        self.pkp_token_id = pkp_token_id
        self.delegatee = delegatee.lower()
        self.audit_log = audit_log or AuditLog()

    async def execute(
        self,
        ipfs_cid: str,
        initial_params: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ToolExecutionResult:
        """Run a tool through every gate and return its outcome"""
        options = options or ExecutionOptions()
        initial_params = dict(initial_params or {})
        run = _Run(ipfs_cid)

        try:
            outcome = await self._run(run, initial_params, options)
        except AgentWalletError as e:
            logger.warning(f"Tool {ipfs_cid} failed at {run.stage.value}: {e.message}")
            outcome = ToolExecutionResult(
                success=False, reason=e.message, error=e, stage=PipelineStage.FAILURE
            )
        except Exception as e:
            logger.error(f"Unexpected failure executing {ipfs_cid} at {run.stage.value}: {e}")
            self._audit(run, ipfs_cid, success=False, reason=str(e))
            raise ToolExecutionFailed(
                str(e) or "Failed to execute tool",
                {"ipfs_cid": ipfs_cid, "params": initial_params, "original_error": e},
            ) from e

        self._audit(run, ipfs_cid, success=outcome.success, reason=outcome.reason)
        return outcome

    async def _run(self, run: _Run, initial_params: Dict[str, Any],
                   options: ExecutionOptions) -> ToolExecutionResult:
        tool = await self._resolve_tool(run.ipfs_cid)
        run.advance(PipelineStage.TOOL_RESOLVED)

        tx_hash = await self._check_permission(tool, options)
        if tx_hash and options.on_policy_registered:
            await resolve(options.on_policy_registered(tx_hash))
        run.advance(PipelineStage.PERMISSION_CHECKED)

        params = await self._collect_parameters(tool, initial_params, options)
        run.advance(PipelineStage.PARAMETERS_COLLECTED)

        policy = await self._fetch_policy(tool)
        run.advance(PipelineStage.POLICY_FETCHED)

        if policy is not None:
            params = await self._validate_against_policy(tool, params, policy, options)
        run.advance(PipelineStage.PARAMETERS_VALIDATED)

        result = await self._execute(tool, params)
        run.advance(PipelineStage.EXECUTED)

        outcome = interpret_execution_result(result)
        run.advance(outcome.stage)
        return outcome

    # === Stages ===

    async def _resolve_tool(self, ipfs_cid: str) -> ToolInfo:
        tool = await resolve(self.catalog.resolve(ipfs_cid))
        if tool is None:
            raise ToolNotFound(f"Tool not found: {ipfs_cid}", {"ipfs_cid": ipfs_cid})
        return tool

    async def _check_permission(self, tool: ToolInfo, options: ExecutionOptions) -> Optional[str]:
        """Returns the hash of a policy registered along the way, if any"""
        permitted = await self.registry.is_tool_permitted_for_delegatee(
            self.pkp_token_id, tool.ipfs_cid, self.delegatee
        )
        if permitted:
            return None

        context = {"tool": tool, "delegatee": self.delegatee}
        if options.permission_callback is None:
            raise PermissionDenied(
                f"Tool {tool.name} is not permitted and no permission callback was provided", context
            )
        if not await resolve(options.permission_callback(tool)):
            raise PermissionDenied(PERMISSION_DENIED_BY_USER, context)

        choice = None
        if options.set_new_tool_policy_callback is not None:
            current_policy = await self._fetch_policy(tool)
            choice = PolicyChoice.coerce(
                await resolve(options.set_new_tool_policy_callback(tool, current_policy))
            )

        await self._grant_permission(tool)

        if choice is not None and choice.use_policy and choice.policy_values is not None:
            handle = await self.registry.submit_policy_mutation(
                self.signer.pkp_address,
                self.signer.sign,
                PolicyMutation.set_policy(
                    self.pkp_token_id, tool.ipfs_cid, self.delegatee, choice.policy_values, choice.version
                ),
            )
            return getattr(handle, "hash", None)
        return None

    async def _grant_permission(self, tool: ToolInfo) -> None:
        registered = await self.registry.get_registered_tools(self.pkp_token_id)
        if tool.ipfs_cid not in registered:
            await self.registry.submit_policy_mutation(
                self.signer.pkp_address,
                self.signer.sign,
                PolicyMutation.register_tools(self.pkp_token_id, [tool.ipfs_cid]),
            )
        await self.registry.submit_policy_mutation(
            self.signer.pkp_address,
            self.signer.sign,
            PolicyMutation.permit_tool(self.pkp_token_id, tool.ipfs_cid, self.delegatee),
        )
        logger.info(f"Permitted {tool.name} for {self.delegatee}")

    async def _collect_parameters(self, tool: ToolInfo, initial_params: Dict[str, Any],
                                  options: ExecutionOptions) -> Dict[str, Any]:
        params = dict(initial_params)
        missing = tool.missing_parameters(params)

        if missing:
            if options.parameter_callback is None:
                raise ParameterInvalid(
                    f"Missing required parameters: {', '.join(missing)}",
                    {"tool": tool, "missing": missing},
                )
            collected = await resolve(options.parameter_callback(tool, missing))
            if collected is None:
                raise ParameterCollectionCancelled("Parameter input cancelled", {"tool": tool})
            params.update(collected)

            still_missing = tool.missing_parameters(params)
            if still_missing:
                raise ParameterInvalid(
                    f"Missing required parameters: {', '.join(still_missing)}",
                    {"tool": tool, "missing": still_missing},
                )

        issues = tool.validate_parameters(params)
        if issues:
            details = "\n".join(f"{issue.param}: {issue.error}" for issue in issues)
            raise ParameterInvalid(
                f"Invalid parameters:\n{details}", {"tool": tool, "params": params, "issues": issues}
            )
        return params

    async def _fetch_policy(self, tool: ToolInfo) -> Any:
        """Decoded policy for this delegatee, or None when unconstrained"""
        try:
            current = await self.registry.get_policy(self.pkp_token_id, tool.ipfs_cid, self.delegatee)
            if current.is_empty:
                return None
            if not await self.registry.is_policy_enabled(self.pkp_token_id, tool.ipfs_cid, self.delegatee):
                logger.info(f"Policy for {tool.name} is disabled; continuing without it")
                return None
            return tool.decode_policy(current.policy)
        except Exception as e:
            if _is_policy_manager_uninitialized(e):
                logger.debug(f"No policy manager; {tool.name} runs without a policy")
                return None
            raise

    async def _validate_against_policy(self, tool: ToolInfo, params: Dict[str, Any], policy: Any,
                                       options: ExecutionOptions) -> Dict[str, Any]:
        try:
            tool.validate_params_against_policy(params, policy)
            return params
        except Exception as error:
            first_error = error

        context = {"tool": tool, "policy": policy, "params": params, "original_error": first_error}
        if options.failed_policy_callback is None:
            raise PolicyValidationFailed(
                str(first_error) or "Parameters do not meet policy requirements", context
            )

        new_params = await resolve(options.failed_policy_callback(tool, params, policy, first_error))
        if new_params is None:
            raise PolicyValidationFailed(str(first_error), context)

        try:
            tool.validate_params_against_policy(new_params, policy)
        except Exception as retry_error:
            raise PolicyValidationFailed(
                str(retry_error),
                {**context, "params": new_params, "original_error": retry_error},
            ) from retry_error
        return new_params

    async def _execute(self, tool: ToolInfo, params: Dict[str, Any]) -> ExecutionResult:
        result = await self.signer.execute_tool(tool.ipfs_cid, params)
        if isinstance(result, dict):
            result = ExecutionResult(
                response=result.get("response", ""),
                logs=result.get("logs", ""),
                signatures=result.get("signatures", {}),
            )
        return result

    def _audit(self, run: _Run, ipfs_cid: str, success: bool, reason: Optional[str]) -> None:
        self.audit_log.record({
            "pkp_token_id": self.pkp_token_id,
            "delegatee": self.delegatee,
            "ipfs_cid": ipfs_cid,
            "stage": run.stage.value,
            "success": success,
            "reason": reason,
        })
