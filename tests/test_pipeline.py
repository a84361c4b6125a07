"""
Tests for the execution pipeline
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentwallet.audit import AuditLog
from agentwallet.capabilities import ExecutionOptions, ExecutionResult
from agentwallet.errors import (
    EncodingError,
    ErrorKind,
    LogScanExecutionError,
    ParameterCollectionCancelled,
    ParameterInvalid,
    PermissionDenied,
    PolicyManagerNotInitialized,
    PolicyRegistrationFailed,
    PolicyValidationFailed,
    StructuredExecutionError,
    ToolExecutionFailed,
    ToolNotFound,
)
from agentwallet.pipeline import (
    ExecutionPipeline,
    PipelineStage,
    interpret_execution_result,
    scan_logs_for_error,
)
from agentwallet.registry import PolicyMutation, ToolPolicy

from .conftest import DELEGATEE, PKP, SWAP_CID, TRANSFER_CID

TRANSFER_PARAMS = {"amount": "50", "to": "0x" + "ef" * 20}


async def owner_submit(registry, owner, mutation):
    return await registry.submit_policy_mutation(owner.address, owner, mutation)


async def permit_transfer(registry, owner, policy=None):
    await owner_submit(registry, owner, PolicyMutation.register_tools(PKP, [TRANSFER_CID]))
    await owner_submit(registry, owner, PolicyMutation.permit_tool(PKP, TRANSFER_CID, DELEGATEE))
    if policy is not None:
        await owner_submit(registry, owner, PolicyMutation.set_policy(PKP, TRANSFER_CID, DELEGATEE, policy))


def make_pipeline(registry, catalog, signer, audit_log=None):
    return ExecutionPipeline(
        registry=registry,
        catalog=catalog,
        signer=signer,
        pkp_token_id=PKP,
        delegatee=DELEGATEE,
        audit_log=audit_log,
    )


class TestResultInterpretation:
    """Structured status wins over the log scan"""

    def test_structured_error_wins_over_logs(self):
        response = json.dumps({
            "status": "error",
            "error": "Insufficient balance",
            "details": {"reason": "balance too low", "code": "E_BALANCE"},
        })
        outcome = interpret_execution_result(
            ExecutionResult(response=response, logs="Error: something else")
        )

        assert outcome.success is False
        assert outcome.reason == "Insufficient balance\nReason: balance too low\nCode: E_BALANCE"
        assert isinstance(outcome.error, StructuredExecutionError)
        assert outcome.stage == PipelineStage.FAILURE

    def test_integer_code(self):
        response = '{"status":"error","error":"bad input","details":{"reason":"x","code":42}}'
        outcome = interpret_execution_result(ExecutionResult(response=response, logs="Error: oops"))

        assert outcome.success is False
        assert outcome.reason == "bad input\nReason: x\nCode: 42"

    def test_structured_error_nested_message(self):
        response = {"status": "error", "error": "Swap failed", "details": {"error": {"message": "slippage"}}}
        outcome = interpret_execution_result(ExecutionResult(response=json.dumps(response)))

        assert outcome.reason == "Swap failed\nDetails: slippage"

    def test_log_scan(self):
        outcome = interpret_execution_result(
            ExecutionResult(response="{}", logs="starting\nError:  nonce too low \nfinished")
        )

        assert outcome.success is False
        assert outcome.reason == "Lit Action error: nonce too low"
        assert outcome.error.kind == ErrorKind.LOG_SCAN_EXECUTION_ERROR
        assert isinstance(outcome.error, LogScanExecutionError)

    def test_success(self):
        outcome = interpret_execution_result(
            ExecutionResult(response='{"status":"success","txHash":"0x1"}', logs="all good")
        )

        assert outcome.success is True
        assert outcome.reason is None
        assert outcome.stage == PipelineStage.SUCCESS

    def test_non_json_response_falls_back_to_logs(self):
        outcome = interpret_execution_result(ExecutionResult(response="not json", logs=""))
        assert outcome.success is True

    @pytest.mark.parametrize("logs,expected", [
        ("", None),
        ("no problems here", None),
        ("Error:\n", None),
        ("Error: first\nError: second", "first"),
    ])
    def test_scan_logs_for_error(self, logs, expected):
        assert scan_logs_for_error(logs) == expected


class TestPermission:
    """Permission stage"""

    @pytest.mark.asyncio
    async def test_permitted_tool_runs(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is True
        assert pkp_signer.executions == [(TRANSFER_CID, TRANSFER_PARAMS)]

    @pytest.mark.asyncio
    async def test_no_permission_callback(self, registry, catalog, pkp_signer):
        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is False
        assert isinstance(outcome.error, PermissionDenied)
        assert pkp_signer.executions == []

    @pytest.mark.asyncio
    async def test_denied_by_user_is_returned(self, registry, catalog, pkp_signer):
        options = ExecutionOptions(permission_callback=lambda tool: False)

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, options
        )

        assert outcome.success is False
        assert outcome.reason == "Permission denied by user"
        assert outcome.error.kind == ErrorKind.PERMISSION_DENIED
        assert await registry.get_registered_tools(PKP) == []

    @pytest.mark.asyncio
    async def test_granted_permission_registers_and_permits(self, registry, catalog, pkp_signer):
        asked = []

        async def permission(tool):
            asked.append(tool.name)
            return True

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, ExecutionOptions(permission_callback=permission)
        )

        assert outcome.success is True
        assert asked == ["ERC20Transfer"]
        assert await registry.get_registered_tools(PKP) == [TRANSFER_CID]
        assert await registry.is_tool_permitted_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
        assert (await registry.get_policy(PKP, TRANSFER_CID, DELEGATEE)).is_empty

    @pytest.mark.asyncio
    async def test_granted_permission_with_new_policy(self, registry, catalog, pkp_signer):
        registered = []
        offered = []

        def set_policy(tool, current_policy):
            offered.append(current_policy)
            return {"use_policy": True, "policy_values": {"max_amount": 100}, "version": "1.2.0"}

        options = ExecutionOptions(
            permission_callback=lambda tool: True,
            set_new_tool_policy_callback=set_policy,
            on_policy_registered=registered.append,
        )

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, options
        )

        assert outcome.success is True
        assert offered == [None]
        assert len(registered) == 1 and registered[0].startswith("0x")
        policy = await registry.get_policy(PKP, TRANSFER_CID, DELEGATEE)
        assert policy.version == "1.2.0"

    @pytest.mark.asyncio
    async def test_declining_policy_skips_registration(self, registry, catalog, pkp_signer):
        registered = []
        options = ExecutionOptions(
            permission_callback=lambda tool: True,
            set_new_tool_policy_callback=lambda tool, current: {"use_policy": False},
            on_policy_registered=registered.append,
        )

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, options
        )

        assert outcome.success is True
        assert registered == []

    @pytest.mark.asyncio
    async def test_registration_failure_is_returned(self, registry, provider, catalog, pkp_signer):
        send_raw_transaction = provider.send_raw_transaction
        sent = []

        async def unreachable_after_permit(raw):
            if len(sent) == 2:
                raise ConnectionError("node unreachable")
            sent.append(raw)
            return await send_raw_transaction(raw)

        provider.send_raw_transaction = unreachable_after_permit
        registered = []
        options = ExecutionOptions(
            permission_callback=lambda tool: True,
            set_new_tool_policy_callback=lambda tool, current: {
                "use_policy": True, "policy_values": {"max_amount": 100},
            },
            on_policy_registered=registered.append,
        )

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, options
        )

        assert outcome.success is False
        assert isinstance(outcome.error, PolicyRegistrationFailed)
        assert outcome.reason == "Failed to register policy"
        assert outcome.stage == PipelineStage.FAILURE
        assert registered == []
        assert pkp_signer.executions == []


class TestParameters:
    """Parameter collection stage"""

    @pytest.mark.asyncio
    async def test_missing_without_callback(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, {"amount": "5"})

        assert isinstance(outcome.error, ParameterInvalid)
        assert outcome.reason == "Missing required parameters: to"

    @pytest.mark.asyncio
    async def test_collection_cancelled(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)
        options = ExecutionOptions(parameter_callback=lambda tool, missing: None)

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, {}, options)

        assert isinstance(outcome.error, ParameterCollectionCancelled)
        assert pkp_signer.executions == []

    @pytest.mark.asyncio
    async def test_collects_missing_parameters(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)
        requested = []

        async def collect(tool, missing):
            requested.append(missing)
            return {"to": TRANSFER_PARAMS["to"]}

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, {"amount": "50"}, ExecutionOptions(parameter_callback=collect)
        )

        assert outcome.success is True
        assert requested == [["to"]]
        assert pkp_signer.executions == [(TRANSFER_CID, TRANSFER_PARAMS)]

    @pytest.mark.asyncio
    async def test_validator_rejects(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, {**TRANSFER_PARAMS, "amount": "0"}
        )

        assert isinstance(outcome.error, ParameterInvalid)
        assert outcome.reason == "Invalid parameters:\namount: must be positive"


class TestPolicyEnforcement:
    """Policy fetch and validation stages"""

    @pytest.mark.asyncio
    async def test_violation_without_callback(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert isinstance(outcome.error, PolicyValidationFailed)
        assert outcome.reason == "Amount 50 exceeds the maximum of 10"
        assert pkp_signer.executions == []

    @pytest.mark.asyncio
    async def test_single_retry_succeeds(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})
        calls = []

        def retry(tool, params, policy, error):
            calls.append(str(error))
            return {**params, "amount": "5"}

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, ExecutionOptions(failed_policy_callback=retry)
        )

        assert outcome.success is True
        assert calls == ["Amount 50 exceeds the maximum of 10"]
        assert pkp_signer.executions[0][1]["amount"] == "5"

    @pytest.mark.asyncio
    async def test_retry_is_one_shot(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})
        calls = []

        def retry(tool, params, policy, error):
            calls.append(params["amount"])
            return {**params, "amount": "20"}

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS, ExecutionOptions(failed_policy_callback=retry)
        )

        assert isinstance(outcome.error, PolicyValidationFailed)
        assert outcome.reason == "Amount 20 exceeds the maximum of 10"
        assert calls == ["50"]

    @pytest.mark.asyncio
    async def test_empty_replacement_is_revalidated(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS,
            ExecutionOptions(failed_policy_callback=lambda tool, params, policy, error: {}),
        )

        assert isinstance(outcome.error, PolicyValidationFailed)
        assert outcome.error.context["params"] == {}
        assert pkp_signer.executions == []

    @pytest.mark.asyncio
    async def test_declined_retry_keeps_first_error(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, TRANSFER_PARAMS,
            ExecutionOptions(failed_policy_callback=lambda tool, params, policy, error: None),
        )

        assert outcome.reason == "Amount 50 exceeds the maximum of 10"
        assert outcome.error.context["params"] == TRANSFER_PARAMS

    @pytest.mark.asyncio
    async def test_disabled_policy_is_not_enforced(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner, policy={"max_amount": 10})
        await owner_submit(registry, owner, PolicyMutation.disable_policy(PKP, TRANSFER_CID, DELEGATEE))

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is True


class TestErrorBoundary:
    """Tagged errors are returned, anything else is raised"""

    def _registry(self, get_policy):
        registry = MagicMock()
        registry.is_tool_permitted_for_delegatee = AsyncMock(return_value=True)
        registry.get_policy = get_policy
        registry.is_policy_enabled = AsyncMock(return_value=True)
        return registry

    @pytest.mark.asyncio
    async def test_policy_manager_not_initialized_is_swallowed(self, catalog, pkp_signer):
        registry = self._registry(AsyncMock(side_effect=PolicyManagerNotInitialized()))

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_untagged_not_initialized_message_is_swallowed(self, catalog, pkp_signer):
        registry = self._registry(AsyncMock(side_effect=RuntimeError("Tool policy manager not initialized")))

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_other_policy_errors_propagate(self, catalog, pkp_signer):
        cause = RuntimeError("rpc unavailable")
        registry = self._registry(AsyncMock(side_effect=cause))

        with pytest.raises(ToolExecutionFailed) as exc_info:
            await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        error = exc_info.value
        assert error.message == "rpc unavailable"
        assert error.context["ipfs_cid"] == TRANSFER_CID
        assert error.context["params"] == TRANSFER_PARAMS
        assert error.context["original_error"] is cause
        assert pkp_signer.executions == []

    @pytest.mark.asyncio
    async def test_tagged_policy_errors_are_returned(self, catalog, pkp_signer):
        registry = self._registry(AsyncMock(side_effect=EncodingError("bad policy")))

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is False
        assert outcome.reason == "bad policy"

    @pytest.mark.asyncio
    async def test_empty_policy_is_unconstrained(self, catalog, pkp_signer):
        registry = self._registry(AsyncMock(return_value=ToolPolicy(policy=b"", version="")))

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(
            TRANSFER_CID, {**TRANSFER_PARAMS, "amount": "1000000"}
        )

        assert outcome.success is True
        registry.is_policy_enabled.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry, catalog, pkp_signer):
        outcome = await make_pipeline(registry, catalog, pkp_signer).execute("QmNothing")

        assert isinstance(outcome.error, ToolNotFound)
        assert outcome.reason == "Tool not found: QmNothing"

    @pytest.mark.asyncio
    async def test_execution_crash_raises(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)
        pkp_signer.result = ConnectionError("node unreachable")

        with pytest.raises(ToolExecutionFailed) as exc_info:
            await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert isinstance(exc_info.value.context["original_error"], ConnectionError)

    @pytest.mark.asyncio
    async def test_tool_reported_error(self, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)
        pkp_signer.result = {"response": "", "logs": "Error: gas too low"}

        outcome = await make_pipeline(registry, catalog, pkp_signer).execute(TRANSFER_CID, TRANSFER_PARAMS)

        assert outcome.success is False
        assert outcome.reason == "Lit Action error: gas too low"
        assert outcome.result.logs == "Error: gas too low"


class TestAudit:
    """Execution outcomes are appended to the audit log"""

    @pytest.mark.asyncio
    async def test_outcomes_are_recorded(self, tmp_path, registry, owner, catalog, pkp_signer):
        await permit_transfer(registry, owner)
        log_file = tmp_path / "audit" / "executions.log"
        pipeline = make_pipeline(registry, catalog, pkp_signer, AuditLog(str(log_file)))

        await pipeline.execute(TRANSFER_CID, TRANSFER_PARAMS)
        await pipeline.execute(SWAP_CID, {})

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [entry["success"] for entry in entries] == [True, False]
        assert entries[0]["stage"] == "success"
        assert entries[0]["delegatee"] == DELEGATEE
        assert "timestamp" in entries[1]
