"""
Tests for the admin orchestrator
"""

import pytest

from agentwallet.admin import AdminOrchestrator
from agentwallet.encoding import decode_policy_value
from agentwallet.errors import (
    AdminOperationCancelled,
    NoDelegateesWithEnabledPolicies,
    NoEnabledPolicies,
    NoPermittedTools,
    NoToolsWithPolicies,
    PolicyRegistrationFailed,
    ToolNotPermitted,
)

from .conftest import DELEGATEE, OTHER_DELEGATEE, PKP, SWAP_CID, TRANSFER_CID

UNKNOWN_CID = "QmUnpublished"
UNKNOWN_WITH_POLICY_CID = "QmUnpublishedWithPolicy"


@pytest.fixture
def admin(registry, catalog, owner):
    return AdminOrchestrator(registry, catalog, owner.address, owner)


async def seed(admin):
    """Transfer: permitted with policy. Swap: permitted, no policy. Two unknown CIDs."""
    await admin.register_tools(PKP, [TRANSFER_CID, SWAP_CID, UNKNOWN_CID, UNKNOWN_WITH_POLICY_CID])
    await admin.permit_tool_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
    await admin.permit_tool_for_delegatee(PKP, SWAP_CID, DELEGATEE)
    await admin.set_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE, {"max_amount": 100})
    await admin.permit_tool_for_delegatee(PKP, UNKNOWN_WITH_POLICY_CID, OTHER_DELEGATEE)
    await admin.set_tool_policy_for_delegatee(PKP, UNKNOWN_WITH_POLICY_CID, OTHER_DELEGATEE, "opaque", "0.1.0")


def first_choice(message, choices):
    return choices[0].value


class TestSnapshot:
    """Registered tools partitioned by metadata and policy"""

    @pytest.mark.asyncio
    async def test_nothing_registered(self, admin):
        assert await admin.get_registered_tools_and_delegatees_for_pkp(PKP) is None

    @pytest.mark.asyncio
    async def test_partition(self, admin):
        await seed(admin)

        result = await admin.get_registered_tools_and_delegatees_for_pkp(PKP)

        assert list(result.tools_with_policies) == [TRANSFER_CID]
        assert list(result.tools_without_policies) == [SWAP_CID]
        assert list(result.tools_unknown_with_policies) == [UNKNOWN_WITH_POLICY_CID]
        assert result.tools_unknown_without_policies == [UNKNOWN_CID]

        transfer = result.tools_with_policies[TRANSFER_CID]
        assert transfer.name == "ERC20Transfer"
        assert transfer.delegatees == [DELEGATEE]
        policy = transfer.delegatee_policies[DELEGATEE]
        assert decode_policy_value(policy.policy) == {"max_amount": 100}
        assert policy.version == "1.0.0"
        assert policy.enabled is True
        assert policy.parameters == {}

        unknown = result.tools_unknown_with_policies[UNKNOWN_WITH_POLICY_CID]
        assert unknown.delegatees == [OTHER_DELEGATEE]
        assert unknown.delegatee_policies[OTHER_DELEGATEE].version == "0.1.0"

    @pytest.mark.asyncio
    async def test_parameters_in_snapshot(self, admin):
        await seed(admin)
        await admin.set_tool_parameters_for_delegatee(
            PKP, TRANSFER_CID, DELEGATEE, {"limit": "10", "token": b"\x01"}
        )

        result = await admin.get_registered_tools_and_delegatees_for_pkp(PKP)

        parameters = result.tools_with_policies[TRANSFER_CID].delegatee_policies[DELEGATEE].parameters
        assert parameters == {"limit": b"10", "token": b"\x01"}

    @pytest.mark.asyncio
    async def test_restricted_to(self, admin):
        await seed(admin)
        result = await admin.get_registered_tools_and_delegatees_for_pkp(PKP)

        restricted = result.restricted_to([SWAP_CID])

        assert restricted.contains(SWAP_CID)
        assert not restricted.contains(TRANSFER_CID)
        assert not restricted.is_empty
        assert result.restricted_to([UNKNOWN_CID]).is_empty


class TestUnpermit:
    """Unpermit with PKP-level then delegatee-level filtering"""

    @pytest.mark.asyncio
    async def test_no_tools_at_all(self, admin):
        with pytest.raises(NoPermittedTools) as exc_info:
            await admin.unpermit_tool_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
        assert exc_info.value.message == "No permitted tools found."

    @pytest.mark.asyncio
    async def test_no_tools_for_delegatee(self, admin):
        await seed(admin)
        stranger = "0x" + "12" * 20

        with pytest.raises(NoPermittedTools) as exc_info:
            await admin.unpermit_tool_for_delegatee(PKP, TRANSFER_CID, stranger)
        assert exc_info.value.message == "No permitted tools found for this delegatee."

    @pytest.mark.asyncio
    async def test_tool_outside_intersection(self, admin):
        await seed(admin)

        with pytest.raises(ToolNotPermitted):
            await admin.unpermit_tool_for_delegatee(PKP, UNKNOWN_WITH_POLICY_CID, DELEGATEE)

    @pytest.mark.asyncio
    async def test_unpermit(self, admin, registry):
        await seed(admin)

        await admin.unpermit_tool_for_delegatee(PKP, SWAP_CID, DELEGATEE)

        assert not await registry.is_tool_permitted_for_delegatee(PKP, SWAP_CID, DELEGATEE)
        assert await admin.get_permitted_tools_for_delegatee(PKP, DELEGATEE) == [TRANSFER_CID]

    @pytest.mark.asyncio
    async def test_select_and_unpermit(self, admin, registry):
        await seed(admin)
        prompts = []

        def selector(message, choices):
            prompts.append((message, [choice.title for choice in choices]))
            return choices[0].value

        await admin.select_and_unpermit_tool(PKP, selector)

        assert prompts[0] == ("Select a delegatee to unpermit tool for:", [DELEGATEE, OTHER_DELEGATEE])
        assert prompts[1][1] == [f"ERC20Transfer ({TRANSFER_CID})", f"UniswapSwap ({SWAP_CID})"]
        assert not await registry.is_tool_permitted_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)

    @pytest.mark.asyncio
    async def test_select_cancelled(self, admin, registry):
        await seed(admin)

        with pytest.raises(AdminOperationCancelled):
            await admin.select_and_unpermit_tool(PKP, lambda message, choices: None)

        assert await registry.is_tool_permitted_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)


class TestDisablePolicy:
    """Disable with tool-level then delegatee-level filtering"""

    @pytest.mark.asyncio
    async def test_no_tools_with_policies(self, admin):
        await admin.register_tools(PKP, [SWAP_CID])
        await admin.permit_tool_for_delegatee(PKP, SWAP_CID, DELEGATEE)

        with pytest.raises(NoToolsWithPolicies) as exc_info:
            await admin.disable_tool_policy_for_delegatee(PKP, SWAP_CID, DELEGATEE)
        assert exc_info.value.message == "No permitted tools with policies found."

    @pytest.mark.asyncio
    async def test_no_enabled_policies(self, admin):
        await seed(admin)
        await admin.disable_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)

        with pytest.raises(NoEnabledPolicies) as exc_info:
            await admin.disable_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
        assert exc_info.value.message == "No tools with enabled policies found."

    @pytest.mark.asyncio
    async def test_no_delegatees_with_enabled_policies(self, admin):
        await admin.register_tools(PKP, [SWAP_CID])
        await admin.add_delegatees(PKP, [OTHER_DELEGATEE])
        # Policy exists for a delegatee that was never permitted
        await admin.set_tool_policy_for_delegatee(PKP, SWAP_CID, OTHER_DELEGATEE, {"slippage": 1})

        with pytest.raises(NoDelegateesWithEnabledPolicies) as exc_info:
            await admin.select_and_disable_tool_policy(PKP, first_choice)
        assert exc_info.value.message == "No delegatees with enabled policies found for the selected tool."

    @pytest.mark.asyncio
    async def test_disable_and_enable(self, admin, registry):
        await seed(admin)

        await admin.disable_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
        assert not await registry.is_policy_enabled(PKP, TRANSFER_CID, DELEGATEE)

        await admin.enable_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)
        assert await registry.is_policy_enabled(PKP, TRANSFER_CID, DELEGATEE)

    @pytest.mark.asyncio
    async def test_tool_without_enabled_policy(self, admin):
        await seed(admin)

        with pytest.raises(NoEnabledPolicies):
            await admin.disable_tool_policy_for_delegatee(PKP, SWAP_CID, DELEGATEE)

    @pytest.mark.asyncio
    async def test_select_and_disable(self, admin, registry):
        await seed(admin)
        prompts = []

        def selector(message, choices):
            prompts.append(message)
            return choices[0].value

        await admin.select_and_disable_tool_policy(PKP, selector)

        assert prompts == ["Select a tool to disable policy:", "Select a delegatee to disable policy:"]
        assert not await registry.is_policy_enabled(PKP, TRANSFER_CID, DELEGATEE)

    @pytest.mark.asyncio
    async def test_select_cancelled(self, admin):
        await seed(admin)

        async def cancel(message, choices):
            return None

        with pytest.raises(AdminOperationCancelled):
            await admin.select_and_disable_tool_policy(PKP, cancel)


class TestPoliciesAndParameters:
    """Owner mutations"""

    @pytest.mark.asyncio
    async def test_remove_policy(self, admin, registry):
        await seed(admin)

        await admin.remove_tool_policy_for_delegatee(PKP, TRANSFER_CID, DELEGATEE)

        assert (await registry.get_policy(PKP, TRANSFER_CID, DELEGATEE)).is_empty
        result = await admin.get_registered_tools_and_delegatees_for_pkp(PKP)
        assert TRANSFER_CID in result.tools_without_policies

    @pytest.mark.asyncio
    async def test_remove_parameters(self, admin):
        await seed(admin)
        await admin.set_tool_parameters_for_delegatee(PKP, TRANSFER_CID, DELEGATEE, {"a": "1", "b": "2"})

        await admin.remove_tool_parameters_for_delegatee(PKP, TRANSFER_CID, DELEGATEE, ["a"])

        assert await admin.get_tool_parameters(PKP, TRANSFER_CID, DELEGATEE) == {"b": b"2"}

    @pytest.mark.asyncio
    async def test_non_owner_is_rejected(self, registry, catalog):
        from agentwallet.crypto import LocalKeySigner

        intruder = LocalKeySigner()
        admin = AdminOrchestrator(registry, catalog, intruder.address, intruder)

        with pytest.raises(PolicyRegistrationFailed) as exc_info:
            await admin.register_tools(PKP, [TRANSFER_CID])
        assert exc_info.value.message == "Failed to register tools"

    @pytest.mark.asyncio
    async def test_get_delegatees(self, admin):
        await seed(admin)
        assert await admin.get_delegatees(PKP) == [DELEGATEE, OTHER_DELEGATEE]
