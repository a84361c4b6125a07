#!/usr/bin/env python3
"""
agentwallet Basic Usage Example
===============================

Runs the full owner and delegatee flow against the in-process ledger:
the owner grants a tool with a spending policy, the delegatee runs it.
"""

import asyncio
import json

from agentwallet import (
    AdminOrchestrator,
    AgentWalletConfig,
    ExecutionResult,
    LocalKeySigner,
    RegistryClient,
    ToolAgent,
    ToolCatalog,
    ToolInfo,
)
from agentwallet.config import DEFAULT_POLICY_STORE_ADDRESS
from agentwallet.ledger import LocalProvider, PolicyStore

PKP = 1
DELEGATEE = "0x" + "ab" * 20


def check_max_amount(params, policy):
    if float(params["amount"]) > float(policy["max_amount"]):
        raise ValueError(f"Amount {params['amount']} exceeds the limit of {policy['max_amount']}")


class DemoPkpSigner:
    """Signs with a local key and pretends to run tools"""

    def __init__(self, key: LocalKeySigner):
        self._key = key
        self.pkp_address = key.address

    async def sign(self, message_hash):
        return self._key.sign(message_hash)

    async def execute_tool(self, ipfs_cid, params):
        return ExecutionResult(
            response=json.dumps({"status": "success", "sent": params["amount"]}),
            logs=f"Transferring {params['amount']} to {params['to']}",
        )


async def main():
    """Basic usage demonstration"""

    # 1. A ledger with one PKP owned by a local key
    owner = LocalKeySigner()
    store = PolicyStore()
    store.register_pkp(PKP, owner.address)
    provider = LocalProvider(store, DEFAULT_POLICY_STORE_ADDRESS)

    transfer = ToolInfo(
        name="ERC20Transfer",
        description="Transfer ERC20 tokens",
        ipfs_cid="QmTransfer",
        parameters={"amount": "Amount to send", "to": "Recipient address"},
        policy_validator=check_max_amount,
    )
    catalog = ToolCatalog([transfer])

    print("🚀 agentwallet Basic Usage Demo")
    print("=" * 50)

    # 2. The owner grants the tool with a policy
    admin = AdminOrchestrator(RegistryClient(provider, DEFAULT_POLICY_STORE_ADDRESS), catalog, owner.address, owner)
    await admin.register_tools(PKP, [transfer.ipfs_cid])
    await admin.permit_tool_for_delegatee(PKP, transfer.ipfs_cid, DELEGATEE)
    await admin.set_tool_policy_for_delegatee(PKP, transfer.ipfs_cid, DELEGATEE, {"max_amount": 100})
    print("\n🔑 Owner permitted ERC20Transfer with max_amount=100")

    # 3. The delegatee runs it
    config = AgentWalletConfig(pkp_token_id=PKP, delegatee_address=DELEGATEE, network="local")
    agent = await ToolAgent(config, catalog).init(DemoPkpSigner(owner), provider)

    print("\n✅ Transfer within the policy:")
    outcome = await agent.execute_tool(transfer.ipfs_cid, {"amount": "25", "to": "0x" + "ef" * 20})
    print(f"   Success: {outcome.success} ({outcome.result.response})")

    print("\n❌ Transfer above the policy:")
    outcome = await agent.execute_tool(transfer.ipfs_cid, {"amount": "500", "to": "0x" + "ef" * 20})
    print(f"   🛡️  Blocked: {outcome.reason}")

    print("\n🔁 Same transfer, lowered when the policy rejects it:")
    outcome = await agent.execute_tool(
        transfer.ipfs_cid,
        {"amount": "500", "to": "0x" + "ef" * 20},
        failed_policy_callback=lambda tool, params, policy, error: {**params, "amount": "100"},
    )
    print(f"   Success: {outcome.success} ({outcome.result.response})")

    # 4. Owner-side view of the PKP
    snapshot = await admin.get_registered_tools_and_delegatees_for_pkp(PKP)
    print("\n📊 Tools with policies:")
    for tool in snapshot.tools_with_policies.values():
        print(f"   {tool.name}: delegatees={tool.delegatees}")


if __name__ == "__main__":
    asyncio.run(main())
