"""
Tests for the contract allow/block list store
"""

import pytest

from txpipeline.core.risk import AllowlistAction, ContractListStore

ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"


class TestContractListStore:
    """Test persistence and scope precedence."""

    @pytest.mark.asyncio
    async def test_set_and_lookup(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.ALLOW, reason="Uniswap V2 router")

        entry = await store.lookup(ROUTER.lower(), 1)

        assert entry.action == AllowlistAction.ALLOW
        assert entry.address == ROUTER.lower()
        assert entry.reason == "Uniswap V2 router"
        assert entry.scope == "*"

    @pytest.mark.asyncio
    async def test_upsert_replaces_action(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.ALLOW)
        await store.set_action(ROUTER, 1, AllowlistAction.BLOCK, reason="exploited")

        entry = await store.lookup(ROUTER, 1)
        entries = await store.list_entries()

        assert entry.action == AllowlistAction.BLOCK
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_chain_scoped(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.BLOCK)

        assert await store.lookup(ROUTER, 137) is None

    @pytest.mark.asyncio
    async def test_user_scope_checked_first(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.BLOCK)
        await store.set_action(ROUTER, 1, AllowlistAction.ALLOW, scope="user-1")

        assert (await store.lookup(ROUTER, 1, user_id="user-1")).action == AllowlistAction.ALLOW
        assert (await store.lookup(ROUTER, 1, user_id="user-2")).action == AllowlistAction.BLOCK
        assert (await store.lookup(ROUTER, 1)).action == AllowlistAction.BLOCK

    @pytest.mark.asyncio
    async def test_remove(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.BLOCK)

        assert await store.remove(ROUTER, 1) is True
        assert await store.remove(ROUTER, 1) is False
        assert await store.lookup(ROUTER, 1) is None

    @pytest.mark.asyncio
    async def test_list_entries_by_scope(self, db):
        store = ContractListStore(db)
        await store.set_action(ROUTER, 1, AllowlistAction.BLOCK)
        await store.set_action(ROUTER, 1, AllowlistAction.ALLOW, scope="user-1")

        assert len(await store.list_entries("user-1")) == 1
        assert len(await store.list_entries()) == 1
