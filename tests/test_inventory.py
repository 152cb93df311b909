import asyncio

from fakes import make_line
from storefront.inventory import InventoryGateway


async def test_validate_reports_shortage(backend, inventory):
    backend.seed_product("P1", quantity=1, name="Chanel No.5")

    check = await inventory.validate_availability([make_line("P1", quantity=3)])

    assert not check.valid
    assert check.errors == ["Chanel No.5: insufficient stock (available: 1, requested: 3)"]


async def test_validate_skips_unknown_and_unreadable_products(backend, inventory):
    backend.seed_product("P1", quantity=10)
    backend.seed_product("P2", quantity=10)
    backend.fail("select", "products", match={"product_id": "P2"})

    check = await inventory.validate_availability(
        [make_line("P1", quantity=2), make_line("P2", quantity=50), make_line("GHOST", quantity=5)]
    )

    assert check.valid
    assert check.errors == []


async def test_decrement_floors_at_zero(backend, inventory):
    backend.seed_product("P1", quantity=2)

    assert await inventory.decrement("P1", 5)
    assert backend.product("P1")["quantity"] == 0


async def test_decrement_many_continues_after_failure(backend, inventory):
    backend.seed_product("P1", quantity=10)
    backend.seed_product("P2", quantity=10)
    backend.seed_product("P3", quantity=10)
    backend.fail("update", "products", match={"product_id": "P2"})

    updated = await inventory.decrement_many(
        [make_line("P1", quantity=1), make_line("P2", quantity=2), make_line("P3", quantity=3)]
    )

    assert sorted(updated) == ["P1", "P3"]
    assert backend.product("P1")["quantity"] == 9
    assert backend.product("P2")["quantity"] == 10
    assert backend.product("P3")["quantity"] == 7


async def test_decrement_missing_product_returns_false(inventory):
    assert not await inventory.decrement("GHOST", 1)


async def test_restore_adds_back(backend, inventory):
    backend.seed_product("P1", quantity=3)

    assert await inventory.restore("P1", 2)
    assert backend.product("P1")["quantity"] == 5


async def test_restore_failure_is_swallowed(backend, inventory):
    backend.seed_product("P1", quantity=3)
    backend.fail("update", "products")

    assert not await inventory.restore("P1", 2)
    assert not await inventory.restore("GHOST", 2)
    assert backend.product("P1")["quantity"] == 3


async def test_restore_reports_product_deleted_after_read(backend, inventory):
    backend.seed_product("P1", quantity=3)
    read = backend.select

    async def read_then_delete(*args, **kwargs):
        rows = await read(*args, **kwargs)
        backend.tables["products"].clear()
        return rows

    backend.select = read_then_delete

    assert not await inventory.restore("P1", 2)


async def test_point_reads(backend, inventory):
    backend.seed_product("P1", quantity=4)
    backend.seed_product("P2", quantity=4)
    backend.fail("select", "products", match={"product_id": "P2"})

    assert await inventory.get_quantity("P1") == 4
    assert await inventory.get_quantity("P2") == 0
    assert await inventory.get_quantity("GHOST") == 0
    assert await inventory.can_satisfy("P1", 4)
    assert not await inventory.can_satisfy("P1", 5)


def test_stock_status_thresholds():
    status = InventoryGateway.stock_status
    assert status(0).status == "out-of-stock"
    assert status(1).status == "low-stock"
    assert status(5).message == "Only 5 left"
    assert status(6).status == "limited-stock"
    assert status(10).status == "limited-stock"
    assert status(11).status == "in-stock"


# ── 同時減算の競合 ───────────────────────────────
# 読む → 書くの間に別のタスクが割り込む


async def test_unguarded_decrement_loses_concurrent_update(backend):
    backend.seed_product("P1", quantity=10)
    gateway = InventoryGateway(backend)

    await asyncio.gather(gateway.decrement("P1", 1), gateway.decrement("P1", 2))

    # 10 - 1 - 2 = 7 になるべきところ、片方の書き込みが失われる
    assert backend.product("P1")["quantity"] == 8


async def test_compare_and_swap_decrement_keeps_both_updates(backend):
    backend.seed_product("P1", quantity=10)
    gateway = InventoryGateway(backend, compare_and_swap=True)

    results = await asyncio.gather(gateway.decrement("P1", 1), gateway.decrement("P1", 2))

    assert results == [True, True]
    assert backend.product("P1")["quantity"] == 7


async def test_compare_and_swap_gives_up_after_max_attempts(backend):
    backend.seed_product("P1", quantity=10)
    gateway = InventoryGateway(backend, compare_and_swap=True, max_attempts=2)

    original_update = backend.update

    async def always_conflicts(table, values, *, where, expected=None):
        # 読んだ直後に毎回ほかの誰かが書き換える
        backend.product("P1")["quantity"] += 1
        return await original_update(table, values, where=where, expected=expected)

    backend.update = always_conflicts

    assert not await gateway.decrement("P1", 1)
