import asyncio

import pytest

from conftest import FakeRecordStore
from cookbox.errors import (
    CategoryNotEmpty,
    NotFound,
    StoreAuthError,
    StoreUnavailable,
    ValidationRejected,
)
from cookbox.models import Category, StoredRecipe
from cookbox.sync import SyncCoordinator


SOUP = Category(id="s", name="Soup", icon="🥣")
SALAD = Category(id="t", name="Salad", icon="🥗")


def ids(coordinator: SyncCoordinator) -> list[str]:
    return [c.id for c in coordinator.categories]


async def loaded(store: FakeRecordStore) -> SyncCoordinator:
    coordinator = SyncCoordinator(store)
    await coordinator.load_categories()
    return coordinator


@pytest.mark.asyncio
async def test_load_replaces_cache() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = SyncCoordinator(store)
    assert coordinator.categories == ()

    got = await coordinator.load_categories()

    assert got == (SOUP, SALAD)
    assert coordinator.categories == (SOUP, SALAD)
    assert coordinator.error is None
    assert not coordinator.is_loading_categories


@pytest.mark.asyncio
async def test_failed_load_keeps_cache() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    store.categories["t"] = SALAD
    store.fail["fetch_all_categories"].append(StoreUnavailable("offline"))

    with pytest.raises(StoreUnavailable):
        await coordinator.load_categories()

    assert coordinator.categories == (SOUP,)
    assert isinstance(coordinator.error, StoreUnavailable)
    assert not coordinator.is_loading_categories


@pytest.mark.asyncio
async def test_next_load_clears_error() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = SyncCoordinator(store)
    store.fail["fetch_all_categories"].append(StoreAuthError("denied"))
    with pytest.raises(StoreAuthError):
        await coordinator.load_categories()

    await coordinator.load_categories()

    assert coordinator.error is None
    assert coordinator.categories == (SOUP,)


@pytest.mark.asyncio
async def test_loading_flag_and_listeners() -> None:
    store = FakeRecordStore([SOUP])
    gate = store.gates["fetch_all_categories"] = asyncio.Event()
    coordinator = SyncCoordinator(store)
    seen: list[bool] = []
    coordinator.subscribe_loading(seen.append)

    task = asyncio.create_task(coordinator.load_categories())
    await asyncio.sleep(0)
    assert coordinator.is_loading_categories

    gate.set()
    await task

    assert not coordinator.is_loading_categories
    assert seen == [True, False]


@pytest.mark.asyncio
async def test_concurrent_loads_share_one_request() -> None:
    store = FakeRecordStore([SOUP])
    gate = store.gates["fetch_all_categories"] = asyncio.Event()
    coordinator = SyncCoordinator(store)

    first = asyncio.create_task(coordinator.load_categories())
    second = asyncio.create_task(coordinator.load_categories())
    await asyncio.sleep(0)
    gate.set()

    assert await first == await second == (SOUP,)
    assert [c for c, _ in store.calls].count("fetch_all_categories") == 1


@pytest.mark.asyncio
async def test_create_appends_to_cache() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)

    created = await coordinator.create_category("Dessert", "🍰")

    assert created.name == "Dessert"
    assert coordinator.categories == (SOUP, created)
    assert store.categories[created.id] == created


@pytest.mark.parametrize("name", ("", "   "))
@pytest.mark.asyncio
async def test_create_rejects_blank_name(name: str) -> None:
    store = FakeRecordStore()
    coordinator = SyncCoordinator(store)

    with pytest.raises(ValidationRejected):
        await coordinator.create_category(name, "🥣")

    assert store.calls == []
    assert isinstance(coordinator.error, ValidationRejected)


@pytest.mark.asyncio
async def test_failed_create_leaves_cache_alone() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    store.fail["create_category"].append(StoreUnavailable("offline"))

    with pytest.raises(StoreUnavailable):
        await coordinator.create_category("Dessert", "🍰")

    assert coordinator.categories == (SOUP,)
    assert isinstance(coordinator.error, StoreUnavailable)


@pytest.mark.asyncio
async def test_edit_replaces_in_place() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)

    updated = await coordinator.edit_category("s", "Soups", "🍲")

    assert coordinator.categories == (updated, SALAD)
    assert updated == Category(id="s", name="Soups", icon="🍲")


@pytest.mark.asyncio
async def test_edit_unknown_category() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)

    with pytest.raises(NotFound):
        await coordinator.edit_category("nope", "Soups", "🍲")

    assert coordinator.categories == (SOUP,)
    assert ("update_category", "nope") not in store.calls


@pytest.mark.asyncio
async def test_delete_removes_from_cache() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)

    await coordinator.delete_category("s")

    assert ids(coordinator) == ["t"]
    assert "s" not in store.categories


@pytest.mark.asyncio
async def test_delete_twice_succeeds() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)

    await coordinator.delete_category("s")
    await coordinator.delete_category("s")

    assert coordinator.categories == ()
    assert coordinator.error is None


@pytest.mark.asyncio
async def test_delete_already_gone_from_store() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    del store.categories["s"]

    await coordinator.delete_category("s")

    assert coordinator.categories == ()


@pytest.mark.asyncio
async def test_delete_unknown_category() -> None:
    coordinator = await loaded(FakeRecordStore([SOUP]))

    with pytest.raises(NotFound):
        await coordinator.delete_category("nope")

    assert coordinator.categories == (SOUP,)


@pytest.mark.asyncio
async def test_delete_blocked_while_recipes_remain() -> None:
    store = FakeRecordStore([SOUP])
    store.recipes["s"].append(StoredRecipe(id="r1", category_id="s", name="Leek"))
    coordinator = await loaded(store)

    with pytest.raises(CategoryNotEmpty) as info:
        await coordinator.delete_category("s")

    assert info.value.recipe_count == 1
    assert coordinator.categories == (SOUP,)
    assert "s" in store.categories


@pytest.mark.asyncio
async def test_failed_delete_leaves_cache_alone() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    store.fail["delete_category"].append(StoreUnavailable("offline"))

    with pytest.raises(StoreUnavailable):
        await coordinator.delete_category("s")

    assert coordinator.categories == (SOUP,)

    # Not tombstoned, so a retry goes through.
    await coordinator.delete_category("s")
    assert coordinator.categories == ()


@pytest.mark.asyncio
async def test_load_in_flight_does_not_resurrect_deleted() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)
    gate = store.gates["fetch_all_categories"] = asyncio.Event()

    load = asyncio.create_task(coordinator.load_categories())
    await asyncio.sleep(0)
    await coordinator.delete_category("s")
    gate.set()
    await load

    assert ids(coordinator) == ["t"]


@pytest.mark.asyncio
async def test_load_in_flight_keeps_newer_local_changes() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    gate = store.gates["fetch_all_categories"] = asyncio.Event()

    load = asyncio.create_task(coordinator.load_categories())
    await asyncio.sleep(0)
    created = await coordinator.create_category("Dessert", "🍰")
    edited = await coordinator.edit_category("s", "Soups", "🍲")
    gate.set()
    await load

    assert coordinator.categories == (edited, created)


@pytest.mark.asyncio
async def test_serial_operations_match_store() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)

    a = await coordinator.create_category("Dessert", "🍰")
    await coordinator.edit_category("t", "Salads", "🥬")
    await coordinator.delete_category("s")
    b = await coordinator.create_category("Bread", "🍞")
    await coordinator.delete_category(a.id)

    assert set(coordinator.categories) == set(store.categories.values())
    await coordinator.load_categories()
    assert set(coordinator.categories) == set(store.categories.values())
    assert b in coordinator.categories


@pytest.mark.asyncio
async def test_cache_observers_see_whole_lists() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = SyncCoordinator(store)
    seen: list[tuple[Category, ...]] = []
    coordinator.cache.subscribe(seen.append)

    await coordinator.load_categories()
    created = await coordinator.create_category("Salad", "🥗")
    await coordinator.delete_category("s")

    assert seen == [(SOUP,), (SOUP, created), (created,)]


@pytest.mark.asyncio
async def test_concurrent_deletes_of_one_category() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)
    gate = store.gates["delete_category"] = asyncio.Event()
    seen: list[tuple[Category, ...]] = []
    coordinator.cache.subscribe(seen.append)

    both = asyncio.gather(
        coordinator.delete_category("s"), coordinator.delete_category("s")
    )
    await asyncio.sleep(0)
    gate.set()
    assert await both == [None, None]

    assert ids(coordinator) == ["t"]
    assert seen == [(SALAD,)]
    assert coordinator.error is None
    assert "s" not in store.categories


@pytest.mark.asyncio
async def test_load_drops_old_tombstones() -> None:
    store = FakeRecordStore([SOUP, SALAD])
    coordinator = await loaded(store)

    await coordinator.delete_category("s")
    assert "s" in coordinator._deleted
    await coordinator.load_categories()

    assert coordinator._deleted == {}
    with pytest.raises(NotFound):
        await coordinator.delete_category("s")


@pytest.mark.asyncio
async def test_delete_again_after_category_comes_back() -> None:
    store = FakeRecordStore([SOUP])
    coordinator = await loaded(store)
    await coordinator.delete_category("s")

    # Recreated elsewhere under the same id.
    store.categories["s"] = SOUP
    await coordinator.load_categories()
    assert coordinator.categories == (SOUP,)

    await coordinator.delete_category("s")

    assert coordinator.categories == ()
    assert "s" not in store.categories
