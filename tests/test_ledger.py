import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import sim  # type: ignore
import objects as G  # type: ignore


def new_state(catalog, race="human", cls="merchant", prices=None):
    engine = sim.Engine(catalog, rng=random.Random(1))
    state = engine.start_run(race, cls)
    state.prices = prices or {"ale": 100, "gems": 1000}
    return engine, state


def test_weighted_average_cost():
    slot = G.InventorySlot()
    slot.add(10, 100)
    slot.add(10, 200)
    assert slot.count == 20
    assert slot.avg_cost == pytest.approx(150)


def test_average_cost_is_order_independent():
    a, b = G.InventorySlot(), G.InventorySlot()
    for qty, price in [(3, 40), (5, 90), (2, 10)]:
        a.add(qty, price)
    for qty, price in [(2, 10), (5, 90), (3, 40)]:
        b.add(qty, price)
    assert a.avg_cost == pytest.approx(b.avg_cost)


def test_removing_everything_resets_average():
    slot = G.InventorySlot()
    slot.add(4, 55)
    assert slot.remove(10) == 4
    assert slot.count == 0
    assert slot.avg_cost == 0


def test_slot_rejects_non_positive_quantity():
    with pytest.raises(ValueError):
        G.InventorySlot().add(0, 10)


def test_buy_returns_new_state(catalog):
    engine, state = new_state(catalog)
    step = engine.buy(state, "ale", 2)
    assert step.ok
    assert step.state.money == 1000
    assert step.state.inventory["ale"].count == 2
    assert step.state.inventory["ale"].avg_cost == 100
    assert step.state.traded_today
    # input untouched
    assert state.money == 1200
    assert state.inventory["ale"].count == 0
    assert not state.traded_today


def test_buy_respects_capacity(catalog):
    engine, state = new_state(catalog, prices={"ale": 1, "gems": 1})
    step = engine.buy_max(state, "ale")
    assert step.state.total_count() == 50
    blocked = engine.buy(step.state, "gems")
    assert not blocked.ok
    assert blocked.message == "Inventory full!"
    assert blocked.state is step.state


def test_buy_without_gold_is_a_no_op(catalog):
    engine, state = new_state(catalog)
    step = engine.buy(state, "gems", 2)
    assert not step.ok
    assert step.message == "Not enough gold!"
    assert step.state.money == 1200


def test_buy_max_is_bounded_by_gold(catalog):
    engine, state = new_state(catalog)
    step = engine.buy_max(state, "ale")
    assert step.state.inventory["ale"].count == 12
    assert step.state.money == 0


def test_buy_max_with_nothing_affordable(catalog):
    engine, state = new_state(catalog)
    state.money = 50
    step = engine.buy_max(state, "ale")
    assert not step.ok
    assert step.state.inventory["ale"].count == 0


def test_elf_buys_at_discount(catalog):
    engine, state = new_state(catalog, race="elf")
    step = engine.buy(state, "ale")
    assert step.state.money == 1200 - 95
    assert step.state.inventory["ale"].avg_cost == 95


def test_sell_one_and_sell_all(catalog):
    engine, state = new_state(catalog)
    state = engine.buy(state, "ale", 3).state
    state.prices["ale"] = 200
    one = engine.sell(state, "ale")
    assert one.state.money == 900 + 160
    assert one.state.inventory["ale"].count == 2
    everything = engine.sell_all(one.state, "ale")
    assert everything.state.money == 900 + 160 * 3
    assert everything.state.inventory["ale"].count == 0
    assert everything.state.inventory["ale"].avg_cost == 0


def test_sell_with_nothing_held(catalog):
    engine, state = new_state(catalog)
    step = engine.sell(state, "ale")
    assert not step.ok
    assert step.message == "You have none to sell."


def test_unknown_commodity_raises(catalog):
    engine, state = new_state(catalog)
    with pytest.raises(KeyError):
        engine.buy(state, "dragon_eggs")


def test_inventory_upgrade_raises_capacity(catalog):
    engine, state = new_state(catalog)
    assert sim.max_inventory(catalog, state) == 50
    state = engine.buy_upgrade(state, "backpack").state
    assert sim.max_inventory(catalog, state) == 70
    assert state.money == 200
    again = engine.buy_upgrade(state, "backpack")
    assert not again.ok
    assert again.message == "Already own that!"


def test_net_worth_counts_inventory_at_sell_price(catalog):
    engine, state = new_state(catalog)
    state = engine.buy(state, "ale", 2).state
    assert sim.net_worth(catalog, state) == 1000 + 2 * 80
