import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import objects as G  # type: ignore


class ScriptedRandom(random.Random):
    """random() pops queued values first, then falls back to the seeded stream."""

    def __init__(self, values=(), seed=0):
        super().__init__(seed)
        self.queue = list(values)

    def random(self):
        if self.queue:
            return self.queue.pop(0)
        return super().random()

    # keeps choice()/randint() on the seeded bit stream instead of random()
    def getrandbits(self, k):
        return super().getrandbits(k)


class FixedDice(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def randint(self, a, b):
        return self.value


def _outcomes(**effects):
    keys = ("crit_success", "success", "fail", "crit_fail")
    return {k: {"text": k, "effect": effects.get(k, {})} for k in keys}


def build_catalog(**overrides) -> G.Catalog:
    data = dict(
        rules=G.GameRules(start_location="town"),
        commodities={
            "ale": G.Commodity(id="ale", display_name="Ale", base_price=100),
            "gems": G.Commodity(id="gems", display_name="Gems", base_price=1000),
        },
        locations={
            "town": G.Location(id="town", display_name="Town", risk=0),
            "mine": G.Location(id="mine", display_name="Mine", risk=0, prices={"gems": 0.5}),
            "road": G.Location(id="road", display_name="Road", risk=0),
        },
        races={
            "human": G.Race(id="human", display_name="Human"),
            "dwarf": G.Race(id="dwarf", display_name="Dwarf", stats={"health": 20}, counters={"dragon"}),
            "elf": G.Race(id="elf", display_name="Elf", stats={"buy_mod": 0.05, "sell_mod": 0.05}),
            "orc": G.Race(id="orc", display_name="Orc", stats={"buy_mod": -0.10, "combat": 2}),
        },
        classes={
            "merchant": G.CharClass(id="merchant", display_name="Merchant", starting_money=1200, starting_debt=500),
            "warrior": G.CharClass(id="warrior", display_name="Warrior", starting_money=100,
                                   starting_debt=5000, health_bonus=50),
            "rogue": G.CharClass(id="rogue", display_name="Rogue", starting_money=100, starting_debt=2500),
        },
        upgrades={
            "backpack": G.Upgrade(id="backpack", display_name="Backpack", type="inventory", value=20, cost=1000),
            "sword": G.Upgrade(id="sword", display_name="Sword", type="combat", value=5, cost=2000,
                               ban={"class": "rogue"}),
            "axe": G.Upgrade(id="axe", display_name="Axe", type="combat", value=6, cost=2500,
                             req={"race": ["dwarf", "orc"]}),
            "potion": G.Upgrade(id="potion", display_name="Potion", type="heal", value=50, cost=500),
        },
        events={
            "bandits": G.EventDefinition(
                id="bandits", display_name="Bandits", type="combat", text="Bandits!", difficulty=10,
                outcomes=_outcomes(success={"gold": 100}, crit_success={"gold": 300},
                                   fail={"health": -20}, crit_fail={"health": -80}),
                death_cause="Bandits"),
            "dragon": G.EventDefinition(
                id="dragon", display_name="Dragon", type="combat", text="A dragon!", difficulty=18,
                min_day=10, min_net_worth=5000,
                outcomes=_outcomes(crit_success={"gold": 3000, "item": {"commodity": "gems", "quantity": 2}},
                                   fail={"health": -60})),
            "guard": G.EventDefinition(
                id="guard", display_name="City Watch", type="combat", text="Halt!", difficulty=12,
                min_net_worth=10000, escalation={"net_worth": 1000000, "extra_weight": 10, "difficulty": 16},
                outcomes=_outcomes(fail={"gold_percent": -0.1})),
            "collector": G.EventDefinition(
                id="collector", display_name="Enforcer", type="combat", text="Pay up.", difficulty=12,
                requires_debt=True, death_cause="Debt Collection",
                outcomes=_outcomes(crit_success={"clear_debt": True},
                                   fail={"pay_or_damage": {"gold": 500, "damage": 30}})),
            "bridge": G.EventDefinition(
                id="bridge", display_name="Rickety Bridge", type="check", stat="DEX", text="A bridge.",
                difficulty=8, outcomes=_outcomes(fail={"item": {"commodity": "ale", "quantity": -5}})),
            "auditor": G.EventDefinition(
                id="auditor", display_name="Royal Auditor", type="check", text="Books, please.",
                difficulty=15, min_net_worth=1000000, outcomes=_outcomes()),
            "healer": G.EventDefinition(id="healer", display_name="Healer", type="heal", text="A healer.", value=25),
            "toll": G.EventDefinition(id="toll", display_name="Toll", type="money", text="A toll.", value=-50),
            "crash": G.EventDefinition(id="crash", display_name="Crash", type="price", text="Crash!", value=0.5),
            "song": G.EventDefinition(id="song", display_name="Song", type="flavor", text="A song."),
        },
    )
    data.update(overrides)
    return G.Catalog(**data)


@pytest.fixture
def catalog():
    return build_catalog()


@pytest.fixture
def scripted():
    return ScriptedRandom
