"""
Game-economy engine: prices, trading, debt, travel and the event / d20 check
state machine. Every public operation takes an EconomyState and returns a
StepResult holding a *new* state; inputs are never mutated.
"""
import logging
import math
import random
from typing import Callable, Dict, List, Literal, Optional

from pydantic import BaseModel

import objects as G

logger = logging.getLogger(__name__)


def _floor(x: float) -> int:
    # float noise (e.g. 100 * 0.95) must not shift a whole gold piece
    return math.floor(round(x, 9))


def _ceil(x: float) -> int:
    return math.ceil(round(x, 9))

# -----------------------------------
# Prices
# -----------------------------------

def recalc_prices(catalog: G.Catalog, location: G.Location, rng: random.Random,
                  price_mod: float = 1.0) -> Dict[str, int]:
    """Base * volatility * location modifier * carried price shock, floored."""
    rules = catalog.rules
    prices: Dict[str, int] = {}
    for cid, commodity in catalog.commodities.items():
        volatility = rules.volatility_min + rng.random() * rules.volatility_span
        prices[cid] = _floor(commodity.base_price * volatility * location.multiplier(cid) * price_mod)
    return prices


def buy_price(spot: int, race: G.Race) -> int:
    return _ceil(spot * (1 - race.stats.buy_mod))


def sell_price(spot: int, race: G.Race, spread: float = 0.80) -> int:
    return _floor(spot * spread * (1 + race.stats.sell_mod))

# -----------------------------------
# Derived stats
# -----------------------------------

def owned_upgrades(catalog: G.Catalog, state: G.EconomyState) -> List[G.Upgrade]:
    return [catalog.upgrades[uid] for uid in state.upgrades if uid in catalog.upgrades]


def max_inventory(catalog: G.Catalog, state: G.EconomyState) -> int:
    race = catalog.races[state.race_id]
    bonus = sum(u.value for u in owned_upgrades(catalog, state) if u.type == G.UpgradeType.inventory)
    return catalog.rules.base_inventory + race.stats.inventory + bonus


def combat_bonus(catalog: G.Catalog, state: G.EconomyState) -> int:
    """Accumulated bonus from class and weapons. Racial combat is added per roll."""
    char_class = catalog.classes[state.class_id]
    return char_class.combat_bonus + sum(
        u.value for u in owned_upgrades(catalog, state) if u.type == G.UpgradeType.combat
    )


def unit_buy_price(catalog: G.Catalog, state: G.EconomyState, item: str) -> int:
    return buy_price(state.prices.get(item, 0), catalog.races[state.race_id])


def unit_sell_price(catalog: G.Catalog, state: G.EconomyState, item: str) -> int:
    return sell_price(state.prices.get(item, 0), catalog.races[state.race_id], catalog.rules.sell_spread)


def net_worth(catalog: G.Catalog, state: G.EconomyState) -> int:
    """Money plus the sell value of everything carried, at the current price table."""
    return state.money + sum(
        unit_sell_price(catalog, state, cid) * slot.count for cid, slot in state.inventory.items()
    )


def kill(state: G.EconomyState, cause: str) -> None:
    if state.health <= 0 and not state.is_over:
        state.status = "Dead"
        state.cause = cause
        state.note(f"You have died. ({cause})")
        logger.debug("Run ended on day %d: Dead (%s)", state.day, cause)

# -----------------------------------
# Effects
# -----------------------------------

def apply_effect(catalog: G.Catalog, state: G.EconomyState, effect: G.Effect) -> str:
    """Apply an outcome effect in place and return a short summary like '+200 G, -20 HP'."""
    parts: List[str] = []

    def _gold(delta: int) -> None:
        before = state.money
        state.money = max(0, state.money + delta)
        if state.money != before:
            parts.append(f"{state.money - before:+d} G")

    if effect.gold:
        _gold(effect.gold)
    if effect.gold_percent:
        amount = _floor(state.money * abs(effect.gold_percent))
        _gold(amount if effect.gold_percent > 0 else -amount)
    if effect.health:
        state.health = min(state.max_health, state.health + effect.health)
        parts.append(f"{effect.health:+d} HP")
    if effect.item:
        slot = state.slot(effect.item.commodity)
        name = catalog.commodities[effect.item.commodity].display_name
        if effect.item.quantity > 0:
            space = max_inventory(catalog, state) - state.total_count()
            granted = min(effect.item.quantity, max(0, space))
            if granted:
                slot.grant(granted)
                parts.append(f"+{granted} {name}")
        else:
            taken = slot.remove(-effect.item.quantity)
            if taken:
                parts.append(f"-{taken} {name}")
    if effect.clear_debt and state.debt > 0:
        state.debt = 0
        parts.append("Debt cleared!")
    if effect.pay_or_damage:
        forced = effect.pay_or_damage
        if state.money >= forced.gold:
            state.money -= forced.gold
            parts.append(f"-{forced.gold} G")
        else:
            state.health -= forced.damage
            parts.append(f"-{forced.damage} HP")
    return ", ".join(parts)

# -----------------------------------
# Events
# -----------------------------------

class EventResolver:
    """Risk roll, eligibility filter, weighted pick and dispatch of random events."""

    def __init__(self, catalog: G.Catalog):
        self.catalog = catalog

    def eligible(self, state: G.EconomyState, worth: int) -> List[G.EventDefinition]:
        return [
            e for e in self.catalog.events.values()
            if worth >= e.min_net_worth
            and (not e.requires_debt or state.debt > 0)
            and e.in_day_range(state.day)
        ]

    def build_pool(self, events: List[G.EventDefinition], worth: int) -> List[G.EventDefinition]:
        pool: List[G.EventDefinition] = []
        for e in events:
            weight = e.risk_weight
            if e.escalation and worth > e.escalation.net_worth:
                weight += e.escalation.extra_weight
            pool.extend([e] * weight)
        return pool

    def select(self, state: G.EconomyState, rng: random.Random) -> Optional[G.EventDefinition]:
        worth = net_worth(self.catalog, state)
        pool = self.build_pool(self.eligible(state, worth), worth)
        if not pool:
            return None
        return rng.choice(pool)

    def trigger(self, state: G.EconomyState, location: G.Location,
                rng: random.Random) -> Optional[G.ActiveEvent]:
        """Possibly fire an event on arrival. Mutates ``state``; prices are left to the caller."""
        if rng.random() >= location.risk:
            return None
        event = self.select(state, rng)
        if event is None:
            return None

        if event.is_skill_check:
            active = G.ActiveEvent(
                event_id=event.id,
                difficulty=event.effective_difficulty(net_worth(self.catalog, state)),
                kind="bad" if event.type == "combat" else "neutral",
                summary=event.text,
            )
            state.pending_event = active
            state.note(f"{event.display_name}: {event.text}")
            logger.debug("Day %d: %s awaits a roll (DC %s)", state.day, event.id, active.difficulty)
            return active

        active = self._apply_instant(state, event)
        state.note(f"{event.text} {active.summary}".strip())
        logger.debug("Day %d: %s resolved (%s)", state.day, event.id, active.kind)
        return active

    def _apply_instant(self, state: G.EconomyState, event: G.EventDefinition) -> G.ActiveEvent:
        rules = self.catalog.rules
        kind: Literal["good", "bad", "neutral"] = "neutral"
        summary = ""
        if event.type == "heal":
            before = state.health
            state.health = min(state.max_health, state.health + int(event.value))
            kind = "good"
            summary = f"(+{state.health - before} HP)"
        elif event.type == "money":
            before = state.money
            state.money = max(0, state.money + int(event.value))
            kind = "good" if event.value >= 0 else "bad"
            summary = f"({state.money - before:+d} G)"
        elif event.type == "price":
            state.price_mod *= event.value
            summary = f"(prices x{event.value:g})"
        elif event.type == "flavor":
            state.health = min(state.max_health, state.health + rules.flavor_heal)
            summary = f"(+{rules.flavor_heal} HP)"
        return G.ActiveEvent(event_id=event.id, kind=kind, summary=summary)

# -----------------------------------
# Skill checks
# -----------------------------------

class CombatResolver:
    """Resolves d20 checks and flight against the pending event."""

    def __init__(self, catalog: G.Catalog):
        self.catalog = catalog

    def bonus(self, state: G.EconomyState, event: G.EventDefinition) -> int:
        race = self.catalog.races[state.race_id]
        total = combat_bonus(self.catalog, state) + race.stats.combat
        if event.id in race.counters:
            total += self.catalog.rules.counter_bonus
        return total

    @staticmethod
    def outcome_for(d20: int, total: int, difficulty: int) -> G.OutcomeKey:
        # natural rolls win over any modifier
        if d20 == 20:
            return "crit_success"
        if d20 == 1:
            return "crit_fail"
        return "success" if total >= difficulty else "fail"

    def resolve(self, state: G.EconomyState, d20: int) -> G.RollResult:
        if not 1 <= d20 <= 20:
            raise ValueError(f"d20 must be between 1 and 20, got {d20}")
        active = state.pending_event
        if active is None:
            raise ValueError("No pending event to resolve")
        event = self.catalog.events[active.event_id]
        bonus = self.bonus(state, event)
        total = d20 + bonus
        difficulty = active.difficulty if active.difficulty is not None else event.difficulty
        key = self.outcome_for(d20, total, difficulty)
        outcome = event.outcomes[key]
        effect_text = apply_effect(self.catalog, state, outcome.effect)

        if event.type == "combat":
            if key in ("success", "crit_success"):
                state.combat_stats.wins += 1
            else:
                state.combat_stats.losses += 1

        result = G.RollResult(outcome=key, roll=d20, bonus=bonus, total=total,
                              text=outcome.text, effect_text=effect_text)
        state.pending_event = None
        state.note(f"{key.replace('_', ' ').upper()}: {outcome.text} {f'({effect_text})' if effect_text else ''}".strip())
        logger.debug("Rolled %d + %d vs DC %d on %s: %s", d20, bonus, difficulty, event.id, key)
        kill(state, event.death_cause)
        return result

    def flee(self, state: G.EconomyState) -> str:
        event = self.catalog.events[state.pending_event.event_id]
        penalty = self.catalog.rules.flee_penalty
        state.health -= penalty
        state.combat_stats.flees += 1
        state.pending_event = None
        message = f"You fled from the {event.display_name}. (-{penalty} HP)"
        state.note(message)
        kill(state, event.death_cause)
        return message

# -----------------------------------
# Actions
# -----------------------------------

ActionKind = Literal["buy", "buy_max", "sell", "sell_all", "buy_upgrade", "pay_debt",
                     "end_turn", "roll", "flee", "quit"]


class Action(BaseModel):
    kind: ActionKind
    item: Optional[str] = None
    quantity: int = 1
    upgrade: Optional[str] = None
    d20: Optional[int] = None


class StepResult(BaseModel):
    state: G.EconomyState
    ok: bool = True
    message: str = ""
    event: Optional[G.ActiveEvent] = None
    result: Optional[G.RollResult] = None


def get_score(state: G.EconomyState) -> G.Score:
    return G.Score(status=state.status, final_score=max(0, state.raw_score))


def scenario_title(state: G.EconomyState) -> str:
    """Headline of the game-over screen. Any remaining debt is a defeat."""
    dead = state.status == "Dead"
    if state.debt > 0:
        can_cover = state.money >= state.debt
        if not dead:
            return "ASSETS SEIZED" if can_cover else "IMPRISONED"
        return "POSTHUMOUS COLLECTION" if can_cover else "TOTAL LOSS"
    return "MARTYR'S VICTORY" if dead else "VICTORY"


class Engine:
    """Pure state transitions over EconomyState, plus the random sources they draw from.

    ``rng`` drives prices, wages, travel and events. ``dice`` draws interactive d20
    rolls and defaults to the OS entropy pool so a player cannot predict them.
    """

    def __init__(self, catalog: G.Catalog, rng: Optional[random.Random] = None,
                 dice: Optional[random.Random] = None):
        self.catalog = catalog
        self.rules = catalog.rules
        self.rng = rng or random.Random()
        self.dice = dice or random.SystemRandom()
        self.events = EventResolver(catalog)
        self.combat = CombatResolver(catalog)
        self._handlers: Dict[str, Callable[[G.EconomyState, Action], StepResult]] = {
            "buy": lambda s, a: self.buy(s, a.item, a.quantity),
            "buy_max": lambda s, a: self.buy_max(s, a.item),
            "sell": lambda s, a: self.sell(s, a.item),
            "sell_all": lambda s, a: self.sell_all(s, a.item),
            "buy_upgrade": lambda s, a: self.buy_upgrade(s, a.upgrade),
            "pay_debt": lambda s, a: self.pay_debt(s),
            "end_turn": lambda s, a: self.end_turn(s),
            "roll": lambda s, a: self.resolve_roll(s, a.d20),
            "flee": lambda s, a: self.flee(s),
            "quit": lambda s, a: self.quit(s),
        }

    # ── Lifecycle ──────────────────────────────────────────────────────────
    def start_run(self, race_id: str, class_id: str) -> G.EconomyState:
        race = self.catalog.races[race_id]
        char_class = self.catalog.classes[class_id]
        hp = self.rules.base_health + race.stats.health + char_class.health_bonus
        location = self.catalog.start_location
        state = G.EconomyState(
            race_id=race_id,
            class_id=class_id,
            money=char_class.starting_money,
            debt=char_class.starting_debt,
            health=hp,
            max_health=hp,
            location_id=location.id,
            prices=recalc_prices(self.catalog, location, self.rng),
            inventory={cid: G.InventorySlot() for cid in self.catalog.commodities},
        )
        state.note(f"Welcome, {race.display_name} {char_class.display_name}! Good luck.")
        return state

    def apply(self, state: G.EconomyState, action: Action) -> StepResult:
        return self._handlers[action.kind](state, action)

    def roll_d20(self) -> int:
        return self.dice.randint(1, 20)

    # ── Guards ─────────────────────────────────────────────────────────────
    def _blocked(self, state: G.EconomyState, allow_pending: bool = False) -> Optional[str]:
        if state.is_over:
            return "The run is over."
        if state.pending_event is not None and not allow_pending:
            return "Resolve the encounter first!"
        return None

    @staticmethod
    def _reject(state: G.EconomyState, message: str) -> StepResult:
        return StepResult(state=state, ok=False, message=message)

    def _require_item(self, item: Optional[str]) -> str:
        if item not in self.catalog.commodities:
            raise KeyError(f"Unknown commodity '{item}'")
        return item

    # ── Trading ────────────────────────────────────────────────────────────
    def buy(self, state: G.EconomyState, item: str, quantity: int = 1) -> StepResult:
        item = self._require_item(item)
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        price = unit_buy_price(self.catalog, state, item)
        if state.total_count() + quantity > max_inventory(self.catalog, state):
            return self._reject(state, "Inventory full!")
        if state.money < price * quantity:
            return self._reject(state, "Not enough gold!")
        return self._fill(state, item, quantity, price)

    def buy_max(self, state: G.EconomyState, item: str) -> StepResult:
        item = self._require_item(item)
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        price = unit_buy_price(self.catalog, state, item)
        space = max_inventory(self.catalog, state) - state.total_count()
        affordable = state.money // price if price > 0 else space
        quantity = min(space, affordable)
        if quantity <= 0:
            return self._reject(state, "Inventory full!" if space <= 0 else "Not enough gold!")
        return self._fill(state, item, quantity, price)

    def _fill(self, state: G.EconomyState, item: str, quantity: int, price: int) -> StepResult:
        s = state.model_copy(deep=True)
        s.money -= price * quantity
        s.slot(item).add(quantity, price)
        s.traded_today = True
        name = self.catalog.commodities[item].display_name
        message = f"Bought {quantity} {name} for {price * quantity}g"
        s.note(message)
        return StepResult(state=s, message=message)

    def sell(self, state: G.EconomyState, item: str) -> StepResult:
        return self._sell(state, item, all_units=False)

    def sell_all(self, state: G.EconomyState, item: str) -> StepResult:
        return self._sell(state, item, all_units=True)

    def _sell(self, state: G.EconomyState, item: str, all_units: bool) -> StepResult:
        item = self._require_item(item)
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        held = state.inventory.get(item)
        if held is None or held.count == 0:
            return self._reject(state, "You have none to sell.")
        s = state.model_copy(deep=True)
        price = unit_sell_price(self.catalog, s, item)
        sold = s.slot(item).remove(held.count if all_units else 1)
        s.money += price * sold
        s.traded_today = True
        name = self.catalog.commodities[item].display_name
        message = f"Sold {sold} {name} for {price * sold}g"
        s.note(message)
        return StepResult(state=s, message=message)

    # ── Upgrades & debt ────────────────────────────────────────────────────
    def buy_upgrade(self, state: G.EconomyState, upgrade_id: str) -> StepResult:
        upgrade = self.catalog.upgrades[upgrade_id]
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        if not upgrade.is_available(state.race_id, state.class_id):
            return self._reject(state, "Not available to your kind.")
        if not upgrade.consumable and upgrade.id in state.upgrades:
            return self._reject(state, "Already own that!")
        if upgrade.consumable and state.health >= state.max_health:
            return self._reject(state, "Already at full health!")
        if state.money < upgrade.cost:
            return self._reject(state, "Too expensive!")

        s = state.model_copy(deep=True)
        s.money -= upgrade.cost
        if upgrade.consumable:
            s.health = min(s.max_health, s.health + upgrade.value)
        else:
            s.upgrades.append(upgrade.id)
        message = f"Purchased {upgrade.display_name}!"
        s.note(message)
        return StepResult(state=s, message=message)

    def pay_debt(self, state: G.EconomyState) -> StepResult:
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        if state.debt <= 0:
            return self._reject(state, "You have no debt.")
        if state.money <= 0:
            return self._reject(state, "No gold to pay with.")
        s = state.model_copy(deep=True)
        amount = min(s.money, s.debt)
        s.money -= amount
        s.debt -= amount
        message = f"Paid {amount}g loan."
        s.note(message)
        return StepResult(state=s, message=message)

    # ── Turn ───────────────────────────────────────────────────────────────
    def end_turn(self, state: G.EconomyState) -> StepResult:
        blocked = self._blocked(state)
        if blocked:
            return self._reject(state, blocked)
        s = state.model_copy(deep=True)
        rules = self.rules

        if s.day >= rules.max_days:
            self._finish(s)
            return StepResult(state=s, message=s.log[0])

        s.day += 1
        if s.debt > 0:
            s.debt += _ceil(s.debt * rules.debt_rate)
        if not s.traded_today:
            wage = _floor(self.rng.random() * rules.wage_span) + rules.wage_min
            s.money += wage
            s.note(f"You worked odd jobs for {wage}g.")
        s.traded_today = False

        # bleed is evaluated here and nowhere else, once per turn
        if s.health < rules.bleed_threshold * s.max_health:
            s.health -= rules.bleed_damage
            s.note(f"Your wounds bleed. (-{rules.bleed_damage} HP)")
            kill(s, "Bleed")
            if s.is_over:
                return StepResult(state=s, message=s.log[0])

        location = self._travel(s)
        event = self.events.trigger(s, location, self.rng)
        s.prices = recalc_prices(self.catalog, location, self.rng, s.price_mod)
        return StepResult(state=s, event=event, message=f"Day {s.day}: arrived at {location.display_name}.")

    def _travel(self, state: G.EconomyState) -> G.Location:
        locations = list(self.catalog.locations.values())
        nxt = self.rng.choice(locations)
        while nxt.id == state.location_id:
            nxt = self.rng.choice(locations)
        state.location_id = nxt.id
        return nxt

    def _finish(self, state: G.EconomyState) -> None:
        state.status = "Win" if state.raw_score >= 0 else "Bankrupt"
        state.cause = "Time Limit"
        state.note(f"The {self.rules.max_days} days are over. {scenario_title(state)}")
        logger.debug("Run ended: %s with %d", state.status, state.raw_score)

    # ── Encounters ─────────────────────────────────────────────────────────
    def resolve_roll(self, state: G.EconomyState, d20: Optional[int] = None) -> StepResult:
        blocked = self._blocked(state, allow_pending=True)
        if blocked:
            return self._reject(state, blocked)
        if state.pending_event is None:
            return self._reject(state, "Nothing to roll for.")
        if d20 is None:
            d20 = self.roll_d20()
        s = state.model_copy(deep=True)
        active = s.pending_event
        result = self.combat.resolve(s, d20)
        active.result = result
        return StepResult(state=s, event=active, result=result, message=result.text)

    def flee(self, state: G.EconomyState) -> StepResult:
        blocked = self._blocked(state, allow_pending=True)
        if blocked:
            return self._reject(state, blocked)
        pending = state.pending_event
        if pending is None:
            return self._reject(state, "There is nothing to run from.")
        if self.catalog.events[pending.event_id].type != "combat":
            return self._reject(state, "You cannot run from this.")
        s = state.model_copy(deep=True)
        message = self.combat.flee(s)
        return StepResult(state=s, message=message)

    def quit(self, state: G.EconomyState) -> StepResult:
        if state.is_over:
            return self._reject(state, "The run is over.")
        s = state.model_copy(deep=True)
        s.pending_event = None
        s.status = "Quit"
        s.cause = "Quit"
        s.note("You abandoned the run.")
        return StepResult(state=s, message=s.log[0])

    # ── Reporting ──────────────────────────────────────────────────────────
    def get_score(self, state: G.EconomyState) -> G.Score:
        return get_score(state)

    def summarize(self, state: G.EconomyState) -> G.RunSummary:
        score = get_score(state)
        return G.RunSummary(
            race=self.catalog.races[state.race_id].display_name,
            char_class=self.catalog.classes[state.class_id].display_name,
            score=score.final_score,
            raw_score=state.raw_score,
            status=state.status,
            cause=state.cause,
            day=state.day,
            combat_stats=state.combat_stats.model_copy(),
        )
