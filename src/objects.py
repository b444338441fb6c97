from __future__ import annotations
from enum import Enum
from typing import Dict, List, Literal, Optional, Set
from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, PositiveInt, field_validator, model_validator

import itertools
_id_counter = itertools.count()

def get_instance_id():
    return next(_id_counter)


class CatalogError(ValueError):
    """Raised when content definitions are malformed or inconsistent."""

# ────────────────────────────────────────────────────────────────────────────
# Rules
# ────────────────────────────────────────────────────────────────────────────

class GameRules(BaseModel):
    """Every tunable constant of a run. Loaded from content/GameRules if present."""

    max_days: PositiveInt = 31
    base_inventory: NonNegativeInt = 50
    base_health: PositiveInt = 100
    debt_rate: float = Field(default=0.05, ge=0)
    sell_spread: float = Field(default=0.80, gt=0, description="House margin applied to sell prices")
    volatility_min: float = Field(default=0.25, gt=0)
    volatility_span: float = Field(default=2.0, ge=0)
    wage_min: NonNegativeInt = 50
    wage_span: NonNegativeInt = 150
    bleed_threshold: float = Field(default=0.25, ge=0, le=1)
    bleed_damage: NonNegativeInt = 5
    flee_penalty: NonNegativeInt = 10
    counter_bonus: int = 5
    flavor_heal: int = 1
    start_location: Optional[str] = None # First location in the catalog if unset

# ────────────────────────────────────────────────────────────────────────────
# Commodities & Locations
# ────────────────────────────────────────────────────────────────────────────

class Commodity(BaseModel):
    id: str
    display_name: str
    base_price: PositiveInt


class Location(BaseModel):
    id: str
    display_name: str
    risk: float = Field(..., ge=0, le=1, description="Chance per arrival that an event fires")
    # Commodity id -> price multiplier. Missing commodities trade at 1.0
    prices: Dict[str, float] = Field(default_factory=dict)

    def multiplier(self, commodity_id: str) -> float:
        return self.prices.get(commodity_id, 1.0)

# ────────────────────────────────────────────────────────────────────────────
# Races, Classes & Upgrades
# ────────────────────────────────────────────────────────────────────────────

class RaceStats(BaseModel):
    inventory: int = 0
    health: int = 0
    buy_mod: float = 0.0 # Positive = discount when buying
    sell_mod: float = 0.0 # Positive = premium when selling
    combat: int = 0


class Race(BaseModel):
    id: str
    display_name: str
    desc: str = ""
    stats: RaceStats = Field(default_factory=RaceStats)
    # Event ids this race gets the counter bonus against (e.g. dwarves vs dragons)
    counters: Set[str] = Field(default_factory=set)


class CharClass(BaseModel):
    id: str
    display_name: str
    desc: str = ""
    starting_money: NonNegativeInt
    starting_debt: NonNegativeInt
    health_bonus: int = 0
    combat_bonus: int = 0


def _as_set(v):
    if v is None:
        return None
    if isinstance(v, str):
        return {v}
    return set(v)


class Requirement(BaseModel):
    """Race and/or class sets. A scalar id in the content files becomes a one-element set."""

    race: Optional[Set[str]] = None
    class_: Optional[Set[str]] = Field(default=None, alias="class")

    model_config = {"populate_by_name": True}

    @field_validator("race", "class_", mode="before")
    def _normalize(cls, v):  # noqa: N805
        return _as_set(v)

    def matches_race(self, race_id: str) -> bool:
        return self.race is not None and race_id in self.race

    def matches_class(self, class_id: str) -> bool:
        return self.class_ is not None and class_id in self.class_


class UpgradeType(str, Enum):
    inventory = "inventory"
    combat = "combat"
    heal = "heal"


class Upgrade(BaseModel):
    id: str
    display_name: str
    desc: str = ""
    type: UpgradeType
    value: PositiveInt
    cost: PositiveInt
    req: Optional[Requirement] = None
    ban: Optional[Requirement] = None

    @property
    def consumable(self) -> bool:
        return self.type == UpgradeType.heal

    def is_available(self, race_id: str, class_id: str) -> bool:
        if self.ban is not None:
            if self.ban.matches_race(race_id) or self.ban.matches_class(class_id):
                return False
        if self.req is not None:
            if self.req.race is not None and race_id not in self.req.race:
                return False
            if self.req.class_ is not None and class_id not in self.req.class_:
                return False
        return True

# ────────────────────────────────────────────────────────────────────────────
# Events
# ────────────────────────────────────────────────────────────────────────────

OutcomeKey = Literal["crit_success", "success", "fail", "crit_fail"]
OUTCOME_KEYS = ("crit_success", "success", "fail", "crit_fail")
EventType = Literal["combat", "check", "heal", "money", "price", "flavor"]
SKILL_CHECK_TYPES = ("combat", "check")


class ItemChange(BaseModel):
    commodity: str
    quantity: int # Negative removes


class ForcedPayment(BaseModel):
    """Pay ``gold`` if the purse covers it, otherwise take ``damage``."""

    gold: PositiveInt
    damage: PositiveInt


class Effect(BaseModel):
    gold: int = 0
    gold_percent: float = Field(default=0.0, ge=-1)
    health: int = 0
    item: Optional[ItemChange] = None
    clear_debt: bool = False
    pay_or_damage: Optional[ForcedPayment] = None


class Outcome(BaseModel):
    text: str
    effect: Effect = Field(default_factory=Effect)


class Escalation(BaseModel):
    """Extra selection weight and a raised DC once the player is rich enough."""

    net_worth: int
    extra_weight: NonNegativeInt = 0
    difficulty: Optional[PositiveInt] = None


class EventDefinition(BaseModel):
    id: str
    display_name: str
    type: EventType
    text: str

    # eligibility
    min_day: PositiveInt = 1
    max_day: Optional[PositiveInt] = None
    requires_debt: bool = False
    min_net_worth: int = 0
    risk_weight: NonNegativeInt = 1

    # instant events: heal amount, gold amount or price multiplier
    value: float = 0

    # skill checks
    difficulty: Optional[PositiveInt] = None
    stat: str = "STR"
    outcomes: Dict[OutcomeKey, Outcome] = Field(default_factory=dict)
    escalation: Optional[Escalation] = None
    death_cause: str = "Event Death"

    @model_validator(mode="after")
    def _check_outcomes(self):
        if self.type in SKILL_CHECK_TYPES:
            if self.difficulty is None:
                raise ValueError(f"Event '{self.id}' is a {self.type} but has no difficulty")
            missing = [k for k in OUTCOME_KEYS if k not in self.outcomes]
            if missing:
                raise ValueError(f"Event '{self.id}' is missing outcomes: {', '.join(missing)}")
        if self.max_day is not None and self.max_day < self.min_day:
            raise ValueError(f"Event '{self.id}' has max_day before min_day")
        return self

    @property
    def is_skill_check(self) -> bool:
        return self.type in SKILL_CHECK_TYPES

    def in_day_range(self, day: int) -> bool:
        if day < self.min_day:
            return False
        return self.max_day is None or day <= self.max_day

    def effective_difficulty(self, net_worth: int) -> Optional[int]:
        if self.escalation and self.escalation.difficulty and net_worth > self.escalation.net_worth:
            return self.escalation.difficulty
        return self.difficulty

# ────────────────────────────────────────────────────────────────────────────
# Catalog
# ────────────────────────────────────────────────────────────────────────────

class Catalog(BaseModel):
    """Immutable content for a run, keyed by id. Built by register.load_catalog."""

    rules: GameRules = Field(default_factory=GameRules)
    commodities: Dict[str, Commodity]
    locations: Dict[str, Location]
    races: Dict[str, Race]
    classes: Dict[str, CharClass]
    upgrades: Dict[str, Upgrade] = Field(default_factory=dict)
    events: Dict[str, EventDefinition] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _cross_check(self):
        if not self.commodities:
            raise ValueError("Catalog has no commodities")
        if len(self.locations) < 2:
            raise ValueError("Catalog needs at least two locations to travel between")
        if not self.races or not self.classes:
            raise ValueError("Catalog needs at least one race and one class")
        for loc in self.locations.values():
            unknown = set(loc.prices) - set(self.commodities)
            if unknown:
                raise ValueError(f"Location '{loc.id}' prices unknown commodities: {sorted(unknown)}")
        for event in self.events.values():
            for key, outcome in event.outcomes.items():
                item = outcome.effect.item
                if item and item.commodity not in self.commodities:
                    raise ValueError(f"Event '{event.id}' outcome '{key}' grants unknown commodity '{item.commodity}'")
        for race in self.races.values():
            unknown = race.counters - set(self.events)
            if unknown:
                raise ValueError(f"Race '{race.id}' counters unknown events: {sorted(unknown)}")
        if self.rules.start_location and self.rules.start_location not in self.locations:
            raise ValueError(f"Unknown start location '{self.rules.start_location}'")
        return self

    @property
    def start_location(self) -> Location:
        if self.rules.start_location:
            return self.locations[self.rules.start_location]
        return next(iter(self.locations.values()))

# ────────────────────────────────────────────────────────────────────────────
# Run state
# ────────────────────────────────────────────────────────────────────────────

class InventorySlot(BaseModel):
    count: NonNegativeInt = 0
    avg_cost: NonNegativeFloat = 0.0

    def add(self, quantity: int, fill_price: float) -> None:
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        total = self.count + quantity
        self.avg_cost = (self.count * self.avg_cost + quantity * fill_price) / total
        self.count = total

    def grant(self, quantity: int) -> None:
        """Add free units. avg_cost keeps tracking buy fills only."""
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        self.count += quantity

    def remove(self, quantity: int) -> int:
        """Take up to ``quantity`` units out, returning how many were removed."""
        taken = min(self.count, quantity)
        self.count -= taken
        if self.count == 0:
            self.avg_cost = 0.0
        return taken


RunStatus = Literal["Playing", "Win", "Bankrupt", "Dead", "Quit"]
TERMINAL_STATUSES = ("Win", "Bankrupt", "Dead", "Quit")
LOG_LIMIT = 50


class RollResult(BaseModel):
    outcome: OutcomeKey
    roll: int
    bonus: int
    total: int
    text: str
    effect_text: str = ""


class ActiveEvent(BaseModel):
    """An event between trigger and dismissal. Never persisted."""

    event_id: str
    difficulty: Optional[int] = None
    kind: Literal["good", "bad", "neutral"] = "neutral"
    summary: str = ""
    result: Optional[RollResult] = None


class CombatStats(BaseModel):
    wins: NonNegativeInt = 0
    losses: NonNegativeInt = 0
    flees: NonNegativeInt = 0


class EconomyState(BaseModel):
    race_id: str
    class_id: str
    money: NonNegativeInt
    debt: NonNegativeInt
    day: PositiveInt = 1
    health: int
    max_health: PositiveInt
    upgrades: List[str] = Field(default_factory=list)
    location_id: str
    prices: Dict[str, int] = Field(default_factory=dict)
    price_mod: float = 1.0
    inventory: Dict[str, InventorySlot] = Field(default_factory=dict)
    traded_today: bool = False
    pending_event: Optional[ActiveEvent] = None
    combat_stats: CombatStats = Field(default_factory=CombatStats)
    status: RunStatus = "Playing"
    cause: Optional[str] = None
    log: List[str] = Field(default_factory=list)

    # ── Helpers ────────────────────────────────────────────────────────────
    @property
    def is_over(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def raw_score(self) -> int:
        return self.money - self.debt

    def total_count(self) -> int:
        return sum(slot.count for slot in self.inventory.values())

    def slot(self, commodity_id: str) -> InventorySlot:
        return self.inventory.setdefault(commodity_id, InventorySlot())

    def note(self, message: str) -> None:
        self.log.insert(0, message)
        del self.log[LOG_LIMIT:]

# ────────────────────────────────────────────────────────────────────────────
# Results & summaries
# ────────────────────────────────────────────────────────────────────────────

class Score(BaseModel):
    status: RunStatus
    final_score: NonNegativeInt


class RunSummary(BaseModel):
    """The record handed to whatever sink stores completed runs."""

    run_id: int = Field(default_factory=get_instance_id)
    race: str
    char_class: str = Field(..., alias="class")
    score: NonNegativeInt
    raw_score: int
    status: RunStatus
    cause: Optional[str] = None
    day: int
    combat_stats: CombatStats = Field(default_factory=CombatStats)

    model_config = {"populate_by_name": True}
