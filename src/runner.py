"""
Bulk balance simulator. Plays many independent runs with a fixed bot policy
and reports survival, score distribution and race / class balance.

    python src/runner.py --runs 2000 --seed 42 --plot scores.png
"""
import argparse
import logging
import random
import time
from pathlib import Path
from typing import Dict, List, Optional, TextIO

import matplotlib.pyplot as plt
from pydantic import BaseModel, Field

import objects as G
import sim
from register import load_catalog

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Bot policy
# ──────────────────────────────────────────────────────────────────────────────

class BotPolicy:
    """Deterministic stand-in for a human: heal when low, sell high, buy low, arm up."""

    _HEAL_THRESHOLD = 0.35
    _SELL_RATIO     = 1.2     # sell once spot is 20% over base
    _BUY_RATIO      = 0.8     # buy when spot is 20% under base
    _RESERVE        = 1000    # gold kept back for emergencies
    _WEAPON_CASH    = 5000
    _MIN_FIGHT_ODDS = 0.25    # flee combat below this chance of success

    def play_day(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        state = self._survive(engine, state)
        state = self._sell_high(engine, state)
        state = self._buy_low(engine, state)
        state = self._arm_up(engine, state)
        state = self._settle_debt(engine, state)
        return state

    def _survive(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        heals = sorted(
            (u for u in engine.catalog.upgrades.values()
             if u.consumable and u.is_available(state.race_id, state.class_id)),
            key=lambda u: u.cost,
        )
        for heal in heals:
            while state.health < state.max_health * self._HEAL_THRESHOLD and state.money >= heal.cost:
                step = engine.buy_upgrade(state, heal.id)
                if not step.ok:
                    break
                state = step.state
        return state

    def _sell_high(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        last_day = state.day >= engine.rules.max_days
        for cid, slot in list(state.inventory.items()):
            if slot.count == 0:
                continue
            base = engine.catalog.commodities[cid].base_price
            if last_day or state.prices[cid] > base * self._SELL_RATIO:
                state = engine.sell_all(state, cid).state
        return state

    def _buy_low(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        if state.day >= engine.rules.max_days:
            return state
        deals = sorted(
            engine.catalog.commodities.values(),
            key=lambda c: state.prices[c.id] / c.base_price,
        )
        for commodity in deals:
            space = sim.max_inventory(engine.catalog, state) - state.total_count()
            if space <= 0:
                break
            price = sim.unit_buy_price(engine.catalog, state, commodity.id)
            ratio = state.prices[commodity.id] / commodity.base_price
            if ratio >= self._BUY_RATIO or price <= 0 or state.money < price + self._RESERVE:
                continue
            quantity = min(space, (state.money - self._RESERVE) // price)
            if quantity > 0:
                state = engine.buy(state, commodity.id, quantity).state
        return state

    def _arm_up(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        if state.money <= self._WEAPON_CASH:
            return state
        weapons = [
            u for u in engine.catalog.upgrades.values()
            if u.type == G.UpgradeType.combat
            and u.id not in state.upgrades
            and u.is_available(state.race_id, state.class_id)
            and u.cost <= state.money - self._RESERVE
        ]
        if weapons:
            best = max(weapons, key=lambda u: (u.value, -u.cost))
            state = engine.buy_upgrade(state, best.id).state
        return state

    def _settle_debt(self, engine: sim.Engine, state: G.EconomyState) -> G.EconomyState:
        if state.debt > 0 and state.money - state.debt >= self._RESERVE:
            state = engine.pay_debt(state).state
        return state

    def success_chance(self, engine: sim.Engine, state: G.EconomyState) -> float:
        active = state.pending_event
        event = engine.catalog.events[active.event_id]
        bonus = engine.combat.bonus(state, event)
        hits = sum(
            1 for d20 in range(1, 21)
            if sim.CombatResolver.outcome_for(d20, d20 + bonus, active.difficulty) in ("success", "crit_success")
        )
        return hits / 20

    def face_encounter(self, engine: sim.Engine, state: G.EconomyState) -> sim.StepResult:
        event = engine.catalog.events[state.pending_event.event_id]
        if (event.type == "combat"
                and state.health > engine.rules.flee_penalty
                and self.success_chance(engine, state) < self._MIN_FIGHT_ODDS):
            return engine.flee(state)
        return engine.resolve_roll(state)

# ──────────────────────────────────────────────────────────────────────────────
# Statistics
# ──────────────────────────────────────────────────────────────────────────────

class BalanceRow(BaseModel):
    runs: int = 0
    total: int = 0
    deaths: int = 0

    @property
    def avg_score(self) -> int:
        survivors = self.runs - self.deaths
        return self.total // survivors if survivors else 0

    @property
    def death_rate(self) -> float:
        return self.deaths / self.runs if self.runs else 0.0


class SimulationStats(BaseModel):
    runs: int = 0
    wins: int = 0
    bankruptcies: int = 0
    deaths: int = 0
    scores: List[int] = Field(default_factory=list) # survivors only, raw
    causes: Dict[str, int] = Field(default_factory=dict)
    victories: Dict[str, int] = Field(default_factory=dict) # combat wins per event
    combat: G.CombatStats = Field(default_factory=G.CombatStats)
    race_stats: Dict[str, BalanceRow] = Field(default_factory=dict)
    class_stats: Dict[str, BalanceRow] = Field(default_factory=dict)
    duration: float = 0.0

    def record(self, summary: G.RunSummary) -> None:
        self.runs += 1
        dead = summary.status == "Dead"
        if dead:
            self.deaths += 1
        else:
            self.scores.append(summary.raw_score)
            if summary.status == "Win":
                self.wins += 1
            else:
                self.bankruptcies += 1
        if summary.cause:
            self.causes[summary.cause] = self.causes.get(summary.cause, 0) + 1
        self.combat.wins += summary.combat_stats.wins
        self.combat.losses += summary.combat_stats.losses
        self.combat.flees += summary.combat_stats.flees

        for table, key in ((self.race_stats, summary.race), (self.class_stats, summary.char_class)):
            row = table.setdefault(key, BalanceRow())
            row.runs += 1
            if dead:
                row.deaths += 1
            else:
                row.total += summary.raw_score

    @property
    def median(self) -> int:
        if not self.scores:
            return 0
        ordered = sorted(self.scores)
        return ordered[len(ordered) // 2]

# ──────────────────────────────────────────────────────────────────────────────
# Runner
# ──────────────────────────────────────────────────────────────────────────────

class RunSimulator:
    """Plays independent runs back to back. Each run owns its own seeded RNG."""

    def __init__(self, catalog: G.Catalog, seed: int = 0, policy: Optional[BotPolicy] = None):
        self.catalog = catalog
        self.random = random.Random(seed)
        self.policy = policy or BotPolicy()

    def play_run(self, race_id: str, class_id: str, rng: random.Random,
                 victories: Optional[Dict[str, int]] = None) -> G.RunSummary:
        # dice share the run's seeded stream
        engine = sim.Engine(self.catalog, rng=rng, dice=rng)
        state = engine.start_run(race_id, class_id)
        while not state.is_over:
            state = self.policy.play_day(engine, state)
            state = engine.end_turn(state).state
            if state.pending_event is not None and not state.is_over:
                step = self.policy.face_encounter(engine, state)
                state = step.state
                if victories is not None and step.result and step.result.outcome in ("success", "crit_success"):
                    event = self.catalog.events[step.event.event_id]
                    if event.type == "combat":
                        victories[event.display_name] = victories.get(event.display_name, 0) + 1
        return engine.summarize(state)

    def run(self, runs: int, sink: Optional[TextIO] = None) -> SimulationStats:
        """Play ``runs`` runs. Each RunSummary is also written to ``sink`` as a JSON line."""
        stats = SimulationStats()
        races = list(self.catalog.races)
        classes = list(self.catalog.classes)
        start = time.perf_counter()
        for i in range(runs):
            race_id = self.random.choice(races)
            class_id = self.random.choice(classes)
            rng = random.Random(self.random.getrandbits(64))
            summary = self.play_run(race_id, class_id, rng, stats.victories)
            stats.record(summary)
            if sink is not None:
                sink.write(summary.model_dump_json(by_alias=True) + "\n")
            logger.debug("Run %d: %s %s -> %s %d", i, race_id, class_id, summary.status, summary.raw_score)
        stats.duration = time.perf_counter() - start
        return stats

# ──────────────────────────────────────────────────────────────────────────────
# Report
# ──────────────────────────────────────────────────────────────────────────────

def _balance_table(label: str, table: Dict[str, BalanceRow]) -> List[str]:
    lines = [f"{label:<12} {'avg_score':>12} {'death_rate':>11}"]
    for key, row in sorted(table.items(), key=lambda kv: kv[1].avg_score, reverse=True):
        lines.append(f"{key:<12} {row.avg_score:>12,} {row.death_rate * 100:>10.1f}%")
    return lines


def format_report(stats: SimulationStats) -> str:
    runs = max(stats.runs, 1)
    survivors = stats.runs - stats.deaths
    lines = [
        "==========================================",
        f"DWARF WARS SIMULATION REPORT ({stats.duration:.2f}s)",
        "==========================================",
        f"Total Runs: {stats.runs}",
        f"Survivors:  {survivors} ({survivors / runs * 100:.1f}%)",
        f"Deaths:     {stats.deaths} ({stats.deaths / runs * 100:.1f}%)",
        f"Wins:       {stats.wins}  Bankrupt: {stats.bankruptcies}",
    ]
    for name, count in sorted(stats.victories.items()):
        lines.append(f"Slain:      {count} x {name}")
    lines += ["", "--- SCORE (Survivors Only) ---"]
    if stats.scores:
        lines += [
            f"Highest:    {max(stats.scores):,}",
            f"Median:     {stats.median:,}",
            f"Lowest:     {min(stats.scores):,}",
        ]
    else:
        lines.append("No survivors.")
    lines += ["", "--- CAUSES ---"]
    for cause, count in sorted(stats.causes.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"{cause:<16} {count}")
    lines += ["", "--- BALANCE: RACES ---"] + _balance_table("race", stats.race_stats)
    lines += ["", "--- BALANCE: CLASSES ---"] + _balance_table("class", stats.class_stats)
    lines.append("==========================================")
    return "\n".join(lines)


def plot_stats(stats: SimulationStats, output: Optional[Path] = None) -> None:
    """Histogram of survivor scores next to death rate per race."""
    fig, (ax_scores, ax_deaths) = plt.subplots(1, 2, figsize=(12, 5))

    ax_scores.hist(stats.scores, bins=50)
    ax_scores.set_xlabel("Final score (money - debt)")
    ax_scores.set_ylabel("Runs")
    ax_scores.set_title("Survivor Scores")

    races = sorted(stats.race_stats)
    ax_deaths.bar(races, [stats.race_stats[r].death_rate * 100 for r in races])
    ax_deaths.set_ylabel("Death rate (%)")
    ax_deaths.set_title("Deaths by Race")

    fig.tight_layout()
    if output is not None:
        fig.savefig(output)
        plt.close(fig)
    else:
        plt.show()


def main(runs: int = 2000, seed: int = 0, content: Optional[List[Path]] = None,
         plot: Optional[str] = None, record: Optional[Path] = None) -> SimulationStats:
    catalog = load_catalog(content)
    print(f"Starting Simulation: {runs} runs...")
    simulator = RunSimulator(catalog, seed=seed)
    if record is not None:
        with open(record, "w", encoding="utf-8") as sink:
            stats = simulator.run(runs, sink)
    else:
        stats = simulator.run(runs)
    print(format_report(stats))
    if plot is not None:
        plot_stats(stats, Path(plot) if plot else None)
    return stats


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the Dwarf Wars balance simulation")
    parser.add_argument("--runs", type=int, default=2000, help="Number of runs to simulate")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for deterministic runs")
    parser.add_argument("--content", type=Path, action="append", help="Content folder (repeatable)")
    parser.add_argument("--plot", nargs="?", const="", default=None,
                        help="Plot results; give a file name to save instead of showing")
    parser.add_argument("--record", type=Path, default=None, help="Write every run summary to this JSON Lines file")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")
    main(runs=args.runs, seed=args.seed, content=args.content, plot=args.plot, record=args.record)
