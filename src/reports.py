"""
Offline balance reports over the catalog and over recorded runs.

    python src/reports.py upgrades
    python src/reports.py logs runs.jsonl
"""
import argparse
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

import objects as G
from register import load_catalog

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Upgrade value
# ──────────────────────────────────────────────────────────────────────────────

class UpgradeValue(BaseModel):
    id: str
    display_name: str
    type: G.UpgradeType
    value: int
    cost: int
    cost_per_point: float


def upgrade_value_table(catalog: G.Catalog) -> List[UpgradeValue]:
    """Gold per point of stat for every owned upgrade. Consumable heals are not compared."""
    rows = [
        UpgradeValue(
            id=u.id, display_name=u.display_name, type=u.type,
            value=u.value, cost=u.cost, cost_per_point=u.cost / u.value,
        )
        for u in catalog.upgrades.values()
        if not u.consumable
    ]
    return sorted(rows, key=lambda r: (r.type.value, r.cost_per_point))


class Availability(BaseModel):
    race: str
    char_class: str
    total: int
    exclusives: List[str] = Field(default_factory=list) # available items gated by a requirement


def availability_matrix(catalog: G.Catalog) -> List[Availability]:
    matrix: List[Availability] = []
    for race_id in catalog.races:
        for class_id in catalog.classes:
            available = [u for u in catalog.upgrades.values() if u.is_available(race_id, class_id)]
            matrix.append(Availability(
                race=race_id,
                char_class=class_id,
                total=len(available),
                exclusives=[u.display_name for u in available if u.req is not None],
            ))
    return matrix


def format_upgrade_report(catalog: G.Catalog) -> str:
    lines = ["=== UPGRADE VALUE (gold per point) ==="]
    for row in upgrade_value_table(catalog):
        lines.append(f"{row.display_name:<16} {row.type.value:<10} +{row.value:<4} {row.cost:>7,}g {row.cost_per_point:>8.1f}")
    lines += ["", "=== AVAILABILITY (race x class) ==="]
    for cell in availability_matrix(catalog):
        extra = ", ".join(cell.exclusives) or "-"
        lines.append(f"{cell.race:<8} {cell.char_class:<10} {cell.total:>3} items  exclusives: {extra}")
    return "\n".join(lines)

# ──────────────────────────────────────────────────────────────────────────────
# Run-log analysis
# ──────────────────────────────────────────────────────────────────────────────

class RaceBalance(BaseModel):
    runs: int = 0
    scored: int = 0 # runs counted in score, quits excluded
    score: int = 0
    deaths: int = 0

    @property
    def avg_score(self) -> int:
        return self.score // self.scored if self.scored else 0

    @property
    def death_rate(self) -> float:
        return self.deaths / self.runs if self.runs else 0.0


class LogAnalysis(BaseModel):
    sessions: int = 0
    wins: int = 0
    bankrupt: int = 0
    deaths: int = 0
    quits: int = 0
    avg_score: int = 0 # quits excluded
    causes: Dict[str, int] = Field(default_factory=dict)
    combat: G.CombatStats = Field(default_factory=G.CombatStats)
    races: Dict[str, RaceBalance] = Field(default_factory=dict)

    @property
    def survivors(self) -> int:
        return self.wins + self.bankrupt

    @property
    def fights(self) -> int:
        return self.combat.wins + self.combat.losses

    @property
    def fight_rate(self) -> float:
        encounters = self.fights + self.combat.flees
        return self.fights / encounters if encounters else 0.0

    @property
    def flee_rate(self) -> float:
        encounters = self.fights + self.combat.flees
        return self.combat.flees / encounters if encounters else 0.0

    @property
    def win_rate(self) -> float:
        return self.combat.wins / self.fights if self.fights else 0.0


def analyze_summaries(summaries: Iterable[G.RunSummary]) -> LogAnalysis:
    report = LogAnalysis()
    total_score = 0
    for s in summaries:
        if s.status not in G.TERMINAL_STATUSES:
            logger.warning("Skipping unfinished run %s (%s)", s.run_id, s.status)
            continue
        report.sessions += 1
        if s.status == "Dead":
            report.deaths += 1
        elif s.status == "Bankrupt":
            report.bankrupt += 1
        elif s.status == "Quit":
            report.quits += 1
        elif s.status == "Win":
            report.wins += 1

        if s.status != "Quit":
            total_score += s.score
        if s.cause:
            report.causes[s.cause] = report.causes.get(s.cause, 0) + 1

        report.combat.wins += s.combat_stats.wins
        report.combat.losses += s.combat_stats.losses
        report.combat.flees += s.combat_stats.flees

        row = report.races.setdefault(s.race or "Unknown", RaceBalance())
        row.runs += 1
        if s.status != "Quit":
            row.scored += 1
            row.score += s.score
        if s.status == "Dead":
            row.deaths += 1

    finished = report.sessions - report.quits
    report.avg_score = total_score // finished if finished else 0
    return report


def read_summaries(path: Path) -> List[G.RunSummary]:
    """Read RunSummary records from a JSON Lines file. Blank lines are skipped."""
    summaries: List[G.RunSummary] = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                summaries.append(G.RunSummary.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise ValueError(f"{path}:{lineno}: bad run record: {e}") from e
    logger.info("Read %d run records from %s", len(summaries), path)
    return summaries


def format_log_report(report: LogAnalysis) -> str:
    n = max(report.sessions, 1)
    lines = [
        f"Analyzed {report.sessions} sessions.",
        "",
        "=== GLOBAL STATS ===",
        f"Survivors:   {report.survivors} ({report.survivors / n * 100:.1f}%)",
        f"Deaths:      {report.deaths} ({report.deaths / n * 100:.1f}%)",
        f"Quits:       {report.quits}",
        f"Avg Score:   {report.avg_score:,}",
        "",
        "=== CAUSE OF DEATH ===",
    ]
    for cause, count in sorted(report.causes.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"{cause:<20} {count}")
    lines += [
        "",
        "=== COMBAT BEHAVIOR ===",
        f"Total Encounters: {report.fights + report.combat.flees}",
        f"Fight Rate:       {report.fight_rate * 100:.1f}%",
        f"Flee Rate:        {report.flee_rate * 100:.1f}%",
        f"Win Rate (Fight): {report.win_rate * 100:.1f}%",
        "",
        "=== RACE BALANCE ===",
    ]
    for race, row in sorted(report.races.items(), key=lambda kv: kv[1].avg_score, reverse=True):
        lines.append(f"{race:<10} runs {row.runs:>5}  avg {row.avg_score:>10,}  deaths {row.death_rate * 100:.1f}%")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Balance reports for Dwarf Wars")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    upgrades = sub.add_parser("upgrades", help="Upgrade value and availability matrix")
    upgrades.add_argument("--content", type=Path, action="append", help="Content folder (repeatable)")

    logs = sub.add_parser("logs", help="Analyze recorded runs (JSON Lines of RunSummary)")
    logs.add_argument("path", type=Path)

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")

    if args.command == "upgrades":
        print(format_upgrade_report(load_catalog(args.content)))
    else:
        print(format_log_report(analyze_summaries(read_summaries(args.path))))


if __name__ == "__main__":
    main()
