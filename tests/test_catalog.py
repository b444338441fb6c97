import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import content_env  # type: ignore
import objects as G  # type: ignore
import register  # type: ignore

OUTCOMES = {k: {"text": k} for k in ("crit_success", "success", "fail", "crit_fail")}


def write(root: Path, model: str, name: str, data: dict) -> Path:
    folder = root / model
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{name}.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def minimal_content(root: Path) -> Path:
    write(root, "Commodity", "ale", {"id": "ale", "display_name": "Ale", "base_price": 25})
    write(root, "Location", "town", {"id": "town", "display_name": "Town", "risk": 0.2})
    write(root, "Location", "mine", {"id": "mine", "display_name": "Mine", "risk": 0.3, "prices": {"ale": 1.5}})
    write(root, "Race", "human", {"id": "human", "display_name": "Human"})
    write(root, "CharClass", "merchant", {"id": "merchant", "display_name": "Merchant",
                                          "starting_money": 500, "starting_debt": 5000})
    write(root, "EventDefinition", "bandits", {"id": "bandits", "display_name": "Bandits", "type": "combat",
                                               "text": "Bandits!", "difficulty": 10, "outcomes": OUTCOMES})
    return root


def test_shipped_content_loads():
    catalog = register.load_catalog([register.LOCAL_CONTENT])
    assert len(catalog.commodities) == 6
    assert len(catalog.locations) == 6
    assert set(catalog.races) == {"human", "dwarf", "elf", "orc"}
    assert set(catalog.classes) == {"merchant", "rogue", "warrior"}
    assert catalog.start_location.id == "royal_city"
    assert catalog.rules.max_days == 31
    assert catalog.events["city_guard"].escalation.difficulty == 16
    assert "dragon" in catalog.races["dwarf"].counters


def test_minimal_content(tmp_path):
    catalog = register.load_catalog([minimal_content(tmp_path)])
    assert catalog.rules == G.GameRules()
    assert catalog.locations["mine"].multiplier("ale") == 1.5
    assert catalog.start_location.id in catalog.locations


def test_missing_outcome_key_fails_fast(tmp_path):
    minimal_content(tmp_path)
    outcomes = dict(OUTCOMES)
    del outcomes["crit_fail"]
    bad = write(tmp_path, "EventDefinition", "troll", {"id": "troll", "display_name": "Troll", "type": "combat",
                                                      "text": "A troll.", "difficulty": 14, "outcomes": outcomes})
    with pytest.raises(G.CatalogError) as err:
        register.load_catalog([tmp_path])
    assert str(bad) in str(err.value)
    assert "crit_fail" in str(err.value)


def test_check_without_difficulty_fails(tmp_path):
    minimal_content(tmp_path)
    write(tmp_path, "EventDefinition", "bridge", {"id": "bridge", "display_name": "Bridge", "type": "check",
                                                 "text": "A bridge.", "outcomes": OUTCOMES})
    with pytest.raises(G.CatalogError):
        register.load_catalog([tmp_path])


def test_unknown_commodity_in_location(tmp_path):
    minimal_content(tmp_path)
    write(tmp_path, "Location", "port", {"id": "port", "display_name": "Port", "risk": 0.1,
                                         "prices": {"spice": 2.0}})
    with pytest.raises(G.CatalogError, match="spice"):
        register.load_catalog([tmp_path])


def test_unknown_counter_event(tmp_path):
    minimal_content(tmp_path)
    write(tmp_path, "Race", "dwarf", {"id": "dwarf", "display_name": "Dwarf", "counters": ["dragon"]})
    with pytest.raises(G.CatalogError, match="dragon"):
        register.load_catalog([tmp_path])


def test_single_location_rejected(tmp_path):
    minimal_content(tmp_path)
    (tmp_path / "Location" / "mine.json").unlink()
    with pytest.raises(G.CatalogError):
        register.load_catalog([tmp_path])


def test_malformed_json(tmp_path):
    minimal_content(tmp_path)
    (tmp_path / "Commodity" / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(G.CatalogError, match="broken.json"):
        register.load_catalog([tmp_path])


def test_mod_folder_overrides_by_id(tmp_path):
    base = minimal_content(tmp_path / "base")
    mod = tmp_path / "mod"
    write(mod, "Commodity", "ale", {"id": "ale", "display_name": "Dark Ale", "base_price": 40})
    write(mod, "GameRules", "short", {"max_days": 10})
    catalog = register.load_catalog([base, mod])
    assert catalog.commodities["ale"].base_price == 40
    assert catalog.rules.max_days == 10


def test_meta_and_unknown_folders_ignored(tmp_path):
    minimal_content(tmp_path)
    write(tmp_path, "meta", "schema", {"anything": True})
    write(tmp_path, "Unrelated", "x", {"id": "x"})
    catalog = register.load_catalog([tmp_path])
    assert set(catalog.commodities) == {"ale"}


def test_requirement_accepts_scalar_or_list():
    upgrade = G.Upgrade.model_validate({
        "id": "axe", "display_name": "Axe", "type": "combat", "value": 6, "cost": 2500,
        "req": {"race": "dwarf"}, "ban": {"class": ["rogue", "merchant"]},
    })
    assert upgrade.req.race == {"dwarf"}
    assert upgrade.ban.class_ == {"rogue", "merchant"}
    assert upgrade.is_available("dwarf", "warrior")
    assert not upgrade.is_available("dwarf", "rogue")
    assert not upgrade.is_available("elf", "warrior")


def test_shipped_upgrade_rules():
    upgrades = register.load_catalog([register.LOCAL_CONTENT]).upgrades
    assert upgrades["wagon"].is_available("human", "merchant")
    assert not upgrades["wagon"].is_available("human", "rogue")
    assert not upgrades["mule"].is_available("elf", "merchant")
    assert upgrades["shadow_blade"].is_available("elf", "rogue")
    assert not upgrades["shadow_blade"].is_available("orc", "rogue")
    assert not upgrades["sword"].is_available("human", "rogue")


def test_schema_export(tmp_path):
    written = content_env.write_schemas(tmp_path)
    names = {p.parent.name for p in written}
    assert names == {"GameRules", "Commodity", "Location", "Race", "CharClass", "Upgrade", "EventDefinition"}
    schema = json.loads((tmp_path / "EventDefinition" / "schema.json").read_text(encoding="utf-8"))
    assert "outcomes" in schema["properties"]
