# src/register.py
"""
Scans the local `content/` directory plus any mod folders, loads all JSON
definitions into Pydantic models, and assembles them into a validated Catalog.
Ignores any subfolder named "meta" or starting with a dot.
Models with an `id` field are stored in a dict by id, later sources overriding
earlier definitions; other models (GameRules) are stored in lists and the last
one loaded wins.
Unlike a best-effort loader, any malformed file aborts the load with a
CatalogError naming the file: a broken catalog must never reach a running game.
"""
import argparse
import json
import logging
from pathlib import Path
import inspect
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

import objects as G

logger = logging.getLogger(__name__)

# Local content directory
LOCAL_CONTENT = Path(__file__).resolve().parent.parent / "content"
# Mod directories, loaded after local content (relative to project root)
MOD_PATHS = [
    Path(__file__).resolve().parent.parent / "content_custom",
]
ALL_SOURCES = [LOCAL_CONTENT] + MOD_PATHS

# Folder name -> Catalog field
CATALOG_FIELDS = {
    "Commodity": "commodities",
    "Location": "locations",
    "Race": "races",
    "CharClass": "classes",
    "Upgrade": "upgrades",
    "EventDefinition": "events",
}

Registry = Dict[str, Union[List[BaseModel], Dict[str, BaseModel]]]


def is_valid_folder(path: Path) -> bool:
    return (
        path.is_dir()
        and not path.name.startswith('.')
        and path.name != 'meta'
    )


def load_models() -> Dict[str, type]:
    """
    Collect all Pydantic model classes from objects.py.
    Returns a mapping of model_name -> class.
    """
    models: Dict[str, type] = {}
    for name, cls in inspect.getmembers(G, inspect.isclass):
        if issubclass(cls, BaseModel) and cls is not BaseModel and not name.startswith("_"):
            models[name] = cls
    return models


def register_content(folders: Iterable[Path]) -> Registry:
    """
    Load all JSON files in each valid subfolder of the given folders,
    parse them with the corresponding Pydantic model based on folder name,
    and collect them into a registry dict:
      - For models with an `id` field: { model_name: { id: instance, ... } }
      - For others: { model_name: [instance, ...] }
    """
    models = load_models()
    id_models = {name for name, cls in models.items() if 'id' in cls.model_fields}

    registry: Registry = {}
    for name in models:
        registry[name] = {} if name in id_models else []

    for folder in folders:
        if not folder.exists():
            continue
        for sub in sorted(folder.iterdir()):
            if not is_valid_folder(sub):
                continue
            model_name = sub.name
            model_cls = models.get(model_name)
            if model_cls is None:
                logger.warning("Skipping unknown content folder %s", sub)
                continue
            for json_file in sorted(sub.glob("*.json")):
                try:
                    data = json.loads(json_file.read_text(encoding="utf-8"))
                    instance = model_cls.model_validate(data)
                except (json.JSONDecodeError, ValidationError) as e:
                    raise G.CatalogError(f"Error parsing {json_file}: {e}") from e
                if model_name in id_models:
                    key = getattr(instance, 'id')
                    if key in registry[model_name]:
                        logger.info("%s '%s' overridden by %s", model_name, key, json_file)
                    registry[model_name][key] = instance
                else:
                    registry[model_name].append(instance)

    return registry


def build_catalog(registry: Registry) -> G.Catalog:
    rules_list = registry.get("GameRules") or []
    fields = {field: registry.get(name, {}) for name, field in CATALOG_FIELDS.items()}
    try:
        return G.Catalog(
            rules=rules_list[-1] if rules_list else G.GameRules(),
            **fields,
        )
    except ValidationError as e:
        raise G.CatalogError(f"Inconsistent catalog: {e}") from e


def load_catalog(folders: Optional[Iterable[Path]] = None) -> G.Catalog:
    """Load, validate and cross-check the catalog. Fails fast on any bad content."""
    registry = register_content(ALL_SOURCES if folders is None else folders)
    catalog = build_catalog(registry)
    for name, field in CATALOG_FIELDS.items():
        logger.info("Loaded %d %s entries.", len(getattr(catalog, field)), name)
    return catalog


def main():
    parser = argparse.ArgumentParser(description="Validate game content and print a summary")
    parser.add_argument("--content", type=Path, action="append", help="Content folder (repeatable)")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")

    catalog = load_catalog(args.content)
    for name, field in CATALOG_FIELDS.items():
        print(f"Loaded {len(getattr(catalog, field))} {name} entries.")


if __name__ == "__main__":
    main()
