# src/content_env.py
"""
Generates JSON Schema files for every content model (the folders under content/
plus GameRules), placing each schema under content/meta/<ClassName>/schema.json
so editors can validate hand-written definitions.
"""
import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional, Type

from pydantic import BaseModel

import objects as G
from register import CATALOG_FIELDS, LOCAL_CONTENT


def content_models() -> List[Type[BaseModel]]:
    names = ["GameRules", *CATALOG_FIELDS]
    return [getattr(G, name) for name in names]


def write_schemas(output_base: Optional[Path] = None) -> List[Path]:
    """Write one schema.json per content model and return the written paths."""
    output_base = output_base or LOCAL_CONTENT / "meta"
    output_base.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    for cls in content_models():
        schema_dict = cls.model_json_schema(by_alias=True)

        # content/meta/<ClassName>/
        model_dir = output_base / cls.__name__
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(schema_dict, f, indent=2)
        written.append(schema_file)
    return written


def main(output_base: Optional[Path] = None):
    for schema_file in write_schemas(output_base):
        print(f"✔ Wrote schema for '{schema_file.parent.name}' to {schema_file}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Export JSON Schemas for content definitions")
    parser.add_argument("--output", type=Path, default=None, help="Defaults to content/meta")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")
    main(args.output)
