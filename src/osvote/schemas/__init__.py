from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator

SCHEMA_DIR = Path(__file__).resolve().parent

TALLY_SCHEMA = "tally.schema.json"
VOTE_STATUS_SCHEMA = "vote_status.schema.json"


class SchemaViolation(ValueError):
    pass


_validator_cache: Dict[str, Draft202012Validator] = {}


def _get_validator(name: str) -> Draft202012Validator:
    if name in _validator_cache:
        return _validator_cache[name]
    obj = json.loads((SCHEMA_DIR / name).read_text(encoding="utf-8"))
    Draft202012Validator.check_schema(obj)
    v = Draft202012Validator(obj)
    _validator_cache[name] = v
    return v


def validate(name: str, doc: Any) -> None:
    v = _get_validator(name)
    errs = sorted(v.iter_errors(doc), key=lambda e: list(e.path))
    if errs:
        e0 = errs[0]
        loc = ".".join(str(x) for x in e0.path) if e0.path else "<root>"
        raise SchemaViolation(f"schema violation at {loc}: {e0.message}")
