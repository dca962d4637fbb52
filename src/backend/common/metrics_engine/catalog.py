"""Printable catalog of the eligibility and dedup rules behind the dashboard numbers."""

from __future__ import annotations

import argparse
import json
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .registry import RuleRegistry, registry

# Importing the rules package registers the built-in rules.
from . import rules as _builtin_rules  # noqa: F401


class RuleCatalogEntry(BaseModel):
    rule_id: str
    rule_title: str
    description: str = ""
    sources: List[str] = Field(default_factory=list)
    module: str
    class_name: str


def build_catalog(*, source: Optional[str] = None, rules: RuleRegistry = registry) -> List[RuleCatalogEntry]:
    """One entry per registered rule, sorted by id; ``source`` keeps rules reading that collection."""
    entries: List[RuleCatalogEntry] = []
    for rule_id in rules.ids(source=source):
        rule_cls = rules.get(rule_id)
        entries.append(
            RuleCatalogEntry(
                rule_id=rule_id,
                rule_title=rule_cls.rule_title,
                description=" ".join((rule_cls.__doc__ or "").split()),
                sources=list(rule_cls.sources),
                module=rule_cls.__module__,
                class_name=rule_cls.__name__,
            )
        )
    return entries


def rules_by_source(rules: RuleRegistry = registry) -> Dict[str, List[str]]:
    return {source: rules.ids(source=source) for source in rules.sources()}


def _render(payload, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(payload, indent=2, sort_keys=True)
    try:
        import yaml  # type: ignore
    except ModuleNotFoundError as exc:
        raise SystemExit("PyYAML is required for YAML output (`pip install pyyaml`).") from exc
    return yaml.safe_dump(payload, sort_keys=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="List the rules that decide which records count toward each metric.")
    parser.add_argument("--format", choices=("yaml", "json"), default="yaml", help="Output format (default: yaml).")
    parser.add_argument("--source", help="Only rules reading this collection (e.g. bookings).")
    parser.add_argument(
        "--by-source",
        action="store_true",
        help="Print rule ids grouped by source collection instead of full entries.",
    )
    args = parser.parse_args(argv)

    if args.by_source:
        payload = rules_by_source()
    else:
        payload = [entry.model_dump() for entry in build_catalog(source=args.source)]
    print(_render(payload, args.format))


if __name__ == "__main__":
    main()
