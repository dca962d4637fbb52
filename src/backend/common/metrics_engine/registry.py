from __future__ import annotations

from typing import Dict, List, Optional, Type

from .rule import Rule


class RuleRegistry:
    """Rule classes keyed by rule id, indexed by the collections they read."""

    def __init__(self) -> None:
        self._rules: Dict[str, Type[Rule]] = {}
        self._by_source: Dict[str, List[str]] = {}

    def register(self, rule_cls: Type[Rule]) -> None:
        rule_id = getattr(rule_cls, "rule_id", None)
        if not rule_id:
            raise ValueError(f"{rule_cls.__name__} does not define rule_id")
        existing = self._rules.get(rule_id)
        if existing is not None and existing is not rule_cls:
            raise ValueError(f"Rule id {rule_id} is already taken by {existing.__qualname__}")
        self._rules[rule_id] = rule_cls
        for source in getattr(rule_cls, "sources", None) or ():
            ids = self._by_source.setdefault(source, [])
            if rule_id not in ids:
                ids.append(rule_id)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, rule_id: str) -> Type[Rule]:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise KeyError(f"Unknown rule id: {rule_id}") from None

    def create(self, rule_id: str) -> Rule:
        return self.get(rule_id)()

    def ids(self, *, source: Optional[str] = None) -> List[str]:
        if source is None:
            return sorted(self._rules)
        return sorted(self._by_source.get(source, ()))

    def sources(self) -> List[str]:
        return sorted(self._by_source)


registry = RuleRegistry()


def register_rule(rule_cls: Type[Rule]) -> Type[Rule]:
    registry.register(rule_cls)
    return rule_cls
