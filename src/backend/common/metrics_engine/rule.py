from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, List

from .context import RuleContext


class Rule(ABC):
    """A named eligibility/dedup predicate over a single record."""

    rule_id: ClassVar[str]
    rule_title: ClassVar[str]
    sources: ClassVar[List[str]]

    def __init__(self):
        if not getattr(self, "rule_id", None):
            raise ValueError("Rule must define rule_id")

    @abstractmethod
    def evaluate(self, record: Any, ctx: RuleContext) -> bool:  # pragma: no cover
        raise NotImplementedError

    def __call__(self, record: Any, ctx: RuleContext) -> bool:
        return self.evaluate(record, ctx)
