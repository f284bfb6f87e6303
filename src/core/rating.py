"""Age-to-label rating table (core domain)."""

from __future__ import annotations

from typing import Iterable, List, Tuple

from core.config import RatingRule
from core.errors import ConfigurationError


class RatingTable:
    """Ordered thresholds mapping an age in days to a label.

    The first rule whose threshold is greater than or equal to the truncated
    age wins. Ages beyond the last threshold (or any age with an empty table)
    are rendered as the day count itself.
    """

    def __init__(self, rules: Iterable[RatingRule] = ()) -> None:
        self._rules: Tuple[RatingRule, ...] = tuple(rules)

    @property
    def rules(self) -> Tuple[RatingRule, ...]:
        return self._rules

    @classmethod
    def from_config(cls, raw_rules: Iterable[dict]) -> "RatingTable":
        """Validate raw rule dicts and build a table.

        Thresholds must be non-negative integers in ascending order and every
        rule needs a label; anything else is a configuration defect.
        """

        rules: List[RatingRule] = []
        previous = -1
        for index, raw in enumerate(raw_rules):
            if not isinstance(raw, dict):
                raise ConfigurationError(f"ratings[{index}] must be an object")
            threshold = raw.get("max_age_days")
            label = raw.get("label")
            if isinstance(threshold, bool) or not isinstance(threshold, int):
                raise ConfigurationError(f"ratings[{index}].max_age_days must be an integer")
            if threshold < 0:
                raise ConfigurationError(f"ratings[{index}].max_age_days must not be negative")
            if threshold <= previous:
                raise ConfigurationError(
                    f"ratings[{index}].max_age_days must be greater than {previous}"
                )
            if not isinstance(label, str) or not label.strip():
                raise ConfigurationError(f"ratings[{index}].label must be a non-empty string")
            rules.append(RatingRule(max_age_days=threshold, label=label))
            previous = threshold
        return cls(rules)

    def classify(self, age_days: float) -> str:
        """Return the label for an age in days. Never fails."""

        age = int(age_days)
        for rule in self._rules:
            if age <= rule.max_age_days:
                return rule.label
        return str(age)

    def describe(self) -> List[str]:
        """One human-readable line per rule, used for the startup log."""

        return [f'age <= {rule.max_age_days:>9} days --> "{rule.label}"' for rule in self._rules]
