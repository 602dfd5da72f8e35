"""
Edge-case time overrides applied to a resolved product's time per unit.

Rules are evaluated in table order and are not mutually exclusive: when two
rules match, the later one's value is the one that survives.  The order is:

  1. bass_tapered      base + 0.25h, plus 0.2h per metre over 2000mm (needs L#### in description)
  2. glow_integrated   Frank base (1.6h) + 0.3h
  3. pedestal          0h, delivered assembled
  4. enza_as_credenza  0.4h, Enza is priced as a Credenza
  5. locker_bank       0.5h per carcass
  6. glow_lamp         0.35h any size

Adding an edge case means adding a row to EDGE_RULES.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

logger = logging.getLogger("smartquote-api.rules")

FRANK_BASE_HOURS: float = 1.6
_LENGTH_RE = re.compile(r"L(\d{3,4})")


@dataclass(frozen=True)
class EdgeRule:
    name: str
    # (CODE, DESCRIPTION) → bool, both already uppercased
    applies: Callable[[str, str], bool]
    # (CODE, DESCRIPTION, current hours) → new hours
    transform: Callable[[str, str, float], float]


def _in_either(code: str, desc: str, *words: str) -> bool:
    return all(w in code for w in words) or all(w in desc for w in words)


def bass_tapered_hours(base_hours: float, length_mm: int) -> float:
    uplift = 0.25 + ((length_mm - 2000) / 1000 * 0.2 if length_mm > 2000 else 0.0)
    return round(base_hours + uplift, 2)


def _bass_tapered(code: str, desc: str, hours: float) -> float:
    match = _LENGTH_RE.search(desc)
    if not match:
        return hours
    return bass_tapered_hours(hours, int(match.group(1)))


EDGE_RULES: Tuple[EdgeRule, ...] = (
    EdgeRule(
        name="bass_tapered",
        applies=lambda code, desc: _in_either(code, desc, "BASS", "TAPERED"),
        transform=_bass_tapered,
    ),
    EdgeRule(
        name="glow_integrated",
        applies=lambda code, desc: ("GLOW" in code or "GLOW" in desc) and "INTEGRATED" in desc,
        transform=lambda code, desc, hours: round(FRANK_BASE_HOURS + 0.3, 2),
    ),
    EdgeRule(
        name="pedestal",
        applies=lambda code, desc: "PEDESTAL" in code or "PEDESTAL" in desc,
        transform=lambda code, desc, hours: 0.0,
    ),
    EdgeRule(
        name="enza_as_credenza",
        applies=lambda code, desc: code.startswith("ENZ") or "ENZA" in code,
        transform=lambda code, desc, hours: 0.4,
    ),
    EdgeRule(
        name="locker_bank",
        applies=lambda code, desc: _in_either(code, desc, "LOCKER", "BANK"),
        transform=lambda code, desc, hours: 0.5,
    ),
    EdgeRule(
        name="glow_lamp",
        applies=lambda code, desc: ("GLOW" in code and "LAMP" in code) or code == "GLOW-20" or "GLOW-LAMP" in code,
        transform=lambda code, desc, hours: 0.35,
    ),
)


class EdgeRuleEngine:
    """Applies an ordered rule table to (code, description, base time)."""

    def __init__(self, rules: Sequence[EdgeRule] = EDGE_RULES) -> None:
        self.rules: Tuple[EdgeRule, ...] = tuple(rules)

    @property
    def rule_names(self) -> List[str]:
        return [r.name for r in self.rules]

    def matching_rules(self, code: str, description: str) -> List[str]:
        upper_code, upper_desc = (code or "").upper(), (description or "").upper()
        return [r.name for r in self.rules if r.applies(upper_code, upper_desc)]

    def apply(self, code: str, description: str, base_time: float) -> float:
        upper_code, upper_desc = (code or "").upper(), (description or "").upper()
        hours = base_time
        for rule in self.rules:
            if rule.applies(upper_code, upper_desc):
                new_hours = rule.transform(upper_code, upper_desc, hours)
                logger.debug(
                    "edge rule applied",
                    extra={"rule": rule.name, "product_code": code, "from_hours": hours, "to_hours": new_hours},
                )
                hours = new_hours
        return hours
