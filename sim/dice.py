"""
Roll Engine.

Resolves dice specifications (count, die size, modifier, advantage,
reroll and clamp rules) into concrete results using an injectable
randomness stream.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import re

from sim.errors import DiceNotationError, InvalidSpecError


NORMAL = "normal"
ADVANTAGE = "advantage"
DISADVANTAGE = "disadvantage"
ADVANTAGE_MODES = (NORMAL, ADVANTAGE, DISADVANTAGE)

CRITICAL_SUCCESS = "success"
CRITICAL_FAILURE = "failure"

_NOTATION = re.compile(
    r"^\s*(\d+)\s*d\s*(\d+)"          # <count>d<size>
    r"(?:\s*([+\-])\s*(\d+))?"        # [+|-<modifier>]
    r"(?:\s*\[([^\]]*)\])?\s*$"       # [settings]
)


def combine_advantage(*modes: str) -> str:
    """Fold several advantage sources; advantage and disadvantage cancel."""
    has_adv = ADVANTAGE in modes
    has_dis = DISADVANTAGE in modes
    if has_adv and not has_dis:
        return ADVANTAGE
    if has_dis and not has_adv:
        return DISADVANTAGE
    return NORMAL


@dataclass(frozen=True)
class RollSpec:
    """Pure description of a roll."""
    count: int = 1
    size: int = 20
    modifier: int = 0
    advantage: str = NORMAL
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    reroll_below: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.count, int) or self.count < 0:
            raise InvalidSpecError(f"dice count must be a non-negative integer, got {self.count!r}")
        if not isinstance(self.size, int) or self.size < 2:
            raise InvalidSpecError(f"die size must be at least 2, got {self.size!r}")
        if self.advantage not in ADVANTAGE_MODES:
            raise InvalidSpecError(f"unknown advantage mode {self.advantage!r}")
        for name in ("minimum", "maximum", "reroll_below"):
            value = getattr(self, name)
            if value is not None and not 1 <= value <= self.size:
                raise InvalidSpecError(f"{name}={value} is outside 1..{self.size}")
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise InvalidSpecError(f"minimum {self.minimum} exceeds maximum {self.maximum}")

    @property
    def is_d20(self) -> bool:
        return self.size == 20

    def with_advantage(self, advantage: str) -> "RollSpec":
        return RollSpec(self.count, self.size, self.modifier, advantage,
                        self.minimum, self.maximum, self.reroll_below)

    def with_count(self, count: int) -> "RollSpec":
        return RollSpec(count, self.size, self.modifier, self.advantage,
                        self.minimum, self.maximum, self.reroll_below)

    def notation(self) -> str:
        text = f"{self.count}d{self.size}"
        if self.modifier > 0:
            text += f"+{self.modifier}"
        elif self.modifier < 0:
            text += f"-{-self.modifier}"
        settings = []
        if self.advantage == ADVANTAGE:
            settings.append("adv")
        elif self.advantage == DISADVANTAGE:
            settings.append("dis")
        if self.minimum is not None:
            settings.append(f"min={self.minimum}")
        if self.maximum is not None:
            settings.append(f"max={self.maximum}")
        if self.reroll_below is not None:
            settings.append(f"rr<{self.reroll_below}")
        if settings:
            text += " [" + " ".join(settings) + "]"
        return text

    def to_dict(self) -> Dict:
        return {
            "count": self.count,
            "size": self.size,
            "modifier": self.modifier,
            "advantage": self.advantage,
            "minimum": self.minimum,
            "maximum": self.maximum,
            "reroll_below": self.reroll_below,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "RollSpec":
        return cls(
            count=int(d.get("count", 1)),
            size=int(d.get("size", 20)),
            modifier=int(d.get("modifier", 0)),
            advantage=d.get("advantage", NORMAL),
            minimum=d.get("minimum"),
            maximum=d.get("maximum"),
            reroll_below=d.get("reroll_below"),
        )

    def __str__(self) -> str:
        return self.notation()


@dataclass(frozen=True)
class RollResult:
    """
    Outcome of a roll.

    ``raw`` holds the kept face of each die slot (after the advantage choice
    and any reroll), ``values`` the same faces after clamping. Critical
    detection only ever looks at ``raw``.
    """
    spec: RollSpec
    raw: Tuple[int, ...] = ()
    values: Tuple[int, ...] = ()
    discarded: Tuple[Optional[int], ...] = ()
    rerolled: Tuple[bool, ...] = ()
    total: int = 0
    critical_kind: Optional[str] = None

    @property
    def critical(self) -> bool:
        return self.critical_kind is not None

    @property
    def is_critical_success(self) -> bool:
        return self.critical_kind == CRITICAL_SUCCESS

    @property
    def is_critical_failure(self) -> bool:
        return self.critical_kind == CRITICAL_FAILURE

    @property
    def adjustments(self) -> Tuple[int, ...]:
        """Per-die change introduced by clamping."""
        return tuple(v - r for r, v in zip(self.raw, self.values))

    def meets(self, dc: int) -> bool:
        """Critical success always meets, critical failure never does."""
        if self.is_critical_success:
            return True
        if self.is_critical_failure:
            return False
        return self.total >= dc

    def to_dict(self) -> Dict:
        return {
            "spec": self.spec.notation(),
            "raw": list(self.raw),
            "values": list(self.values),
            "discarded": list(self.discarded),
            "rerolled": list(self.rerolled),
            "total": self.total,
            "critical": self.critical_kind,
        }

    def describe(self) -> str:
        text = f"Rolled {self.spec.notation()}: {list(self.values)} = {self.total}"
        if self.is_critical_success:
            text += " (Critical Success)"
        elif self.is_critical_failure:
            text += " (Critical Failure)"
        return text


def _detect_critical(spec: RollSpec, raw: List[int]) -> Optional[str]:
    # crits only happen on d20s
    if not spec.is_d20 or not raw:
        return None
    successes = raw.count(20)
    failures = raw.count(1)
    if successes == 0 and failures == 0:
        return None
    return CRITICAL_SUCCESS if successes >= failures else CRITICAL_FAILURE


def roll(spec: RollSpec, roller) -> RollResult:
    """
    Roll a specification.

    Each die slot is generated independently: advantage keeps the better of
    two faces, then a face below ``reroll_below`` is replaced once by a fresh
    face, then the face is clamped.

    Args:
        spec: What to roll
        roller: Randomness stream exposing ``die(size)``

    Returns:
        RollResult
    """
    raw: List[int] = []
    values: List[int] = []
    discarded: List[Optional[int]] = []
    rerolled: List[bool] = []

    low = spec.minimum if spec.minimum is not None else 1
    high = spec.maximum if spec.maximum is not None else spec.size

    for _ in range(spec.count):
        face = roller.die(spec.size)
        other = None
        if spec.advantage != NORMAL:
            second = roller.die(spec.size)
            if spec.advantage == ADVANTAGE:
                face, other = max(face, second), min(face, second)
            else:
                face, other = min(face, second), max(face, second)

        was_rerolled = False
        if spec.reroll_below is not None and face < spec.reroll_below:
            face = roller.die(spec.size)
            was_rerolled = True

        raw.append(face)
        values.append(min(max(face, low), high))
        discarded.append(other)
        rerolled.append(was_rerolled)

    return RollResult(
        spec=spec,
        raw=tuple(raw),
        values=tuple(values),
        discarded=tuple(discarded),
        rerolled=tuple(rerolled),
        total=sum(values) + spec.modifier,
        critical_kind=_detect_critical(spec, raw),
    )


def _parse_settings(text: str, settings_text: str) -> Dict:
    settings: Dict = {}
    for token in settings_text.split():
        if token in ("adv", "dis"):
            if "advantage" in settings:
                raise DiceNotationError(text, "conflicting advantage settings")
            settings["advantage"] = ADVANTAGE if token == "adv" else DISADVANTAGE
            continue
        match = re.fullmatch(r"(min=|max=|rr<)(\d+)", token)
        if not match:
            raise DiceNotationError(text, f"unknown roll setting {token!r}")
        key = {"min=": "minimum", "max=": "maximum", "rr<": "reroll_below"}[match.group(1)]
        if key in settings:
            raise DiceNotationError(text, f"duplicate roll setting {token!r}")
        settings[key] = int(match.group(2))
    return settings


def parse_roll(text: str) -> RollSpec:
    """
    Parse dice notation such as ``"2d6+3"`` or ``"1d20+5 [adv]"``.

    Raises:
        DiceNotationError: when the text is not valid notation or describes
            an invalid specification
    """
    if not isinstance(text, str):
        raise DiceNotationError(repr(text), "dice notation must be a string")

    match = _NOTATION.match(text)
    if not match:
        raise DiceNotationError(text)

    count = int(match.group(1))
    size = int(match.group(2))
    modifier = 0
    if match.group(3):
        modifier = int(match.group(4))
        if match.group(3) == "-":
            modifier = -modifier

    settings = _parse_settings(text, match.group(5)) if match.group(5) is not None else {}

    try:
        return RollSpec(count=count, size=size, modifier=modifier, **settings)
    except InvalidSpecError as e:
        raise DiceNotationError(text, str(e)) from e


def parse_and_roll(text: str, roller) -> RollResult:
    """Parse dice notation and roll it."""
    return roll(parse_roll(text), roller)
