"""Composer-style version parsing and constraint matching.

Patch declarations restrict the target versions they apply to with the
constraint language package managers such as Composer use (``^1.0``,
``~1.2``, ``>=1.0 <2.0 || 3.*`` ...). Versions are normalised to four
numeric components plus a stability so they compare as tuples.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, replace
from typing import Callable, Tuple

DEV = 0
ALPHA = 1
BETA = 2
RC = 3
STABLE = 4
PATCH = 5

_STABILITY_NAMES = {
    "dev": DEV,
    "alpha": ALPHA,
    "a": ALPHA,
    "beta": BETA,
    "b": BETA,
    "rc": RC,
    "stable": STABLE,
    "patch": PATCH,
    "pl": PATCH,
    "p": PATCH,
}

_BRANCH_NUMBER = 9999999

_VERSION_RE = re.compile(
    r"^v?(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:[._-]?(?P<stability>stable|beta|b|rc|alpha|a|patch|pl|p)(?:[.-]?(?P<stability_number>\d+))?)?"
    r"(?P<dev>[._-]?dev)?$",
    re.IGNORECASE,
)
_DATE_RE = re.compile(r"^(?P<numbers>\d{4}(?:[.:-]?\d{2}){1,6}(?:[.:-]?\d{1,3})?)$")
_BRANCH_ALIAS_RE = re.compile(r"^v?(?P<numbers>\d+(?:\.(?:\d+|[xX*])){0,3})[._-]dev$")
_NUMERIC_PREFIX_RE = re.compile(r"^v?(?P<numbers>\d+(?:\.\d+){0,3})(?P<rest>.*)$")
_WILDCARD_RE = re.compile(r"^v?(?P<numbers>\d+(?:\.\d+){0,2})\.[xX*]$")
_MATCH_ALL_RE = re.compile(r"^v?[xX*](?:\.[xX*])*$")
_OPERATOR_RE = re.compile(r"^(?P<op><>|!=|>=|<=|==|=|>|<)?(?P<body>.+)$")
_OPERATOR_SPACE_RE = re.compile(r"(<>|!=|>=|<=|==|=|>|<|\^|~)\s+")
_HYPHEN_RANGE_RE = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_STABILITY_FLAG_RE = re.compile(r"@(?:stable|rc|beta|alpha|dev)$", re.IGNORECASE)
_OR_SPLIT_RE = re.compile(r"\s*\|\|?\s*")
_AND_SPLIT_RE = re.compile(r"[\s,]+")

_COMPARATORS: dict[str, Callable[[object, object], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True, slots=True)
class Version:
    """Normalised package version."""

    numbers: Tuple[int, int, int, int] = (0, 0, 0, 0)
    stability: int = STABLE
    stability_number: int = 0
    branch: str | None = None

    @property
    def is_branch(self) -> bool:
        return self.branch is not None

    def sort_key(self) -> tuple[Tuple[int, int, int, int], int, int]:
        """Ordering key for non-branch versions: numbers, then stability."""

        return (self.numbers, self.stability, self.stability_number)


class Constraint:
    """A predicate over :class:`Version` values."""

    def matches(self, version: Version) -> bool:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class MatchAll(Constraint):
    def matches(self, version: Version) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Comparison(Constraint):
    operator: str
    version: Version

    def matches(self, version: Version) -> bool:
        if version.is_branch or self.version.is_branch:
            # Branches only compare by identity.
            if self.operator == "==":
                return version == self.version
            if self.operator == "!=":
                return version != self.version
            return False
        return _COMPARATORS[self.operator](version.sort_key(), self.version.sort_key())


@dataclass(frozen=True, slots=True)
class MultiConstraint(Constraint):
    constraints: Tuple[Constraint, ...]
    conjunctive: bool = True

    def matches(self, version: Version) -> bool:
        if self.conjunctive:
            return all(constraint.matches(version) for constraint in self.constraints)
        return any(constraint.matches(version) for constraint in self.constraints)


MATCH_ALL = MatchAll()


def parse_version(text: str) -> Version:
    """Normalise a version string such as ``v1.2``, ``1.0.0-RC2`` or ``dev-main``."""

    source = (text or "").strip()
    if not source:
        raise ValueError("Empty version string")
    # Build metadata never takes part in comparisons.
    source = source.split("+", 1)[0]

    if source.lower().startswith("dev-"):
        return Version(branch=source[4:])

    match = _VERSION_RE.match(source)
    if match:
        numbers = _pad([int(part) for part in match.group("numbers").split(".")])
        if match.group("dev"):
            return Version(numbers, DEV)
        stability_name = match.group("stability")
        if stability_name is None:
            return Version(numbers)
        stability = _STABILITY_NAMES[stability_name.lower()]
        number_text = match.group("stability_number")
        return Version(numbers, stability, int(number_text) if number_text else 0)

    match = _DATE_RE.match(source)
    if match:
        return Version(_pad(_numbers_in(match.group("numbers"))))

    match = _BRANCH_ALIAS_RE.match(source)
    if match:
        parts = [
            _BRANCH_NUMBER if part in ("x", "X", "*") else int(part)
            for part in match.group("numbers").split(".")
        ]
        while len(parts) < 4:
            parts.append(_BRANCH_NUMBER)
        return Version(tuple(parts[:4]), DEV)  # type: ignore[arg-type]

    raise ValueError(f"Invalid version string: {text!r}")


def parse_constraint(text: str | None) -> Constraint:
    """Parse a constraint expression; an empty expression matches everything."""

    source = (text or "").strip()
    if not source:
        return MATCH_ALL

    alternatives = [_parse_conjunction(part, source) for part in _OR_SPLIT_RE.split(source)]
    if len(alternatives) == 1:
        return alternatives[0]
    return MultiConstraint(tuple(alternatives), conjunctive=False)


def satisfies(version: str, constraint: str | None) -> bool:
    """Return ``True`` when ``version`` is accepted by ``constraint``."""

    parsed = parse_constraint(constraint)
    if isinstance(parsed, MatchAll):
        return True
    return parsed.matches(parse_version(version))


def _parse_conjunction(part: str, source: str) -> Constraint:
    part = part.strip()
    if not part:
        raise ValueError(f"Invalid constraint: {source!r}")

    hyphen = _HYPHEN_RANGE_RE.match(part)
    if hyphen:
        return _parse_hyphen_range(hyphen.group("low"), hyphen.group("high"))

    compact = _OPERATOR_SPACE_RE.sub(r"\1", part)
    constraints: list[Constraint] = []
    for atom in _AND_SPLIT_RE.split(compact):
        if atom:
            constraints.extend(_parse_atom(atom))
    if not constraints:
        raise ValueError(f"Invalid constraint: {source!r}")
    if len(constraints) == 1:
        return constraints[0]
    return MultiConstraint(tuple(constraints), conjunctive=True)


def _parse_atom(atom: str) -> list[Constraint]:
    atom = _STABILITY_FLAG_RE.sub("", atom)
    if not atom or _MATCH_ALL_RE.match(atom):
        return [MATCH_ALL]

    if atom.startswith("^"):
        return _parse_caret(atom[1:])
    if atom.startswith("~") and not atom.startswith("~>"):
        return _parse_tilde(atom[1:])

    wildcard = _WILDCARD_RE.match(atom)
    if wildcard:
        given = _numbers(wildcard.group("numbers"))
        lower = Version(_pad(given), DEV)
        upper = Version(_bump(given, len(given) - 1), DEV)
        return [Comparison(">=", lower), Comparison("<", upper)]

    match = _OPERATOR_RE.match(atom)
    if not match:
        raise ValueError(f"Invalid constraint: {atom!r}")
    op = match.group("op") or "=="
    op = {"=": "==", "<>": "!="}.get(op, op)
    body = match.group("body")
    version = parse_version(body)
    if op in ("<", ">=") and not version.is_branch and not _has_explicit_stability(body):
        version = replace(version, stability=DEV, stability_number=0)
    return [Comparison(op, version)]


def _parse_caret(body: str) -> list[Constraint]:
    given, explicit = _split_numeric(body)
    if given[0] != 0 or len(given) < 2:
        position = 0
    elif given[1] != 0 or len(given) < 3:
        position = 1
    else:
        position = 2
    lower = parse_version(body)
    if not explicit:
        lower = replace(lower, stability=DEV, stability_number=0)
    return [Comparison(">=", lower), Comparison("<", Version(_bump(given, position), DEV))]


def _parse_tilde(body: str) -> list[Constraint]:
    given, explicit = _split_numeric(body)
    position = max(len(given) - 2, 0)
    lower = parse_version(body)
    if not explicit:
        lower = replace(lower, stability=DEV, stability_number=0)
    return [Comparison(">=", lower), Comparison("<", Version(_bump(given, position), DEV))]


def _parse_hyphen_range(low: str, high: str) -> Constraint:
    lower = parse_version(low)
    if not _has_explicit_stability(low):
        lower = replace(lower, stability=DEV, stability_number=0)
    given, explicit = _split_numeric(high)
    if len(given) >= 3 or explicit:
        upper: Constraint = Comparison("<=", parse_version(high))
    else:
        upper = Comparison("<", Version(_bump(given, len(given) - 1), DEV))
    return MultiConstraint((Comparison(">=", lower), upper), conjunctive=True)


def _split_numeric(body: str) -> tuple[list[int], bool]:
    match = _NUMERIC_PREFIX_RE.match(body.strip())
    if not match:
        raise ValueError(f"Invalid version in constraint: {body!r}")
    return _numbers(match.group("numbers")), bool(match.group("rest"))


def _has_explicit_stability(body: str) -> bool:
    match = _NUMERIC_PREFIX_RE.match(body.strip())
    return bool(match and match.group("rest"))


def _numbers(text: str) -> list[int]:
    return [int(part) for part in text.split(".")]


def _numbers_in(text: str) -> list[int]:
    return [int(part) for part in re.findall(r"\d+", text)]


def _pad(parts: list[int]) -> Tuple[int, int, int, int]:
    padded = list(parts[:4]) + [0] * (4 - min(len(parts), 4))
    return (padded[0], padded[1], padded[2], padded[3])


def _bump(parts: list[int], position: int) -> Tuple[int, int, int, int]:
    padded = list(_pad(parts))
    padded[position] += 1
    for index in range(position + 1, 4):
        padded[index] = 0
    return (padded[0], padded[1], padded[2], padded[3])


__all__ = [
    "Comparison",
    "Constraint",
    "MATCH_ALL",
    "MatchAll",
    "MultiConstraint",
    "Version",
    "parse_constraint",
    "parse_version",
    "satisfies",
]
