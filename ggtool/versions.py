"""Semantic versions, version requirements and the lenient forms users type."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering

_MAX_NUMBER = 2**64
_NUMBER_RE = re.compile(r"[0-9]+")
_IDENT_RE = re.compile(r"[0-9A-Za-z-]+")
_VERSION_RE = re.compile(
    r"([0-9]+)\.([0-9]+)\.([0-9]+)(?:-([0-9A-Za-z.-]+))?(?:\+([0-9A-Za-z.-]+))?"
)
_WILDCARDS = frozenset({"*", "x", "X"})


class VersionError(ValueError):
    """Raised when a version or a version requirement cannot be parsed."""


def _parse_number(text: str, what: str) -> int:
    if not _NUMBER_RE.fullmatch(text):
        raise VersionError(f"invalid {what} number: {text!r}")
    if len(text) > 1 and text.startswith("0"):
        raise VersionError(f"invalid leading zero in {what} number: {text!r}")
    value = int(text)
    if value >= _MAX_NUMBER:
        raise VersionError(f"{what} number too large: {text!r}")
    return value


def _parse_identifiers(text: str, what: str, *, numeric_leading_zero: bool) -> tuple[str, ...]:
    idents = tuple(text.split("."))
    for ident in idents:
        if not _IDENT_RE.fullmatch(ident):
            raise VersionError(f"invalid {what} identifier: {ident!r}")
        if (
            not numeric_leading_zero
            and ident.isdigit()
            and len(ident) > 1
            and ident.startswith("0")
        ):
            raise VersionError(f"invalid leading zero in {what} identifier: {ident!r}")
    return idents


def _ident_key(ident: str) -> tuple[int, int, str]:
    if ident.isdigit():
        return (0, int(ident), "")
    return (1, 0, ident)


def _pre_key(pre: tuple[str, ...]) -> tuple:
    # A version without a pre-release ranks above any pre-release of it.
    if not pre:
        return (1,)
    return (0, tuple(_ident_key(ident) for ident in pre))


def _build_key(build: tuple[str, ...]) -> tuple:
    return tuple(_ident_key(ident) for ident in build)


@total_ordering
@dataclass(frozen=True)
class Version:
    """A strict semantic version: MAJOR.MINOR.PATCH[-PRE][+BUILD]."""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version:
        match = _VERSION_RE.fullmatch(text)
        if match is None:
            raise VersionError(f"invalid version: {text!r}")
        major, minor, patch, pre, build = match.groups()
        return cls(
            _parse_number(major, "major"),
            _parse_number(minor, "minor"),
            _parse_number(patch, "patch"),
            _parse_identifiers(pre, "pre-release", numeric_leading_zero=False) if pre else (),
            _parse_identifiers(build, "build", numeric_leading_zero=True) if build else (),
        )

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre), _build_key(self.build))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


class Op(Enum):
    """Comparison operator of a single comparator."""

    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


_OP_SYMBOLS = (">=", "<=", "=", ">", "<", "~", "^")


@dataclass(frozen=True)
class Comparator:
    """One operator applied to a possibly partial version."""

    op: Op
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()

    def matches(self, ver: Version) -> bool:
        match self.op:
            case Op.EXACT | Op.WILDCARD:
                return self._matches_exact(ver)
            case Op.GREATER:
                return self._matches_greater(ver)
            case Op.GREATER_EQ:
                return self._matches_exact(ver) or self._matches_greater(ver)
            case Op.LESS:
                return self._matches_less(ver)
            case Op.LESS_EQ:
                return self._matches_exact(ver) or self._matches_less(ver)
            case Op.TILDE:
                return self._matches_tilde(ver)
            case Op.CARET:
                return self._matches_caret(ver)
        raise AssertionError(self.op)

    def pre_is_compatible(self, ver: Version) -> bool:
        return (
            self.major == ver.major
            and self.minor == ver.minor
            and self.patch == ver.patch
            and bool(self.pre)
        )

    def _matches_exact(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is not None and ver.minor != self.minor:
            return False
        if self.patch is not None and ver.patch != self.patch:
            return False
        return ver.pre == self.pre

    def _matches_greater(self, ver: Version) -> bool:
        if ver.major != self.major:
            return ver.major > self.major
        if self.minor is None:
            return False
        if ver.minor != self.minor:
            return ver.minor > self.minor
        if self.patch is None:
            return False
        if ver.patch != self.patch:
            return ver.patch > self.patch
        return _pre_key(ver.pre) > _pre_key(self.pre)

    def _matches_less(self, ver: Version) -> bool:
        if ver.major != self.major:
            return ver.major < self.major
        if self.minor is None:
            return False
        if ver.minor != self.minor:
            return ver.minor < self.minor
        if self.patch is None:
            return False
        if ver.patch != self.patch:
            return ver.patch < self.patch
        return _pre_key(ver.pre) < _pre_key(self.pre)

    def _matches_tilde(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is not None and ver.minor != self.minor:
            return False
        if self.patch is not None and ver.patch != self.patch:
            return ver.patch > self.patch
        return _pre_key(ver.pre) >= _pre_key(self.pre)

    def _matches_caret(self, ver: Version) -> bool:
        if ver.major != self.major:
            return False
        if self.minor is None:
            return True
        minor = self.minor
        if self.patch is None:
            if self.major > 0:
                return ver.minor >= minor
            return ver.minor == minor
        patch = self.patch
        if self.major > 0:
            if ver.minor != minor:
                return ver.minor > minor
            if ver.patch != patch:
                return ver.patch > patch
        elif minor > 0:
            if ver.minor != minor:
                return False
            if ver.patch != patch:
                return ver.patch > patch
        elif ver.minor != minor or ver.patch != patch:
            return False
        return _pre_key(ver.pre) >= _pre_key(self.pre)

    def __str__(self) -> str:
        if self.op is Op.WILDCARD:
            if self.minor is None:
                return f"{self.major}.*"
            return f"{self.major}.{self.minor}.*"
        text = f"{self.op.value}{self.major}"
        if self.minor is not None:
            text += f".{self.minor}"
            if self.patch is not None:
                text += f".{self.patch}"
                if self.pre:
                    text += "-" + ".".join(self.pre)
        return text


def _parse_comparator(text: str) -> Comparator | None:
    """Parse one comparator; None means it matches every version."""
    original = text
    text = text.strip()
    op: Op | None = None
    for symbol in _OP_SYMBOLS:
        if text.startswith(symbol):
            op = Op(symbol)
            text = text[len(symbol):].lstrip()
            break
    if not text:
        raise VersionError(f"missing version in requirement: {original!r}")
    if "+" in text:
        raise VersionError(f"build metadata is not allowed in a requirement: {original!r}")

    main, dash, pre_text = text.partition("-")
    parts = main.split(".")
    if len(parts) > 3:
        raise VersionError(f"too many version components: {original!r}")

    numbers: list[int | None] = []
    seen_wildcard = False
    for index, part in enumerate(parts):
        if part in _WILDCARDS:
            seen_wildcard = True
            numbers.append(None)
        elif seen_wildcard:
            raise VersionError(f"unexpected number after wildcard: {original!r}")
        else:
            numbers.append(_parse_number(part, ("major", "minor", "patch")[index]))
    while len(numbers) < 3:
        numbers.append(None)

    pre: tuple[str, ...] = ()
    if dash:
        if len(parts) != 3 or seen_wildcard:
            raise VersionError(f"pre-release needs a full version: {original!r}")
        pre = _parse_identifiers(pre_text, "pre-release", numeric_leading_zero=False)

    major, minor, patch = numbers
    if major is None:
        if op not in (None, Op.EXACT):
            raise VersionError(f"unexpected wildcard after operator: {original!r}")
        return None
    if seen_wildcard and op in (None, Op.EXACT):
        return Comparator(Op.WILDCARD, major, minor, None)
    return Comparator(op or Op.CARET, major, minor, patch, pre)


@dataclass(frozen=True)
class VersionReq:
    """A comma separated set of comparators that a version must all satisfy."""

    comparators: tuple[Comparator, ...] = ()

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        if not text.strip():
            raise VersionError("empty version requirement")
        comparators = []
        for part in text.split(","):
            comparator = _parse_comparator(part)
            if comparator is not None:
                comparators.append(comparator)
        return cls(tuple(comparators))

    def matches(self, version: Version) -> bool:
        if not all(comparator.matches(version) for comparator in self.comparators):
            return False
        if not version.pre:
            return True
        return any(comparator.pre_is_compatible(version) for comparator in self.comparators)

    def __str__(self) -> str:
        if not self.comparators:
            return "*"
        return ", ".join(str(comparator) for comparator in self.comparators)


@dataclass(frozen=True)
class GgVersion:
    """A version as found in release listings, normalised to full semver."""

    value: str

    @classmethod
    def new(cls, version: str) -> GgVersion | None:
        version = version.replace("v", "")
        parts = version.split(".")
        if len(parts) == 1:
            candidate = f"{parts[0]}.0.0"
        elif len(parts) == 2:
            candidate = f"{parts[0]}.{parts[1]}.0"
        else:
            candidate = version
        try:
            Version.parse(candidate)
        except VersionError:
            return None
        return cls(candidate)

    def to_version(self) -> Version:
        return Version.parse(self.value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class GgVersionReq:
    """A requirement as the user wrote it, with an implied operator added."""

    value: str

    @classmethod
    def new(cls, version_req: str) -> GgVersionReq | None:
        has_prefix = version_req.startswith(("^", "=", "~"))
        dots = version_req.count(".")
        if dots == 2 and not has_prefix:
            candidate = f"={version_req}"
        elif dots == 1 and not has_prefix:
            candidate = f"~{version_req}"
        else:
            candidate = version_req
        try:
            VersionReq.parse(candidate)
        except VersionError:
            return None
        return cls(candidate)

    def to_version_req(self) -> VersionReq:
        return VersionReq.parse(self.value)

    def __str__(self) -> str:
        return self.value