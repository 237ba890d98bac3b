"""Version ranges of OSV advisories and ecosystem-aware version checks."""

from __future__ import annotations

import re
from typing import Callable

from packaging.version import InvalidVersion as _PackagingInvalidVersion
from packaging.version import Version as _PyPIVersion

RANGE_TYPE_GIT = "GIT"

ECOSYSTEM_GO = "Go"
ECOSYSTEM_NPM = "npm"
ECOSYSTEM_PYPI = "PyPI"
ECOSYSTEM_RUBYGEMS = "RubyGems"
ECOSYSTEM_CRATES = "crates.io"
ECOSYSTEM_PACKAGIST = "Packagist"
ECOSYSTEM_MAVEN = "Maven"
ECOSYSTEM_NUGET = "NuGet"


class InvalidVersion(ValueError):
    """Raised when a version or a range bound cannot be parsed."""


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


# Semantic versions (Go, crates.io, NuGet, npm) and the lenient generic form.

_SEMVER = re.compile(
    r"^[vV=]?(\d+(?:\.\d+){0,3})"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_GENERIC = re.compile(
    r"^[vV]?(\d+(?:\.\d+)*)"
    r"(?:[-.]?([0-9A-Za-z][0-9A-Za-z.\-~]*?))?"
    r"(?:\+[0-9A-Za-z.\-]+)?$"
)


def _numeric_key(version: str, pattern: re.Pattern[str]) -> tuple:
    match = pattern.match(version.strip())
    if match is None:
        raise InvalidVersion(f"malformed version: {version!r}")
    numbers = [int(part) for part in match.group(1).split(".")]
    while len(numbers) > 1 and numbers[-1] == 0:
        numbers.pop()
    prerelease = match.group(2)
    if not prerelease:
        return (tuple(numbers), (1,))
    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in re.split(r"[.\-]", prerelease)
        if part
    )
    return (tuple(numbers), (0, identifiers))


def _compare_semver(a: str, b: str) -> int:
    ka, kb = _numeric_key(a, _SEMVER), _numeric_key(b, _SEMVER)
    return _sign((ka > kb) - (ka < kb))


def _compare_generic(a: str, b: str) -> int:
    ka, kb = _numeric_key(a, _GENERIC), _numeric_key(b, _GENERIC)
    return _sign((ka > kb) - (ka < kb))


def _compare_pypi(a: str, b: str) -> int:
    try:
        va, vb = _PyPIVersion(a), _PyPIVersion(b)
    except _PackagingInvalidVersion as exc:
        raise InvalidVersion(str(exc)) from exc
    return (va > vb) - (va < vb)


# RubyGems: segments split on dots and on digit/letter boundaries; letters
# mark a prerelease and sort before any number.

_GEM = re.compile(r"^\s*[0-9]+(?:\.[0-9a-zA-Z]+)*(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?\s*$")


def _gem_items(version: str) -> list[tuple]:
    if not _GEM.match(version):
        raise InvalidVersion(f"malformed version: {version!r}")
    text = version.strip().replace("-", ".pre.")
    return [
        (1, int(token), "") if token.isdigit() else (0, 0, token)
        for token in re.findall(r"[0-9]+|[A-Za-z]+", text)
    ]


def _compare_padded(
    left: list[tuple], right: list[tuple], pad: Callable[[tuple], tuple]
) -> int:
    for index in range(max(len(left), len(right))):
        a = left[index] if index < len(left) else pad(right[index])
        b = right[index] if index < len(right) else pad(left[index])
        if a != b:
            return -1 if a < b else 1
    return 0


def _compare_gem(a: str, b: str) -> int:
    return _compare_padded(_gem_items(a), _gem_items(b), lambda _: (1, 0, ""))


# Maven: qualifiers rank below releases, numbers above every qualifier.

_MAVEN_ALIASES = {"a": "alpha", "b": "beta", "m": "milestone", "cr": "rc",
                  "ga": "", "final": "", "release": ""}
_MAVEN_RANKS = {"alpha": 0, "beta": 1, "milestone": 2, "rc": 3, "snapshot": 4, "": 5, "sp": 6}
_MAVEN_RELEASE = (0, 5, "")
_MAVEN_ZERO = (1, 0, "")


def _maven_items(version: str) -> list[tuple]:
    text = version.strip().lower()
    if not text or not re.fullmatch(r"[0-9a-z.\-_+]+", text):
        raise InvalidVersion(f"malformed version: {version!r}")
    items: list[tuple] = []
    for token in re.findall(r"[0-9]+|[a-z_+]+", text):
        if token.isdigit():
            items.append((1, int(token), ""))
            continue
        name = _MAVEN_ALIASES.get(token, token)
        rank = _MAVEN_RANKS.get(name)
        items.append((0, rank, "") if rank is not None else (0, 7, name))
    while items and items[-1] in (_MAVEN_ZERO, _MAVEN_RELEASE):
        items.pop()
    return items


def _compare_maven(a: str, b: str) -> int:
    return _compare_padded(
        _maven_items(a),
        _maven_items(b),
        lambda other: _MAVEN_ZERO if other[0] == 1 else _MAVEN_RELEASE,
    )


_COMPARATORS: dict[str, Callable[[str, str], int]] = {
    ECOSYSTEM_NPM: _compare_semver,
    ECOSYSTEM_RUBYGEMS: _compare_gem,
    ECOSYSTEM_PYPI: _compare_pypi,
    ECOSYSTEM_MAVEN: _compare_maven,
    ECOSYSTEM_GO: _compare_semver,
    ECOSYSTEM_CRATES: _compare_semver,
    ECOSYSTEM_NUGET: _compare_semver,
    ECOSYSTEM_PACKAGIST: _compare_generic,
}


class VersionRange:
    """A range of affected versions opened by an OSV "introduced" event."""

    def __init__(self, ecosystem: str, start: str) -> None:
        self.ecosystem = str(ecosystem)
        self.start = start
        self.end = ""
        self.end_included = False
        self._compare = _COMPARATORS.get(self.ecosystem, _compare_generic)

    def set_fixed(self, fixed: str) -> None:
        self.end = fixed
        self.end_included = False

    def set_last_affected(self, last_affected: str) -> None:
        self.end = last_affected
        self.end_included = True

    def __str__(self) -> str:
        if self.end_included and self.start == self.end:
            return f"={self.start}"
        if not self.end:
            return f">={self.start}"
        upper = f"<={self.end}" if self.end_included else f"<{self.end}"
        # ">=0" is implied and left out.
        if self.start == "0":
            return upper
        return f">={self.start}, {upper}"

    def __repr__(self) -> str:
        return f"VersionRange({self.ecosystem!r}, {str(self)!r})"

    def contains(self, version: str) -> bool:
        """Tell whether the version falls inside this range."""
        if self.end_included and self.start == self.end:
            return self._compare(version, self.start) == 0
        if self.end:
            result = self._compare(version, self.end)
            if result > 0 or (result == 0 and not self.end_included):
                return False
            if self.start == "0":
                return True
        return self._compare(version, self.start) >= 0