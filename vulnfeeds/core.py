"""Shared record types, an in-memory bucket store and file walking."""

from __future__ import annotations

import copy
import errno
import os
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Iterator, Sequence


class Severity(IntEnum):
    """Vulnerability severity, ordered from least to most severe."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class Status(IntEnum):
    """Fix status of an advisory."""

    UNKNOWN = 0
    NOT_AFFECTED = 1
    AFFECTED = 2
    FIXED = 3
    UNDER_INVESTIGATION = 4
    WILL_NOT_FIX = 5
    FIX_DEFERRED = 6
    END_OF_LIFE = 7


class Ecosystem(str, Enum):
    """Package ecosystems that advisories are grouped by."""

    UNKNOWN = "unknown"
    NPM = "npm"
    COMPOSER = "composer"
    PIP = "pip"
    RUBYGEMS = "rubygems"
    CARGO = "cargo"
    NUGET = "nuget"
    MAVEN = "maven"
    GO = "go"
    CONAN = "conan"
    ERLANG = "erlang"
    PUB = "pub"
    SWIFT = "swift"
    COCOAPODS = "cocoapods"
    BITNAMI = "bitnami"
    KUBERNETES = "k8s"


@dataclass(frozen=True)
class DataSource:
    """Where a set of advisories comes from."""

    id: str
    name: str
    url: str


@dataclass
class Advisory:
    """Per-package advisory detail."""

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    status: Status = Status.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)


@dataclass
class VulnerabilityDetail:
    """Descriptive data about one vulnerability from one source."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    cvss_score_v40: float = 0.0
    cvss_vector_v40: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    severity_v40: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None


class SourceError(Exception):
    """Raised when a vulnerability source cannot be read or saved."""


def parse_severity(name: str) -> Severity:
    """Return the severity with the given upper-case name."""
    if isinstance(name, str) and name in Severity.__members__:
        return Severity[name]
    raise ValueError(f"unknown severity: {name!r}")


def bucket_name(ecosystem: Ecosystem | str, source_name: str) -> str:
    """Name of the bucket holding an ecosystem's advisories from one source."""
    value = ecosystem.value if isinstance(ecosystem, Enum) else str(ecosystem)
    return f"{value}::{source_name}"


def walk_files(root: str | os.PathLike[str]) -> Iterator[Path]:
    """Yield every regular file below root in lexical order."""
    root = Path(root)
    if not root.exists():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(root))
    if root.is_file():
        yield root
        return
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            yield from walk_files(entry)
        elif entry.is_file():
            yield entry


_ADVISORY_DETAIL = "advisory-detail"
_VULNERABILITY_DETAIL = "vulnerability-detail"
_VULNERABILITY_ID = "vulnerability-id"
_DATA_SOURCE = "data-source"


class Store:
    """In-memory store of values addressed by bucket paths."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, ...], Any] = {}

    @contextmanager
    def batch_update(self) -> Iterator["Store"]:
        """Group writes; every write in the block is undone if it raises."""
        snapshot = dict(self._data)
        try:
            yield self
        except BaseException:
            self._data = snapshot
            raise

    def _put(self, key: tuple[str, ...], value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def put_data_source(self, bucket: str, source: DataSource) -> None:
        self._put((_DATA_SOURCE, bucket), source)

    def put_advisory_detail(
        self, vuln_id: str, pkg_name: str, buckets: Sequence[str], advisory: Advisory
    ) -> None:
        stored = replace(advisory, vulnerability_id="")
        self._put((_ADVISORY_DETAIL, vuln_id, *buckets, pkg_name), stored)

    def put_vulnerability_detail(
        self, vuln_id: str, source_id: str, detail: VulnerabilityDetail
    ) -> None:
        self._put((_VULNERABILITY_DETAIL, vuln_id, source_id), detail)

    def put_vulnerability_id(self, vuln_id: str) -> None:
        self._put((_VULNERABILITY_ID, vuln_id), {})

    def get(self, *args: str) -> Any:
        """Return a copy of the value stored at exactly this path."""
        try:
            return copy.deepcopy(self._data[tuple(args)])
        except KeyError:
            raise KeyError(tuple(args)) from None

    def has(self, *args: str) -> bool:
        """Tell whether anything is stored at or below this path."""
        prefix = tuple(args)
        return any(key[: len(prefix)] == prefix for key in self._data)

    def get_advisories(self, bucket: str, pkg_name: str) -> list[Advisory]:
        """Return advisories for a package in a bucket, ordered by ID."""
        found = [
            (key[1], value)
            for key, value in self._data.items()
            if len(key) == 4
            and key[0] == _ADVISORY_DETAIL
            and key[2] == bucket
            and key[3] == pkg_name
        ]
        found.sort(key=lambda item: item[0])
        return [
            replace(copy.deepcopy(value), vulnerability_id=vuln_id)
            for vuln_id, value in found
        ]