"""Debian Security Tracker source."""

from __future__ import annotations

import json
import logging
import os
import string
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterator, NamedTuple

from .core import (
    Advisory,
    DataSource,
    Severity,
    SourceError,
    Status,
    Store,
    VulnerabilityDetail,
    walk_files,
)

log = logging.getLogger(__name__)

DEBIAN_DIR = "vuln-list-debian"

PACKAGE_TYPE = "package"
XREF_TYPE = "xref"

DISTRIBUTIONS_FILE = "distributions.json"
SOURCES_DIR = "source"
UPDATE_SOURCES_DIR = "updates-source"
CVE_DIR = "CVE"
DLA_DIR = "DLA"
DSA_DIR = "DSA"

PLATFORM_FORMAT = "debian {}"

# "removed" is deliberately not treated as not-affected.
SKIP_STATUSES = frozenset({"not-affected", "undetermined"})

SOURCE = DataSource(
    id="debian",
    name="Debian Security Tracker",
    url="https://salsa.debian.org/security-tracker-team/security-tracker",
)


@dataclass
class DebianAdvisory:
    """An advisory for one package in one release, before it is stored."""

    vulnerability_id: str = ""
    platform: str = ""
    pkg_name: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    state: str = ""
    severity: str = ""
    fixed_version: str = ""
    title: str = ""


PutFunc = Callable[[Store, DebianAdvisory], None]


class _Bucket(NamedTuple):
    code_name: str
    pkg_name: str
    vuln_id: str = ""
    severity: str = ""


@dataclass
class _Annotation:
    type: str = ""
    release: str = ""
    package: str = ""
    kind: str = ""
    version: str = ""
    severity: str = ""
    bugs: list[str] = field(default_factory=list)


@dataclass
class _Bug:
    id: str = ""
    description: str = ""
    annotations: list[_Annotation] = field(default_factory=list)


# Debian version comparison.

_DIGITS = frozenset(string.digits)
_UPSTREAM_CHARS = frozenset(string.ascii_letters + string.digits + ".+~-:")
_REVISION_CHARS = frozenset(string.ascii_letters + string.digits + ".+~")


def _parse_version(text: str) -> tuple[int, str, str]:
    original = text
    text = text.strip()
    epoch = 0
    head, sep, rest = text.partition(":")
    if sep:
        if not head or not set(head) <= _DIGITS:
            raise ValueError(f"epoch parse error: {original!r}")
        epoch = int(head)
        text = rest
    if "-" in text:
        upstream, _, revision = text.rpartition("-")
    else:
        upstream, revision = text, ""
    if not upstream:
        raise ValueError(f"upstream_version is empty: {original!r}")
    if upstream[0] not in _DIGITS:
        raise ValueError(f"upstream_version must start with digit: {original!r}")
    if not set(upstream) <= _UPSTREAM_CHARS:
        raise ValueError(f"upstream_version includes invalid character: {original!r}")
    if not set(revision) <= _REVISION_CHARS:
        raise ValueError(f"debian_revision includes invalid character: {original!r}")
    return epoch, upstream, revision


def _order(char: str) -> int:
    if char in _DIGITS:
        return 0
    if char in string.ascii_letters:
        return ord(char)
    if char == "~":
        return -1
    return ord(char) + 256


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def _verrevcmp(a: str, b: str) -> int:
    i = j = 0
    while i < len(a) or j < len(b):
        while (i < len(a) and a[i] not in _DIGITS) or (j < len(b) and b[j] not in _DIGITS):
            ac = _order(a[i]) if i < len(a) else 0
            bc = _order(b[j]) if j < len(b) else 0
            if ac != bc:
                return _sign(ac - bc)
            i += 1
            j += 1
        while i < len(a) and a[i] == "0":
            i += 1
        while j < len(b) and b[j] == "0":
            j += 1
        first_diff = 0
        while i < len(a) and a[i] in _DIGITS and j < len(b) and b[j] in _DIGITS:
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1
        if i < len(a) and a[i] in _DIGITS:
            return 1
        if j < len(b) and b[j] in _DIGITS:
            return -1
        if first_diff:
            return _sign(first_diff)
    return 0


def compare_versions(v1: str, v2: str) -> int:
    """Compare two Debian versions; an empty version is the lowest."""
    if not v1 and not v2:
        return 0
    if not v1:
        return -1
    if not v2:
        return 1
    try:
        e1, u1, r1 = _parse_version(v1)
        e2, u2, r2 = _parse_version(v2)
    except ValueError as exc:
        raise ValueError(f"version error: {exc}") from exc
    if e1 != e2:
        return _sign(e1 - e2)
    return _verrevcmp(u1, u2) or _verrevcmp(r1, r2)


def has_fixed_version(sid_version: str, code_version: str) -> bool:
    """Tell whether a release's latest version already has the sid fix.

    An empty sid version means the vulnerability is not fixed anywhere.
    """
    if not sid_version:
        return False
    try:
        return compare_versions(code_version, sid_version) >= 0
    except ValueError as exc:
        raise ValueError(f"version comparison error: {exc}") from exc


def severity_from_urgency(urgency: str) -> Severity:
    """Map a Debian urgency to a severity."""
    if urgency in ("unimportant", "low", "low*", "low**"):
        return Severity.LOW
    if urgency in ("medium", "medium*", "medium**"):
        return Severity.MEDIUM
    if urgency in ("high", "high*", "high**"):
        return Severity.HIGH
    return Severity.UNKNOWN


def new_status(state: str) -> Status:
    """Map a Debian tracker state to a fix status."""
    return {
        "no-dsa": Status.AFFECTED,
        "unfixed": Status.AFFECTED,
        "ignored": Status.WILL_NOT_FIX,
        "postponed": Status.FIX_DEFERRED,
        "end-of-life": Status.END_OF_LIFE,
    }.get(state.lower(), Status.UNKNOWN)


# JSON field access; field names match case-insensitively.

def _field(data: dict[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    lowered = name.lower()
    return next((v for k, v in data.items() if k.lower() == lowered), None)


def _text(data: dict[str, Any], name: str) -> str:
    value = _field(data, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return value


def _strings(data: dict[str, Any], name: str) -> list[str]:
    value = _field(data, name)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field {name!r} must be a list of strings")
    return list(value)


def _object(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _decode_bug(data: Any) -> _Bug:
    data = _object(data, "bug")
    header = _object(_field(data, "Header"), "header")
    raw_annotations = _field(data, "Annotations")
    if raw_annotations is None:
        raw_annotations = []
    if not isinstance(raw_annotations, list):
        raise ValueError("field 'Annotations' must be a list")
    annotations = []
    for raw in raw_annotations:
        raw = _object(raw, "annotation")
        annotations.append(
            _Annotation(
                type=_text(raw, "Type"),
                release=_text(raw, "Release"),
                package=_text(raw, "Package"),
                kind=_text(raw, "Kind"),
                version=_text(raw, "Version"),
                severity=_text(raw, "Severity"),
                bugs=_strings(raw, "Bugs"),
            )
        )
    return _Bug(
        id=_text(header, "ID"),
        description=_text(header, "Description"),
        annotations=annotations,
    )


@contextmanager
def _context(message: str) -> Iterator[None]:
    try:
        yield
    except (OSError, ValueError) as exc:
        raise ValueError(f"{message}: {exc}") from exc


def _default_put(store: Store, advisory: DebianAdvisory) -> None:
    """Store an advisory, its title, its ID and the data source."""
    if not isinstance(advisory, DebianAdvisory):
        raise ValueError("unknown type")
    store.put_advisory_detail(
        advisory.vulnerability_id,
        advisory.pkg_name,
        [advisory.platform],
        Advisory(
            vendor_ids=list(advisory.vendor_ids),
            status=new_status(advisory.state),
            severity=severity_from_urgency(advisory.severity),
            fixed_version=advisory.fixed_version,
        ),
    )
    store.put_vulnerability_detail(
        advisory.vulnerability_id, SOURCE.id, VulnerabilityDetail(title=advisory.title)
    )
    store.put_vulnerability_id(advisory.vulnerability_id)
    store.put_data_source(advisory.platform, SOURCE)


class DebianSource:
    """Loads the Debian Security Tracker data into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None, put: PutFunc | None = None) -> None:
        self.store = store if store is not None else Store()
        self.put = put if put is not None else _default_put
        self._reset()

    def _reset(self) -> None:
        # codename => major version, e.g. "buster" => "10"
        self._distributions: dict[str, str] = {}
        # vulnerability ID => short description
        self._details: dict[str, str] = {}
        # (codename, package) => latest version in that release
        self._pkg_versions: dict[_Bucket, str] = {}
        # ("", package, CVE, severity) => fixed version in sid, "" if unfixed
        self._sid_fixed_versions: dict[_Bucket, str] = {}
        # (codename, package, ID) => advisory
        self._advisories: dict[_Bucket, DebianAdvisory] = {}
        self._not_affected: set[_Bucket] = set()

    def update(self, root: str | os.PathLike[str]) -> None:
        self._reset()
        try:
            self._parse(Path(root))
        except (OSError, ValueError) as exc:
            raise SourceError(f"parse error: {exc}") from exc
        try:
            self._save()
        except (OSError, ValueError) as exc:
            raise SourceError(f"save error: {exc}") from exc

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        return self.store.get_advisories(PLATFORM_FORMAT.format(release), pkg_name)

    # Parsing

    def _parse(self, root: Path) -> None:
        tracker = root / DEBIAN_DIR / "tracker"
        with _context("distributions error"):
            self._parse_distributions(tracker)
        with _context("source parse error"):
            self._parse_sources(tracker / SOURCES_DIR)
        with _context("updates-source parse error"):
            self._parse_sources(tracker / UPDATE_SOURCES_DIR)
        with _context("CVE error"):
            log.info("  Parsing CVE JSON files...")
            for bug in self._bugs(tracker / CVE_DIR):
                self._add_cve(bug)
        with _context("DLA error"):
            log.info("  Parsing DLA JSON files...")
            for bug in self._bugs(tracker / DLA_DIR):
                self._add_vendor_advisory(bug)
        with _context("DSA error"):
            log.info("  Parsing DSA JSON files...")
            for bug in self._bugs(tracker / DSA_DIR):
                self._add_vendor_advisory(bug)

    def _parse_distributions(self, tracker: Path) -> None:
        log.info("  Parsing distributions...")
        with _context("failed to open file"):
            text = (tracker / DISTRIBUTIONS_FILE).read_text(encoding="utf-8")
        with _context("failed to decode Debian distribution JSON"):
            parsed = _object(json.loads(text), "distributions")
            for dist, value in parsed.items():
                major = _text(_object(value, "distribution"), "major-version")
                # sid has no major version.
                if major:
                    self._distributions[dist] = major

    def _parse_sources(self, directory: Path) -> None:
        for code in self._distributions:
            code_path = directory / code
            if not code_path.exists():
                continue
            log.info("  Parsing %s sources...", code)
            with _context("filepath walk error"):
                for path in walk_files(code_path):
                    self._add_source(code, path)

    def _add_source(self, code: str, path: Path) -> None:
        with _context(f"failed to decode {path}"):
            data = _object(json.loads(path.read_text(encoding="utf-8")), "sources")
            packages = _strings(data, "Package")
            versions = _strings(data, "Version")
        if not packages or not versions:
            return
        bucket = _Bucket(code, packages[0])
        version = versions[0]
        stored = self._pkg_versions.get(bucket)
        if stored is not None:
            with _context("version comparison error"):
                if compare_versions(stored, version) >= 0:
                    return
        self._pkg_versions[bucket] = version

    def _bugs(self, directory: Path) -> Iterator[_Bug]:
        with _context("walk error"):
            for path in walk_files(directory):
                try:
                    bug = _decode_bug(json.loads(path.read_text(encoding="utf-8")))
                except ValueError as exc:
                    raise ValueError(f"json decode error: {exc}") from exc
                yield bug

    def _add_cve(self, bug: _Bug) -> None:
        severities: dict[str, str] = {}
        cve_id = bug.id
        self._details[cve_id] = bug.description.strip("()")

        for ann in bug.annotations:
            if ann.type != PACKAGE_TYPE:
                continue
            # The release is empty for sid.
            bucket = _Bucket(ann.release, ann.package, cve_id)
            if ann.kind in SKIP_STATUSES:
                self._not_affected.add(bucket)
                continue

            if not ann.release:
                severity = ""
                if ann.severity:
                    severities[ann.package] = ann.severity
                    severity = ann.severity
                # Empty for vulnerabilities that are unfixed.
                self._sid_fixed_versions[_Bucket("", ann.package, cve_id, severity)] = ann.version
                continue

            fixed_version = ann.version
            kind = ann.kind
            latest = self._pkg_versions.get(_Bucket(ann.release, ann.package))
            if latest is not None:
                # A fix that has not been released yet counts as unfixed.
                try:
                    unreleased = compare_versions(latest, fixed_version) < 0
                except ValueError:
                    unreleased = False
                if unreleased:
                    fixed_version = ""
                    if kind == "fixed":
                        kind = "unfixed"

            advisory = DebianAdvisory(
                fixed_version=fixed_version,
                severity=severities.get(ann.package, ""),
            )
            if not fixed_version:
                # e.g. no-dsa
                advisory.state = kind
            # DLA/DSA data may overwrite this later.
            self._advisories[bucket] = advisory

    def _add_vendor_advisory(self, bug: _Bug) -> None:
        advisory_id = bug.id
        self._details[advisory_id] = bug.description.strip("()")
        cve_ids: list[str] = []

        for ann in bug.annotations:
            if ann.type == XREF_TYPE:
                cve_ids = ann.bugs
                continue
            if ann.type != PACKAGE_TYPE:
                continue

            # Advisories without CVE IDs are stored under their own ID.
            for vuln_id in cve_ids or [advisory_id]:
                bucket = _Bucket(ann.release, ann.package, vuln_id)
                if ann.kind in SKIP_STATUSES:
                    self._not_affected.add(bucket)
                    continue

                existing = self._advisories.get(bucket)
                if existing is None:
                    self._advisories[bucket] = DebianAdvisory(
                        fixed_version=ann.version, vendor_ids=[advisory_id]
                    )
                    continue

                # When several advisories fix the same CVE, the latest fix wins.
                try:
                    newer = compare_versions(ann.version, existing.fixed_version) > 0
                except ValueError as exc:
                    raise ValueError(f"version error {advisory_id}: {exc}") from exc
                if newer:
                    existing.fixed_version = ann.version
                    existing.state = ""
                existing.vendor_ids.append(advisory_id)

    # Saving

    def _save(self) -> None:
        log.info("Saving Debian DB")
        with self.store.batch_update():
            self._commit()
        log.info("Saved Debian DB")

    def _commit(self) -> None:
        for sid_bucket, sid_version in self._sid_fixed_versions.items():
            pkg_name, cve_id = sid_bucket.pkg_name, sid_bucket.vuln_id
            # Not affected in any release.
            if _Bucket("", pkg_name, cve_id) in self._not_affected:
                continue

            for code in self._distributions:
                bucket = _Bucket(code, pkg_name, cve_id)
                if bucket in self._not_affected:
                    continue

                existing = self._advisories.get(bucket)
                # Advisories with a fixed version are stored below; states such
                # as "no-dsa" or "postponed" may be wrong and are rechecked here.
                if existing is not None and not existing.state:
                    continue

                code_version = self._pkg_versions.get(_Bucket(code, pkg_name))
                if code_version is None:
                    continue

                advisory = (
                    replace(existing, vendor_ids=list(existing.vendor_ids))
                    if existing is not None
                    else DebianAdvisory()
                )
                with _context("version error"):
                    fixed = has_fixed_version(sid_version, code_version)
                if fixed:
                    advisory.fixed_version = sid_version
                    advisory.state = ""
                    self._advisories.pop(bucket, None)

                advisory.severity = sid_bucket.severity
                self._put_advisory(bucket, advisory)

        for bucket, advisory in self._advisories.items():
            self._put_advisory(bucket, advisory)

    def _put_advisory(self, bucket: _Bucket, advisory: DebianAdvisory) -> None:
        major = self._distributions.get(bucket.code_name)
        if major is None:
            # Stale codenames such as squeeze.
            return
        filled = replace(
            advisory,
            vendor_ids=list(advisory.vendor_ids),
            vulnerability_id=bucket.vuln_id,
            pkg_name=bucket.pkg_name,
            platform=PLATFORM_FORMAT.format(major),
            # The Debian description is short enough to serve as a title.
            title=self._details.get(bucket.vuln_id, ""),
        )
        with _context("put advisory error"):
            self.put(self.store, filled)