"""Loader for advisories in the Open Source Vulnerability (OSV) format."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from .core import (
    Advisory,
    DataSource,
    Ecosystem,
    Severity,
    SourceError,
    Store,
    VulnerabilityDetail,
    bucket_name,
    walk_files,
)
from .cvss import CVSSError, cvss3_score
from .osvrange import RANGE_TYPE_GIT, InvalidVersion, VersionRange

log = logging.getLogger(__name__)


@dataclass
class OSVAdvisory:
    """One package's share of an OSV entry, before it is stored."""

    ecosystem: Ecosystem | str
    pkg_name: str
    vulnerability_id: str
    aliases: list[str] = field(default_factory=list)
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)
    severity: Severity = Severity.UNKNOWN
    title: str = ""
    description: str = ""
    references: list[str] = field(default_factory=list)
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    # Raw affected[].database_specific value, if any.
    database_specific: Any = None


Transformer = Callable[[list[OSVAdvisory], dict[str, Any]], list[OSVAdvisory]]

_ECOSYSTEMS = {
    "go": Ecosystem.GO,
    "npm": Ecosystem.NPM,
    "pypi": Ecosystem.PIP,
    "rubygems": Ecosystem.RUBYGEMS,
    "crates.io": Ecosystem.CARGO,
    "packagist": Ecosystem.COMPOSER,
    "maven": Ecosystem.MAVEN,
    "nuget": Ecosystem.NUGET,
    "hex": Ecosystem.ERLANG,
    "pub": Ecosystem.PUB,
    "swifturl": Ecosystem.SWIFT,
    # GHSA still names Swift this way.
    "purl-type:swift": Ecosystem.SWIFT,
    "bitnami": Ecosystem.BITNAMI,
    "kubernetes": Ecosystem.KUBERNETES,
}


def convert_ecosystem(name: str) -> Ecosystem:
    """Map an OSV ecosystem name to an ecosystem; unknown names give UNKNOWN."""
    return _ECOSYSTEMS.get(str(name).lower(), Ecosystem.UNKNOWN)


def group_vuln_ids(vuln_id: str, aliases: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split IDs into primary vulnerability IDs and the remaining aliases.

    CVE IDs are primary when there are any; otherwise the entry's own ID is.
    """
    cve_ids: list[str] = []
    others: list[str] = []
    for candidate in [*aliases, vuln_id]:
        (cve_ids if candidate.startswith("CVE-") else others).append(candidate)
    if not cve_ids:
        return [vuln_id], list(aliases)
    return cve_ids, others


def parse_cvss_severity(severities: Sequence[Mapping[str, Any]]) -> tuple[str, float]:
    """Return the first CVSS v3 vector and its score, or ("", 0.0) if none."""
    for severity in severities:
        score = severity.get("score") or ""
        if severity.get("type") != "CVSS_V3" or not score:
            continue
        # Some vectors carry a trailing slash.
        vector = score.removesuffix("/")
        if vector.startswith("CVSS:3.0"):
            try:
                return vector, cvss3_score(vector)
            except CVSSError as exc:
                raise CVSSError(f"failed to parse CVSSv3.0 vector: {exc}") from exc
        if score.startswith("CVSS:3.1"):
            try:
                return vector, cvss3_score(vector)
            except CVSSError as exc:
                raise CVSSError(f"failed to parse CVSSv3.1 vector: {exc}") from exc
        raise CVSSError(
            f'vector:{score} does not have CVSS v3 prefix: "CVSS:3.0" or "CVSS:3.1"'
        )
    return "", 0.0


def _normalize_pkg_name(ecosystem: Ecosystem, name: str) -> str:
    if ecosystem is Ecosystem.PIP:
        return name.lower().replace("_", "-")
    if ecosystem is Ecosystem.SWIFT:
        return name.removeprefix("https://").removesuffix(".git")
    return name


# JSON field access with type checks.

def _obj(data: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"field {key!r} must be an object")
    return value


def _items(data: Mapping[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ValueError(f"field {key!r} must be a list of objects")
    return value


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _strs(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field {key!r} must be a list of strings")
    return list(value)


_TIME = re.compile(
    r"^(\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d)(?:\.(\d+))?(Z|[+-]\d\d:\d\d)$"
)


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("timestamps must be strings")
    match = _TIME.match(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    moment = datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S")
    if match.group(2):
        moment = moment.replace(microsecond=int(match.group(2)[:6].ljust(6, "0")))
    zone = match.group(3)
    if zone == "Z":
        return moment.replace(tzinfo=timezone.utc)
    sign = 1 if zone[0] == "+" else -1
    offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
    return moment.replace(tzinfo=timezone(sign * offset))


def _check_entry(entry: Any) -> dict[str, Any]:
    if not isinstance(entry, dict):
        raise ValueError("expected a JSON object")
    for key in ("id", "summary", "details", "schema_version"):
        _str(entry, key)
    _strs(entry, "aliases")
    for key in ("modified", "published", "withdrawn"):
        _parse_time(entry.get(key))
    for severity in _items(entry, "severity"):
        _str(severity, "type")
        _str(severity, "score")
    for reference in _items(entry, "references"):
        _str(reference, "url")
    for affected in _items(entry, "affected"):
        package = _obj(affected, "package")
        _str(package, "name")
        _str(package, "ecosystem")
        _strs(affected, "versions")
        for severity in _items(affected, "severity"):
            _str(severity, "score")
        for rng in _items(affected, "ranges"):
            _str(rng, "type")
            for event in _items(rng, "events"):
                for key in ("introduced", "fixed", "last_affected"):
                    _str(event, key)
    return entry


def _range_at(ranges: list[VersionRange], index: int) -> VersionRange:
    if index >= len(ranges):
        raise ValueError("range event without a preceding 'introduced' event")
    return ranges[index]


def _version_contained(ranges: Sequence[VersionRange], version: str) -> bool:
    for rng in ranges:
        if rng.contains(version):
            return True
    return False


def _parse_affected_versions(affected: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    package = _obj(affected, "package")
    raw_ecosystem = _str(package, "ecosystem")
    ranges: list[VersionRange] = []
    patched: list[str] = []
    for rng in _items(affected, "ranges"):
        if _str(rng, "type") == RANGE_TYPE_GIT:
            continue
        index = 0
        for event in _items(rng, "events"):
            introduced = _str(event, "introduced")
            fixed = _str(event, "fixed")
            last_affected = _str(event, "last_affected")
            if introduced:
                # Every "introduced" event opens a new range.
                ranges.append(VersionRange(raw_ecosystem, introduced))
                index = len(ranges) - 1
            elif fixed:
                _range_at(ranges, index).set_fixed(fixed)
                patched.append(fixed)
            elif last_affected:
                _range_at(ranges, index).set_last_affected(last_affected)

    vulnerable = [str(rng) for rng in ranges]
    for version in _strs(affected, "versions"):
        try:
            contained = _version_contained(ranges, version)
        except InvalidVersion as exc:
            log.error(
                "Version comparison error: ecosystem=%s package=%s error=%s",
                raw_ecosystem,
                _str(package, "name"),
                exc,
            )
            contained = False
        if not contained:
            vulnerable.append(f"={version}")
    return vulnerable, patched


def _parse_affected(
    entry: Mapping[str, Any],
    vuln_ids: Sequence[str],
    aliases: Sequence[str],
    references: Sequence[str],
) -> list[OSVAdvisory]:
    entry_id = _str(entry, "id")
    try:
        vector_v3, score_v3 = parse_cvss_severity(_items(entry, "severity"))
    except CVSSError as exc:
        raise CVSSError(f"failed to decode CVSS vector ({entry_id}): {exc}") from exc

    unique: dict[str, OSVAdvisory] = {}
    for affected in _items(entry, "affected"):
        package = _obj(affected, "package")
        ecosystem = convert_ecosystem(_str(package, "ecosystem"))
        if ecosystem is Ecosystem.UNKNOWN:
            continue
        pkg_name = _normalize_pkg_name(ecosystem, _str(package, "name"))
        vulnerable, patched = _parse_affected_versions(affected)

        try:
            affected_vector, affected_score = parse_cvss_severity(_items(affected, "severity"))
        except CVSSError as exc:
            raise CVSSError(f"failed to decode CVSS vector ({entry_id}): {exc}") from exc
        if affected_vector:
            # affected[].severity takes precedence over the entry-level value.
            vector_v3, score_v3 = affected_vector, affected_score

        key = f"{ecosystem.value}/{pkg_name}"
        for vuln_id in vuln_ids:
            existing = unique.get(key)
            if existing is not None:
                # The same package may be listed again with other ranges.
                existing.vulnerable_versions.extend(vulnerable)
                existing.patched_versions.extend(patched)
            else:
                unique[key] = OSVAdvisory(
                    ecosystem=ecosystem,
                    pkg_name=pkg_name,
                    vulnerability_id=vuln_id,
                    aliases=list(aliases),
                    vulnerable_versions=list(vulnerable),
                    patched_versions=list(patched),
                    title=_str(entry, "summary"),
                    description=_str(entry, "details"),
                    references=list(references),
                    cvss_vector_v3=vector_v3,
                    cvss_score_v3=score_v3,
                    database_specific=affected.get("database_specific"),
                )
    return list(unique.values())


def _identity(advisories: list[OSVAdvisory], entry: dict[str, Any]) -> list[OSVAdvisory]:
    return advisories


class OSVSource:
    """Loads OSV entries from a directory and stores them per ecosystem."""

    def __init__(
        self,
        directory: str | os.PathLike[str],
        source_id: str,
        data_sources: Mapping[Ecosystem | str, DataSource],
        transformer: Transformer | None = None,
        store: Store | None = None,
    ) -> None:
        self.directory = directory
        self.source_id = source_id
        self.data_sources = dict(data_sources)
        self.transformer = transformer if transformer is not None else _identity
        self.store = store if store is not None else Store()

    @property
    def name(self) -> str:
        return self.source_id

    def update(self, root: str | os.PathLike[str]) -> None:
        root_dir = Path(root) / self.directory
        try:
            entries = [
                self._load(path) for path in walk_files(root_dir) if path.suffix == ".json"
            ]
        except (OSError, ValueError) as exc:
            raise SourceError(f"walk error: {exc}") from exc

        try:
            with self.store.batch_update():
                for entry in entries:
                    self._commit(entry)
        except (ValueError, TypeError, KeyError) as exc:
            raise SourceError(f"save error: {exc}") from exc

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        try:
            return _check_entry(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            raise ValueError(f"JSON decode error ({path}): {exc}") from exc

    def _commit(self, entry: dict[str, Any]) -> None:
        withdrawn = _parse_time(entry.get("withdrawn"))
        if withdrawn is not None and withdrawn < datetime.now(timezone.utc):
            return

        vuln_ids, aliases = group_vuln_ids(_str(entry, "id"), _strs(entry, "aliases"))
        references = [_str(ref, "url") for ref in _items(entry, "references")]

        advisories = _parse_affected(entry, vuln_ids, aliases, references)
        advisories = self.transformer(advisories, entry)

        for adv in advisories:
            data_source = self.data_sources.get(adv.ecosystem)
            if data_source is None:
                continue
            bucket = bucket_name(adv.ecosystem, data_source.name)
            self.store.put_data_source(bucket, data_source)
            self.store.put_advisory_detail(
                adv.vulnerability_id,
                adv.pkg_name,
                [bucket],
                Advisory(
                    vendor_ids=list(adv.aliases),
                    vulnerable_versions=list(adv.vulnerable_versions),
                    patched_versions=list(adv.patched_versions),
                ),
            )
            self.store.put_vulnerability_detail(
                adv.vulnerability_id,
                self.source_id,
                VulnerabilityDetail(
                    severity=adv.severity,
                    references=list(adv.references),
                    title=adv.title,
                    description=adv.description,
                    cvss_score_v3=adv.cvss_score_v3,
                    cvss_vector_v3=adv.cvss_vector_v3,
                ),
            )
            self.store.put_vulnerability_id(adv.vulnerability_id)