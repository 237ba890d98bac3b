"""openEuler CVRF security advisories source."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .core import (
    Advisory,
    DataSource,
    Severity,
    SourceError,
    Store,
    VulnerabilityDetail,
    walk_files,
)

log = logging.getLogger(__name__)

EULER_DIR = "openeuler"
OPEN_EULER_FORMAT = "openEuler-{}"

SOURCE = DataSource(
    id="openeuler",
    name="openEuler CVRF",
    url="https://repo.openeuler.org/security/data/cvrf",
)

_THREAT_SEVERITIES = {
    "Low": Severity.LOW,
    "Medium": Severity.MEDIUM,
    "High": Severity.HIGH,
    "Critical": Severity.CRITICAL,
}


def severity_from_threat(severity: str) -> Severity:
    """Map a CVRF threat description to a severity."""
    return _THREAT_SEVERITIES.get(severity, Severity.UNKNOWN)


def get_os_version(cpe: str) -> str:
    """Return the platform name for a CPE, or "" if it is not an openEuler CPE.

    Both ``cpe:/a:openEuler:openEuler:22.03-LTS`` and
    ``cpe:/a:openEuler:openEuler-22.03-LTS`` are understood.
    """
    parts = cpe.split(":")
    if len(parts) < 4 or len(parts) > 5 or parts[2] != "openEuler":
        return ""

    version = ""
    if len(parts) == 5:
        version = parts[4]
    else:
        os_name, sep, rest = parts[3].partition("-")
        if sep and os_name == "openEuler":
            version = rest

    # The LTS and SP suffixes are kept: service packs can have different fixes.
    if not version or len(version.split("-")) > 3:
        log.warning("Invalid openEuler version: %s", version)
        return ""
    return OPEN_EULER_FORMAT.format(version)


def split_pkg_name(product: str) -> tuple[str, str]:
    """Split "name-version-release" into name and "version-release".

    Returns ("", "") when the product has fewer than two dashes.
    """
    name_with_version, sep, release = product.rpartition("-")
    if not sep:
        return "", ""
    name, sep, version = name_with_version.rpartition("-")
    if not sep:
        return "", ""
    return name, f"{version}-{release}"


# Decoded documents. Field names match case-insensitively.


@dataclass
class _Production:
    product_id: str = ""
    cpe: str = ""
    text: str = ""


@dataclass
class _Branch:
    type: str = ""
    name: str = ""
    productions: list[_Production] = field(default_factory=list)


@dataclass
class _Note:
    text: str = ""
    title: str = ""
    type: str = ""


@dataclass
class _Cvrf:
    id: str = ""
    title: str = ""
    notes: list[_Note] = field(default_factory=list)
    branches: list[_Branch] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    threat_severities: list[str] = field(default_factory=list)


@dataclass
class _Package:
    name: str
    fixed_version: str
    os_ver: str
    arches: list[str] = field(default_factory=list)


def _field(data: dict[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    lowered = name.lower()
    return next((v for k, v in data.items() if k.lower() == lowered), None)


def _object(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _text(data: dict[str, Any], name: str) -> str:
    value = _field(data, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return value


def _objects(data: dict[str, Any], name: str) -> list[dict[str, Any]]:
    value = _field(data, name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {name!r} must be a list")
    return [_object(item, name) for item in value]


def _decode_cvrf(data: Any) -> _Cvrf:
    data = _object(data, "CVRF document")
    tracking = _object(_field(data, "Tracking"), "Tracking")
    tree = _object(_field(data, "ProductTree"), "ProductTree")

    branches = [
        _Branch(
            type=_text(branch, "Type"),
            name=_text(branch, "Name"),
            productions=[
                _Production(
                    product_id=_text(prod, "ProductID"),
                    cpe=_text(prod, "CPE"),
                    text=_text(prod, "Text"),
                )
                for prod in _objects(branch, "Productions")
            ],
        )
        for branch in _objects(tree, "Branches")
    ]
    notes = [
        _Note(text=_text(n, "Text"), title=_text(n, "Title"), type=_text(n, "Type"))
        for n in _objects(data, "Notes")
    ]
    references = [_text(ref, "URL") for ref in _objects(data, "References")]
    threats = [
        _text(threat, "Severity")
        for vuln in _objects(data, "Vulnerabilities")
        for threat in _objects(vuln, "Threats")
    ]
    return _Cvrf(
        id=_text(tracking, "ID"),
        title=_text(data, "Title"),
        notes=notes,
        branches=branches,
        references=references,
        threat_severities=threats,
    )


def _parse_production(production: _Production) -> tuple[str, str]:
    name, version = split_pkg_name(production.product_id)
    if not name or not version:
        text = production.text.partition(".oe")[0]
        name, version = split_pkg_name(text)
    return name, version


def _affected_packages(branches: Iterable[_Branch]) -> list[_Package]:
    packages: list[_Package] = []
    os_arches: dict[str, set[str]] = {}
    for branch in branches:
        # Source packages are the affected ones; the others give architectures.
        if branch.type != "Package Arch" or not branch.name:
            continue
        for production in branch.productions:
            os_ver = get_os_version(production.cpe)
            if not os_ver:
                log.warning("Unable to parse OS version: %s", production.cpe)
                continue
            if branch.name != "src":
                os_arches.setdefault(os_ver, set()).add(branch.name)
                continue
            name, version = _parse_production(production)
            if not name or not version:
                log.warning("Unable to parse Production: %s", production)
                continue
            packages.append(_Package(name=name, fixed_version=version, os_ver=os_ver))

    for package in packages:
        package.arches = sorted(os_arches.get(package.os_ver, ()))
    return packages


def _description(notes: Iterable[_Note]) -> str:
    return next(
        (n.text for n in notes if n.type == "General" and n.title == "Description"), ""
    )


class OpenEulerSource:
    """Loads openEuler CVRF advisories into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        log.info("Saving openEuler CVRF")
        root_dir = Path(root) / "vuln-list" / EULER_DIR
        try:
            documents = [self._load(path) for path in walk_files(root_dir)]
        except (OSError, ValueError) as exc:
            raise SourceError(f"error in openEuler CVRF walk: {exc}") from exc

        try:
            with self.store.batch_update():
                self._commit(documents)
        except (ValueError, TypeError) as exc:
            raise SourceError(f"error in openEuler CVRF save: {exc}") from exc

    def get(self, version: str, pkg_name: str, arch: str) -> list[Advisory]:
        """Advisories for a package in a release that apply to the architecture."""
        advisories = self.store.get_advisories(OPEN_EULER_FORMAT.format(version), pkg_name)
        return [adv for adv in advisories if arch in adv.arches]

    @staticmethod
    def _load(path: Path) -> _Cvrf:
        try:
            return _decode_cvrf(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            raise ValueError(f"failed to decode openEuler CVRF JSON: {exc} ({path})") from exc

    def _commit(self, documents: Iterable[_Cvrf]) -> None:
        seen_os_versions: set[str] = set()
        for cvrf in documents:
            packages = _affected_packages(cvrf.branches)
            if not packages:
                continue

            for package in packages:
                if package.os_ver not in seen_os_versions:
                    seen_os_versions.add(package.os_ver)
                    self.store.put_data_source(package.os_ver, SOURCE)
                self.store.put_advisory_detail(
                    cvrf.id,
                    package.name,
                    [package.os_ver],
                    Advisory(fixed_version=package.fixed_version, arches=list(package.arches)),
                )

            severity = max(
                (severity_from_threat(s) for s in cvrf.threat_severities),
                default=Severity.UNKNOWN,
            )
            self.store.put_vulnerability_detail(
                cvrf.id,
                SOURCE.id,
                VulnerabilityDetail(
                    references=list(cvrf.references),
                    title=cvrf.title,
                    description=_description(cvrf.notes),
                    severity=severity,
                ),
            )
            self.store.put_vulnerability_id(cvrf.id)