"""EulerOS CVRF security advisories source."""

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

EULER_DIR = "euler"
EULER_FORMAT = "EulerOS-{}"

SOURCE = DataSource(
    id="euler",
    name="euler CVRF",
    url="https://developer.huaweicloud.com/euleros/security",
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
    """Return the platform name for an EulerOS CPE, or "" for any other CPE."""
    parts = cpe.split(":")
    if len(parts) < 4 or len(parts) > 5 or parts[3] != "EulerOS":
        return ""
    version = parts[4] if len(parts) == 5 else ""
    return EULER_FORMAT.format(version)


def split_pkg_name(product: str) -> tuple[str, str]:
    """Split a product ID such as "OS:name-1.0-1.h1.eulerosv2r8.x86_64".

    Returns the package name and its version-release without the EulerOS
    and architecture suffixes, or ("", "") when the ID cannot be split.
    """
    _, colon, after_colon = product.rpartition(":")
    if not colon:
        return "", ""

    name_before, dash, release = after_colon.rpartition("-")
    if not dash:
        return "", ""

    name, dash, version_head = name_before.rpartition("-")
    if not dash:
        return "", ""
    version = f"{version_head}-{release}"

    last_dot = version.rfind(".")
    if last_dot == -1:
        return "", ""
    without_last = version[:last_dot]
    if "." not in without_last:
        return name, without_last

    second_dot = without_last.rfind(".")
    if version[second_dot + 1:].startswith("euleros"):
        return name, version[:second_dot]
    return name, without_last


# Decoded documents. Field names match case-insensitively.


@dataclass
class _Production:
    product_id: str = ""
    cpe: str = ""
    text: str = ""


@dataclass
class _PackageProduction:
    package_type: str = ""
    productions: list[_Production] = field(default_factory=list)


@dataclass
class _Note:
    text: str = ""
    type: str = ""


@dataclass
class _Cvrf:
    id: str = ""
    title: str = ""
    notes: list[_Note] = field(default_factory=list)
    change_productions: list[_PackageProduction] = field(default_factory=list)
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

    change_productions = [
        _PackageProduction(
            package_type=_text(change, "PackageType"),
            productions=[
                _Production(
                    product_id=_text(prod, "ProductID"),
                    cpe=_text(prod, "CPE"),
                    text=_text(prod, "Text"),
                )
                for prod in _objects(change, "Production")
            ],
        )
        for relationship in _objects(tree, "Relationship")
        for change in _objects(relationship, "ChangeProductions")
    ]
    notes = [_Note(text=_text(n, "Text"), type=_text(n, "Type")) for n in _objects(data, "Notes")]
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
        change_productions=change_productions,
        references=references,
        threat_severities=threats,
    )


def _affected_packages(change_productions: Iterable[_PackageProduction]) -> list[_Package]:
    packages: list[_Package] = []
    for change in change_productions:
        for production in change.productions:
            os_ver = get_os_version(production.cpe)
            if not os_ver:
                log.warning("Unable to parse OS version: %s", production.cpe)
                continue
            name, version = split_pkg_name(production.product_id)
            if not name or not version:
                log.warning("Unable to parse Production: %s", production)
                continue
            packages.append(
                _Package(
                    name=name,
                    fixed_version=version,
                    os_ver=os_ver,
                    arches=[change.package_type],
                )
            )
    return packages


def _description(notes: Iterable[_Note]) -> str:
    return next((n.text for n in notes if n.type == "General"), "")


class EulerSource:
    """Loads EulerOS CVRF advisories into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        log.info("Saving Euler CVRF")
        root_dir = Path(root) / "vuln-list" / EULER_DIR
        try:
            documents = [self._load(path) for path in walk_files(root_dir)]
        except (OSError, ValueError) as exc:
            raise SourceError(f"error in Euler CVRF walk: {exc}") from exc

        try:
            with self.store.batch_update():
                self._commit(documents)
        except (ValueError, TypeError) as exc:
            raise SourceError(f"error in Euler CVRF save: {exc}") from exc

    def get(self, version: str, pkg_name: str, arch: str) -> list[Advisory]:
        """Advisories for a package in a release that apply to the architecture."""
        advisories = self.store.get_advisories(EULER_FORMAT.format(version), pkg_name)
        return [adv for adv in advisories if arch in adv.arches]

    @staticmethod
    def _load(path: Path) -> _Cvrf:
        try:
            return _decode_cvrf(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            raise ValueError(f"failed to decode Euler CVRF JSON: {exc} ({path})") from exc

    def _commit(self, documents: Iterable[_Cvrf]) -> None:
        seen_os_versions: set[str] = set()
        for cvrf in documents:
            packages = _affected_packages(cvrf.change_productions)
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