"""GitLab Advisory Database (community edition) source."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

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

log = logging.getLogger(__name__)

GLAD_DIR = "glad"
CONAN = "conan"

SUPPORTED_ID_PREFIXES = ("CVE", "GHSA", "GMS")

SOURCE = DataSource(
    id="glad",
    name="GitLab Advisory Database Community",
    url="https://gitlab.com/gitlab-org/advisories-community",
)

# GLAD package type => ecosystem used in bucket names.
ECOSYSTEMS: dict[str, Ecosystem | str] = {
    CONAN: next((e for e in Ecosystem if e.value == CONAN), CONAN),
}


def is_supported_id(file_name: str) -> bool:
    """Tell whether an advisory file name carries a supported ID prefix."""
    return file_name.startswith(SUPPORTED_ID_PREFIXES)


@dataclass
class _GladAdvisory:
    identifier: str = ""
    package_slug: str = ""
    title: str = ""
    description: str = ""
    affected_range: str = ""
    fixed_versions: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)


def _field(data: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    wanted = {name.lower() for name in names}
    return next((v for k, v in data.items() if k.lower() in wanted), None)


def _text(data: dict[str, Any], *names: str) -> str:
    value = _field(data, *names)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {names[0]!r} must be a string")
    return value


def _strings(data: dict[str, Any], *names: str) -> list[str]:
    value = _field(data, *names)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field {names[0]!r} must be a list of strings")
    return list(value)


def _decode(data: Any) -> _GladAdvisory:
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return _GladAdvisory(
        identifier=_text(data, "Identifier"),
        package_slug=_text(data, "PackageSlug", "package_slug"),
        title=_text(data, "Title"),
        description=_text(data, "Description"),
        affected_range=_text(data, "AffectedRange", "affected_range"),
        fixed_versions=_strings(data, "FixedVersions", "fixed_versions"),
        urls=_strings(data, "Urls"),
    )


class GladSource:
    """Loads GitLab Advisory Database entries into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        for package_type in ECOSYSTEMS:
            log.info("    Updating GitLab Advisory Database %s...", package_type.title())
            root_dir = Path(root) / "vuln-list" / GLAD_DIR / package_type
            try:
                self._update(package_type, root_dir)
            except (OSError, ValueError) as exc:
                raise SourceError(f"update error: {exc}") from exc

    def _update(self, package_type: str, root_dir: Path) -> None:
        try:
            advisories = [
                self._load(path) for path in walk_files(root_dir) if is_supported_id(path.name)
            ]
        except (OSError, ValueError) as exc:
            raise ValueError(f"walk error: {exc}") from exc

        try:
            with self.store.batch_update():
                for advisory in advisories:
                    self._commit(package_type, advisory)
        except (ValueError, TypeError, KeyError) as exc:
            raise ValueError(f"save error: {exc}") from exc

    @staticmethod
    def _load(path: Path) -> _GladAdvisory:
        try:
            return _decode(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            raise ValueError(f"failed to decode GLAD: {exc}") from exc

    def _commit(self, package_type: str, glad: _GladAdvisory) -> None:
        # e.g. "conan/gsoap" => "conan", "gsoap"
        _, sep, pkg_name = glad.package_slug.partition("/")
        if not sep:
            raise ValueError(f"failed to parse package slug: {glad.package_slug}")

        ecosystem = ECOSYSTEMS.get(package_type)
        if ecosystem is None:
            raise ValueError(f"failed to get ecosystem: {package_type}")
        bucket = bucket_name(ecosystem, SOURCE.name)
        self.store.put_data_source(bucket, SOURCE)

        self.store.put_advisory_detail(
            glad.identifier,
            pkg_name,
            [bucket],
            Advisory(
                vulnerable_versions=[glad.affected_range],
                patched_versions=list(glad.fixed_versions),
            ),
        )
        # CVSS scores in GLAD come from NVD, so none is stored here.
        self.store.put_vulnerability_detail(
            glad.identifier,
            SOURCE.id,
            VulnerabilityDetail(
                id=glad.identifier,
                severity=Severity.UNKNOWN,
                references=list(glad.urls),
                title=glad.title,
                description=glad.description,
            ),
        )
        self.store.put_vulnerability_id(glad.identifier)