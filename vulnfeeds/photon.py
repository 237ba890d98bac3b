"""Photon OS CVE metadata source."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .core import Advisory, DataSource, SourceError, Store, VulnerabilityDetail, walk_files

log = logging.getLogger(__name__)

PHOTON_DIR = "photon"
PLATFORM_FORMAT = "Photon OS {}"

SOURCE = DataSource(
    id="photon",
    name="Photon OS CVE metadata",
    url="https://packages.vmware.com/photon/photon_cve_metadata/",
)


def _text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass
class PhotonCVE:
    """One entry of the Photon OS CVE metadata."""

    os_version: str = ""
    cve_id: str = ""
    pkg: str = ""
    cve_score: float = 0.0
    aff_ver: str = ""
    res_ver: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "PhotonCVE":
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        score = data.get("cve_score")
        if score is None:
            score = 0.0
        elif isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValueError("field 'cve_score' must be a number")
        return cls(
            os_version=_text(data, "os_version"),
            cve_id=_text(data, "cve_id"),
            pkg=_text(data, "pkg"),
            cve_score=float(score),
            aff_ver=_text(data, "aff_ver"),
            res_ver=_text(data, "res_ver"),
        )


class PhotonSource:
    """Loads Photon OS CVE metadata into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        root_dir = Path(root) / "vuln-list" / PHOTON_DIR
        try:
            cves = [self._load(path) for path in walk_files(root_dir)]
        except (OSError, ValueError) as exc:
            raise SourceError(f"error in Photon walk: {exc}") from exc

        log.info("Saving Photon DB")
        with self.store.batch_update():
            for cve in cves:
                self._commit(cve)

    @staticmethod
    def _load(path: Path) -> PhotonCVE:
        try:
            return PhotonCVE.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except ValueError as exc:
            raise ValueError(f"failed to decode Photon JSON: {exc}") from exc

    def _commit(self, cve: PhotonCVE) -> None:
        platform = PLATFORM_FORMAT.format(cve.os_version)
        self.store.put_data_source(platform, SOURCE)
        self.store.put_advisory_detail(
            cve.cve_id, cve.pkg, [platform], Advisory(fixed_version=cve.res_ver)
        )
        # Photon publishes CVSS v3 scores.
        self.store.put_vulnerability_detail(
            cve.cve_id, SOURCE.id, VulnerabilityDetail(cvss_score_v3=cve.cve_score)
        )
        self.store.put_vulnerability_id(cve.cve_id)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        return self.store.get_advisories(PLATFORM_FORMAT.format(release), pkg_name)