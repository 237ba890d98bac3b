"""National Vulnerability Database (API 2.0 JSON) source."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .core import (
    Severity,
    SourceError,
    Store,
    VulnerabilityDetail,
    parse_severity,
    walk_files,
)
from .cvss import CVSSError, normalize_cvss4

log = logging.getLogger(__name__)

SOURCE_ID = "nvd"
VULN_LIST_DIR = "vuln-list-nvd"
API_DIR = "api"
# Only metrics published by NVD itself are kept.
NVD_SOURCE = "[email]"


def _severity(name: Any) -> Severity:
    try:
        return parse_severity(name)
    except ValueError:
        return Severity.UNKNOWN


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    head, _, fraction = value.partition(".")
    try:
        moment = datetime.strptime(head, "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return None
    if fraction:
        if not fraction.isdigit():
            return None
        moment = moment.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return moment.replace(tzinfo=timezone.utc)


def _list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be a list")
    return value


def _nvd_metric(metrics: Iterable[dict[str, Any]]) -> dict[str, Any] | None:
    return next((m for m in metrics if m.get("source") == NVD_SOURCE), None)


def _cvss_v2(metrics: list[dict[str, Any]]) -> tuple[float, str, Severity]:
    metric = _nvd_metric(metrics)
    if metric is None:
        return 0.0, "", Severity.UNKNOWN
    data = metric.get("cvssData") or {}
    return (
        float(data.get("baseScore") or 0.0),
        data.get("vectorString") or "",
        _severity(metric.get("baseSeverity")),
    )


def _cvss_v3(
    metrics_v31: list[dict[str, Any]], metrics_v30: list[dict[str, Any]]
) -> tuple[float, str, Severity]:
    metric = _nvd_metric([*metrics_v31, *metrics_v30])
    if metric is None:
        return 0.0, "", Severity.UNKNOWN
    data = metric.get("cvssData") or {}
    return (
        float(data.get("baseScore") or 0.0),
        data.get("vectorString") or "",
        _severity(data.get("baseSeverity")),
    )


def _cvss_v40(metrics: list[dict[str, Any]]) -> tuple[float, str, Severity]:
    metric = _nvd_metric(metrics)
    if metric is None:
        return 0.0, "", Severity.UNKNOWN
    data = metric.get("cvssData") or {}
    raw_vector = data.get("vectorString") or ""
    try:
        vector = normalize_cvss4(raw_vector.removesuffix("/"))
    except CVSSError as exc:
        log.warning("failed to parse CVSSv4.0 vector. vector: %s, err: %s", raw_vector, exc)
        return 0.0, "", Severity.UNKNOWN
    return float(data.get("baseScore") or 0.0), vector, _severity(data.get("baseSeverity"))


def _detail(cve: dict[str, Any]) -> VulnerabilityDetail:
    metrics = cve.get("metrics") or {}
    score_v2, vector_v2, severity_v2 = _cvss_v2(_list(metrics, "cvssMetricV2"))
    score_v3, vector_v3, severity_v3 = _cvss_v3(
        _list(metrics, "cvssMetricV31"), _list(metrics, "cvssMetricV30")
    )
    score_v40, vector_v40, severity_v40 = _cvss_v40(_list(metrics, "cvssMetricV40"))

    references = [ref.get("url", "") for ref in _list(cve, "references")]
    description = next(
        (d["value"] for d in _list(cve, "descriptions") if d.get("value")), ""
    )
    cwe_ids = [
        desc.get("value", "")
        for weakness in _list(cve, "weaknesses")
        for desc in _list(weakness, "description")
        if desc.get("value", "").startswith("CWE")
    ]

    return VulnerabilityDetail(
        cvss_score=score_v2,
        cvss_vector=vector_v2,
        cvss_score_v3=score_v3,
        cvss_vector_v3=vector_v3,
        cvss_score_v40=score_v40,
        cvss_vector_v40=vector_v40,
        severity=severity_v2,
        severity_v3=severity_v3,
        severity_v40=severity_v40,
        cwe_ids=list(dict.fromkeys(cwe_ids)),
        references=references,
        title="",
        description=description,
        published_date=_parse_time(cve.get("published")),
        last_modified_date=_parse_time(cve.get("lastModified")),
    )


class NVDSource:
    """Loads NVD CVE records into a store."""

    name = SOURCE_ID

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        root_dir = Path(root) / VULN_LIST_DIR / API_DIR
        try:
            cves = [self._load(path) for path in walk_files(root_dir)]
        except (OSError, ValueError) as exc:
            raise SourceError(f"error in NVD walk: {exc}") from exc

        log.info("NVD batch update")
        try:
            with self.store.batch_update():
                for cve in cves:
                    self.store.put_vulnerability_detail(cve.get("id", ""), SOURCE_ID, _detail(cve))
        except (ValueError, TypeError, AttributeError) as exc:
            raise SourceError(f"error in NVD save: {exc}") from exc

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise ValueError(f"failed to decode NVD JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("failed to decode NVD JSON: expected a JSON object")
        return data