"""Node.js Ecosystem Security Working Group source."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .core import (
    Advisory,
    DataSource,
    Ecosystem,
    SourceError,
    Store,
    VulnerabilityDetail,
    bucket_name,
    walk_files,
)

log = logging.getLogger(__name__)

NODE_DIR = "nodejs-security-wg"

SOURCE = DataSource(
    id="nodejs-security-wg",
    name="Node.js Ecosystem Security Working Group",
    url="https://github.com/nodejs/security-wg",
)

BUCKET_NAME = bucket_name(Ecosystem.NPM, SOURCE.name)


def parse_cvss_score(value: Any) -> float:
    """Read a CVSS score given as a number, as "4.8 (Medium)", or as null.

    Anything that is neither a number nor a string gives -1.
    """
    if isinstance(value, bool):
        return -1.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        head = value.split(" ")[0]
        try:
            return float(head)
        except ValueError:
            raise ValueError(f"invalid CVSS score: {value!r}") from None
    return -1.0


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


def _split_ranges(ranges: str) -> list[str]:
    if not ranges:
        return []
    return [part.strip() for part in ranges.split("||")]


def convert_to_generic_advisory(raw: dict[str, Any]) -> Advisory:
    """Build an advisory from the "||"-separated version ranges of a record."""
    return Advisory(
        vulnerable_versions=_split_ranges(_text(raw, "vulnerable_versions")),
        patched_versions=_split_ranges(_text(raw, "patched_versions")),
    )


class NodeSource:
    """Loads Node.js security working group advisories into a store."""

    name = SOURCE.id

    def __init__(self, store: Store | None = None) -> None:
        self.store = store if store is not None else Store()

    def update(self, root: str | os.PathLike[str]) -> None:
        vuln_root = Path(root) / NODE_DIR / "vuln"
        try:
            with self.store.batch_update():
                self.store.put_data_source(BUCKET_NAME, SOURCE)
                for path in walk_files(vuln_root):
                    if path.name.endswith(".json"):
                        self._commit(path)
        except (OSError, ValueError, TypeError) as exc:
            raise SourceError(f"failed to update node vulnerabilities: {exc}") from exc

    def _commit(self, path: Path) -> None:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a JSON object")

        module_name = _text(raw, "module_name")
        # Records without a module describe Node.js itself.
        if not module_name:
            return
        module_name = module_name.lower()

        raw_id = _field(raw, "id")
        if raw_id is None:
            raw_id = 0
        if isinstance(raw_id, bool) or not isinstance(raw_id, int):
            raise ValueError(f"{path}: field 'id' must be an integer")

        score_value = _field(raw, "cvss_score")
        score = 0.0 if score_value is None else parse_cvss_score(score_value)
        if score <= 0:
            score = -1.0

        vuln_ids = _strings(raw, "cves") or [f"NSWG-ECO-{raw_id}"]
        advisory = convert_to_generic_advisory(raw)
        references = _strings(raw, "references")
        title = _text(raw, "title")
        overview = _text(raw, "overview")

        for vuln_id in vuln_ids:
            self.store.put_advisory_detail(vuln_id, module_name, [BUCKET_NAME], advisory)
            self.store.put_vulnerability_detail(
                vuln_id,
                SOURCE.id,
                VulnerabilityDetail(
                    id=vuln_id,
                    cvss_score=score,
                    references=references,
                    title=title,
                    description=overview,
                ),
            )
            self.store.put_vulnerability_id(vuln_id)