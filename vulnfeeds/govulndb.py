"""The Go Vulnerability Database, read as OSV entries."""

from __future__ import annotations

import os
from dataclasses import replace
from typing import Any

from .core import DataSource, Ecosystem, Store
from .osv import OSVAdvisory, OSVSource

SOURCE_ID = "govulndb"
OSV_DIR = os.path.join("govulndb", "data", "osv")

DATA_SOURCES = {
    Ecosystem.GO: DataSource(
        id=SOURCE_ID,
        name="The Go Vulnerability Database",
        url="https://pkg.go.dev/vuln/",
    ),
}


def _database_specific(entry: dict[str, Any]) -> dict[str, Any]:
    if "database_specific" not in entry:
        raise ValueError("JSON decode error: missing database_specific")
    value = entry["database_specific"]
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("JSON decode error: database_specific must be an object")
    return value


def transform_advisories(
    advisories: list[OSVAdvisory], entry: dict[str, Any]
) -> list[OSVAdvisory]:
    """Keep only standard-library advisories and add the entry's URL to them."""
    url = _database_specific(entry).get("url") or ""
    if not isinstance(url, str):
        raise ValueError("JSON decode error: url must be a string")
    filtered = []
    for adv in advisories:
        if adv.pkg_name != "stdlib":
            continue
        if url:
            adv = replace(adv, references=[*adv.references, url])
        filtered.append(adv)
    return filtered


def new_vuln_src(store: Store | None = None) -> OSVSource:
    """Source reading the Go Vulnerability Database."""
    return OSVSource(OSV_DIR, SOURCE_ID, DATA_SOURCES, transform_advisories, store)