"""The official Kubernetes CVE feed, read as OSV entries."""

from __future__ import annotations

import os

from .core import DataSource, Ecosystem, Store
from .osv import OSVSource

SOURCE_ID = "k8s"
K8S_DIR = os.path.join("k8s-cve-feed", "vulns")

DATA_SOURCES = {
    Ecosystem.KUBERNETES: DataSource(
        id=SOURCE_ID,
        name="Official Kubernetes CVE Feed",
        url="https://kubernetes.io/docs/reference/issues-security/official-cve-feed/index.json",
    ),
}


def new_vuln_src(store: Store | None = None) -> OSVSource:
    """Source reading the Kubernetes CVE feed."""
    return OSVSource(K8S_DIR, SOURCE_ID, DATA_SOURCES, None, store)