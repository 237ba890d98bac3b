# vulnfeeds

`vulnfeeds` reads vulnerability feeds that are already checked out to a local
cache directory and records their advisories and vulnerability details in an
in-memory `Store` (`vulnfeeds.core.Store`). The store can then be queried per
platform and package.

## Supported feeds

| Module                | Source class / factory   | Directory read below the cache root |
|-----------------------|--------------------------|-------------------------------------|
| `vulnfeeds.nvd`       | `NVDSource`              | `vuln-list-nvd/api`                 |
| `vulnfeeds.photon`    | `PhotonSource`           | `vuln-list/photon`                  |
| `vulnfeeds.node`      | `NodeSource`             | `nodejs-security-wg/vuln`           |
| `vulnfeeds.osv`       | `OSVSource`              | the directory given to it           |
| `vulnfeeds.govulndb`  | `new_vuln_src(store)`    | `govulndb/data/osv`                 |
| `vulnfeeds.k8svulndb` | `new_vuln_src(store)`    | `k8s-cve-feed/vulns`                |
| `vulnfeeds.debian`    | `DebianSource`           | `vuln-list-debian/tracker`          |
| `vulnfeeds.openeuler` | `OpenEulerSource`        | `vuln-list/openeuler`               |
| `vulnfeeds.euler`     | `EulerSource`            | `vuln-list/euler`                   |
| `vulnfeeds.glad`      | `GladSource`             | `vuln-list/glad/conan`              |

`govulndb.new_vuln_src` keeps only `stdlib` advisories and adds the entry's
`database_specific.url` to their references. `GladSource` reads Conan
advisories only, from files whose names start with `CVE`, `GHSA` or `GMS`.

## Installation

```
pip install .
```

## Usage

Each source takes a `Store` (a new one is made when none is given), and its
`update(root)` method loads every file for that feed under the cache root:

```python
from vulnfeeds.core import Store
from vulnfeeds.photon import PhotonSource
from vulnfeeds.debian import DebianSource

store = Store()

PhotonSource(store).update("cache")
DebianSource(store).update("cache")

for advisory in PhotonSource(store).get("3.0", "apache-tomcat"):
    print(advisory.vulnerability_id, advisory.fixed_version)
```

`get` returns `Advisory` records ordered by vulnerability ID. The openEuler
and EulerOS sources also take an architecture and return only the advisories
that list it:

```python
from vulnfeeds.openeuler import OpenEulerSource

advisories = OpenEulerSource(store).get("22.03-LTS-SP2", "kernel", "aarch64")
```

An OSV directory of your own can be read with `OSVSource`, mapping ecosystems
to data sources:

```python
from vulnfeeds.core import DataSource, Ecosystem
from vulnfeeds.osv import OSVSource

sources = {Ecosystem.PIP: DataSource(id="osv", name="Python advisories", url="https://example.com/")}
OSVSource("advisories", "osv", sources, None, store).update("cache")
```

The optional transformer is a callable taking the list of `OSVAdvisory`
records and the raw entry and returning the records to store. `DebianSource`
likewise accepts a `put(store, advisory)` callable that replaces how each
`DebianAdvisory` is written.

Stored values can also be read by key path. The first element is the kind of
record (`data-source`, `advisory-detail`, `vulnerability-detail`,
`vulnerability-id`) and the rest identify it:

```python
store.get("vulnerability-detail", "CVE-2019-0199", "photon")
store.has("data-source", "Photon OS 3.0")
```

`Store.get` raises `KeyError` for a missing path; `Store.has` also matches
path prefixes. Writes made inside `with store.batch_update():` are undone if
the block raises. Failures while reading, decoding or saving a feed are
raised as `vulnfeeds.core.SourceError`.

## Helpers

- `vulnfeeds.core.parse_severity(name)` maps a name such as `"HIGH"` to a
  `Severity`; `bucket_name(ecosystem, source_name)` builds names like
  `"npm::Node.js Ecosystem Security Working Group"`.
- `vulnfeeds.cvss.cvss3_score(vector)` scores a CVSS v3.0/v3.1 vector, and
  `normalize_cvss4(vector)` validates a CVSS v4.0 vector and puts it in
  canonical form.
- `vulnfeeds.osvrange.VersionRange` renders OSV ranges as constraint strings
  such as `">=1.24.0, <1.24.14"` and checks with `contains(version)` whether a
  version falls inside, using rules for the given ecosystem.
- `vulnfeeds.debian.compare_versions(v1, v2)` compares Debian package versions.

## What it does not do

- It does not download feeds; the cache directory must already be filled.
- The `Store` lives in memory only; nothing is written to disk.
- There is no command-line program; the package is used as a library.

## Running the tests

```
pip install ".[test]"
pytest
```