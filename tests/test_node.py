import json

import pytest

from vulnfeeds.core import Advisory, DataSource, SourceError, Store, VulnerabilityDetail
from vulnfeeds.node import NodeSource, convert_to_generic_advisory, parse_cvss_score

BUCKET = "npm::Node.js Ecosystem Security Working Group"
SOURCE = DataSource(
    id="nodejs-security-wg",
    name="Node.js Ecosystem Security Working Group",
    url="https://github.com/nodejs/security-wg",
)

BASSMASTER_DESC = (
    "A vulnerability exists in bassmaster <= 1.5.1 that allows for an attacker to provide "
    "arbitrary JavaScript that is then executed server side via eval."
)
BASSMASTER_REFS = [
    "https://www.npmjs.org/package/bassmaster",
    "https://github.com/hapijs/bassmaster/commit/b751602d8cb7194ee62a61e085069679525138c4",
]
CARES_DESC = (
    "The c-ares function ares_parse_naptr_reply(), which is used for parsing NAPTR\n"
    "responses, could be triggered to read memory outside of the given input buffer\n"
    "if the passed in DNS response packet was crafted in a particular way.\n\n"
)
HUBL_DESC = (
    "The hubl-server module is a wrapper for the HubL Development Server.\n\n"
    "During installation hubl-server downloads a set of dependencies from api.hubapi.com. "
    "It appears in the code that these files are downloaded over HTTPS however the "
    "api.hubapi.com endpoint redirects to a HTTP url. Because of this behavior an attacker "
    "with the ability to man-in-the-middle a developer or system performing a package "
    "installation could compromise the integrity of the installation."
)


def write(root, rel, data):
    path = root / "nodejs-security-wg" / "vuln" / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")


def bassmaster(score):
    return {
        "id": 1,
        "title": "Arbitrary JavaScript Execution",
        "module_name": "bassmaster",
        "cves": ["CVE-2014-7205"],
        "vulnerable_versions": "<=1.5.1",
        "patched_versions": ">=1.5.2",
        "overview": BASSMASTER_DESC,
        "references": BASSMASTER_REFS,
        "cvss_score": score,
    }


def run(root):
    store = Store()
    NodeSource(store).update(root)
    return store


@pytest.mark.parametrize("score", [6.5, "6.5 (Medium)"])
def test_update_bassmaster(tmp_path, score):
    write(tmp_path, "npm/1.json", bassmaster(score))
    store = run(tmp_path)
    assert store.get("data-source", BUCKET) == SOURCE
    assert store.get("advisory-detail", "CVE-2014-7205", BUCKET, "bassmaster") == Advisory(
        patched_versions=[">=1.5.2"], vulnerable_versions=["<=1.5.1"]
    )
    assert store.get("vulnerability-detail", "CVE-2014-7205", "nodejs-security-wg") == (
        VulnerabilityDetail(
            id="CVE-2014-7205",
            title="Arbitrary JavaScript Execution",
            description=BASSMASTER_DESC,
            references=BASSMASTER_REFS,
            cvss_score=6.5,
        )
    )
    assert store.get("vulnerability-id", "CVE-2014-7205") == {}


def test_core_is_skipped(tmp_path):
    write(tmp_path, "core/1.json", {"id": 1, "cve": ["CVE-2017-1000381"], "vulnerable": "8.x"})
    store = run(tmp_path)
    assert store.get("data-source", BUCKET) == SOURCE
    assert not store.has("advisory-detail")
    assert not store.has("vulnerability-id")


def test_no_cvss_no_severity(tmp_path):
    write(
        tmp_path,
        "npm/0.json",
        {"id": 0, "module_name": "missingcvss-missingseverity-package", "overview": CARES_DESC},
    )
    store = run(tmp_path)
    assert store.get(
        "advisory-detail", "NSWG-ECO-0", BUCKET, "missingcvss-missingseverity-package"
    ) == Advisory()
    assert store.get("vulnerability-detail", "NSWG-ECO-0", "nodejs-security-wg") == (
        VulnerabilityDetail(id="NSWG-ECO-0", description=CARES_DESC, cvss_score=-1)
    )
    assert store.get("vulnerability-id", "NSWG-ECO-0") == {}


def test_null_cvss(tmp_path):
    write(
        tmp_path,
        "npm/334.json",
        {
            "id": 334,
            "title": "Downloads resources over HTTP",
            "module_name": "hubl-server",
            "cves": [],
            "vulnerable_versions": "<=99.999.99999",
            "patched_versions": "<0.0.0",
            "overview": HUBL_DESC,
            "cvss_score": None,
        },
    )
    store = run(tmp_path)
    assert store.get("advisory-detail", "NSWG-ECO-334", BUCKET, "hubl-server") == Advisory(
        patched_versions=["<0.0.0"], vulnerable_versions=["<=99.999.99999"]
    )
    assert store.get("vulnerability-detail", "NSWG-ECO-334", "nodejs-security-wg") == (
        VulnerabilityDetail(
            id="NSWG-ECO-334",
            title="Downloads resources over HTTP",
            description=HUBL_DESC,
            cvss_score=-1,
        )
    )
    assert store.get("vulnerability-id", "NSWG-ECO-334") == {}


def test_invalid_json_fails_and_rolls_back(tmp_path):
    write(tmp_path, "npm/1.json", "{ invalid")
    store = Store()
    with pytest.raises(SourceError, match="failed to update node vulnerabilities"):
        NodeSource(store).update(tmp_path)
    assert not store.has("data-source")


def test_missing_directory(tmp_path):
    with pytest.raises(SourceError):
        NodeSource(Store()).update(tmp_path / "absent")


def test_module_name_lowercased(tmp_path):
    record = bassmaster(6.5)
    record["module_name"] = "BassMaster"
    write(tmp_path, "npm/1.json", record)
    store = run(tmp_path)
    assert store.has("advisory-detail", "CVE-2014-7205", BUCKET, "bassmaster")
    assert not store.has("advisory-detail", "CVE-2014-7205", BUCKET, "BassMaster")


@pytest.mark.parametrize(
    "value,expected", [(4.8, 4.8), ("4.8 (Medium)", 4.8), (None, -1.0), (7, 7.0)]
)
def test_parse_cvss_score(value, expected):
    assert parse_cvss_score(value) == expected


def test_parse_cvss_score_invalid_string():
    with pytest.raises(ValueError):
        parse_cvss_score("high")


def test_convert_to_generic_advisory_splits_ranges():
    advisory = convert_to_generic_advisory(
        {"vulnerable_versions": "<1.0.0 || >=2.0.0 <2.1.0", "patched_versions": ""}
    )
    assert advisory.vulnerable_versions == ["<1.0.0", ">=2.0.0 <2.1.0"]
    assert advisory.patched_versions == []