import json

import pytest

from vulnfeeds.core import Advisory, DataSource, Severity, SourceError, Store, VulnerabilityDetail
from vulnfeeds.openeuler import (
    OpenEulerSource,
    get_os_version,
    severity_from_threat,
    split_pkg_name,
)

CVE_SOURCE = DataSource(
    id="openeuler",
    name="openEuler CVRF",
    url="https://repo.openeuler.org/security/data/cvrf",
)

DESCRIPTION = (
    "\n\nSecurity Fix(es):\n\nHeap-based buffer overflow in the JPEG2000 image tile "
    "decoder in OpenJPEG before 1.5.2..."
)

LTS = "cpe:/a:openEuler:openEuler:20.03-LTS"
SP1 = "cpe:/a:openEuler:openEuler:20.03-LTS-SP1"


def _prod(arch, cpe):
    return {
        "ProductID": f"openjpeg-1.5.1-25.{arch}",
        "CPE": cpe,
        "Text": f"openjpeg-1.5.1-25.oe1.{arch}.rpm",
    }


HAPPY_DOC = {
    "Title": "An update for openjpeg is now available for openEuler-20.03-LTS and openEuler-20.03-LTS-SP1",
    "Type": "Security Advisory",
    "Tracking": {"ID": "openEuler-SA-2021-1061"},
    "Notes": [
        {"Title": "Synopsis", "Type": "General", "Text": "openjpeg security update"},
        {"Title": "Description", "Type": "General", "Text": DESCRIPTION},
    ],
    "ProductTree": {
        "Branches": [
            {
                "Type": "Product Name",
                "Name": "openEuler",
                "Productions": [{"ProductID": "openEuler-20.03-LTS", "CPE": LTS, "Text": "openEuler-20.03-LTS"}],
            },
            {"Type": "Package Arch", "Name": "aarch64", "Productions": [_prod("aarch64", LTS)]},
            {
                "Type": "Package Arch",
                "Name": "noarch",
                "Productions": [_prod("noarch", LTS), _prod("noarch", SP1)],
            },
            {
                "Type": "Package Arch",
                "Name": "x86_64",
                "Productions": [_prod("x86_64", LTS), _prod("x86_64", SP1)],
            },
            {
                "Type": "Package Arch",
                "Name": "src",
                "Productions": [
                    {"ProductID": "openjpeg-1.5.1-25", "CPE": LTS, "Text": "openjpeg-1.5.1-25.oe1.src.rpm"},
                    {"ProductID": "openjpeg-1.5.1-25", "CPE": SP1, "Text": "openjpeg-1.5.1-25.oe1.src.rpm"},
                ],
            },
        ]
    },
    "References": [
        {"URL": "https://openeuler.org/en/security/safety-bulletin/detail.html?id=openEuler-SA-2021-1061"},
        {"URL": "https://openeuler.org/en/security/cve/detail.html?id=CVE-2014-0158"},
        {"URL": "https://nvd.nist.gov/vuln/detail/CVE-2014-0158"},
    ],
    "Vulnerabilities": [
        {"CVE": "CVE-2014-0158", "Threats": [{"Type": "Impact", "Severity": "High"}]}
    ],
}


def _write(root, name, content):
    directory = root / "vuln-list" / "openeuler"
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(content, encoding="utf-8")


@pytest.fixture
def happy_store(tmp_path):
    _write(tmp_path, "openEuler-SA-2021-1061.json", json.dumps(HAPPY_DOC))
    store = Store()
    OpenEulerSource(store).update(tmp_path)
    return store


def test_update_data_sources(happy_store):
    assert happy_store.get("data-source", "openEuler-20.03-LTS") == CVE_SOURCE
    assert happy_store.get("data-source", "openEuler-20.03-LTS-SP1") == CVE_SOURCE


def test_update_advisories(happy_store):
    assert happy_store.get(
        "advisory-detail", "openEuler-SA-2021-1061", "openEuler-20.03-LTS", "openjpeg"
    ) == Advisory(fixed_version="1.5.1-25", arches=["aarch64", "noarch", "x86_64"])
    assert happy_store.get(
        "advisory-detail", "openEuler-SA-2021-1061", "openEuler-20.03-LTS-SP1", "openjpeg"
    ) == Advisory(fixed_version="1.5.1-25", arches=["noarch", "x86_64"])


def test_update_vulnerability_detail(happy_store):
    assert happy_store.get(
        "vulnerability-detail", "openEuler-SA-2021-1061", "openeuler"
    ) == VulnerabilityDetail(
        title="An update for openjpeg is now available for openEuler-20.03-LTS and openEuler-20.03-LTS-SP1",
        description=DESCRIPTION,
        references=[
            "https://openeuler.org/en/security/safety-bulletin/detail.html?id=openEuler-SA-2021-1061",
            "https://openeuler.org/en/security/cve/detail.html?id=CVE-2014-0158",
            "https://nvd.nist.gov/vuln/detail/CVE-2014-0158",
        ],
        severity=Severity.HIGH,
    )
    assert happy_store.get("vulnerability-id", "openEuler-SA-2021-1061") == {}


def test_update_falls_back_to_production_text(tmp_path):
    cpe = "cpe:/a:openEuler:openEuler:22.03-LTS-SP2"
    doc = {
        "Tracking": {"ID": "openEuler-SA-2023-0001"},
        "ProductTree": {
            "Branches": [
                {"Type": "Package Arch", "Name": "x86_64",
                 "Productions": [{"ProductID": "x", "CPE": cpe, "Text": "x"}]},
                {"Type": "Package Arch", "Name": "src",
                 "Productions": [{"ProductID": "ignition", "CPE": cpe,
                                  "Text": "ignition-2.14.0-2.oe2203sp2.src.rpm"}]},
            ]
        },
    }
    _write(tmp_path, "doc.json", json.dumps(doc))
    store = Store()
    OpenEulerSource(store).update(tmp_path)
    assert store.get(
        "advisory-detail", "openEuler-SA-2023-0001", "openEuler-22.03-LTS-SP2", "ignition"
    ) == Advisory(fixed_version="2.14.0-2", arches=["x86_64"])


def test_update_skips_documents_without_packages(tmp_path):
    doc = {"Tracking": {"ID": "openEuler-SA-2020-0001"}, "ProductTree": {"Branches": []}}
    _write(tmp_path, "doc.json", json.dumps(doc))
    store = Store()
    OpenEulerSource(store).update(tmp_path)
    assert store.has("vulnerability-id", "openEuler-SA-2020-0001") is False


def test_update_missing_directory(tmp_path):
    with pytest.raises(SourceError) as info:
        OpenEulerSource(Store()).update(tmp_path / "badPath")
    assert isinstance(info.value.__cause__, FileNotFoundError)


def test_update_broken_json(tmp_path):
    _write(tmp_path, "broken.json", "{ not json")
    with pytest.raises(SourceError, match="failed to decode openEuler CVRF JSON"):
        OpenEulerSource(Store()).update(tmp_path)


@pytest.fixture
def kernel_source():
    store = Store()
    store.put_advisory_detail(
        "openEuler-SA-2024-1349",
        "kernel",
        ["openEuler-22.03-LTS-SP2"],
        Advisory(fixed_version="5.10.0-153.48.0.126", arches=["aarch64", "x86_64"]),
    )
    return OpenEulerSource(store)


def test_get_happy(kernel_source):
    assert kernel_source.get("22.03-LTS-SP2", "kernel", "aarch64") == [
        Advisory(
            vulnerability_id="openEuler-SA-2024-1349",
            fixed_version="5.10.0-153.48.0.126",
            arches=["aarch64", "x86_64"],
        )
    ]


def test_get_no_arch(kernel_source):
    assert kernel_source.get("22.03-LTS-SP2", "kernel", "noarch") == []


def test_get_no_advisories(kernel_source):
    assert kernel_source.get("23.09", "kernel", "") == []


@pytest.mark.parametrize(
    "threat, expected",
    [
        ("Low", Severity.LOW),
        ("Medium", Severity.MEDIUM),
        ("High", Severity.HIGH),
        ("Critical", Severity.CRITICAL),
        ("", Severity.UNKNOWN),
        ("None", Severity.UNKNOWN),
    ],
)
def test_severity_from_threat(threat, expected):
    assert severity_from_threat(threat) == expected


@pytest.mark.parametrize(
    "cpe, expected",
    [
        ("cpe:/a:openEuler:openEuler:22.03-LTS-SP2", "openEuler-22.03-LTS-SP2"),
        ("cpe:/a:openEuler:openEuler:20.03-LTS", "openEuler-20.03-LTS"),
        ("cpe:/a:openEuler:openEuler:21.03", "openEuler-21.03"),
        ("cpe:/a:openEuler:openEuler-22.03-LTS", "openEuler-22.03-LTS"),
        ("cpe:/a:openEuler:openEuler", ""),
        ("cpe:/a:openEuler:openEuler:20.03-LTS-LTS-SP4", ""),
        ("cpe:/a:openEuler:23.09", ""),
    ],
)
def test_get_os_version(cpe, expected):
    assert get_os_version(cpe) == expected


@pytest.mark.parametrize(
    "product, expected",
    [
        ("ignition-2.14.0-2", ("ignition", "2.14.0-2")),
        ("python-foo-1.0-3", ("python-foo", "1.0-3")),
        ("name-1.0", ("", "")),
        ("plain", ("", "")),
    ],
)
def test_split_pkg_name(product, expected):
    assert split_pkg_name(product) == expected