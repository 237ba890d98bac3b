import pytest

from vulnfeeds.cvss import CVSSError, cvss3_score, normalize_cvss4


@pytest.mark.parametrize(
    ("vector", "score"),
    [
        ("CVSS:3.1/AV:N/AC:L/PR:H/UI:N/S:U/C:H/I:H/A:N", 6.5),
        ("CVSS:3.1/AV:L/AC:L/PR:L/UI:N/S:U/C:H/I:H/A:H", 7.8),
        ("CVSS:3.1/AV:L/AC:L/PR:H/UI:N/S:U/C:H/I:H/A:H", 6.7),
        ("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H", 9.8),
        ("CVSS:3.0/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H", 9.8),
    ],
)
def test_cvss3_score(vector, score):
    assert cvss3_score(vector) == score


def test_cvss3_no_impact_scores_zero():
    assert cvss3_score("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:N/I:N/A:N") == 0.0


def test_cvss3_metric_order_does_not_matter():
    a = cvss3_score("CVSS:3.1/AV:N/AC:L/PR:H/UI:N/S:U/C:H/I:H/A:N")
    b = cvss3_score("CVSS:3.1/A:N/I:H/C:H/S:U/UI:N/PR:H/AC:L/AV:N")
    assert a == b


def test_cvss3_temporal_metrics_do_not_raise_score():
    base = "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"
    assert cvss3_score(base + "/E:U/RL:O/RC:U") < cvss3_score(base)
    assert cvss3_score(base + "/E:X/RL:X/RC:X") == cvss3_score(base)


@pytest.mark.parametrize(
    "vector",
    [
        "CVSS:2.0/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
        "AV:L/AC:L/Au:N/C:C/I:C/A:C",
        "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H",
        "CVSS:3.1/AV:Q/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
        "CVSS:3.1/AV:N/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
        "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H/",
        "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H/ZZ:1",
    ],
)
def test_cvss3_invalid(vector):
    with pytest.raises(CVSSError):
        cvss3_score(vector)


CVSS4 = "CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:L/VI:L/VA:L/SC:N/SI:N/SA:N"


def test_normalize_cvss4_roundtrip():
    assert normalize_cvss4(CVSS4) == CVSS4
    assert normalize_cvss4(normalize_cvss4(CVSS4)) == CVSS4


def test_normalize_cvss4_drops_undefined_optional_metrics():
    assert normalize_cvss4(CVSS4 + "/E:X/CR:X") == CVSS4


def test_normalize_cvss4_keeps_defined_optional_metrics():
    assert normalize_cvss4(CVSS4 + "/E:A") == CVSS4 + "/E:A"


def test_normalize_cvss4_reorders():
    shuffled = "CVSS:4.0/SA:N/AV:N/AC:L/AT:N/PR:N/UI:N/VC:L/VI:L/VA:L/SC:N/SI:N"
    assert normalize_cvss4(shuffled) == CVSS4


@pytest.mark.parametrize(
    "vector",
    [
        "CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:L/VI:L/VA:L/SC:N/SI:N",
        "CVSS:4.0/AV:N/AC:L/AT:N/PR:N/UI:N/VC:L/VI:L/VA:L/SC:N/SI:N/SA:Q",
        "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
        "nonsense",
    ],
)
def test_normalize_cvss4_invalid(vector):
    with pytest.raises(CVSSError):
        normalize_cvss4(vector)