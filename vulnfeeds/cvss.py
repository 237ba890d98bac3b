"""CVSS v3 scoring and CVSS v4.0 vector normalisation."""

from __future__ import annotations

import math


class CVSSError(ValueError):
    """Raised for a malformed CVSS vector."""


def _allowed(spec: dict[str, str]) -> dict[str, frozenset[str]]:
    return {name: frozenset(values.split()) for name, values in spec.items()}


_V3_ALLOWED = _allowed(
    {
        "AV": "N A L P", "AC": "L H", "PR": "N L H", "UI": "N R", "S": "U C",
        "C": "H L N", "I": "H L N", "A": "H L N",
        "E": "X U P F H", "RL": "X O T W U", "RC": "X U R C",
        "CR": "X L M H", "IR": "X L M H", "AR": "X L M H",
        "MAV": "X N A L P", "MAC": "X L H", "MPR": "X N L H", "MUI": "X N R",
        "MS": "X U C", "MC": "X H L N", "MI": "X H L N", "MA": "X H L N",
    }
)
_V3_REQUIRED = ("AV", "AC", "PR", "UI", "S", "C", "I", "A")

_AV = {"N": 0.85, "A": 0.62, "L": 0.55, "P": 0.2}
_AC = {"L": 0.77, "H": 0.44}
_UI = {"N": 0.85, "R": 0.62}
_CIA = {"H": 0.56, "L": 0.22, "N": 0.0}
_PR_UNCHANGED = {"N": 0.85, "L": 0.62, "H": 0.27}
_PR_CHANGED = {"N": 0.85, "L": 0.68, "H": 0.5}
_E = {"X": 1.0, "H": 1.0, "F": 0.97, "P": 0.94, "U": 0.91}
_RL = {"X": 1.0, "U": 1.0, "W": 0.97, "T": 0.96, "O": 0.95}
_RC = {"X": 1.0, "C": 1.0, "R": 0.96, "U": 0.92}
_REQ = {"X": 1.0, "H": 1.5, "M": 1.0, "L": 0.5}

_V4_ORDER = (
    ("AV", "N A L P", True), ("AC", "L H", True), ("AT", "N P", True),
    ("PR", "N L H", True), ("UI", "N P A", True),
    ("VC", "H L N", True), ("VI", "H L N", True), ("VA", "H L N", True),
    ("SC", "H L N", True), ("SI", "H L N", True), ("SA", "H L N", True),
    ("E", "X A P U", False),
    ("CR", "X H M L", False), ("IR", "X H M L", False), ("AR", "X H M L", False),
    ("MAV", "X N A L P", False), ("MAC", "X L H", False), ("MAT", "X N P", False),
    ("MPR", "X N L H", False), ("MUI", "X N P A", False),
    ("MVC", "X H L N", False), ("MVI", "X H L N", False), ("MVA", "X H L N", False),
    ("MSC", "X H L N", False), ("MSI", "X S H L N", False), ("MSA", "X S H L N", False),
    ("S", "X N P", False), ("AU", "X N Y", False), ("R", "X A U I", False),
    ("V", "X D C", False), ("RE", "X L M H", False),
    ("U", "X Clear Green Amber Red", False),
)
_V4_ALLOWED = _allowed({name: values for name, values, _ in _V4_ORDER})
_V4_REQUIRED = tuple(name for name, _, required in _V4_ORDER if required)


def _parse(
    vector: str, prefix: str, allowed: dict[str, frozenset[str]], required: tuple[str, ...]
) -> dict[str, str]:
    if not vector.startswith(prefix + "/"):
        raise CVSSError(f"invalid vector prefix: {vector!r}")
    metrics: dict[str, str] = {}
    for part in vector[len(prefix) + 1 :].split("/"):
        name, sep, value = part.partition(":")
        if not sep or name not in allowed:
            raise CVSSError(f"invalid metric {part!r} in {vector!r}")
        if value not in allowed[name]:
            raise CVSSError(f"invalid value {value!r} for metric {name} in {vector!r}")
        if name in metrics:
            raise CVSSError(f"duplicated metric {name} in {vector!r}")
        metrics[name] = value
    missing = [name for name in required if name not in metrics]
    if missing:
        raise CVSSError(f"missing metrics {', '.join(missing)} in {vector!r}")
    return metrics


def _roundup_31(value: float) -> float:
    scaled = round(value * 100000)
    if scaled % 10000 == 0:
        return scaled / 100000
    return (math.floor(scaled / 10000) + 1) / 10.0


def _roundup_30(value: float) -> float:
    return math.ceil(value * 10) / 10


def cvss3_score(vector: str) -> float:
    """Environmental score of a CVSS 3.0 or 3.1 vector.

    Without environmental or temporal metrics this is the base score.
    """
    if vector.startswith("CVSS:3.1/"):
        prefix, v31, roundup = "CVSS:3.1", True, _roundup_31
    elif vector.startswith("CVSS:3.0/"):
        prefix, v31, roundup = "CVSS:3.0", False, _roundup_30
    else:
        raise CVSSError(f"not a CVSS v3 vector: {vector!r}")
    metrics = _parse(vector, prefix, _V3_ALLOWED, _V3_REQUIRED)

    def pick(modified: str, base: str) -> str:
        value = metrics.get(modified, "X")
        return metrics[base] if value == "X" else value

    changed = pick("MS", "S") == "C"
    miss = min(
        1
        - (1 - _REQ[metrics.get("CR", "X")] * _CIA[pick("MC", "C")])
        * (1 - _REQ[metrics.get("IR", "X")] * _CIA[pick("MI", "I")])
        * (1 - _REQ[metrics.get("AR", "X")] * _CIA[pick("MA", "A")]),
        0.915,
    )
    if not changed:
        impact = 6.42 * miss
    elif v31:
        impact = 7.52 * (miss - 0.029) - 3.25 * (miss * 0.9731 - 0.02) ** 13
    else:
        impact = 7.52 * (miss - 0.029) - 3.25 * (miss - 0.02) ** 15

    privileges = (_PR_CHANGED if changed else _PR_UNCHANGED)[pick("MPR", "PR")]
    exploitability = (
        8.22 * _AV[pick("MAV", "AV")] * _AC[pick("MAC", "AC")] * privileges * _UI[pick("MUI", "UI")]
    )
    if impact <= 0:
        return 0.0

    temporal = _E[metrics.get("E", "X")] * _RL[metrics.get("RL", "X")] * _RC[metrics.get("RC", "X")]
    if changed:
        base = roundup(min(1.08 * (impact + exploitability), 10))
    else:
        base = roundup(min(impact + exploitability, 10))
    return roundup(base * temporal)


def normalize_cvss4(vector: str) -> str:
    """Validate a CVSS v4.0 vector and return it in canonical form.

    Metrics are put in specification order and optional metrics that are
    not defined (``X``) are left out.
    """
    metrics = _parse(vector, "CVSS:4.0", _V4_ALLOWED, _V4_REQUIRED)
    parts = ["CVSS:4.0"]
    for name, _, required in _V4_ORDER:
        value = metrics.get(name, "X")
        if required or value != "X":
            parts.append(f"{name}:{value}")
    return "/".join(parts)