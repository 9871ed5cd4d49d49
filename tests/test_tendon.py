"""
Tests for the tendon wrap path: ordering, structure checks and name resolution.
"""

import pytest

from mjtree import InvalidReference, Spec
from mjtree.handlers.tendon import GeomWrap, JointWrap, PulleyWrap, SiteWrap, validate_path


def _arm_with_sites(spec):
    """A body with sites s0..s2, geoms g0..g1 and side site side0."""
    body = spec.add_body(spec.world)
    for name in ("s0", "s1", "s2", "side0"):
        spec.get(spec.add_site(body)).name = name
    for name in ("g0", "g1"):
        spec.get(spec.add_geom(body)).name = name
    spec.get(spec.add_joint(body)).name = "j0"
    return body


def test_path_order_is_preserved():
    spec = Spec()
    _arm_with_sites(spec)
    tendon = spec.add_tendon()
    spec.wrap_site(tendon, "s0")
    spec.wrap_geom(tendon, "g0", sidesite="side0")
    spec.wrap_site(tendon, "s1")
    spec.wrap_pulley(tendon, 2.0)
    spec.wrap_site(tendon, "s1")
    spec.wrap_site(tendon, "s2")

    assert spec.tendon_path(tendon) == [
        SiteWrap("s0"),
        GeomWrap("g0", "side0"),
        SiteWrap("s1"),
        PulleyWrap(2.0),
        SiteWrap("s1"),
        SiteWrap("s2"),
    ]

    report = spec.finalize()
    assert report.ok, [str(diag) for diag in report]
    path = spec.canonical(tendon)["path"]
    assert [segment["kind"] for segment in path] == ["site", "geom", "site", "pulley", "site", "site"]


def test_wrap_elements_belong_to_the_tendon():
    spec = Spec()
    tendon = spec.add_tendon()
    wrap = spec.wrap_joint(tendon, "j0", 0.5)
    assert spec.parent_of(wrap) == tendon
    assert spec.get(wrap).segment == JointWrap("j0", 0.5)

    body = spec.add_body(spec.world)
    with pytest.raises(InvalidReference):
        spec.wrap_site(body, "s0")


def test_consecutive_geoms_without_side_site_are_flagged():
    spec = Spec()
    _arm_with_sites(spec)
    tendon = spec.add_tendon()
    spec.wrap_site(tendon, "s0")
    spec.wrap_geom(tendon, "g0")
    spec.wrap_geom(tendon, "g1")
    spec.wrap_site(tendon, "s1")

    report = spec.finalize(tendon)
    assert report.codes() == ["InvalidWrapPath"]
    assert "consecutive geoms" in spec.get(tendon).error


def test_one_side_site_is_enough_for_consecutive_geoms():
    problems = validate_path([SiteWrap("a"), GeomWrap("g0"), GeomWrap("g1", "side"), SiteWrap("b")])
    assert problems == []


def test_pulley_divisor_must_be_non_zero():
    problems = validate_path([SiteWrap("a"), SiteWrap("b"), PulleyWrap(0.0), SiteWrap("c"), SiteWrap("d")])
    assert len(problems) == 1
    assert "divisor" in problems[0][1]


def test_structural_path_checks():
    assert "empty" in validate_path([])[0][1]

    mixed = validate_path([JointWrap("j0", 1.0), SiteWrap("a")])
    assert any("mixes" in message for _, message in mixed)

    dangling = validate_path([SiteWrap("a"), GeomWrap("g0", "side")])
    assert any("end at a site" in message for _, message in dangling)

    fixed = validate_path([JointWrap("j0", 1.0), JointWrap("j1", -1.0)])
    assert fixed == []


def test_unknown_names_are_unresolved():
    spec = Spec()
    _arm_with_sites(spec)
    tendon = spec.add_tendon()
    spec.wrap_site(tendon, "s0")
    spec.wrap_site(tendon, "nowhere")

    report = spec.finalize(tendon)
    assert report.codes() == ["UnresolvedReference"]
    assert "nowhere" in report.diagnostics[0].message
