"""
Tests for finalize: snapshots, idempotence, diagnostics and name checks.
"""

import numpy as np
import pytest

from mjtree import InvalidParent, NameCollision, Spec, UnresolvedReference
from mjtree.handlers.finalize import Diagnostic, FinalizeReport


def _build_arm(spec):
    base = spec.add_body(spec.world)
    spec.get(base).name = "base"
    spec.get(base).pos = [0, 0, 0.1]
    hinge = spec.add_joint(base)
    spec.get(hinge).name = "shoulder"
    geom = spec.add_geom(base)
    spec.get(geom).type = "capsule"
    spec.get(geom).fromto = [0, 0, 0, 0, 0, 0.4]
    spec.get(geom).size = [0.04, 0, 0]
    site = spec.add_site(base)
    spec.get(site).name = "tip"
    return base, hinge, geom, site


def _assert_same_snapshot(first, second):
    assert first.keys() == second.keys()
    for key in first:
        a, b = first[key], second[key]
        if isinstance(a, np.ndarray):
            np.testing.assert_array_equal(a, b)
        else:
            assert a == b, key


def test_finalize_is_idempotent():
    spec = Spec("arm")
    base, hinge, geom, site = _build_arm(spec)

    first = spec.finalize()
    snapshots = {ref: dict(spec.canonical(ref)) for ref in (base, hinge, geom, site)}
    second = spec.finalize()

    assert first.ok and second.ok
    assert first.finalized == second.finalized
    for ref, snapshot in snapshots.items():
        _assert_same_snapshot(snapshot, dict(spec.canonical(ref)))


def test_snapshot_is_read_only_and_carries_derived_pose():
    spec = Spec()
    base, hinge, geom, site = _build_arm(spec)
    assert spec.canonical(geom) is None
    assert not spec.is_finalized(geom)

    spec.finalize()
    snapshot = spec.canonical(geom)
    np.testing.assert_allclose(snapshot["pos"], [0, 0, 0.2])
    np.testing.assert_allclose(snapshot["size"], [0.04, 0.2, 0.0])
    assert snapshot["parent"] == base
    assert snapshot["classname"] == "main"
    with pytest.raises(TypeError):
        snapshot["pos"] = [0, 0, 0]

    # staged values are not rewritten by finalize
    np.testing.assert_allclose(spec.get(geom).pos, [0, 0, 0])


def test_duplicate_names_are_reported_per_kind():
    spec = Spec()
    first = spec.add_body(spec.world)
    second = spec.add_body(spec.world)
    spec.get(first).name = "link"
    spec.get(second).name = "link"
    # same name on another kind is fine
    spec.get(spec.add_geom(first)).name = "link"

    report = spec.finalize()
    collisions = report.of_type(NameCollision)
    assert {diag.element for diag in collisions} == {first, second}
    assert "link" in spec.get(first).error
    assert spec.get(second).error != ""


def test_error_is_cleared_after_fix():
    spec = Spec()
    body = spec.add_body(spec.world)
    spec.get(body).inertia = [5, 1, 1]
    spec.finalize()
    assert spec.get(body).error != ""

    spec.get(body).inertia = [2, 1, 1]
    report = spec.finalize()
    assert report.ok
    assert spec.get(body).error == ""


def test_free_joint_policy_is_checked_at_finalize():
    spec = Spec()
    top = spec.add_body(spec.world)
    spec.attach_free_joint(top)
    # attaching a hinge afterwards is allowed but reported
    spec.add_joint(top)

    nested = spec.add_body(top)
    free = spec.add_joint(nested)
    spec.get(free).type = "free"

    report = spec.finalize()
    messages = [diag.message for diag in report.of_type(InvalidParent)]
    assert any("only joint" in message for message in messages)
    assert any("top-level" in message for message in messages)

    relaxed = Spec(free_joint_policy="defer")
    body = relaxed.add_body(relaxed.world)
    relaxed.attach_free_joint(body)
    relaxed.add_joint(body)
    assert relaxed.finalize().ok


def test_references_by_name_are_resolved():
    spec = Spec()
    base, hinge, geom, site = _build_arm(spec)

    actuator = spec.add_actuator()
    spec.get(actuator).target = "shoulder"
    sensor = spec.add_sensor()
    spec.get(sensor).type = "jointpos"
    spec.get(sensor).objname = "shoulder"
    touch = spec.add_sensor()
    spec.get(touch).objname = "tip"
    weld = spec.add_equality()
    spec.get(weld).type = "weld"
    spec.get(weld).name1 = "base"

    assert spec.finalize().ok

    spec.get(actuator).target = "elbow"
    spec.get(touch).objname = ""
    spec.get(weld).name2 = "missing"
    report = spec.finalize()
    unresolved = report.of_type(UnresolvedReference)
    assert {diag.element for diag in unresolved} == {actuator, touch, weld}


def test_camera_target_body_must_exist():
    spec = Spec()
    body = spec.add_body(spec.world)
    camera = spec.add_camera(body)
    spec.get(camera).mode = "targetbody"
    spec.get(camera).targetbody = "ghost"

    assert spec.finalize(camera).codes() == ["UnresolvedReference"]
    spec.get(body).name = "ghost"
    assert spec.finalize(camera).ok


def test_material_reference_is_optional_but_checked():
    spec = Spec()
    body = spec.add_body(spec.world)
    geom = spec.add_geom(body)
    spec.get(geom).material = "steel"
    assert spec.finalize(geom).codes() == ["UnresolvedReference"]

    spec.get(spec.add_material()).name = "steel"
    assert spec.finalize(geom).ok


def test_raise_for_errors_carries_every_message():
    spec = Spec()
    body = spec.add_body(spec.world)
    spec.get(body).inertia = [5, 1, 1]
    geom = spec.add_geom(body)
    spec.get(geom).alt.euler = [0, 0, 0]
    spec.get(geom).alt.zaxis = [0, 0, 1]

    report = spec.finalize()
    assert len(report) == 2
    with pytest.raises(Exception) as excinfo:
        report.raise_for_errors()
    assert excinfo.type is report.diagnostics[0].error
    assert "triangle inequality" in str(excinfo.value)
    assert "multiple orientation" in str(excinfo.value)


def test_report_helpers():
    spec = Spec()
    body = spec.add_body(spec.world)
    report = FinalizeReport([Diagnostic(body, NameCollision, "dup")], 3)
    assert not report.ok
    assert report.codes() == ["NameCollision"]
    assert report.for_element(body)[0].message == "dup"
    assert report.for_element(spec.world) == []
    assert "[NameCollision]" in str(report.diagnostics[0])
    FinalizeReport([], 1).raise_for_errors()


def _touch_pads(count):
    spec = Spec()
    hand = spec.add_body(spec.world)
    tendon = spec.add_tendon()
    for index in range(count):
        site = spec.add_site(hand)
        spec.get(site).name = f"pad{index}"
        sensor = spec.add_sensor()
        spec.get(sensor).objname = f"pad{index}"
        spec.wrap_site(tendon, f"pad{index}")
    return spec


def test_whole_tree_finalize_collects_names_once_per_kind(monkeypatch):
    lookups = []
    for count in (5, 50):
        spec = _touch_pads(count)
        calls = []
        names = spec.names

        def counting_names(kind, names=names, calls=calls):
            calls.append(kind)
            return names(kind)

        def no_scans(name, kind):
            raise AssertionError("finalize must not scan a kind per lookup")

        monkeypatch.setattr(spec, "names", counting_names)
        monkeypatch.setattr(spec, "has_name", no_scans)
        assert spec.finalize().ok
        lookups.append(len(calls))

    assert lookups[0] == lookups[1]


def test_snapshot_arrays_are_read_only():
    spec = Spec()
    base, hinge, geom, site = _build_arm(spec)
    spec.finalize()

    snapshot = spec.canonical(geom)
    for key in ("quat", "pos", "size"):
        with pytest.raises(ValueError):
            snapshot[key][0] = 1.0
    with pytest.raises(ValueError):
        spec.canonical(base)["iquat"][0] = 0.5
