"""
Tests for orientation alternatives and their reduction to quaternions.
"""

import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation as R

from mjtree import AmbiguousOrientation, DegenerateOrientation, ElementKind, Spec, SpecOptions
from mjtree.handlers.pose import (
    axisangle2quat,
    euler2quat,
    fromto2pose,
    quat_rotate,
    resolve_orientation,
    resolve_pose,
    xyaxes2quat,
    zaxis2quat,
)


def _same_rotation(q1, q2):
    """Quaternions q and -q describe the same rotation."""
    q1 = np.asarray(q1, dtype=float)
    q2 = np.asarray(q2, dtype=float)
    return np.allclose(q1, q2, atol=1e-9) or np.allclose(q1, -q2, atol=1e-9)


def test_primary_quaternion_is_normalized():
    quat = resolve_orientation([2.0, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(quat, [1.0, 0.0, 0.0, 0.0])

    with pytest.raises(DegenerateOrientation):
        resolve_orientation([0.0, 0.0, 0.0, 0.0])


def test_axisangle_in_radians_and_degrees():
    expected = [math.cos(math.pi / 4), 0.0, 0.0, math.sin(math.pi / 4)]
    np.testing.assert_allclose(axisangle2quat([0, 0, 2, math.pi / 2]), expected, atol=1e-12)
    np.testing.assert_allclose(axisangle2quat([0, 0, 1, 90], degree=True), expected, atol=1e-12)

    with pytest.raises(DegenerateOrientation):
        axisangle2quat([0, 0, 0, 1.0])


def test_xyaxes_builds_right_handed_frame():
    quat = xyaxes2quat([0, 1, 0, -1, 0, 0])
    expected = [math.cos(math.pi / 4), 0.0, 0.0, math.sin(math.pi / 4)]
    assert _same_rotation(quat, expected)

    # y is orthogonalized against x
    quat = xyaxes2quat([1, 0, 0, 1, 1, 0])
    assert _same_rotation(quat, [1.0, 0.0, 0.0, 0.0])

    with pytest.raises(DegenerateOrientation):
        xyaxes2quat([1, 0, 0, 2, 0, 0])


def test_zaxis_is_minimal_rotation():
    np.testing.assert_allclose(zaxis2quat([0, 0, 3]), [1, 0, 0, 0])
    np.testing.assert_allclose(quat_rotate(zaxis2quat([1, 0, 0]), [0, 0, 1]), [1, 0, 0], atol=1e-12)
    np.testing.assert_allclose(quat_rotate(zaxis2quat([0, 0, -1]), [0, 0, 1]), [0, 0, -1], atol=1e-12)

    with pytest.raises(DegenerateOrientation):
        zaxis2quat([0, 0, 0])


def test_euler_intrinsic_and_extrinsic_sequences():
    angles = [0.3, -0.4, 1.1]
    # scipy uses uppercase for moving axes, the opposite convention
    x, y, z, w = R.from_euler("XYZ", angles).as_quat()
    assert _same_rotation(euler2quat(angles, "xyz"), [w, x, y, z])

    x, y, z, w = R.from_euler("xyz", angles).as_quat()
    assert _same_rotation(euler2quat(angles, "XYZ"), [w, x, y, z])

    degrees = np.degrees(angles)
    assert _same_rotation(euler2quat(degrees, "xyz", degree=True), euler2quat(angles, "xyz"))


def test_fromto_midpoint_orientation_and_half_length():
    pos, quat, half = fromto2pose([0, 0, 0, 0, 0, 2])
    np.testing.assert_allclose(pos, [0, 0, 1])
    np.testing.assert_allclose(quat, [1, 0, 0, 0])
    assert half == pytest.approx(1.0)

    with pytest.raises(DegenerateOrientation):
        fromto2pose([1, 1, 1, 1, 1, 1])


def test_two_alternatives_are_ambiguous():
    alt = {"euler": [0.1, 0.2, 0.3], "axisangle": [1, 0, 0, 0.5]}
    with pytest.raises(AmbiguousOrientation):
        resolve_orientation([1, 0, 0, 0], alt)


def test_ambiguous_orientation_is_reported_at_finalize():
    spec = Spec()
    body = spec.add_body(spec.world)
    geom_ref = spec.add_geom(body)
    geom = spec.get(geom_ref)
    geom.alt.euler = [0.1, 0.2, 0.3]
    geom.alt.zaxis = [0.0, 1.0, 0.0]

    report = spec.finalize(geom_ref)
    assert report.codes() == ["AmbiguousOrientation"]
    assert "euler" in geom.error and "zaxis" in geom.error
    assert spec.canonical(geom_ref)["quat"] is None


def test_finalized_quaternion_replaces_alternative():
    spec = Spec(degree=True)
    body_ref = spec.add_body(spec.world)
    body = spec.get(body_ref)
    body.alt.axisangle = [0, 0, 1, 180]

    spec.finalize(body_ref)
    quat = spec.canonical(body_ref)["quat"]
    assert _same_rotation(quat, [0.0, 0.0, 0.0, 1.0])
    # the staged primary quaternion is left as written
    np.testing.assert_allclose(body.quat, [1, 0, 0, 0])


def test_fromto_capsule_and_box_sizes():
    options = SpecOptions()
    capsule = resolve_pose(
        ElementKind.GEOM,
        {"type": "capsule", "quat": [1, 0, 0, 0], "alt": {}, "fromto": [0, 0, 0, 2, 0, 0], "size": [0.05, 0, 0]},
        options,
    )
    np.testing.assert_allclose(capsule["pos"], [1, 0, 0])
    np.testing.assert_allclose(capsule["size"], [0.05, 1.0, 0.0])
    np.testing.assert_allclose(quat_rotate(capsule["quat"], [0, 0, 1]), [1, 0, 0], atol=1e-12)

    box = resolve_pose(
        ElementKind.GEOM,
        {"type": "box", "quat": [1, 0, 0, 0], "alt": {}, "fromto": [0, 0, 0, 0, 0, 4], "size": [0.1, 0, 0]},
        options,
    )
    np.testing.assert_allclose(box["size"], [0.1, 0.1, 2.0])


def test_fromto_needs_a_supported_type():
    spec = Spec()
    body = spec.add_body(spec.world)
    geom_ref = spec.add_geom(body)
    spec.get(geom_ref).fromto = [0, 0, 0, 0, 0, 1]

    report = spec.finalize(geom_ref)
    assert report.codes() == ["DegenerateOrientation"]

    spec.get(geom_ref).type = "cylinder"
    report = spec.finalize(geom_ref)
    assert report.ok
    assert spec.get(geom_ref).error == ""


def test_fromto_plus_alternative_is_ambiguous():
    spec = Spec()
    body = spec.add_body(spec.world)
    site_ref = spec.add_site(body)
    site = spec.get(site_ref)
    site.type = "capsule"
    site.fromto = [0, 0, 0, 1, 0, 0]
    site.alt.euler = [0, 0, 0]

    assert spec.finalize(site_ref).codes() == ["AmbiguousOrientation"]


def test_zero_joint_axis_and_light_direction_are_degenerate():
    spec = Spec()
    body = spec.add_body(spec.world)
    joint = spec.add_joint(body)
    spec.get(joint).axis = [0, 0, 0]
    light = spec.add_light(body)
    spec.get(light).dir = [0, 0, 0]

    report = spec.finalize()
    assert sorted(report.codes()) == ["DegenerateOrientation", "DegenerateOrientation"]

    spec.get(joint).axis = [0, 2, 0]
    spec.finalize(joint)
    np.testing.assert_allclose(spec.canonical(joint)["axis"], [0, 1, 0])
