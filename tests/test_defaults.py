"""
Tests for default classes: bundles, inheritance order and re-resolution.
"""

import numpy as np
import pytest

from mjtree import ElementKind, InvalidReference, NameCollision, Spec
from mjtree.defaults import DefaultBundle, resolve_attributes
from mjtree.elements import builtin_defaults


def test_main_class_exists_and_names_are_unique():
    spec = Spec()
    assert spec.find_class("main") == spec.main_class

    limb = spec.define_class("limb")
    assert spec.get(limb).parent == spec.main_class
    with pytest.raises(NameCollision):
        spec.define_class("limb")
    with pytest.raises(NameCollision):
        spec.define_class("main")


def test_bundle_validates_against_kind_schema():
    bundle = DefaultBundle(ElementKind.JOINT)
    bundle.damping = 2
    assert bundle.damping == 2.0
    assert bundle.stiffness is None
    assert "damping" in bundle
    assert len(bundle) == 1

    with pytest.raises(AttributeError):
        bundle.rgba = [1, 0, 0, 1]
    with pytest.raises(ValueError):
        bundle.range = [0.0]

    del bundle.damping
    assert "damping" not in bundle


def test_resolution_order_without_tree():
    spec = Spec()
    outer = spec.define_class("outer")
    inner = spec.define_class("inner", parent=outer)
    spec.get(spec.main_class).geom.density = 500
    spec.get(outer).geom.density = 800
    spec.get(outer).geom.condim = 1
    spec.get(inner).geom.condim = 4

    chain = [spec.get(inner), spec.get(outer), spec.get(spec.main_class)]
    resolved = resolve_attributes(ElementKind.GEOM, {"condim": 6}, chain)
    assert resolved["condim"] == 6
    assert resolved["density"] == 800.0
    assert resolved["contype"] == builtin_defaults(ElementKind.GEOM)["contype"]

    resolved = resolve_attributes(ElementKind.GEOM, {}, chain)
    assert resolved["condim"] == 4


def test_child_class_is_inherited_and_override_keeps_the_rest():
    spec = Spec()
    c1 = spec.define_class("C1")
    spec.get(c1).geom.rgba = [1.0, 0.0, 0.0, 1.0]
    spec.get(c1).geom.friction = [0.5, 0.01, 0.001]
    spec.get(c1).geom.size = [0.1, 0.0, 0.0]

    body = spec.add_body(spec.world, class_ref=c1)
    assert spec.get(body).childclass == c1
    child_body = spec.add_body(body)
    assert spec.get(child_body).childclass == c1

    geom_ref = spec.add_geom(child_body)
    geom = spec.get(geom_ref)
    assert geom.classname == "C1"
    np.testing.assert_allclose(geom.rgba, [1.0, 0.0, 0.0, 1.0])

    geom.size = [0.2, 0.0, 0.0]
    report = spec.finalize()
    assert report.ok, [str(diag) for diag in report]

    canonical = spec.canonical(geom_ref)
    np.testing.assert_allclose(canonical["size"], [0.2, 0.0, 0.0])
    np.testing.assert_allclose(canonical["rgba"], [1.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(canonical["friction"], [0.5, 0.01, 0.001])
    assert canonical["classname"] == "C1"

    assert spec.attribute_source(geom_ref, "size") == "explicit"
    assert spec.attribute_source(geom_ref, "rgba") == "C1"
    assert spec.attribute_source(geom_ref, "condim") == "builtin"


def test_explicit_class_argument_beats_child_class():
    spec = Spec()
    body_class = spec.define_class("body_class")
    geom_class = spec.define_class("geom_class")
    spec.get(body_class).geom.condim = 1
    spec.get(geom_class).geom.condim = 6

    body = spec.add_body(spec.world, class_ref=body_class)
    geom = spec.add_geom(body, class_ref=geom_class)
    assert spec.get(geom).condim == 6


def test_child_class_propagates_once_at_attach():
    spec = Spec()
    first = spec.define_class("first")
    second = spec.define_class("second")
    spec.get(first).joint.damping = 1.0
    spec.get(second).joint.damping = 2.0

    body = spec.add_body(spec.world, class_ref=first)
    early = spec.add_joint(body)
    spec.child_class(body, second)
    late = spec.add_joint(body)

    spec.finalize()
    assert spec.canonical(early)["damping"] == 1.0
    assert spec.canonical(late)["damping"] == 2.0


def test_class_change_after_attach_applies_at_finalize():
    spec = Spec()
    body = spec.add_body(spec.world)
    joint_ref = spec.add_joint(body)
    joint = spec.get(joint_ref)
    joint.armature = 0.3

    heavy = spec.define_class("heavy")
    spec.get(heavy).joint.damping = 5.0
    spec.get(heavy).joint.armature = 9.0
    spec.assign_class(joint_ref, heavy)

    assert joint.damping == 0.0
    assert spec.resolve(joint_ref)["damping"] == 5.0

    spec.finalize(joint_ref)
    assert joint.damping == 5.0
    assert joint.armature == 0.3
    assert joint.classname == "heavy"


def test_main_class_edits_reach_existing_elements_at_finalize():
    spec = Spec()
    body = spec.add_body(spec.world)
    site = spec.add_site(body)
    spec.get(spec.main_class).site.group = 3

    assert spec.get(site).group == 0
    spec.finalize()
    assert spec.get(site).group == 3
    assert spec.attribute_source(site, "group") == "main"


def test_non_defaultable_kinds_reject_classes():
    spec = Spec()
    cls = spec.define_class("c")
    body = spec.add_body(spec.world)
    with pytest.raises(InvalidReference):
        spec.assign_class(body, cls)
    with pytest.raises(KeyError):
        spec.get(cls).bundle(ElementKind.BODY)
    with pytest.raises(InvalidReference):
        spec.add_geom(body, class_ref=body)
