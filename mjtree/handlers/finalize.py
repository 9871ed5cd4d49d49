"""
Finalize - validate an element and commit its canonical snapshot

Finalize resolves pending class inheritance, the orientation alternative, the
full inertia and the tendon path of an element, then stores a read-only
snapshot of the result in the tree. Validation problems never abort: they are
written to the element's error slot and returned as diagnostics so a whole
tree can be checked in one pass.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Set, Tuple, Type, TYPE_CHECKING

import numpy as np

from ..elements import (
    DEFAULTABLE_KINDS,
    TREE_KINDS,
    ElementKind,
    ElementRef,
)
from ..errors import (
    AmbiguousOrientation,
    DegenerateOrientation,
    InfeasibleInertia,
    InvalidParent,
    NameCollision,
    SpecError,
    UnresolvedReference,
)
from .inertia import check_principal_moments, solve_full_inertia
from .pose import resolve_pose
from .tendon import path_segments, segment_as_dict, unresolved_names, validate_path

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..spec import Spec

logger = logging.getLogger(__name__)

Problem = Tuple[Type[SpecError], str]

# kinds whose names must be unique at finalize time
NAMED_KINDS = (
    ElementKind.BODY,
    ElementKind.FRAME,
    ElementKind.JOINT,
    ElementKind.GEOM,
    ElementKind.SITE,
    ElementKind.CAMERA,
    ElementKind.LIGHT,
    ElementKind.MATERIAL,
    ElementKind.EQUALITY,
    ElementKind.TENDON,
    ElementKind.ACTUATOR,
    ElementKind.SENSOR,
    ElementKind.PLUGIN,
)

# model-scoped kinds, finalized after the body tree in this order
MODEL_KINDS = (
    ElementKind.MATERIAL,
    ElementKind.EQUALITY,
    ElementKind.TENDON,
    ElementKind.WRAP,
    ElementKind.ACTUATOR,
    ElementKind.SENSOR,
    ElementKind.PLUGIN,
)

_OBJTYPE_KIND = {
    "body": ElementKind.BODY,
    "xbody": ElementKind.BODY,
    "joint": ElementKind.JOINT,
    "geom": ElementKind.GEOM,
    "site": ElementKind.SITE,
    "camera": ElementKind.CAMERA,
    "tendon": ElementKind.TENDON,
    "actuator": ElementKind.ACTUATOR,
}

_TRN_KIND = {
    "joint": ElementKind.JOINT,
    "jointinparent": ElementKind.JOINT,
    "slidercrank": ElementKind.SITE,
    "tendon": ElementKind.TENDON,
    "site": ElementKind.SITE,
    "body": ElementKind.BODY,
}

_EQUALITY_KIND = {
    "connect": ElementKind.BODY,
    "weld": ElementKind.BODY,
    "joint": ElementKind.JOINT,
    "tendon": ElementKind.TENDON,
    "distance": ElementKind.GEOM,
}

_SENSOR_PREFIX_KIND = (
    ("joint", ElementKind.JOINT),
    ("ball", ElementKind.JOINT),
    ("tendon", ElementKind.TENDON),
    ("actuator", ElementKind.ACTUATOR),
    ("subtree", ElementKind.BODY),
)

_SITE_SENSORS = (
    "touch", "accelerometer", "velocimeter", "gyro", "force", "torque",
    "magnetometer", "rangefinder", "camprojection",
)


class Diagnostic(NamedTuple):
    element: ElementRef
    error: Type[SpecError]
    message: str

    @property
    def code(self) -> str:
        return self.error.__name__

    def __str__(self) -> str:
        return f"[{self.code}] {self.element!r}: {self.message}"


class FinalizeReport:
    """Outcome of finalizing one element or a whole tree."""

    def __init__(self, diagnostics: List[Diagnostic], finalized: int) -> None:
        self.diagnostics = list(diagnostics)
        self.finalized = finalized

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    def codes(self) -> List[str]:
        return [diag.code for diag in self.diagnostics]

    def for_element(self, ref: ElementRef) -> List[Diagnostic]:
        return [diag for diag in self.diagnostics if diag.element == ref]

    def of_type(self, error: Type[SpecError]) -> List[Diagnostic]:
        return [diag for diag in self.diagnostics if issubclass(diag.error, error)]

    def raise_for_errors(self) -> None:
        """Raise the first diagnostic's error type carrying every message."""
        if self.ok:
            return
        first = self.diagnostics[0]
        raise first.error("\n".join(str(diag) for diag in self.diagnostics))

    def __repr__(self) -> str:
        return f"FinalizeReport(finalized={self.finalized}, diagnostics={len(self.diagnostics)})"


class NameIndex:
    """Names per element kind, collected once per kind on first lookup."""

    def __init__(self, spec: "Spec") -> None:
        self._spec = spec
        self._names: Dict[ElementKind, Set[str]] = {}

    def has(self, name: str, kind: ElementKind) -> bool:
        names = self._names.get(kind)
        if names is None:
            names = self._names[kind] = set(self._spec.names(kind))
        return name in names


# ---------------------------------------------------------------------------
# per-kind checks
# ---------------------------------------------------------------------------


def _refresh_inherited(record: Any, values: Dict[str, Any]) -> None:
    """Re-stage every non-explicit defaultable field from its class."""
    for name, field in record._fields.items():
        if field.defaultable and name not in record._explicit:
            field.stage(record, values[name])


def _body_inertia(spec: "Spec", values: Dict[str, Any], canonical: Dict[str, Any]) -> List[Problem]:
    tolerance = spec.options.inertia_tolerance
    fullinertia = values.get("fullinertia")
    if fullinertia is not None:
        iquat = canonical.get("iquat")
        if iquat is None:
            return []
        solution = solve_full_inertia(fullinertia, iquat, tolerance)
        if not solution.ok:
            canonical["iquat"] = None
            canonical["inertia"] = None
            return [(InfeasibleInertia, f"fullinertia: {solution.error}")]
        canonical["iquat"] = solution.quat
        canonical["inertia"] = solution.inertia
        return []

    error = check_principal_moments(values["inertia"], tolerance)
    if error is not None:
        canonical["inertia"] = None
        return [(InfeasibleInertia, f"inertia: {error}")]
    return []


def _free_joint(spec: "Spec", record: Any, values: Dict[str, Any]) -> List[Problem]:
    if values.get("type") != "free" or not spec.options.enforce_single_free_joint:
        return []
    problems: List[Problem] = []
    body = spec.get(record.parent)
    if body.parent is not None and body.parent != spec.world:
        problems.append((InvalidParent, "free joint is only allowed in top-level bodies"))
    siblings = [
        ref for ref in body.children
        if ref.kind == ElementKind.JOINT and ref != record.handle
    ]
    if siblings:
        problems.append((InvalidParent, "free joint must be the only joint of its body"))
    return problems


def _require_name(names: NameIndex, label: str, name: str, kind: ElementKind, optional: bool = False) -> List[Problem]:
    if not name:
        if optional:
            return []
        return [(UnresolvedReference, f"{label} is empty")]
    if not names.has(name, kind):
        return [(UnresolvedReference, f"{label} '{name}' does not name an existing {kind.value}")]
    return []


def _sensor_object_kind(sensor_type: str, objtype: str) -> Optional[ElementKind]:
    if objtype != "unknown":
        return _OBJTYPE_KIND.get(objtype)
    if sensor_type in _SITE_SENSORS:
        return ElementKind.SITE
    for prefix, kind in _SENSOR_PREFIX_KIND:
        if sensor_type.startswith(prefix):
            return kind
    return None


def _references(names: NameIndex, kind: ElementKind, values: Dict[str, Any]) -> List[Problem]:
    problems: List[Problem] = []
    if kind == ElementKind.EQUALITY:
        target = _EQUALITY_KIND[values["type"]]
        problems += _require_name(names, "name1", values["name1"], target)
        problems += _require_name(names, "name2", values["name2"], target, optional=True)
    elif kind == ElementKind.ACTUATOR:
        trntype = values["trntype"]
        problems += _require_name(names, "target", values["target"], _TRN_KIND[trntype])
        if trntype == "slidercrank":
            problems += _require_name(names, "slidersite", values["slidersite"], ElementKind.SITE)
        if trntype == "site":
            problems += _require_name(names, "refsite", values["refsite"], ElementKind.SITE, optional=True)
    elif kind == ElementKind.SENSOR:
        obj_kind = _sensor_object_kind(values["type"], values["objtype"])
        if obj_kind is not None:
            problems += _require_name(names, "objname", values["objname"], obj_kind)
        ref_kind = _OBJTYPE_KIND.get(values["reftype"])
        if ref_kind is not None:
            problems += _require_name(names, "refname", values["refname"], ref_kind, optional=True)
    elif kind in (ElementKind.GEOM, ElementKind.SITE, ElementKind.TENDON):
        problems += _require_name(names, "material", values["material"], ElementKind.MATERIAL, optional=True)
    elif kind in (ElementKind.CAMERA, ElementKind.LIGHT):
        if values["mode"] in ("targetbody", "targetbodycom"):
            problems += _require_name(names, "targetbody", values["targetbody"], ElementKind.BODY)
    return problems


# ---------------------------------------------------------------------------
# entry points
# ---------------------------------------------------------------------------


def finalize_element(spec: "Spec", ref: ElementRef, names: Optional[NameIndex] = None) -> List[Diagnostic]:
    """
    Validate one element and store its canonical snapshot

    ``names`` is shared across a whole-tree pass; a single element builds its own.
    """
    if names is None:
        names = NameIndex(spec)
    record = spec.get(ref)
    kind = record.kind
    record._set_error("")

    values = spec.resolve(ref)
    if kind in DEFAULTABLE_KINDS:
        _refresh_inherited(record, values)

    canonical: Dict[str, Any] = dict(values)
    problems: List[Problem] = []

    try:
        canonical.update(resolve_pose(kind, values, spec.options, ref))
    except (AmbiguousOrientation, DegenerateOrientation) as exc:
        problems.append((type(exc), str(exc)))
        if "quat" in canonical:
            canonical["quat"] = None
        if kind == ElementKind.BODY:
            canonical["iquat"] = None

    if kind == ElementKind.BODY:
        problems += _body_inertia(spec, values, canonical)
    elif kind == ElementKind.JOINT:
        problems += _free_joint(spec, record, values)
    elif kind == ElementKind.TENDON:
        segments = path_segments(spec, ref)
        problems += validate_path(segments)
        problems += unresolved_names(segments, names.has)
        canonical["path"] = tuple(segment_as_dict(segment) for segment in segments)
    elif kind == ElementKind.WRAP:
        canonical["segment"] = segment_as_dict(record.segment)

    problems += _references(names, kind, values)

    if kind in TREE_KINDS or kind == ElementKind.WRAP:
        canonical["parent"] = record.parent
    if kind in TREE_KINDS:
        canonical["frame"] = record.frame
    if kind in DEFAULTABLE_KINDS:
        canonical["classname"] = record.classname

    diagnostics = [Diagnostic(ref, error, message) for error, message in problems]
    record._set_error("; ".join(message for _, message in problems))
    for key, value in canonical.items():
        if isinstance(value, np.ndarray):
            frozen = value.copy()
            frozen.flags.writeable = False
            canonical[key] = frozen
    spec._commit(ref, MappingProxyType(canonical))

    for diag in diagnostics:
        logger.warning("%s", diag)
    return diagnostics


def _tree_order(spec: "Spec") -> List[ElementRef]:
    order: List[ElementRef] = []
    stack = [spec.world]
    while stack:
        body_ref = stack.pop()
        order.append(body_ref)
        body = spec.get(body_ref)
        child_bodies = []
        for child in body.children:
            if child.kind == ElementKind.BODY:
                child_bodies.append(child)
            else:
                order.append(child)
        stack.extend(reversed(child_bodies))
    return order


def _name_collisions(spec: "Spec") -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []
    for kind in NAMED_KINDS:
        for name, refs in spec.names(kind).items():
            if not name or len(refs) < 2:
                continue
            message = f"{kind.value} name '{name}' is used by {len(refs)} elements"
            for ref in refs:
                record = spec.get(ref)
                previous = record.error
                record._set_error(f"{previous}; {message}" if previous else message)
                diagnostics.append(Diagnostic(ref, NameCollision, message))
    return diagnostics


def finalize_spec(spec: "Spec") -> FinalizeReport:
    """Finalize every element of a tree and check name uniqueness."""
    refs = _tree_order(spec)
    for kind in MODEL_KINDS:
        refs.extend(record.handle for record in spec.elements(kind))

    names = NameIndex(spec)
    diagnostics: List[Diagnostic] = []
    for ref in refs:
        diagnostics.extend(finalize_element(spec, ref, names))

    collisions = _name_collisions(spec)
    for diag in collisions:
        logger.warning("%s", diag)
    diagnostics.extend(collisions)

    logger.info(
        "Finalized %d elements of model '%s' with %d diagnostics",
        len(refs),
        spec.modelname,
        len(diagnostics),
    )
    return FinalizeReport(diagnostics, len(refs))
