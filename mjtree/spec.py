"""
Spec - the element tree of a model specification

A Spec owns every element and every attribute cell. Elements live in one
growable table per kind and are addressed by ElementRef handles (tree token,
kind, index), so handles stay valid while tables grow and all of them become
invalid together when the Spec is destroyed.
"""
from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from .defaults import (
    BUILTIN,
    EXPLICIT,
    MAIN_CLASS,
    DefaultClass,
    attribute_source,
    class_chain,
    resolve_attributes,
)
from .elements import (
    DEFAULTABLE_KINDS,
    RECORD_TYPES,
    TREE_KINDS,
    Body,
    Element,
    ElementKind,
    ElementRef,
)
from .errors import (
    AmbiguousOrientation,
    DegenerateOrientation,
    InvalidParent,
    InvalidReference,
    NameCollision,
)
from .handlers.finalize import FinalizeReport, finalize_element, finalize_spec
from .handlers.inertia import solve_full_inertia
from .handlers.pose import frame_pose, resolve_orientation
from .handlers.tendon import GeomWrap, JointWrap, PulleyWrap, SiteWrap, append_segment, path_segments
from .options import SpecOptions
from .store import AttributeStore

logger = logging.getLogger(__name__)

_TREE_TOKENS = itertools.count(1)

KindLike = Union[ElementKind, str]


class Spec:
    """Mutable, in-memory specification of a model."""

    def __init__(
        self,
        modelname: str = "",
        options: Optional[SpecOptions] = None,
        **option_kwargs: Any,
    ):
        """
        Create an empty model with a world body and the "main" default class

        Args:
            modelname: Name reported to the compiler
            options: Model-wide options; keyword arguments build one when omitted
        """
        if options is not None and option_kwargs:
            raise ValueError("pass either options or option keyword arguments, not both")
        self._token = next(_TREE_TOKENS)
        self._alive = True
        self.modelname = modelname
        self.options = options or SpecOptions(**option_kwargs)
        self.store = AttributeStore()

        self._tables: Dict[ElementKind, List[Element]] = {kind: [] for kind in ElementKind}
        self._canonical: Dict[ElementRef, Mapping[str, Any]] = {}

        world = self._create(ElementKind.BODY, None)
        world.name = "world"
        self.world: ElementRef = world.handle
        self.main_class: ElementRef = self._create(ElementKind.DEFAULT, None).handle
        self.get(self.main_class).name = MAIN_CLASS

        logger.debug("Created spec %d '%s' with %r", self._token, modelname, self.options)

    # ------------------------------------------------------------------
    # lifetime and handle checks
    # ------------------------------------------------------------------

    def __enter__(self) -> "Spec":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.destroy()

    @property
    def alive(self) -> bool:
        return self._alive

    def destroy(self) -> None:
        """Release every element and cell; all handles become invalid at once."""
        if not self._alive:
            return
        counts = {kind.value: len(table) for kind, table in self._tables.items() if table}
        self._alive = False
        self.store.close()
        self._tables = {kind: [] for kind in ElementKind}
        self._canonical.clear()
        logger.debug("Destroyed spec %d: %s", self._token, counts)

    def _check_ref(self, ref: Any) -> None:
        if not self._alive:
            raise InvalidReference("spec has been destroyed")
        if not isinstance(ref, ElementRef) or ref.tree != self._token:
            raise InvalidReference(f"{ref!r} does not belong to this spec")
        if not 0 <= ref.index < len(self._tables[ref.kind]):
            raise InvalidReference(f"{ref!r} is out of range")

    def _create(self, kind: ElementKind, parent: Optional[ElementRef]) -> Element:
        table = self._tables[kind]
        ref = ElementRef(self._token, kind, len(table))
        record_type = DefaultClass if kind == ElementKind.DEFAULT else RECORD_TYPES[kind]
        record = record_type(self, ref, parent)
        table.append(record)
        return record

    def _commit(self, ref: ElementRef, canonical: Mapping[str, Any]) -> None:
        self._check_ref(ref)
        self._canonical[ref] = canonical

    def get(self, ref: ElementRef) -> Any:
        """Live record of an element; writes through it mutate the tree."""
        self._check_ref(ref)
        return self._tables[ref.kind][ref.index]

    __getitem__ = get

    def _expect(self, ref: Any, *kinds: ElementKind) -> Any:
        record = self.get(ref)
        if kinds and record.kind not in kinds:
            expected = " or ".join(kind.value for kind in kinds)
            raise InvalidReference(f"{ref!r} is a {record.kind.value}, expected {expected}")
        return record

    def id_of(self, ref: ElementRef) -> int:
        """Per-kind integer assigned in attach order; the world body is 0."""
        self._check_ref(ref)
        return ref.index

    def elements(self, kind: KindLike) -> List[Any]:
        if not self._alive:
            raise InvalidReference("spec has been destroyed")
        return list(self._tables[ElementKind(kind)])

    def count(self, kind: KindLike) -> int:
        if not self._alive:
            raise InvalidReference("spec has been destroyed")
        return len(self._tables[ElementKind(kind)])

    def parent_of(self, ref: ElementRef) -> Optional[ElementRef]:
        return self.get(ref).parent

    def children(self, body: ElementRef, kind: Optional[KindLike] = None) -> List[ElementRef]:
        record = self._expect(body, ElementKind.BODY)
        if kind is None:
            return list(record.children)
        kind = ElementKind(kind)
        return [child for child in record.children if child.kind == kind]

    # ------------------------------------------------------------------
    # default classes
    # ------------------------------------------------------------------

    def define_class(self, name: str, parent: Optional[ElementRef] = None) -> ElementRef:
        """Create a named default class inheriting from ``parent`` (main by default)."""
        if not name:
            raise ValueError("default class name cannot be empty")
        if self.find_class(name) is not None:
            raise NameCollision(f"default class '{name}' already exists")
        parent = self.main_class if parent is None else parent
        self._expect(parent, ElementKind.DEFAULT)
        record = self._create(ElementKind.DEFAULT, parent)
        record.name = name
        logger.debug("Defined default class '%s' (parent %r)", name, parent)
        return record.handle

    def find_class(self, name: str) -> Optional[ElementRef]:
        for record in self.elements(ElementKind.DEFAULT):
            if record.name == name:
                return record.handle
        return None

    def assign_class(self, element: ElementRef, class_ref: ElementRef) -> None:
        """Assign a default class; takes effect at the next finalize or resolve."""
        record = self.get(element)
        if record.kind not in DEFAULTABLE_KINDS:
            raise InvalidReference(f"{record.kind.value} elements do not take a default class")
        self._expect(class_ref, ElementKind.DEFAULT)
        object.__setattr__(record, "default_class", class_ref)

    def child_class(self, body: ElementRef, class_ref: Optional[ElementRef]) -> None:
        """Class adopted by children attached to ``body`` from now on."""
        record = self._expect(body, ElementKind.BODY)
        if class_ref is not None:
            self._expect(class_ref, ElementKind.DEFAULT)
        object.__setattr__(record, "childclass", class_ref)

    def _chain(self, record: Element) -> List[DefaultClass]:
        return class_chain(self.get, record.default_class)

    def _explicit_values(self, record: Element) -> Dict[str, Any]:
        return {
            name: field.snapshot(record)
            for name, field in record._fields.items()
            if name in record._explicit
        }

    def resolve(self, ref: ElementRef) -> Dict[str, Any]:
        """Effective attribute values of an element, computed on demand."""
        record = self.get(ref)
        values = record.values()
        if record.kind in DEFAULTABLE_KINDS:
            values.update(
                resolve_attributes(record.kind, self._explicit_values(record), self._chain(record))
            )
        return values

    def attribute_source(self, ref: ElementRef, name: str) -> str:
        """Tier supplying one attribute: "explicit", a class name or "builtin"."""
        record = self.get(ref)
        if name not in record._fields:
            raise AttributeError(f"{record.kind.value} elements have no attribute '{name}'")
        if name in record._explicit:
            return EXPLICIT
        if record.kind not in DEFAULTABLE_KINDS or not record._fields[name].defaultable:
            return BUILTIN
        return attribute_source(record.kind, name, self._explicit_values(record), self._chain(record))

    def _apply_class(self, record: Element, class_ref: Optional[ElementRef]) -> None:
        object.__setattr__(record, "default_class", class_ref)
        values = resolve_attributes(record.kind, {}, self._chain(record))
        for name, value in values.items():
            record._fields[name].stage(record, value)

    # ------------------------------------------------------------------
    # tree construction
    # ------------------------------------------------------------------

    def attach(
        self,
        parent: ElementRef,
        kind: KindLike,
        class_ref: Optional[ElementRef] = None,
        frame: Optional[ElementRef] = None,
    ) -> ElementRef:
        """
        Create a child element under a body

        Args:
            parent: Body hosting the new element
            kind: One of body, frame, joint, geom, site, camera, light
            class_ref: Default class; the parent's child class when omitted
            frame: Frame of ``parent`` the element is placed in

        Raises:
            InvalidParent: ``parent`` is not a body or ``kind`` is model-scoped
        """
        kind = ElementKind(kind)
        self._check_ref(parent)
        if parent.kind != ElementKind.BODY:
            hint = " (attach to the frame's body and pass frame=)" if parent.kind == ElementKind.FRAME else ""
            raise InvalidParent(f"cannot attach a {kind.value} to a {parent.kind.value}{hint}")
        if kind not in TREE_KINDS:
            raise InvalidParent(f"{kind.value} elements are model-scoped and have no parent body")
        if class_ref is not None:
            self._expect(class_ref, ElementKind.DEFAULT)
        if frame is not None:
            self._check_frame(parent, frame)

        body: Body = self.get(parent)
        record = self._create(kind, parent)
        effective_class = class_ref if class_ref is not None else body.childclass
        if kind == ElementKind.BODY:
            object.__setattr__(record, "childclass", effective_class)
        elif kind in DEFAULTABLE_KINDS:
            self._apply_class(record, effective_class or self.main_class)
        body.children.append(record.handle)
        if frame is not None:
            object.__setattr__(record, "frame", frame)

        logger.debug("Attached %s #%d to body #%d", kind.value, record.handle.index, parent.index)
        return record.handle

    def add_body(self, parent: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(parent, ElementKind.BODY, class_ref, frame)

    def add_joint(self, body: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(body, ElementKind.JOINT, class_ref, frame)

    def add_geom(self, body: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(body, ElementKind.GEOM, class_ref, frame)

    def add_site(self, body: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(body, ElementKind.SITE, class_ref, frame)

    def add_camera(self, body: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(body, ElementKind.CAMERA, class_ref, frame)

    def add_light(self, body: ElementRef, class_ref: Optional[ElementRef] = None, frame: Optional[ElementRef] = None) -> ElementRef:
        return self.attach(body, ElementKind.LIGHT, class_ref, frame)

    def add_frame(self, body: ElementRef, parent_frame: Optional[ElementRef] = None) -> ElementRef:
        """Add a frame to a body, optionally nested in another frame of that body."""
        return self.attach(body, ElementKind.FRAME, frame=parent_frame)

    def attach_free_joint(self, body: ElementRef) -> ElementRef:
        """
        Add a six degree-of-freedom joint without class defaults

        Raises:
            InvalidParent: ``body`` is the world body, or it already has a joint
                while the free joint policy is "enforce"
        """
        record = self._expect(body, ElementKind.BODY)
        if body == self.world:
            raise InvalidParent("the world body cannot have a free joint")
        if self.options.enforce_single_free_joint and self.children(body, ElementKind.JOINT):
            raise InvalidParent(
                f"body '{record.name}' already has a joint; a free joint must be its only joint"
            )
        joint = self._create(ElementKind.JOINT, body)
        joint.type = "free"
        record.children.append(joint.handle)
        logger.debug("Attached free joint #%d to body #%d", joint.handle.index, body.index)
        return joint.handle

    def _check_frame(self, body: ElementRef, frame: ElementRef) -> None:
        frame_record = self._expect(frame, ElementKind.FRAME)
        if frame_record.parent != body:
            raise InvalidParent(f"{frame!r} belongs to another body")

    def set_frame(self, element: ElementRef, frame: Optional[ElementRef]) -> None:
        """Place an element in one of its body's frames (None detaches it)."""
        record = self.get(element)
        if record.kind not in TREE_KINDS:
            raise InvalidParent(f"{record.kind.value} elements cannot be placed in a frame")
        if frame is not None:
            self._check_frame(record.parent, frame)
            cursor: Optional[ElementRef] = frame
            while cursor is not None:
                if cursor == element:
                    raise InvalidParent(f"placing {element!r} in {frame!r} would create a frame cycle")
                cursor = self.get(cursor).frame
        object.__setattr__(record, "frame", frame)

    # ------------------------------------------------------------------
    # model-scoped elements
    # ------------------------------------------------------------------

    def _add_model_element(self, kind: ElementKind, class_ref: Optional[ElementRef]) -> ElementRef:
        if class_ref is not None:
            self._expect(class_ref, ElementKind.DEFAULT)
        record = self._create(kind, None)
        if kind in DEFAULTABLE_KINDS:
            self._apply_class(record, class_ref or self.main_class)
        logger.debug("Added %s #%d", kind.value, record.handle.index)
        return record.handle

    def add_material(self, class_ref: Optional[ElementRef] = None) -> ElementRef:
        return self._add_model_element(ElementKind.MATERIAL, class_ref)

    def add_equality(self, class_ref: Optional[ElementRef] = None) -> ElementRef:
        return self._add_model_element(ElementKind.EQUALITY, class_ref)

    def add_tendon(self, class_ref: Optional[ElementRef] = None) -> ElementRef:
        return self._add_model_element(ElementKind.TENDON, class_ref)

    def add_actuator(self, class_ref: Optional[ElementRef] = None) -> ElementRef:
        return self._add_model_element(ElementKind.ACTUATOR, class_ref)

    def add_sensor(self) -> ElementRef:
        return self._add_model_element(ElementKind.SENSOR, None)

    def add_plugin(self, name: str = "", plugin_name: str = "", active: bool = True) -> ElementRef:
        """Declare a plugin instance; its behaviour is supplied at compile time."""
        ref = self._add_model_element(ElementKind.PLUGIN, None)
        record = self.get(ref)
        record.name = name
        record.plugin_name = plugin_name
        record.active = active
        return ref

    def set_plugin(self, owner: ElementRef, instance: ElementRef) -> None:
        """Bind the plugin slot of a body, geom, actuator or sensor to an instance."""
        record = self._expect(
            owner, ElementKind.BODY, ElementKind.GEOM, ElementKind.ACTUATOR, ElementKind.SENSOR
        )
        plugin = self._expect(instance, ElementKind.PLUGIN)
        slot = record.plugin
        slot.instance = instance
        slot.name = plugin.plugin_name
        slot.instance_name = plugin.name
        slot.active = plugin.active

    # ------------------------------------------------------------------
    # tendon path
    # ------------------------------------------------------------------

    def wrap_site(self, tendon: ElementRef, site: str) -> ElementRef:
        return append_segment(self, tendon, SiteWrap(str(site)))

    def wrap_geom(self, tendon: ElementRef, geom: str, sidesite: str = "") -> ElementRef:
        return append_segment(self, tendon, GeomWrap(str(geom), str(sidesite or "")))

    def wrap_joint(self, tendon: ElementRef, joint: str, coef: float) -> ElementRef:
        return append_segment(self, tendon, JointWrap(str(joint), float(coef)))

    def wrap_pulley(self, tendon: ElementRef, divisor: float) -> ElementRef:
        return append_segment(self, tendon, PulleyWrap(float(divisor)))

    def tendon_path(self, tendon: ElementRef) -> list:
        return path_segments(self, tendon)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def names(self, kind: KindLike) -> Dict[str, List[ElementRef]]:
        """Name to element refs for one kind, in attach order."""
        index: Dict[str, List[ElementRef]] = defaultdict(list)
        for record in self.elements(kind):
            index[record.name].append(record.handle)
        return dict(index)

    def has_name(self, name: str, kind: KindLike) -> bool:
        return any(record.name == name for record in self.elements(kind))

    def find_by_name(self, name: str, kind: KindLike = ElementKind.BODY) -> Optional[ElementRef]:
        """
        Look an element up by name across the whole tree

        Returns None when nothing matches.

        Raises:
            NameCollision: More than one element of ``kind`` carries the name
        """
        matches = self.names(kind).get(name, [])
        if len(matches) > 1:
            raise NameCollision(
                f"{ElementKind(kind).value} name '{name}' is used by {len(matches)} elements"
            )
        return matches[0] if matches else None

    def find_child(self, body: ElementRef, name: str, kind: Optional[KindLike] = None) -> Optional[ElementRef]:
        """First direct child of ``body`` called ``name``; deeper descendants are ignored."""
        for child in self.children(body, kind):
            if self.get(child).name == name:
                return child
        return None

    # ------------------------------------------------------------------
    # derived quantities and finalize
    # ------------------------------------------------------------------

    def frame_pose(self, ref: ElementRef) -> Tuple[np.ndarray, np.ndarray]:
        """Pose of an element in its body's frame after composing its frames."""
        return frame_pose(self, ref)

    def set_full_inertia(self, body: ElementRef) -> Optional[str]:
        """
        Diagonalize ``fullinertia`` into the staged ``iquat`` and ``inertia``

        The principal rotation is composed with the inertial frame as it
        currently resolves, ``ialt`` included, and ``ialt`` is cleared so the
        written ``iquat`` is what later finalizes use.

        Returns None on success, otherwise the diagnostic message; the body is
        left untouched on failure.
        """
        record = self._expect(body, ElementKind.BODY)
        if record.fullinertia is None:
            return "fullinertia is not set"
        try:
            iquat = resolve_orientation(
                record.iquat, record.ialt.values(), self.options, label="inertial frame"
            )
        except (AmbiguousOrientation, DegenerateOrientation) as exc:
            return str(exc)
        solution = solve_full_inertia(record.fullinertia, iquat, self.options.inertia_tolerance)
        if not solution.ok:
            return solution.error
        record.ialt.clear()
        record.iquat = solution.quat
        record.inertia = solution.inertia
        record.fullinertia = None
        return None

    def finalize(self, ref: Optional[ElementRef] = None) -> FinalizeReport:
        """Finalize one element, or the whole tree when ``ref`` is None."""
        if ref is None:
            if not self._alive:
                raise InvalidReference("spec has been destroyed")
            return finalize_spec(self)
        return FinalizeReport(finalize_element(self, ref), 1)

    def canonical(self, ref: ElementRef) -> Optional[Mapping[str, Any]]:
        """Snapshot committed by the last finalize of ``ref``, if any."""
        self._check_ref(ref)
        return self._canonical.get(ref, None)

    def is_finalized(self, ref: ElementRef) -> bool:
        self._check_ref(ref)
        return ref in self._canonical

    def summary(self) -> Dict[str, int]:
        return {kind.value: self.count(kind) for kind in ElementKind if self.count(kind)}

    def __repr__(self) -> str:
        if not self._alive:
            return f"<Spec '{self.modelname}' (destroyed)>"
        return f"<Spec '{self.modelname}' {self.summary()}>"
