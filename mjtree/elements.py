"""
Element records - value fields, attribute cells and built-in defaults

Every element kind is a record class whose attributes are declared as Field
descriptors. A field knows its built-in default, how to coerce assigned values
and whether a default class may supply it. Writing a field through normal
attribute assignment marks it explicit; values copied in from a default class
are staged without that mark so a later finalize can re-resolve them.
"""
from __future__ import annotations

import enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from .errors import InvalidReference

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .spec import Spec

NREF = 2
NIMP = 5
NEQDATA = 11
NGAIN = 10
NBIAS = 10
NDYN = 10

IDENTITY_QUAT = (1.0, 0.0, 0.0, 0.0)
DEFAULT_SOLREF = (0.02, 1.0)
DEFAULT_SOLIMP = (0.9, 0.95, 0.001, 0.5, 2.0)


class ElementKind(str, enum.Enum):
    BODY = "body"
    FRAME = "frame"
    JOINT = "joint"
    GEOM = "geom"
    SITE = "site"
    CAMERA = "camera"
    LIGHT = "light"
    MATERIAL = "material"
    EQUALITY = "equality"
    TENDON = "tendon"
    WRAP = "wrap"
    ACTUATOR = "actuator"
    SENSOR = "sensor"
    PLUGIN = "plugin"
    DEFAULT = "default"


# kinds a body may host as direct children
TREE_KINDS = (
    ElementKind.BODY,
    ElementKind.FRAME,
    ElementKind.JOINT,
    ElementKind.GEOM,
    ElementKind.SITE,
    ElementKind.CAMERA,
    ElementKind.LIGHT,
)

# kinds a default class carries a bundle for
DEFAULTABLE_KINDS = (
    ElementKind.JOINT,
    ElementKind.GEOM,
    ElementKind.SITE,
    ElementKind.CAMERA,
    ElementKind.LIGHT,
    ElementKind.MATERIAL,
    ElementKind.EQUALITY,
    ElementKind.TENDON,
    ElementKind.ACTUATOR,
)

# kinds with a quaternion plus alternative orientation
POSED_KINDS = (
    ElementKind.BODY,
    ElementKind.FRAME,
    ElementKind.GEOM,
    ElementKind.SITE,
    ElementKind.CAMERA,
)

FROMTO_TYPES = ("capsule", "cylinder", "box", "ellipsoid")


class ElementRef(NamedTuple):
    """Stable handle: tree token, element kind and index in the kind's table."""

    tree: int
    kind: ElementKind
    index: int

    def __repr__(self) -> str:
        return f"ElementRef({self.kind.value}#{self.index})"


# ---------------------------------------------------------------------------
# field descriptors
# ---------------------------------------------------------------------------


class Field:
    """Descriptor for one attribute of a record."""

    def __init__(self, default: Any = None, *, defaultable: bool = True) -> None:
        self.default = default
        self.defaultable = defaultable
        self.name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def coerce(self, value: Any) -> Any:
        return value

    def initial(self) -> Any:
        return self.coerce(self.default)

    def attach(self, record: "_Record") -> None:
        record._values[self.name] = self.initial()

    def read(self, record: "_Record") -> Any:
        return record._values[self.name]

    def stage(self, record: "_Record", value: Any) -> None:
        """Write without marking the field explicit."""
        record._values[self.name] = self.coerce(value)

    def snapshot(self, record: "_Record") -> Any:
        value = record._values[self.name]
        if isinstance(value, np.ndarray):
            return value.copy()
        return value

    def __get__(self, record: Optional["_Record"], owner: type) -> Any:
        if record is None:
            return self
        record._check_alive()
        return self.read(record)

    def __set__(self, record: "_Record", value: Any) -> None:
        record._check_alive()
        self.stage(record, value)
        record._explicit.add(self.name)


class Scalar(Field):
    def __init__(
        self,
        default: Any = 0.0,
        cast: type = float,
        *,
        optional: bool = False,
        defaultable: bool = True,
    ) -> None:
        super().__init__(default, defaultable=defaultable)
        self.cast = cast
        self.optional = optional

    def coerce(self, value: Any) -> Any:
        if value is None:
            if self.optional:
                return None
            raise ValueError(f"'{self.name}' cannot be None")
        if isinstance(value, np.generic):
            value = value.item()
        if self.cast is bool:
            return bool(value)
        return self.cast(value)


class Choice(Field):
    """A string-valued enumeration."""

    def __init__(self, default: str, choices: Sequence[str], *, defaultable: bool = True) -> None:
        super().__init__(default, defaultable=defaultable)
        self.choices = tuple(choices)

    def coerce(self, value: Any) -> str:
        if isinstance(value, enum.Enum):
            value = value.value if isinstance(value.value, str) else value.name
        normalized = str(value).strip().lower()
        if normalized.startswith("mj") and normalized not in self.choices:
            normalized = normalized.split("_", 1)[-1]
        if normalized not in self.choices:
            raise ValueError(
                f"'{self.name}' must be one of {', '.join(self.choices)}, got {value!r}"
            )
        return normalized


class Vec(Field):
    """Fixed-length float vector; reads return a read-only view."""

    def __init__(
        self,
        size: int,
        default: Optional[Iterable[float]] = None,
        *,
        optional: bool = False,
        defaultable: bool = True,
    ) -> None:
        if default is None and not optional:
            default = [0.0] * size
        super().__init__(default, defaultable=defaultable)
        self.size = size
        self.optional = optional

    def coerce(self, value: Any) -> Optional[np.ndarray]:
        if value is None:
            if self.optional:
                return None
            raise ValueError(f"'{self.name}' cannot be None")
        array = np.array(value, dtype=np.float64).reshape(-1)
        if array.shape[0] != self.size:
            raise ValueError(
                f"'{self.name}' expects {self.size} values, got {array.shape[0]}"
            )
        return array

    def read(self, record: "_Record") -> Optional[np.ndarray]:
        value = record._values[self.name]
        if value is None:
            return None
        view = value.view()
        view.flags.writeable = False
        return view


class Text(Field):
    """Variable-length text kept in an attribute store cell."""

    def __init__(self, default: str = "", *, defaultable: bool = True) -> None:
        super().__init__(default, defaultable=defaultable)

    def attach(self, record: "_Record") -> None:
        record._cells[self.name] = record._store().allocate_text(self.default)

    def read(self, record: "_Record") -> str:
        return record._store().get_text(record._cells[self.name])

    def stage(self, record: "_Record", value: Any) -> None:
        record._store().set_text(record._cells[self.name], "" if value is None else value)

    def snapshot(self, record: "_Record") -> str:
        return self.read(record)


class Array(Field):
    """Variable-length float array kept in an attribute store cell."""

    def __init__(self, *, defaultable: bool = True) -> None:
        super().__init__(None, defaultable=defaultable)

    def initial(self) -> np.ndarray:
        return np.zeros(0, dtype=np.float64)

    def attach(self, record: "_Record") -> None:
        record._cells[self.name] = record._store().allocate_array()

    def read(self, record: "_Record") -> np.ndarray:
        values, _ = record._store().get_array(record._cells[self.name])
        return values

    def stage(self, record: "_Record", value: Any) -> None:
        record._store().set_array(record._cells[self.name], value)

    def snapshot(self, record: "_Record") -> np.ndarray:
        return self.read(record)


class Nested(Field):
    """A sub-record (alternative orientation, plugin slot)."""

    def __init__(self, factory: type) -> None:
        super().__init__(None, defaultable=False)
        self.factory = factory

    def attach(self, record: "_Record") -> None:
        record._values[self.name] = self.factory(record)

    def stage(self, record: "_Record", value: Any) -> None:
        target = record._values[self.name]
        if isinstance(value, _Record):
            value = value.values()
        target.update(value or {})

    def snapshot(self, record: "_Record") -> Dict[str, Any]:
        return record._values[self.name].values()


# ---------------------------------------------------------------------------
# records
# ---------------------------------------------------------------------------


class _Record:
    """Shared storage for descriptor-backed records."""

    _fields: Dict[str, Field] = {}
    # plain attributes callers may assign besides declared fields
    _plain: Tuple[str, ...] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        fields: Dict[str, Field] = {}
        for klass in reversed(cls.__mro__):
            for key, value in vars(klass).items():
                if isinstance(value, Field):
                    fields[key] = value
        cls._fields = fields

    def _init_fields(self) -> None:
        object.__setattr__(self, "_values", {})
        object.__setattr__(self, "_cells", {})
        object.__setattr__(self, "_explicit", set())
        for field in self._fields.values():
            field.attach(self)

    def _store(self):
        raise NotImplementedError

    def _check_alive(self) -> None:
        raise NotImplementedError

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._fields:
            object.__setattr__(self, key, value)
            return
        if key in self._plain:
            self._check_alive()
            object.__setattr__(self, key, value)
            return
        raise AttributeError(f"{type(self).__name__} has no attribute '{key}'")

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(cls._fields)

    @property
    def explicit(self) -> frozenset:
        """Names of fields written directly on this record."""
        return frozenset(self._explicit)

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if key not in self._fields:
                raise AttributeError(f"{type(self).__name__} has no attribute '{key}'")
            setattr(self, key, value)

    def values(self) -> Dict[str, Any]:
        self._check_alive()
        return {name: field.snapshot(self) for name, field in self._fields.items()}


class Orientation(_Record):
    """Alternative orientation specifiers; at most one may be set."""

    axisangle = Vec(4, optional=True)
    xyaxes = Vec(6, optional=True)
    zaxis = Vec(3, optional=True)
    euler = Vec(3, optional=True)

    def __init__(self, owner: _Record) -> None:
        object.__setattr__(self, "_owner", owner)
        self._init_fields()

    def _store(self):
        return self._owner._store()

    def _check_alive(self) -> None:
        self._owner._check_alive()

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if value is not None:
                setattr(self, key, value)

    def defined(self) -> List[str]:
        """Names of the specifiers currently set."""
        self._check_alive()
        return [name for name in self._fields if self._values[name] is not None]

    def clear(self) -> None:
        self._check_alive()
        for name in self._fields:
            self._values[name] = None
        self._explicit.clear()


class PluginSlot(_Record):
    """Declaration of a plugin attached to a body, geom, actuator or sensor."""

    _plain = ("instance",)

    name = Scalar("", str)
    instance_name = Scalar("", str)
    active = Scalar(False, bool)

    def __init__(self, owner: _Record) -> None:
        object.__setattr__(self, "_owner", owner)
        object.__setattr__(self, "instance", None)
        self._init_fields()

    def _store(self):
        return self._owner._store()

    def _check_alive(self) -> None:
        self._owner._check_alive()

    def values(self) -> Dict[str, Any]:
        result = super().values()
        result["instance"] = self.instance
        return result


class Element(_Record):
    """Base for every element stored in a Spec."""

    kind: ElementKind

    name = Text(defaultable=False)
    info = Text(defaultable=False)

    def __init__(self, spec: "Spec", ref: ElementRef, parent: Optional[ElementRef] = None) -> None:
        object.__setattr__(self, "_spec", spec)
        object.__setattr__(self, "_handle", ref)
        object.__setattr__(self, "parent", parent)
        object.__setattr__(self, "frame", None)
        object.__setattr__(self, "default_class", None)
        self._init_fields()
        self._cells["error"] = self._store().allocate_text("")

    def _store(self):
        return self._spec.store

    def _check_alive(self) -> None:
        self._spec._check_ref(self._handle)

    def __repr__(self) -> str:
        try:
            name = self.name
        except InvalidReference:
            return f"<{type(self).__name__} (destroyed)>"
        label = f" '{name}'" if name else ""
        return f"<{type(self).__name__}{label} #{self._handle.index}>"

    @property
    def handle(self) -> ElementRef:
        return self._handle

    @property
    def id(self) -> int:
        return self._handle.index

    @property
    def error(self) -> str:
        """Diagnostic text written by the last finalize; empty when valid."""
        self._check_alive()
        return self._store().get_text(self._cells["error"])

    def _set_error(self, message: str) -> None:
        self._store().set_text(self._cells["error"], message)

    @property
    def classname(self) -> str:
        if self.default_class is None:
            return ""
        return self._spec.get(self.default_class).name


class Body(Element):
    kind = ElementKind.BODY

    pos = Vec(3, defaultable=False)
    quat = Vec(4, IDENTITY_QUAT, defaultable=False)
    alt = Nested(Orientation)

    mass = Scalar(0.0)
    ipos = Vec(3)
    iquat = Vec(4, IDENTITY_QUAT)
    inertia = Vec(3)
    ialt = Nested(Orientation)
    fullinertia = Vec(6, optional=True)

    mocap = Scalar(False, bool)
    gravcomp = Scalar(0.0)
    userdata = Array()
    explicitinertial = Scalar(False, bool)
    plugin = Nested(PluginSlot)

    def __init__(self, spec: "Spec", ref: ElementRef, parent: Optional[ElementRef] = None) -> None:
        super().__init__(spec, ref, parent)
        object.__setattr__(self, "children", [])
        object.__setattr__(self, "childclass", None)


class Frame(Element):
    kind = ElementKind.FRAME

    pos = Vec(3, defaultable=False)
    quat = Vec(4, IDENTITY_QUAT, defaultable=False)
    alt = Nested(Orientation)


class Joint(Element):
    kind = ElementKind.JOINT

    type = Choice("hinge", ("free", "ball", "slide", "hinge"))
    pos = Vec(3)
    axis = Vec(3, (0.0, 0.0, 1.0))
    ref = Scalar(0.0)
    stiffness = Scalar(0.0)
    springref = Scalar(0.0)
    springdamper = Vec(2)

    limited = Scalar(2, int)
    range = Vec(2)
    margin = Scalar(0.0)
    solref_limit = Vec(NREF, DEFAULT_SOLREF)
    solimp_limit = Vec(NIMP, DEFAULT_SOLIMP)
    actfrclimited = Scalar(2, int)
    actfrcrange = Vec(2)

    armature = Scalar(0.0)
    damping = Scalar(0.0)
    frictionloss = Scalar(0.0)
    solref_friction = Vec(NREF, DEFAULT_SOLREF)
    solimp_friction = Vec(NIMP, DEFAULT_SOLIMP)

    group = Scalar(0, int)
    urdfeffort = Scalar(-1.0)
    userdata = Array()


class Geom(Element):
    kind = ElementKind.GEOM

    type = Choice(
        "sphere",
        ("plane", "hfield", "sphere", "capsule", "ellipsoid", "cylinder", "box", "mesh", "sdf"),
    )
    pos = Vec(3)
    quat = Vec(4, IDENTITY_QUAT)
    alt = Nested(Orientation)
    fromto = Vec(6, optional=True)
    size = Vec(3)

    contype = Scalar(1, int)
    conaffinity = Scalar(1, int)
    condim = Scalar(3, int)
    priority = Scalar(0, int)
    friction = Vec(3, (1.0, 0.005, 0.0001))
    solmix = Scalar(1.0)
    solref = Vec(NREF, DEFAULT_SOLREF)
    solimp = Vec(NIMP, DEFAULT_SOLIMP)
    margin = Scalar(0.0)
    gap = Scalar(0.0)

    mass = Scalar(None, float, optional=True)
    density = Scalar(1000.0)
    typeinertia = Choice("volume", ("volume", "shell"))

    fluid_ellipsoid = Scalar(0.0)
    fluid_coefs = Vec(5, (0.5, 0.25, 1.5, 1.0, 1.0))

    material = Text()
    rgba = Vec(4, (0.5, 0.5, 0.5, 1.0))
    group = Scalar(0, int)

    hfieldname = Text()
    meshname = Text()
    fitscale = Scalar(1.0)
    userdata = Array()
    plugin = Nested(PluginSlot)


class Site(Element):
    kind = ElementKind.SITE

    type = Choice(
        "sphere", ("sphere", "capsule", "ellipsoid", "cylinder", "box")
    )
    pos = Vec(3)
    quat = Vec(4, IDENTITY_QUAT)
    alt = Nested(Orientation)
    fromto = Vec(6, optional=True)
    size = Vec(3, (0.005, 0.005, 0.005))

    material = Text()
    group = Scalar(0, int)
    rgba = Vec(4, (0.5, 0.5, 0.5, 1.0))
    userdata = Array()


CAMLIGHT_MODES = ("fixed", "track", "trackcom", "targetbody", "targetbodycom")


class Camera(Element):
    kind = ElementKind.CAMERA

    pos = Vec(3)
    quat = Vec(4, IDENTITY_QUAT)
    alt = Nested(Orientation)
    mode = Choice("fixed", CAMLIGHT_MODES)
    targetbody = Text()

    fovy = Scalar(45.0)
    ipd = Scalar(0.068)
    intrinsic = Vec(4, (0.01, 0.01, 0.0, 0.0))
    sensor_size = Vec(2)
    resolution = Vec(2, (1.0, 1.0))
    focal_length = Vec(2)
    focal_pixel = Vec(2)
    principal_length = Vec(2)
    principal_pixel = Vec(2)

    userdata = Array()


class Light(Element):
    kind = ElementKind.LIGHT

    pos = Vec(3)
    dir = Vec(3, (0.0, 0.0, -1.0))
    mode = Choice("fixed", CAMLIGHT_MODES)
    targetbody = Text()

    active = Scalar(True, bool)
    directional = Scalar(False, bool)
    castshadow = Scalar(True, bool)
    attenuation = Vec(3, (1.0, 0.0, 0.0))
    cutoff = Scalar(45.0)
    exponent = Scalar(10.0)
    ambient = Vec(3)
    diffuse = Vec(3, (0.7, 0.7, 0.7))
    specular = Vec(3, (0.3, 0.3, 0.3))


class Material(Element):
    kind = ElementKind.MATERIAL

    texture = Text()
    texuniform = Scalar(False, bool)
    texrepeat = Vec(2, (1.0, 1.0))
    emission = Scalar(0.0)
    specular = Scalar(0.5)
    shininess = Scalar(0.5)
    reflectance = Scalar(0.0)
    rgba = Vec(4, (1.0, 1.0, 1.0, 1.0))


class Equality(Element):
    kind = ElementKind.EQUALITY

    type = Choice("connect", ("connect", "weld", "joint", "tendon", "distance"))
    data = Vec(NEQDATA, (0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 1))
    active = Scalar(True, bool)
    name1 = Text()
    name2 = Text()
    solref = Vec(NREF, DEFAULT_SOLREF)
    solimp = Vec(NIMP, DEFAULT_SOLIMP)


class Tendon(Element):
    kind = ElementKind.TENDON

    stiffness = Scalar(0.0)
    springlength = Vec(2, (-1.0, -1.0))
    damping = Scalar(0.0)
    frictionloss = Scalar(0.0)
    solref_friction = Vec(NREF, DEFAULT_SOLREF)
    solimp_friction = Vec(NIMP, DEFAULT_SOLIMP)

    limited = Scalar(2, int)
    range = Vec(2)
    margin = Scalar(0.0)
    solref_limit = Vec(NREF, DEFAULT_SOLREF)
    solimp_limit = Vec(NIMP, DEFAULT_SOLIMP)

    material = Text()
    width = Scalar(0.003)
    rgba = Vec(4, (0.5, 0.5, 0.5, 1.0))
    group = Scalar(0, int)
    userdata = Array()

    def __init__(self, spec: "Spec", ref: ElementRef, parent: Optional[ElementRef] = None) -> None:
        super().__init__(spec, ref, parent)
        object.__setattr__(self, "path", [])


class Wrap(Element):
    kind = ElementKind.WRAP

    def __init__(self, spec: "Spec", ref: ElementRef, parent: Optional[ElementRef] = None) -> None:
        super().__init__(spec, ref, parent)
        object.__setattr__(self, "segment", None)


class Actuator(Element):
    kind = ElementKind.ACTUATOR

    gaintype = Choice("fixed", ("fixed", "affine", "muscle", "user"))
    gainprm = Vec(NGAIN, (1.0,) + (0.0,) * (NGAIN - 1))
    biastype = Choice("none", ("none", "affine", "muscle", "user"))
    biasprm = Vec(NBIAS)

    dyntype = Choice("none", ("none", "integrator", "filter", "filterexact", "muscle", "user"))
    dynprm = Vec(NDYN, (1.0,) + (0.0,) * (NDYN - 1))
    actdim = Scalar(-1, int)
    plugin_actdim = Scalar(0, int)
    actearly = Scalar(False, bool)

    trntype = Choice(
        "joint", ("joint", "jointinparent", "slidercrank", "tendon", "site", "body")
    )
    gear = Vec(6, (1.0, 0.0, 0.0, 0.0, 0.0, 0.0))
    target = Text()
    refsite = Text()
    slidersite = Text()
    cranklength = Scalar(0.0)
    lengthrange = Vec(2)

    ctrllimited = Scalar(2, int)
    ctrlrange = Vec(2)
    forcelimited = Scalar(2, int)
    forcerange = Vec(2)
    actlimited = Scalar(2, int)
    actrange = Vec(2)

    group = Scalar(0, int)
    userdata = Array()
    plugin = Nested(PluginSlot)


OBJECT_TYPES = (
    "unknown", "body", "xbody", "joint", "geom", "site", "camera",
    "tendon", "actuator",
)


class Sensor(Element):
    kind = ElementKind.SENSOR

    type = Choice(
        "touch",
        (
            "touch", "accelerometer", "velocimeter", "gyro", "force", "torque",
            "magnetometer", "rangefinder", "camprojection", "jointpos", "jointvel",
            "tendonpos", "tendonvel", "actuatorpos", "actuatorvel", "actuatorfrc",
            "jointactfrc", "ballquat", "ballangvel", "jointlimitpos",
            "jointlimitvel", "jointlimitfrc", "tendonlimitpos", "tendonlimitvel",
            "tendonlimitfrc", "framepos", "framequat", "framexaxis", "frameyaxis",
            "framezaxis", "framelinvel", "frameangvel", "framelinacc",
            "frameangacc", "subtreecom", "subtreelinvel", "subtreeangmom",
            "clock", "plugin", "user",
        ),
    )
    objtype = Choice("unknown", OBJECT_TYPES)
    objname = Text()
    reftype = Choice("unknown", OBJECT_TYPES)
    refname = Text()

    datatype = Choice("real", ("real", "positive", "axis", "quaternion"))
    needstage = Choice("acc", ("pos", "vel", "acc"))
    dim = Scalar(0, int)

    cutoff = Scalar(0.0)
    noise = Scalar(0.0)

    userdata = Array()
    plugin = Nested(PluginSlot)


class Plugin(Element):
    """Model-level plugin instance; behaviour is supplied at compile time."""

    kind = ElementKind.PLUGIN

    plugin_name = Text()
    active = Scalar(True, bool)


RECORD_TYPES: Dict[ElementKind, type] = {
    ElementKind.BODY: Body,
    ElementKind.FRAME: Frame,
    ElementKind.JOINT: Joint,
    ElementKind.GEOM: Geom,
    ElementKind.SITE: Site,
    ElementKind.CAMERA: Camera,
    ElementKind.LIGHT: Light,
    ElementKind.MATERIAL: Material,
    ElementKind.EQUALITY: Equality,
    ElementKind.TENDON: Tendon,
    ElementKind.WRAP: Wrap,
    ElementKind.ACTUATOR: Actuator,
    ElementKind.SENSOR: Sensor,
    ElementKind.PLUGIN: Plugin,
}


def builtin_defaults(kind: ElementKind) -> Dict[str, Any]:
    """Built-in value of every defaultable field of a kind."""
    record_type = RECORD_TYPES[kind]
    return {
        name: field.initial()
        for name, field in record_type._fields.items()
        if field.defaultable
    }


def defaultable_fields(kind: ElementKind) -> Dict[str, Field]:
    record_type = RECORD_TYPES[kind]
    return {name: field for name, field in record_type._fields.items() if field.defaultable}
