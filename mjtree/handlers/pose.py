"""
Pose Resolver - reduce alternative orientation encodings to one quaternion

Quaternions are stored MuJoCo-style as [w, x, y, z]. An element may carry the
primary quaternion plus at most one alternative: axis-angle, x/y axes, z axis,
Euler angles or, for capsule-like geometry, a from-to segment.
"""
from __future__ import annotations

import logging
import math
import warnings
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, TYPE_CHECKING

import numpy as np
from scipy.spatial.transform import Rotation as R

from ..elements import FROMTO_TYPES, IDENTITY_QUAT, POSED_KINDS, ElementKind, ElementRef
from ..errors import AmbiguousOrientation, DegenerateOrientation
from ..options import SpecOptions

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..spec import Spec

logger = logging.getLogger(__name__)

_MIN_NORM = 1e-10

ORIENTATION_KEYS = ("axisangle", "xyaxes", "zaxis", "euler")

_AXES = {
    "x": np.array([1.0, 0.0, 0.0]),
    "y": np.array([0.0, 1.0, 0.0]),
    "z": np.array([0.0, 0.0, 1.0]),
}


def quat_multiply(q1: Iterable[float], q2: Iterable[float]) -> np.ndarray:
    a, b, c, d = np.asarray(q1, dtype=float)
    e, f, g, h = np.asarray(q2, dtype=float)
    return np.array(
        [
            a * e - b * f - c * g - d * h,
            a * f + b * e + c * h - d * g,
            a * g - b * h + c * e + d * f,
            a * h + b * g - c * f + d * e,
        ],
        dtype=float,
    )


def quat_inverse(quat: Iterable[float]) -> np.ndarray:
    q = np.asarray(quat, dtype=float)
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=float)


def quat_rotate(quat: Iterable[float], vec: Iterable[float]) -> np.ndarray:
    qvec = np.array([0.0, *np.asarray(vec, dtype=float)], dtype=float)
    return quat_multiply(quat_multiply(quat, qvec), quat_inverse(quat))[1:]


def normalize_quat(quat: Iterable[float], label: str = "quat") -> np.ndarray:
    q = np.asarray(quat, dtype=float)
    norm = float(np.linalg.norm(q))
    if norm < _MIN_NORM:
        raise DegenerateOrientation(f"{label} has zero length")
    return q / norm


def _unit(vec: Iterable[float], what: str) -> np.ndarray:
    v = np.asarray(vec, dtype=float)
    norm = float(np.linalg.norm(v))
    if not np.isfinite(norm) or norm < _MIN_NORM:
        raise DegenerateOrientation(f"{what} is too small")
    return v / norm


def _axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    half = 0.5 * angle
    return np.array([math.cos(half), *(math.sin(half) * axis)], dtype=float)


def mat2quat(mat: np.ndarray) -> np.ndarray:
    """Rotation matrix (columns are the frame axes) to [w, x, y, z]."""
    x, y, z, w = R.from_matrix(np.asarray(mat, dtype=float)).as_quat()
    quat = np.array([w, x, y, z], dtype=float)
    return quat if quat[0] >= 0 else -quat


def axisangle2quat(axisangle: Iterable[float], degree: bool = False) -> np.ndarray:
    values = np.asarray(axisangle, dtype=float)
    axis = _unit(values[:3], "axisangle axis")
    angle = float(values[3])
    if degree:
        angle = math.radians(angle)
    return _axis_angle(axis, angle)


def xyaxes2quat(xyaxes: Iterable[float]) -> np.ndarray:
    values = np.asarray(xyaxes, dtype=float)
    vec_x = _unit(values[:3], "xyaxes x axis")
    vec_y = values[3:] - np.dot(vec_x, values[3:]) * vec_x
    vec_y = _unit(vec_y, "xyaxes y axis orthogonal to x")
    vec_z = np.cross(vec_x, vec_y)
    return mat2quat(np.column_stack([vec_x, vec_y, vec_z]))


def zaxis2quat(zaxis: Iterable[float]) -> np.ndarray:
    """Minimal rotation taking +z onto the given axis."""
    target = _unit(zaxis, "zaxis")
    axis = np.cross(_AXES["z"], target)
    sin_angle = float(np.linalg.norm(axis))
    if sin_angle < _MIN_NORM:
        if target[2] > 0:
            return np.array(IDENTITY_QUAT, dtype=float)
        return _axis_angle(_AXES["x"], math.pi)
    angle = math.atan2(sin_angle, float(target[2]))
    return _axis_angle(axis / sin_angle, angle)


def euler2quat(euler: Iterable[float], sequence: str = "xyz", degree: bool = False) -> np.ndarray:
    """
    Compose Euler rotations; lowercase axes rotate with the frame and
    uppercase axes stay fixed, so mixed sequences are allowed.
    """
    angles = np.asarray(euler, dtype=float)
    if degree:
        angles = np.radians(angles)
    quat = np.array(IDENTITY_QUAT, dtype=float)
    for letter, angle in zip(sequence, angles):
        step = _axis_angle(_AXES[letter.lower()], float(angle))
        if letter.islower():
            quat = quat_multiply(quat, step)
        else:
            quat = quat_multiply(step, quat)
    return quat


def quat2euler(quat: Iterable[float], sequence: str = "xyz", degree: bool = False) -> np.ndarray:
    """
    Euler angles that euler2quat maps back onto ``quat``

    The sequence follows the same convention as euler2quat. Each lowercase
    step lands on the right of the product and each uppercase step on the
    left, so the steps are reordered into one moving-axes sequence for scipy
    and the angles are put back in sequence order.

    Raises:
        ValueError: The reordered sequence repeats an axis back to back
    """
    order: List[int] = []
    for position, letter in enumerate(sequence):
        if letter.islower():
            order.append(position)
        else:
            order.insert(0, position)
    w, x, y, z = normalize_quat(quat)
    axes = "".join(sequence[position].upper() for position in order)
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", message="Gimbal lock detected.*")
        ordered = R.from_quat([x, y, z, w]).as_euler(axes, degrees=degree)
    angles = np.empty(3, dtype=float)
    angles[order] = ordered
    return angles


def fromto2pose(fromto: Iterable[float]) -> Tuple[np.ndarray, np.ndarray, float]:
    """Midpoint, orientation and half length of a from-to segment."""
    values = np.asarray(fromto, dtype=float)
    start, end = values[:3], values[3:]
    vec = end - start
    length = float(np.linalg.norm(vec))
    if length < _MIN_NORM:
        raise DegenerateOrientation("fromto points are too close")
    return 0.5 * (start + end), zaxis2quat(vec), 0.5 * length


def resolve_orientation(
    quat: Iterable[float],
    alt: Optional[Mapping[str, Any]] = None,
    options: Optional[SpecOptions] = None,
    *,
    fromto: Optional[Iterable[float]] = None,
    label: str = "element",
) -> np.ndarray:
    """
    Canonical unit quaternion of an element

    Args:
        quat: Primary quaternion [w, x, y, z]
        alt: Alternative specifiers keyed by axisangle, xyaxes, zaxis, euler
        options: Angle unit and Euler sequence
        fromto: Optional from-to segment, counted as one more alternative
        label: Element description used in error messages

    Raises:
        AmbiguousOrientation: More than one alternative is set
        DegenerateOrientation: The set alternative has no defined direction
    """
    options = options or SpecOptions()
    alt = alt or {}
    defined: List[str] = [key for key in ORIENTATION_KEYS if alt.get(key) is not None]
    if fromto is not None:
        defined.append("fromto")

    if len(defined) > 1:
        raise AmbiguousOrientation(
            f"{label}: multiple orientation specifiers are set ({', '.join(defined)})"
        )

    try:
        if not defined:
            return normalize_quat(quat, "quat")
        key = defined[0]
        if key == "axisangle":
            return axisangle2quat(alt[key], options.degree)
        if key == "xyaxes":
            return xyaxes2quat(alt[key])
        if key == "zaxis":
            return zaxis2quat(alt[key])
        if key == "euler":
            return euler2quat(alt[key], options.eulerseq, options.degree)
        return fromto2pose(fromto)[1]
    except DegenerateOrientation as exc:
        raise DegenerateOrientation(f"{label}: {exc}") from None


def _describe(kind: ElementKind, values: Mapping[str, Any], ref: Optional[ElementRef]) -> str:
    name = values.get("name") or ""
    if name:
        return f"{kind.value} '{name}'"
    if ref is not None:
        return f"{kind.value} #{ref.index}"
    return kind.value


def resolve_pose(
    kind: ElementKind,
    values: Mapping[str, Any],
    options: Optional[SpecOptions] = None,
    ref: Optional[ElementRef] = None,
) -> Dict[str, Any]:
    """
    Derived pose quantities of one element

    Returns the canonical entries that replace staged ones: ``quat`` for posed
    kinds, ``pos``/``size`` when a from-to segment is used, ``iquat`` for the
    inertial frame of bodies, and the unit ``axis``/``dir`` of joints and lights.
    """
    options = options or SpecOptions()
    kind = ElementKind(kind)
    label = _describe(kind, values, ref)
    derived: Dict[str, Any] = {}

    if kind in POSED_KINDS:
        fromto = values.get("fromto")
        if fromto is not None:
            geom_type = values.get("type")
            if geom_type not in FROMTO_TYPES:
                raise DegenerateOrientation(
                    f"{label}: fromto requires type {', '.join(FROMTO_TYPES)}, got '{geom_type}'"
                )
        derived["quat"] = resolve_orientation(
            values["quat"], values.get("alt"), options, fromto=fromto, label=label
        )
        if fromto is not None:
            pos, _, half_length = fromto2pose(fromto)
            size = np.array(values["size"], dtype=float)
            if values.get("type") in ("capsule", "cylinder"):
                size[1] = half_length
            else:
                size[1] = size[0]
                size[2] = half_length
            derived["pos"] = pos
            derived["size"] = size

    if kind == ElementKind.BODY:
        derived["iquat"] = resolve_orientation(
            values["iquat"], values.get("ialt"), options, label=f"{label} inertial frame"
        )

    if kind == ElementKind.JOINT and values.get("type") in ("hinge", "slide"):
        try:
            derived["axis"] = _unit(values["axis"], "joint axis")
        except DegenerateOrientation as exc:
            raise DegenerateOrientation(f"{label}: {exc}") from None

    if kind == ElementKind.LIGHT:
        try:
            derived["dir"] = _unit(values["dir"], "light direction")
        except DegenerateOrientation as exc:
            raise DegenerateOrientation(f"{label}: {exc}") from None

    return derived


def frame_pose(spec: "Spec", ref: ElementRef) -> Tuple[np.ndarray, np.ndarray]:
    """
    Position and orientation of an element in its owning body's frame, after
    composing every frame it is attached to.
    """
    record = spec.get(ref)
    values = spec.resolve(ref)
    derived = resolve_pose(record.kind, values, spec.options, ref)
    pos = np.asarray(derived.get("pos", values["pos"]), dtype=float)
    quat = derived.get("quat", np.array(IDENTITY_QUAT, dtype=float))

    frame_ref = record.frame
    while frame_ref is not None:
        frame = spec.get(frame_ref)
        frame_values = frame.values()
        frame_quat = resolve_pose(ElementKind.FRAME, frame_values, spec.options, frame_ref)["quat"]
        pos = np.asarray(frame_values["pos"], dtype=float) + quat_rotate(frame_quat, pos)
        quat = quat_multiply(frame_quat, quat)
        frame_ref = frame.frame

    logger.debug("Composed frame pose for %r: pos=%s quat=%s", ref, pos, quat)
    return pos, quat
