"""
Spec Data Packing - Pack finalized element snapshots into JSON format

Walks the canonical snapshots committed by finalize and converts them into a
plain dictionary that downstream tools (and the command line) can dump as JSON.
Elements that were never finalized are reported with their live values.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, TYPE_CHECKING

import numpy as np

from ..elements import ElementKind, ElementRef
from ..errors import DegenerateOrientation
from .pose import quat2euler

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..spec import Spec

logger = logging.getLogger(__name__)

# packed sections in output order
PACKED_KINDS = (
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

_SECTION_NAMES = {
    ElementKind.BODY: "bodies",
    ElementKind.FRAME: "frames",
    ElementKind.JOINT: "joints",
    ElementKind.GEOM: "geoms",
    ElementKind.SITE: "sites",
    ElementKind.CAMERA: "cameras",
    ElementKind.LIGHT: "lights",
    ElementKind.MATERIAL: "materials",
    ElementKind.EQUALITY: "equalities",
    ElementKind.TENDON: "tendons",
    ElementKind.ACTUATOR: "actuators",
    ElementKind.SENSOR: "sensors",
    ElementKind.PLUGIN: "plugins",
}


def _serialize_value(value: Any) -> Any:
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, (int, str)):
        return value

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return value

    if isinstance(value, ElementRef):
        return {"kind": value.kind.value, "id": value.index}

    if isinstance(value, np.generic):
        return _serialize_value(value.item())

    if isinstance(value, np.ndarray):
        return _serialize_value(value.tolist())

    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]

    if isinstance(value, dict) or hasattr(value, "items"):
        return {str(key): _serialize_value(item) for key, item in value.items()}

    return str(value)


def quat_to_euler(quat: Iterable[float], sequence: str = "xyz", degrees: bool = True) -> List[float]:
    """[w, x, y, z] quaternion to Euler angles in the model's sequence convention."""
    q = np.asarray(quat, dtype=float)
    if q.shape != (4,):
        raise ValueError("quat must be length-4")
    return quat2euler(q, sequence, degrees).tolist()


def standardize_name(itemname: str, orig_name: str, index: int) -> str:
    """Placeholder name for unnamed elements"""
    if not orig_name:
        return f"{itemname}_{index}_"
    elif orig_name.startswith(f"{itemname}_") and orig_name.endswith("_"):
        return f"{itemname}_{index}_"
    else:
        return orig_name


def pack_element(spec: "Spec", ref: ElementRef, *, euler: bool = False) -> Dict[str, Any]:
    """One element as a JSON-ready dict, preferring its canonical snapshot."""
    record = spec.get(ref)
    canonical = spec.canonical(ref)
    values = dict(canonical) if canonical is not None else spec.resolve(ref)

    packed: Dict[str, Any] = {
        "id": ref.index,
        "name": standardize_name(ref.kind.value, record.name, ref.index),
        "finalized": canonical is not None,
        "error": record.error,
    }
    for key, value in values.items():
        if key == "name":
            continue
        packed[key] = _serialize_value(value)

    if euler:
        for key in ("quat", "iquat"):
            quat = values.get(key)
            if quat is not None:
                try:
                    angles = quat_to_euler(quat, spec.options.eulerseq, degrees=spec.options.degree)
                except (ValueError, DegenerateOrientation) as exc:
                    logger.warning("No Euler angles for %r in sequence '%s': %s", ref, spec.options.eulerseq, exc)
                    continue
                packed[key.replace("quat", "euler")] = angles
    return packed


def pack_spec_data(spec: "Spec", *, euler: bool = False) -> Dict[str, Any]:
    """
    Pack a whole tree into a JSON-serializable dict

    Args:
        spec: Tree to pack
        euler: Also report every quaternion as Euler angles in the model's
            sequence and angle unit

    Returns:
        Dict with the model name, options, default classes and one list per
        element kind in attach order
    """
    data: Dict[str, Any] = {
        "modelname": spec.modelname,
        "options": spec.options.as_dict(),
        "defaults": pack_default_classes(spec),
    }
    for kind in PACKED_KINDS:
        data[_SECTION_NAMES[kind]] = [
            pack_element(spec, record.handle, euler=euler) for record in spec.elements(kind)
        ]
    return data


def pack_default_classes(spec: "Spec") -> List[Dict[str, Any]]:
    classes = []
    for record in spec.elements(ElementKind.DEFAULT):
        bundles = {
            kind.value: {key: _serialize_value(value) for key, value in bundle.items()}
            for kind, bundle in record.bundles.items()
            if len(bundle)
        }
        parent = spec.get(record.parent).name if record.parent is not None else None
        classes.append({"name": record.name, "parent": parent, "bundles": bundles})
    return classes
