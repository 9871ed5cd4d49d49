"""
Default classes - named bundles of fallback attribute values

A class carries one partial bundle per defaultable element kind. Effective
values are resolved per attribute in a fixed order: explicit element value,
assigned class and its parents, the "main" class, built-in default.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .elements import (
    Array,
    DEFAULTABLE_KINDS,
    Element,
    ElementKind,
    ElementRef,
    Text,
    builtin_defaults,
    defaultable_fields,
)

MAIN_CLASS = "main"
BUILTIN = "builtin"
EXPLICIT = "explicit"


class DefaultBundle:
    """Partial set of default values for one element kind."""

    def __init__(self, kind: ElementKind) -> None:
        object.__setattr__(self, "_kind", ElementKind(kind))
        object.__setattr__(self, "_fields", defaultable_fields(kind))
        object.__setattr__(self, "_values", {})

    @property
    def kind(self) -> ElementKind:
        return self._kind

    def __getattr__(self, key: str) -> Any:
        fields = object.__getattribute__(self, "_fields")
        if key not in fields:
            raise AttributeError(f"{self._kind.value} defaults have no attribute '{key}'")
        value = self._values.get(key)
        if isinstance(value, np.ndarray):
            return value.copy()
        return value

    def __setattr__(self, key: str, value: Any) -> None:
        field = self._fields.get(key)
        if field is None:
            raise AttributeError(f"{self._kind.value} defaults have no attribute '{key}'")
        if isinstance(field, Text):
            self._values[key] = "" if value is None else str(value)
        elif isinstance(field, Array):
            self._values[key] = np.array([] if value is None else value, dtype=np.float64).reshape(-1)
        else:
            self._values[key] = field.coerce(value)

    def __delattr__(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(self, key, value)

    def items(self) -> Iterator[Tuple[str, Any]]:
        for key, value in self._values.items():
            yield key, value.copy() if isinstance(value, np.ndarray) else value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.items())


class DefaultClass(Element):
    """A named default class; itself an element with a stable reference."""

    kind = ElementKind.DEFAULT

    def __init__(self, spec, ref: ElementRef, parent: Optional[ElementRef] = None) -> None:
        super().__init__(spec, ref, parent)
        object.__setattr__(
            self, "bundles", {kind: DefaultBundle(kind) for kind in DEFAULTABLE_KINDS}
        )

    def bundle(self, kind: ElementKind) -> DefaultBundle:
        self._check_alive()
        kind = ElementKind(kind)
        if kind not in self.bundles:
            raise KeyError(f"default classes carry no {kind.value} bundle")
        return self.bundles[kind]

    @property
    def joint(self) -> DefaultBundle:
        return self.bundle(ElementKind.JOINT)

    @property
    def geom(self) -> DefaultBundle:
        return self.bundle(ElementKind.GEOM)

    @property
    def site(self) -> DefaultBundle:
        return self.bundle(ElementKind.SITE)

    @property
    def camera(self) -> DefaultBundle:
        return self.bundle(ElementKind.CAMERA)

    @property
    def light(self) -> DefaultBundle:
        return self.bundle(ElementKind.LIGHT)

    @property
    def material(self) -> DefaultBundle:
        return self.bundle(ElementKind.MATERIAL)

    @property
    def equality(self) -> DefaultBundle:
        return self.bundle(ElementKind.EQUALITY)

    @property
    def tendon(self) -> DefaultBundle:
        return self.bundle(ElementKind.TENDON)

    @property
    def actuator(self) -> DefaultBundle:
        return self.bundle(ElementKind.ACTUATOR)


def class_chain(
    get: Callable[[ElementRef], DefaultClass], class_ref: Optional[ElementRef]
) -> List[DefaultClass]:
    """The class followed by its ancestors, most specific first."""
    chain: List[DefaultClass] = []
    seen = set()
    while class_ref is not None and class_ref not in seen:
        seen.add(class_ref)
        record = get(class_ref)
        chain.append(record)
        class_ref = record.parent
    return chain


def resolve_attributes(
    kind: ElementKind,
    explicit: Dict[str, Any],
    chain: Sequence[DefaultClass],
) -> Dict[str, Any]:
    """
    Effective value of every defaultable attribute of an element

    Args:
        kind: Element kind being resolved
        explicit: Values written directly on the element
        chain: Default classes, most specific first

    Returns:
        Mapping of attribute name to effective value
    """
    kind = ElementKind(kind)
    resolved = builtin_defaults(kind)
    for default_class in reversed(chain):
        resolved.update(default_class.bundle(kind).items())
    resolved.update({key: value for key, value in explicit.items() if key in resolved})
    return resolved


def attribute_source(
    kind: ElementKind,
    name: str,
    explicit: Dict[str, Any],
    chain: Sequence[DefaultClass],
) -> str:
    """Which tier supplies an attribute: "explicit", a class name or "builtin"."""
    if name in explicit:
        return EXPLICIT
    for default_class in chain:
        if name in default_class.bundle(kind):
            return default_class.name
    return BUILTIN
