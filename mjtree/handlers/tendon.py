"""
Tendon Path Builder - ordered wrap segments of a tendon

Segments are a tagged variant: a site anchor, a geom with optional side site,
a joint with coefficient, or a pulley with divisor. Order is the physical path
and is never changed after appending. Validation is deferred to finalize
because names may not resolve while the model is being built.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Tuple, Type, Union, TYPE_CHECKING

from ..elements import ElementKind, ElementRef
from ..errors import InvalidReference, InvalidWrapPath, SpecError, UnresolvedReference

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..spec import Spec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SiteWrap:
    site: str
    kind: str = "site"


@dataclass(frozen=True)
class GeomWrap:
    geom: str
    sidesite: str = ""
    kind: str = "geom"


@dataclass(frozen=True)
class JointWrap:
    joint: str
    coef: float = 1.0
    kind: str = "joint"


@dataclass(frozen=True)
class PulleyWrap:
    divisor: float = 1.0
    kind: str = "pulley"


WrapSegment = Union[SiteWrap, GeomWrap, JointWrap, PulleyWrap]

Problem = Tuple[Type[SpecError], str]


def append_segment(spec: "Spec", tendon: ElementRef, segment: WrapSegment) -> ElementRef:
    """Add one segment at the end of a tendon's path."""
    record = spec.get(tendon)
    if record.kind != ElementKind.TENDON:
        raise InvalidReference(f"{tendon!r} is not a tendon")
    wrap = spec._create(ElementKind.WRAP, tendon)
    object.__setattr__(wrap, "segment", segment)
    record.path.append(wrap.handle)
    logger.debug("Tendon %r: appended %s segment %r", tendon, segment.kind, segment)
    return wrap.handle


def path_segments(spec: "Spec", tendon: ElementRef) -> List[WrapSegment]:
    record = spec.get(tendon)
    if record.kind != ElementKind.TENDON:
        raise InvalidReference(f"{tendon!r} is not a tendon")
    return [spec.get(ref).segment for ref in record.path]


def segment_as_dict(segment: WrapSegment) -> Dict[str, Any]:
    return asdict(segment)


def _branches(segments: List[WrapSegment]) -> List[List[Tuple[int, WrapSegment]]]:
    branches: List[List[Tuple[int, WrapSegment]]] = [[]]
    for index, segment in enumerate(segments):
        if isinstance(segment, PulleyWrap):
            branches.append([])
        else:
            branches[-1].append((index, segment))
    return branches


def validate_path(segments: List[WrapSegment]) -> List[Problem]:
    """Structural problems of a path, independent of name resolution."""
    problems: List[Problem] = []
    if not segments:
        return [(InvalidWrapPath, "tendon path is empty")]

    joints = [seg for seg in segments if isinstance(seg, JointWrap)]
    spatial = [seg for seg in segments if not isinstance(seg, JointWrap)]
    if joints and spatial:
        problems.append(
            (InvalidWrapPath, "tendon path mixes joint segments with site, geom or pulley segments")
        )

    for index, segment in enumerate(segments):
        if isinstance(segment, PulleyWrap):
            if not math.isfinite(segment.divisor) or segment.divisor == 0:
                problems.append(
                    (InvalidWrapPath, f"pulley at position {index} needs a non-zero divisor, got {segment.divisor}")
                )
        elif isinstance(segment, JointWrap):
            if not math.isfinite(segment.coef):
                problems.append(
                    (InvalidWrapPath, f"joint '{segment.joint}' at position {index} has a non-finite coefficient")
                )

    for index in range(len(segments) - 1):
        first, second = segments[index], segments[index + 1]
        if isinstance(first, GeomWrap) and isinstance(second, GeomWrap):
            if not first.sidesite and not second.sidesite:
                problems.append(
                    (
                        InvalidWrapPath,
                        f"consecutive geoms '{first.geom}' and '{second.geom}' at positions "
                        f"{index} and {index + 1} need a side site on at least one of them",
                    )
                )

    if spatial and not joints:
        for branch in _branches(segments):
            if not branch:
                problems.append((InvalidWrapPath, "pulley must separate two non-empty path branches"))
                continue
            first_index, first = branch[0]
            last_index, last = branch[-1]
            if not isinstance(first, SiteWrap):
                problems.append((InvalidWrapPath, f"spatial path branch must begin at a site (position {first_index})"))
            if not isinstance(last, SiteWrap):
                problems.append((InvalidWrapPath, f"spatial path branch must end at a site (position {last_index})"))
    return problems


def unresolved_names(
    segments: List[WrapSegment], has_name: Callable[[str, ElementKind], bool]
) -> List[Problem]:
    """Segments whose site, geom, side site or joint name does not resolve."""
    problems: List[Problem] = []
    for index, segment in enumerate(segments):
        wanted: List[Tuple[ElementKind, str]] = []
        if isinstance(segment, SiteWrap):
            wanted.append((ElementKind.SITE, segment.site))
        elif isinstance(segment, GeomWrap):
            wanted.append((ElementKind.GEOM, segment.geom))
            if segment.sidesite:
                wanted.append((ElementKind.SITE, segment.sidesite))
        elif isinstance(segment, JointWrap):
            wanted.append((ElementKind.JOINT, segment.joint))
        for kind, name in wanted:
            if not has_name(name, kind):
                problems.append(
                    (UnresolvedReference, f"{kind.value} '{name}' used at path position {index} does not exist")
                )
    return problems
