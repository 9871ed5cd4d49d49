"""
Inertia Solver - principal axes of a full inertia matrix

The full inertia is given as six components (ixx, iyy, izz, ixy, ixz, iyz).
Solving is pure: callers decide whether to write the returned quaternion and
principal moments back into the body.
"""
from __future__ import annotations

import logging
from typing import Iterable, NamedTuple, Optional

import numpy as np

from ..elements import IDENTITY_QUAT
from .pose import mat2quat, normalize_quat, quat_multiply

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-10


class InertiaSolution(NamedTuple):
    quat: Optional[np.ndarray]
    inertia: Optional[np.ndarray]
    error: Optional[str]

    @property
    def ok(self) -> bool:
        return self.error is None


def full_inertia_matrix(fullinertia: Iterable[float]) -> np.ndarray:
    """Symmetric 3x3 matrix from (ixx, iyy, izz, ixy, ixz, iyz)."""
    ixx, iyy, izz, ixy, ixz, iyz = np.asarray(fullinertia, dtype=float).reshape(6)
    return np.array(
        [
            [ixx, ixy, ixz],
            [ixy, iyy, iyz],
            [ixz, iyz, izz],
        ],
        dtype=float,
    )


def _fmt(value: float) -> str:
    return f"{value:.6g}"


def check_principal_moments(
    moments: Iterable[float], tolerance: float = DEFAULT_TOLERANCE
) -> Optional[str]:
    """
    Describe why principal moments are not physically realizable, or return
    None when each is non-negative and no larger than the sum of the others.
    """
    a, b, c = (float(v) for v in moments)
    scale = max(abs(a), abs(b), abs(c), 1.0)
    slack = tolerance * scale

    for label, value in (("first", a), ("second", b), ("third", c)):
        if not np.isfinite(value):
            return f"{label} principal moment is not finite: {value}"
        if value < -slack:
            return f"{label} principal moment must be non-negative, got {_fmt(value)}"

    for big, rest in ((a, (b, c)), (b, (a, c)), (c, (a, b))):
        if big > rest[0] + rest[1] + slack:
            return (
                f"principal moments ({_fmt(a)}, {_fmt(b)}, {_fmt(c)}) violate the "
                f"triangle inequality: {_fmt(big)} > {_fmt(rest[0])} + {_fmt(rest[1])}"
            )
    return None


def solve_full_inertia(
    fullinertia: Iterable[float],
    iquat: Iterable[float] = IDENTITY_QUAT,
    tolerance: float = DEFAULT_TOLERANCE,
) -> InertiaSolution:
    """
    Diagonalize a full inertia matrix

    Args:
        fullinertia: (ixx, iyy, izz, ixy, ixz, iyz) in the body frame
        iquat: Inertial frame orientation the principal rotation is composed with
        tolerance: Relative slack for the feasibility checks

    Returns:
        InertiaSolution with the inertial quaternion and principal moments
        (descending), or with ``error`` set and no usable quaternion
    """
    values = np.asarray(fullinertia, dtype=float).reshape(-1)
    if values.shape[0] != 6:
        return InertiaSolution(None, None, f"fullinertia expects 6 values, got {values.shape[0]}")
    if not np.all(np.isfinite(values)):
        return InertiaSolution(None, None, "fullinertia contains non-finite values")

    mat = full_inertia_matrix(values)
    scale = max(float(np.max(np.abs(values))), 1.0)

    if np.max(np.abs(values[3:])) <= tolerance * scale:
        # already diagonal: the body axes are principal, only their order changes
        eigvals, eigvecs = values[:3].copy(), np.eye(3)
    else:
        eigvals, eigvecs = np.linalg.eigh(mat)
    order = np.argsort(-eigvals, kind="stable")
    moments = eigvals[order]
    axes = eigvecs[:, order]
    if np.linalg.det(axes) < 0:
        axes[:, 2] = -axes[:, 2]
    principal = mat2quat(axes)

    error = check_principal_moments(moments, tolerance)
    if error is not None:
        logger.debug("Full inertia %s rejected: %s", values.tolist(), error)
        return InertiaSolution(None, None, error)

    quat = normalize_quat(quat_multiply(normalize_quat(iquat, "iquat"), principal), "iquat")
    if quat[0] < 0:
        quat = -quat
    return InertiaSolution(quat, np.clip(moments, 0.0, None), None)
