"""Model-wide options that steer orientation resolution and validation."""
from __future__ import annotations

from typing import Any, Dict

FREE_JOINT_POLICIES = ("enforce", "defer")


class SpecOptions:
    """
    Compiler-facing settings of a Spec

    Args:
        degree: Interpret axis-angle angles and Euler angles in degrees
        eulerseq: Euler rotation sequence; lowercase letters rotate about the
            moving axes, uppercase letters about the fixed axes
        free_joint_policy: "enforce" rejects a free joint on a body that
            already has joints; "defer" leaves the check to the compiler
        inertia_tolerance: Relative tolerance for the principal moment checks
    """

    def __init__(
        self,
        degree: bool = False,
        eulerseq: str = "xyz",
        free_joint_policy: str = "enforce",
        inertia_tolerance: float = 1e-10,
    ):
        if len(eulerseq) != 3 or any(axis not in "xyzXYZ" for axis in eulerseq):
            raise ValueError(f"eulerseq must be three letters from xyzXYZ, got {eulerseq!r}")
        if free_joint_policy not in FREE_JOINT_POLICIES:
            raise ValueError(
                f"free_joint_policy must be one of {', '.join(FREE_JOINT_POLICIES)}, "
                f"got {free_joint_policy!r}"
            )
        if inertia_tolerance < 0:
            raise ValueError("inertia_tolerance must be non-negative")

        self.degree = bool(degree)
        self.eulerseq = eulerseq
        self.free_joint_policy = free_joint_policy
        self.inertia_tolerance = float(inertia_tolerance)

    @property
    def enforce_single_free_joint(self) -> bool:
        return self.free_joint_policy == "enforce"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "degree": self.degree,
            "eulerseq": self.eulerseq,
            "free_joint_policy": self.free_joint_policy,
            "inertia_tolerance": self.inertia_tolerance,
        }

    def __repr__(self) -> str:
        args = ", ".join(f"{key}={value!r}" for key, value in self.as_dict().items())
        return f"SpecOptions({args})"
