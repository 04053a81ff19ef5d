"""Exceptions raised by porenet.

Configuration errors derive from :class:`ValueError`, numerical invariant
violations detected while a simulation runs derive from :class:`RuntimeError`.

"""

__all__ = [
    "NetworkPreconditionError",
    "InconsistentBoundaryConditionError",
    "ConcentrationOutOfRangeError",
    "SaturationOutOfRangeError",
]


class NetworkPreconditionError(ValueError):
    """Raised when a network handed to a simulation is incomplete or inconsistent,
    e.g. missing geometry or endpoint ids outside the node range.

    The error is raised before any simulation step is taken.

    """


class InconsistentBoundaryConditionError(ValueError):
    """Raised by the pressure solver when the boundary conditions cannot be
    satisfied, such as a fixed flow rate demanded through a network without any
    conducting path from inlet to outlet."""


class ConcentrationOutOfRangeError(RuntimeError):
    """Raised when a tracer concentration leaves [0, 1] beyond tolerance.

    The explicit transport scheme keeps concentrations bounded for admissible
    time steps, so a violation signals a defect in the flow field or the step
    size. Values are never clamped.

    """

    def __init__(self, element: int, value: float) -> None:
        self.element = element
        self.value = value
        super().__init__(
            f"Concentration out of range in element {element}: {value:.6e}"
        )


class SaturationOutOfRangeError(RuntimeError):
    """Raised when a phase fraction leaves [0, 1] beyond tolerance during
    unsteady-state displacement."""

    def __init__(self, element: int, value: float) -> None:
        self.element = element
        self.value = value
        super().__init__(
            f"Water fraction out of range in element {element}: {value:.6e}"
        )
