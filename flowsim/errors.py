"""
Error taxonomy for flowsheet runs.

Every error raised by a block or by the orchestrator carries one of the
diagnostic categories below so the run assembler can turn it into a single
fatal diagnostic naming the offending block or stream.
"""

from __future__ import annotations

from typing import Optional


CONNECTIVITY = "connectivity"
PARAMETER = "parameter"
COMPOSITION = "composition"
PHYSICAL = "physical"
CONVERGENCE = "convergence"


class SimulationError(ValueError):
    """Base class for errors that abort a simulation run."""

    category: str = PHYSICAL

    def __init__(
        self,
        message: str,
        block_id: Optional[str] = None,
        stream_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.block_id = block_id
        self.stream_id = stream_id


class ConnectivityError(SimulationError):
    """Dangling or missing stream endpoints, unresolved block inputs."""

    category = CONNECTIVITY


class ParameterError(SimulationError):
    """Required block parameter absent or outside its domain."""

    category = PARAMETER


class CompositionError(SimulationError):
    """Mole fractions that do not sum to one within tolerance."""

    category = COMPOSITION


class PhysicalError(SimulationError):
    """Thermodynamically inconsistent request."""

    category = PHYSICAL
