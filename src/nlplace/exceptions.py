"""
Exception hierarchy for nlplace.

Every error carries a message plus optional context and suggestions, and is
formatted the same way so a failed solve points at the offending entity.

Example::

    from nlplace.exceptions import PreconditionError

    raise PreconditionError(
        "Pin references a cell that does not exist",
        context={"pin": 12, "cell": 40, "num_cells": 8},
        suggestions=["Check the pin-to-cell mapping in the database"],
    )
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class NlpPlaceError(Exception):
    """
    Base exception for all nlplace errors.

    Attributes:
        context: Dictionary of contextual information (entity ids, sizes, ...)
        suggestions: List of actionable suggestions for fixing the error
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.context = context or {}
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context and suggestions."""
        parts = [self.message]

        if self.context:
            parts.append("\n\nContext:")
            for key, value in self.context.items():
                parts.append(f"\n  {key}: {value}")

        if self.suggestions:
            parts.append("\n\nSuggestions:")
            for suggestion in self.suggestions:
                parts.append(f"\n  - {suggestion}")

        return "".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class PreconditionError(NlpPlaceError):
    """
    A placement problem instance is malformed.

    Raised for out-of-range cell, pin, net or symmetry-group ids and for
    operators bound to variables that do not exist. These are never
    recovered from: the problem must be fixed and the solve restarted.

    Example::

        raise PreconditionError(
            "Cell id out of range",
            context={"cell": 9, "num_cells": 4},
        )
    """

    pass


class DegenerateProblemError(NlpPlaceError):
    """
    The problem has no usable geometry.

    Raised while computing the scale factor or placement boundary, e.g.
    when the total cell area is zero or the boundary has no width.
    """

    pass


class PlacerStateError(NlpPlaceError):
    """
    A kernel operation was called out of lifecycle order.

    Example::

        raise PlacerStateError(
            "Operators must be built before tasks are constructed",
            context={"state": "PROBLEM_INITIALIZED", "required": "OPERATORS_BUILT"},
        )
    """

    pass


class TaskGraphError(NlpPlaceError):
    """
    The task graph is malformed.

    Raised for duplicate task names, dependencies on unknown tasks and
    dependency cycles.
    """

    pass
