"""Exception types raised by the model layer and the diff engine."""

from __future__ import annotations


class RefminerError(Exception):
    """Base class for all refminer errors."""


class InvalidElement(RefminerError, ValueError):
    """A model element or code range is malformed.

    Raised while a Model is being constructed; a diff never starts on
    malformed input.
    """


class MappingBudgetExceeded(RefminerError):
    """The statement body mapper ran out of comparison budget."""

    def __init__(self, budget: int, left_size: int, right_size: int):
        self.budget = budget
        self.left_size = left_size
        self.right_size = right_size
        super().__init__(
            f"Body mapping exceeded budget of {budget} comparisons "
            f"({left_size} vs {right_size} statements)"
        )
