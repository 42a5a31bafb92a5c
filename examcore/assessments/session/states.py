"""
Session States

The session state is a tagged variant; states that point at an item carry
the item index, so a state and its cursor can never disagree.
"""

from dataclasses import dataclass
from typing import Optional, Union

from examcore.common.exceptions import PersistenceError


@dataclass(frozen=True)
class Initial:
    name = "INITIAL"


@dataclass(frozen=True)
class Instructions:
    name = "INSTRUCTIONS"


@dataclass(frozen=True)
class Item:
    index: int
    name = "ITEM"


@dataclass(frozen=True)
class SubmitConfirm:
    """Waiting for the student to confirm submission; "no" returns to ``return_index``."""
    return_index: int
    name = "SUBMIT_CONFIRM"


@dataclass(frozen=True)
class Completed:
    name = "COMPLETED"


@dataclass(frozen=True)
class Solution:
    """Reviewing solutions; ``index`` None means the instructions in review mode."""
    index: Optional[int]
    name = "SOLUTION"


SessionState = Union[Initial, Instructions, Item, SubmitConfirm, Completed, Solution]


def current_item(state: SessionState) -> int:
    """Item index the state points at, or -1."""
    if isinstance(state, Item):
        return state.index
    if isinstance(state, SubmitConfirm):
        return state.return_index
    if isinstance(state, Solution) and state.index is not None:
        return state.index
    return -1


def is_active(state: SessionState) -> bool:
    """Whether the state is mid-attempt (answers entered but not yet scored)."""
    return isinstance(state, (Item, SubmitConfirm))


def is_scored(state: SessionState) -> bool:
    return isinstance(state, (Completed, Solution))


def state_from_persisted(name: str, cur_item: int) -> SessionState:
    """
    Rebuild a state from its persisted name and item index.

    Raises:
        PersistenceError: If the name is unknown or an item state has no index
    """
    if name == Initial.name:
        return Initial()
    if name == Instructions.name:
        return Instructions()
    if name == Item.name:
        if cur_item < 0:
            raise PersistenceError(f"State ITEM persisted without an item index ({cur_item})")
        return Item(cur_item)
    if name == SubmitConfirm.name:
        return SubmitConfirm(max(cur_item, 0))
    if name == Completed.name:
        return Completed()
    if name == Solution.name:
        return Solution(cur_item if cur_item >= 0 else None)
    raise PersistenceError(f"Unknown session state '{name}'")
