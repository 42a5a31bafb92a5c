"""
Session Actions

Decodes a posted form into the typed action a session processes. The form
vocabulary follows the exam pages:

- ``nav_N`` field, or ``action=nav_N``: navigate to item N
- ``score``: request submission
- ``Y`` / ``N``: confirm or cancel submission
- ``action=timeout``: the client-side timer ran out
- ``action=instruct``: show the instructions
- ``solutions``: view solutions after completion
- ``close``: close the session
- ``currentItem``: index of the item whose response is posted
- ``begin`` (or ``nav_0`` from the instructions): start the exam

Anything else decodes to a refresh, which re-renders the current state.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

_NAV_RE = re.compile(r"^nav_(\d+)$")


class ActionKind(enum.Enum):
    BEGIN = "begin"
    NAVIGATE = "navigate"
    INSTRUCTIONS = "instructions"
    REQUEST_SUBMIT = "request_submit"
    CONFIRM_YES = "confirm_yes"
    CONFIRM_NO = "confirm_no"
    TIMEOUT = "timeout"
    VIEW_SOLUTIONS = "view_solutions"
    CLOSE = "close"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Action:
    """
    A decoded user action.

    Attributes:
        kind: What the student asked for
        target: Target item index for NAVIGATE
        posted_item: Value of ``currentItem``, if posted and numeric
        form: The raw form, from which item templates extract responses
    """
    kind: ActionKind
    target: Optional[int] = None
    posted_item: Optional[int] = None
    form: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def navigate(cls, target: int, **kwargs) -> "Action":
        return cls(ActionKind.NAVIGATE, target=target, **kwargs)


def _parse_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _nav_target(name: Any) -> Optional[int]:
    if not isinstance(name, str):
        return None
    match = _NAV_RE.match(name.strip())
    return int(match.group(1)) if match else None


def parse_action(form: Mapping[str, Any]) -> Action:
    """
    Decode a posted form into an Action.

    Args:
        form: Mapping of field name to value (or list of values)

    Returns:
        The decoded action; REFRESH when nothing recognizable was posted
    """
    form = dict(form or {})
    posted_item = _parse_int(form.get("currentItem"))

    def make(kind: ActionKind, target: Optional[int] = None) -> Action:
        return Action(kind, target=target, posted_item=posted_item, form=form)

    if "close" in form:
        return make(ActionKind.CLOSE)
    if "solutions" in form:
        return make(ActionKind.VIEW_SOLUTIONS)
    if "Y" in form:
        return make(ActionKind.CONFIRM_YES)
    if "N" in form:
        return make(ActionKind.CONFIRM_NO)
    if "score" in form:
        return make(ActionKind.REQUEST_SUBMIT)
    if "begin" in form:
        return make(ActionKind.BEGIN)

    act = form.get("action")
    if isinstance(act, (list, tuple)):
        act = act[0] if act else None
    if act == "timeout":
        return make(ActionKind.TIMEOUT)
    if act == "instruct":
        return make(ActionKind.INSTRUCTIONS)
    target = _nav_target(act)
    if target is not None:
        return make(ActionKind.NAVIGATE, target)

    for name in form:
        target = _nav_target(name)
        if target is not None:
            return make(ActionKind.NAVIGATE, target)

    return make(ActionKind.REFRESH)

