"""
Item Templates

An item template is the gradable content behind one assessment item. The
session engine treats templates as a capability: it asks a template to pull a
response out of a posted form, whether a response counts as answered, whether
it is correct, and what it scores. Rendering is not a template concern here.

Responses are tuples of strings so they serialize cleanly to XML and JSON.
"""

import math
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, FrozenSet, Mapping, Optional, Tuple, Type

from examcore.common.exceptions import DocumentError

Response = Tuple[str, ...]

# Form field that carries item responses
RESPONSE_FIELD = "answer"


def _form_values(form: Mapping[str, Any], field: str = RESPONSE_FIELD) -> Tuple[str, ...]:
    raw = form.get(field)
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple)):
        values = raw
    else:
        values = [raw]
    return tuple(str(v).strip() for v in values if v is not None and str(v).strip())


class ItemTemplate(ABC):
    """Base class for gradable item templates."""

    kind: ClassVar[str] = ""

    template_id: str

    @abstractmethod
    def is_correct(self, response: Optional[Response]) -> bool:
        """Whether the response is fully correct."""

    def score(self, response: Optional[Response]) -> float:
        """Score earned by the response; 1.0 for correct, 0.0 otherwise."""
        return 1.0 if self.is_correct(response) else 0.0

    def is_answered(self, response: Optional[Response]) -> bool:
        return bool(response)

    @abstractmethod
    def extract_response(self, form: Mapping[str, Any]) -> Optional[Response]:
        """Pull this template's response out of a posted form, or None if nothing was posted."""

    @abstractmethod
    def to_xml(self) -> ET.Element:
        """Serialize as a ``<template>`` element."""

    @classmethod
    @abstractmethod
    def from_xml(cls, elem: ET.Element) -> "ItemTemplate":
        """Build the template from a ``<template>`` element."""


@dataclass(frozen=True)
class ChoiceItemTemplate(ItemTemplate):
    """
    Single- or multiple-selection item.

    A response is correct only when it selects exactly the set of correct
    choices: choosing some but not all correct choices earns nothing.
    """

    kind: ClassVar[str] = "choice"

    template_id: str
    choices: Tuple[str, ...]
    correct: FrozenSet[str]
    multiple: bool = False
    prompt: str = ""

    def __post_init__(self):
        if not self.choices:
            raise DocumentError(f"Choice template '{self.template_id}' has no choices")
        if not self.correct:
            raise DocumentError(f"Choice template '{self.template_id}' has no correct choice")
        unknown = set(self.correct) - set(self.choices)
        if unknown:
            raise DocumentError(
                f"Choice template '{self.template_id}' marks unknown choices correct: {sorted(unknown)}")
        if not self.multiple and len(self.correct) != 1:
            raise DocumentError(
                f"Single-selection template '{self.template_id}' must have exactly one correct choice")

    def is_correct(self, response: Optional[Response]) -> bool:
        if not response:
            return False
        return frozenset(response) == self.correct

    def extract_response(self, form: Mapping[str, Any]) -> Optional[Response]:
        selected = [v for v in _form_values(form) if v in self.choices]
        if not selected:
            return None
        if not self.multiple:
            selected = selected[:1]
        # Keep document order so the same selection always serializes the same way
        return tuple(c for c in self.choices if c in selected)

    def to_xml(self) -> ET.Element:
        elem = ET.Element("template", {
            "kind": self.kind,
            "id": self.template_id,
            "multiple": "true" if self.multiple else "false",
        })
        if self.prompt:
            ET.SubElement(elem, "prompt").text = self.prompt
        for key in self.choices:
            ET.SubElement(elem, "choice", {
                "key": key,
                "correct": "true" if key in self.correct else "false",
            })
        return elem

    @classmethod
    def from_xml(cls, elem: ET.Element) -> "ChoiceItemTemplate":
        choices = []
        correct = set()
        for child in elem.findall("choice"):
            key = child.get("key")
            if not key:
                raise DocumentError("Choice element is missing 'key'")
            choices.append(key)
            if child.get("correct", "false").lower() == "true":
                correct.add(key)
        prompt = elem.findtext("prompt") or ""
        return cls(
            template_id=_require(elem, "id"),
            choices=tuple(choices),
            correct=frozenset(correct),
            multiple=elem.get("multiple", "false").lower() == "true",
            prompt=prompt,
        )


@dataclass(frozen=True)
class NumericItemTemplate(ItemTemplate):
    """Free-entry numeric item, correct within an absolute tolerance."""

    kind: ClassVar[str] = "numeric"

    template_id: str
    answer: float
    tolerance: float = 0.0
    prompt: str = ""

    def __post_init__(self):
        if self.tolerance < 0:
            raise DocumentError(f"Numeric template '{self.template_id}' has a negative tolerance")

    def is_correct(self, response: Optional[Response]) -> bool:
        if not response:
            return False
        try:
            value = float(response[0])
        except ValueError:
            return False
        if math.isnan(value):
            return False
        return abs(value - self.answer) <= self.tolerance

    def extract_response(self, form: Mapping[str, Any]) -> Optional[Response]:
        values = _form_values(form)
        return values[:1] or None

    def to_xml(self) -> ET.Element:
        elem = ET.Element("template", {
            "kind": self.kind,
            "id": self.template_id,
            "answer": repr(self.answer),
            "tolerance": repr(self.tolerance),
        })
        if self.prompt:
            ET.SubElement(elem, "prompt").text = self.prompt
        return elem

    @classmethod
    def from_xml(cls, elem: ET.Element) -> "NumericItemTemplate":
        try:
            answer = float(_require(elem, "answer"))
            tolerance = float(elem.get("tolerance", "0"))
        except ValueError as e:
            raise DocumentError(f"Invalid numeric template attributes: {e}", e)
        return cls(
            template_id=_require(elem, "id"),
            answer=answer,
            tolerance=tolerance,
            prompt=elem.findtext("prompt") or "",
        )


@dataclass(frozen=True)
class AutoCorrectItemTemplate(ItemTemplate):
    """
    Stand-in for an item the student has already mastered.

    It is always answered and always correct, so the student is not shown the
    item again but still earns its credit.
    """

    kind: ClassVar[str] = "auto-correct"

    template_id: str = "auto-correct"
    value: float = 1.0

    def is_correct(self, response: Optional[Response]) -> bool:
        return True

    def score(self, response: Optional[Response]) -> float:
        return self.value

    def is_answered(self, response: Optional[Response]) -> bool:
        return True

    def extract_response(self, form: Mapping[str, Any]) -> Optional[Response]:
        return None

    def to_xml(self) -> ET.Element:
        return ET.Element("template", {
            "kind": self.kind,
            "id": self.template_id,
            "value": repr(self.value),
        })

    @classmethod
    def from_xml(cls, elem: ET.Element) -> "AutoCorrectItemTemplate":
        try:
            value = float(elem.get("value", "1"))
        except ValueError as e:
            raise DocumentError(f"Invalid auto-correct value: {e}", e)
        return cls(template_id=elem.get("id", "auto-correct"), value=value)


TEMPLATE_KINDS: Dict[str, Type[ItemTemplate]] = {
    ChoiceItemTemplate.kind: ChoiceItemTemplate,
    NumericItemTemplate.kind: NumericItemTemplate,
    AutoCorrectItemTemplate.kind: AutoCorrectItemTemplate,
}


def template_from_xml(elem: ET.Element) -> ItemTemplate:
    """
    Load any registered template kind from a ``<template>`` element.

    Raises:
        DocumentError: If the element is not a template or its kind is unknown
    """
    if elem.tag != "template":
        raise DocumentError(f"Expected 'template', found '{elem.tag}'")
    kind = elem.get("kind")
    template_cls = TEMPLATE_KINDS.get(kind)
    if template_cls is None:
        raise DocumentError(f"Unknown item template kind '{kind}'")
    return template_cls.from_xml(elem)


def response_to_xml(response: Optional[Response]) -> Optional[ET.Element]:
    if response is None:
        return None
    elem = ET.Element("response")
    for value in response:
        ET.SubElement(elem, "value").text = value
    return elem


def response_from_xml(elem: Optional[ET.Element]) -> Optional[Response]:
    if elem is None:
        return None
    return tuple((child.text or "") for child in elem.findall("value"))


def _require(elem: ET.Element, attr: str) -> str:
    value = elem.get(attr)
    if value is None or value == "":
        raise DocumentError(f"'{elem.tag}' is missing required attribute '{attr}'")
    return value
