"""
Session Persistence Format

Live sessions are written to a single XML file so a restarted process can
pick them up where they left off::

    <assessment-sessions>
      <assessment-session>
        <interaction>LS1234</interaction>
        <student>888888888</student>
        <assessment-id>171UE</assessment-id>
        <course>M 117</course>
        <state>ITEM</state>
        <cur-item>3</cur-item>
        <started>true</started>
        <deadline>1700000000.0</deadline>
        <instructions-viewed>1699996400.0</instructions-viewed>
        <redirect>/home</redirect>
        <realized serial="123" realized-at="1699996400.0">
          <assessment version="171UE" ...>...</assessment>
        </realized>
        <selected-item index="0" id="1">
          <template kind="choice" .../>
          <response><value>B</value></response>
        </selected-item>
      </assessment-session>
    </assessment-sessions>

``score``, ``mastery``, ``passed`` and ``error`` appear only once a session
has been scored. Records missing other optional fields are restored with
defaults and a warning.
"""

import xml.etree.ElementTree as ET
from typing import Callable, List, Optional

from examcore.common.exceptions import DocumentError, ExamCoreError, PersistenceError
from examcore.common.logger import app_logger
from examcore.assessments.document.models import AssessmentDocument
from examcore.assessments.document.realized import RealizedDocument, RealizedItem
from examcore.assessments.document.templates import response_from_xml, response_to_xml, template_from_xml
from examcore.assessments.document.xml_codec import document_from_xml, document_to_xml
from examcore.assessments.session.session import AssessmentSession
from examcore.assessments.session.states import Initial, state_from_persisted

logger = app_logger.getChild("store.persistence")

ROOT_TAG = "assessment-sessions"
SESSION_TAG = "assessment-session"

# Builds an empty session bound to its collaborators: (interaction, document, student, redirect)
SessionFactory = Callable[[str, AssessmentDocument, str, Optional[str]], AssessmentSession]


def _text(parent: ET.Element, tag: str, value) -> None:
    if value is None:
        return
    if isinstance(value, bool):
        value = "true" if value else "false"
    ET.SubElement(parent, tag).text = str(value) if not isinstance(value, float) else repr(value)


def encode_session(session: AssessmentSession) -> ET.Element:
    """Serialize one session as an ``<assessment-session>`` element."""
    if session.realized is None:
        raise PersistenceError(f"Session {session.key} has not been realized")

    elem = ET.Element(SESSION_TAG)
    _text(elem, "interaction", session.interaction_id)
    _text(elem, "student", session.student_id)
    _text(elem, "assessment-id", session.assessment_id)
    _text(elem, "course", session.course)
    _text(elem, "state", session.state.name)
    _text(elem, "cur-item", session.current_item)
    _text(elem, "last-item", session.last_item)
    _text(elem, "started", session.started)
    _text(elem, "scored", session.scored)
    _text(elem, "score", session.score)
    _text(elem, "mastery", session.mastery)
    _text(elem, "passed", session.passed)
    _text(elem, "deadline", float(session.deadline))
    _text(elem, "instructions-viewed", float(session.instructions_viewed_at))
    _text(elem, "time-limit-factor", session.time_limit_factor)
    _text(elem, "redirect", session.redirect)
    _text(elem, "error", session.grading_error)
    if session.holds:
        holds = ET.SubElement(elem, "holds")
        for hold in session.holds:
            ET.SubElement(holds, "hold").text = hold

    realized = session.realized
    realized_attrs = {
        "serial": str(realized.serial_number),
        "realized-at": repr(realized.realized_at),
    }
    if realized.completed_at is not None:
        realized_attrs["completed-at"] = repr(realized.completed_at)
    realized_elem = ET.SubElement(elem, "realized", realized_attrs)
    realized_elem.append(document_to_xml(realized.document))

    for index, item in enumerate(realized.items):
        selected = ET.SubElement(elem, "selected-item", {"index": str(index), "id": str(item.item_id)})
        selected.append(item.template.to_xml())
        response = response_to_xml(item.response)
        if response is not None:
            selected.append(response)

    return elem


class _RecordReader:
    """Field access for one persisted record, warning about missing optional fields."""

    def __init__(self, elem: ET.Element):
        self.elem = elem
        self.label = elem.findtext("interaction") or "?"

    def required(self, tag: str) -> str:
        value = self.elem.findtext(tag)
        if value is None or value.strip() == "":
            raise PersistenceError(f"Persisted session {self.label} is missing <{tag}>")
        return value.strip()

    def optional(self, tag: str, warn: bool = False) -> Optional[str]:
        value = self.elem.findtext(tag)
        if value is None or value.strip() == "":
            if warn:
                logger.warning(f"Persisted session {self.label} has no <{tag}>; using default")
            return None
        return value.strip()

    def number(self, tag: str, convert, default=None, warn: bool = False):
        value = self.optional(tag, warn)
        if value is None:
            return default
        try:
            return convert(value)
        except ValueError:
            raise PersistenceError(f"Persisted session {self.label} has invalid <{tag}>: {value!r}")

    def flag(self, tag: str, default: Optional[bool] = False, warn: bool = False) -> Optional[bool]:
        value = self.optional(tag, warn)
        if value is None:
            return default
        return value.lower() == "true"


def decode_session(elem: ET.Element, factory: SessionFactory) -> AssessmentSession:
    """
    Rebuild a session from an ``<assessment-session>`` element.

    Raises:
        PersistenceError: If a required field is missing or malformed
    """
    if elem.tag != SESSION_TAG:
        raise PersistenceError(f"Expected <{SESSION_TAG}>, found <{elem.tag}>")

    reader = _RecordReader(elem)
    interaction_id = reader.required("interaction")
    student_id = reader.required("student")
    assessment_id = reader.required("assessment-id")
    state_name = reader.required("state")

    realized_elem = elem.find("realized")
    if realized_elem is None:
        raise PersistenceError(f"Persisted session {interaction_id} has no <realized> document")
    document_elem = realized_elem.find("assessment")
    if document_elem is None:
        raise PersistenceError(f"Persisted session {interaction_id} has no assessment document")
    try:
        document = document_from_xml(document_elem)
    except DocumentError as e:
        raise PersistenceError(f"Persisted session {interaction_id} has a bad document: {e.message}", e)
    if document.version != assessment_id:
        raise PersistenceError(
            f"Persisted session {interaction_id} is for {assessment_id} but embeds {document.version}")

    realized = _decode_realized(realized_elem, elem, document, interaction_id)

    session = factory(interaction_id, document, student_id, reader.optional("redirect"))
    session.realized = realized

    cur_item = reader.number("cur-item", int, default=-1, warn=True)
    state = state_from_persisted(state_name, cur_item)
    if isinstance(state, Initial):
        raise PersistenceError(f"Persisted session {interaction_id} was never realized")
    if cur_item >= len(realized):
        raise PersistenceError(f"Persisted session {interaction_id} points past the last item ({cur_item})")
    session.state = state

    session.last_item = reader.number("last-item", int, default=max(cur_item, 0))
    session.started = reader.flag("started", warn=True)
    session.scored = reader.flag("scored", default=False)
    session.score = reader.number("score", int)
    session.mastery = reader.number("mastery", int)
    session.passed = reader.flag("passed", default=None)
    session.deadline = reader.number("deadline", float, default=0.0, warn=True)
    session.instructions_viewed_at = reader.number("instructions-viewed", float, default=0.0, warn=True)
    session.time_limit_factor = reader.number("time-limit-factor", float)
    session.grading_error = reader.optional("error")
    session.holds = [hold.text or "" for hold in elem.findall("holds/hold")]
    return session


def _decode_realized(realized_elem: ET.Element, elem: ET.Element,
                     document: AssessmentDocument, interaction_id: str) -> RealizedDocument:
    try:
        serial = int(realized_elem.get("serial", ""))
        realized_at = float(realized_elem.get("realized-at", ""))
        completed = realized_elem.get("completed-at")
        completed_at = float(completed) if completed else None
    except ValueError:
        raise PersistenceError(f"Persisted session {interaction_id} has bad realization attributes")

    selected = {}
    for item_elem in elem.findall("selected-item"):
        try:
            index = int(item_elem.get("index", ""))
        except ValueError:
            raise PersistenceError(f"Persisted session {interaction_id} has a <selected-item> without an index")
        selected[index] = item_elem

    items: List[RealizedItem] = []
    for index, (section_index, item) in enumerate(document.items()):
        item_elem = selected.get(index)
        if item_elem is None:
            raise PersistenceError(f"Persisted session {interaction_id} has no selection for item {index}")
        template_elem = item_elem.find("template")
        if template_elem is None:
            raise PersistenceError(f"Persisted session {interaction_id} has no template for item {index}")
        try:
            template = template_from_xml(template_elem)
        except DocumentError as e:
            raise PersistenceError(f"Persisted session {interaction_id}, item {index}: {e.message}", e)
        items.append(RealizedItem(
            item_id=item.item_id,
            section_index=section_index,
            template=template,
            name=item.name,
            weight=item.weight,
            response=response_from_xml(item_elem.find("response")),
        ))

    return RealizedDocument(
        document=document,
        serial_number=serial,
        realized_at=realized_at,
        items=items,
        completed_at=completed_at,
    )


def write_sessions(elements: List[ET.Element], path: str) -> None:
    """Write encoded sessions to ``path`` as one ``<assessment-sessions>`` document."""
    root = ET.Element(ROOT_TAG)
    root.extend(elements)
    ET.indent(root)
    ET.ElementTree(root).write(path, encoding="utf-8", xml_declaration=True)


def read_sessions(path: str) -> List[ET.Element]:
    """
    Read the persisted session elements from ``path``.

    Raises:
        PersistenceError: If the file cannot be read or parsed
    """
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise PersistenceError(f"Unable to read persisted sessions from {path}: {e}", e)
    if root.tag != ROOT_TAG:
        raise PersistenceError(f"{path} is not a persisted session file (root <{root.tag}>)")
    return root.findall(SESSION_TAG)


def decode_all(elements: List[ET.Element], factory: SessionFactory) -> List[AssessmentSession]:
    """Decode every record it can; a bad record is logged and skipped."""
    sessions = []
    for index, elem in enumerate(elements):
        try:
            sessions.append(decode_session(elem, factory))
        except ExamCoreError as e:
            logger.error(f"Skipping persisted session #{index}: {e.message}")
    return sessions
