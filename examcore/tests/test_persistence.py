"""Tests for persisting live sessions across a restart."""

import os
import xml.etree.ElementTree as ET

import pytest

from examcore.common.exceptions import PersistenceError
from examcore.assessments.session.states import Completed, Instructions, Item, SubmitConfirm
from examcore.assessments.store.persistence import decode_all, decode_session, encode_session, read_sessions
from examcore.tests.factories import make_document, make_service


@pytest.fixture
def documents():
    return [make_document("171UE", allowed_seconds=600), make_document("172UE", item_count=3)]


@pytest.fixture
def live(documents, clock, records, settings):
    """A service with sessions in several states."""
    service = make_service(documents, clock, records=records, settings=settings)

    service.open("LS1", "171UE", "111111111", redirect="/home")
    service.handle("LS1", "171UE", {"begin": "Begin"})
    service.handle("LS1", "171UE", {"nav_1": "Next", "currentItem": "0", "answer": "B"})

    service.open("LS1", "172UE", "111111111")

    service.open("LS2", "172UE", "222222222")
    service.handle("LS2", "172UE", {"begin": "Begin"})
    service.handle("LS2", "172UE", {"nav_2": "Next", "currentItem": "0", "answer": "C"})
    service.handle("LS2", "172UE", {"score": "Submit", "currentItem": "2", "answer": "A"})

    service.open("LS3", "171UE", "333333333")
    service.handle("LS3", "171UE", {"action": "timeout"})
    return service


def restart(service, documents, clock, records, settings):
    saved = service.persist()
    restored = make_service(documents, clock, records=records, settings=settings)
    return saved, restored, restored.restore()


def test_round_trip(live, documents, clock, records, settings):
    saved, restored, count = restart(live, documents, clock, records, settings)
    assert saved == count == 4

    first = restored.store.get("LS1", "171UE")
    original = live.store.get("LS1", "171UE")
    assert first.student_id == "111111111"
    assert first.redirect == "/home"
    assert first.state == Item(1)
    assert first.last_item == 1
    assert first.started
    assert first.deadline == original.deadline
    assert first.instructions_viewed_at == original.instructions_viewed_at
    assert first.realized.serial_number == original.realized.serial_number
    assert first.realized.realized_at == original.realized.realized_at
    assert first.realized.items[0].response == ("B",)
    assert first.realized.items[1].response is None
    assert first.document == original.document

    assert isinstance(restored.store.get("LS1", "172UE").state, Instructions)
    assert restored.store.get("LS2", "172UE").state == SubmitConfirm(2)
    assert [i.response for i in restored.store.get("LS2", "172UE").realized.items] == [("C",), None, ("A",)]

    scored = restored.store.get("LS3", "171UE")
    assert isinstance(scored.state, Completed)
    assert scored.scored
    assert scored.score == live.store.get("LS3", "171UE").score
    assert scored.mastery == 1
    assert scored.passed is False

    assert restored.store.lookup_by_student("222222222") == "LS2"


def test_restored_session_keeps_working(live, documents, clock, records, settings):
    _, restored, _ = restart(live, documents, clock, records, settings)
    view = restored.handle("LS1", "171UE", {"score": "Submit", "currentItem": "1", "answer": "B"})
    assert view.state == "SUBMIT_CONFIRM"
    view = restored.handle("LS1", "171UE", {"Y": "Yes"})
    assert view.score == 2
    assert view.passed


def test_restored_session_is_scored_once(live, documents, clock, records, settings):
    before = len(records.completions)
    _, restored, _ = restart(live, documents, clock, records, settings)
    restored.handle("LS3", "171UE", {"solutions": "1"})
    restored.handle("LS3", "171UE", {"close": "Close"})
    assert len(records.completions) == before


def test_persist_file_is_renamed_after_restore(live, documents, clock, records, settings):
    restart(live, documents, clock, records, settings)
    path = live.persist_path()
    assert not os.path.exists(path)
    assert os.path.exists(f"{path}.bak")


def test_restore_without_file(service):
    assert service.restore() == 0


def test_expired_sessions_are_not_persisted(live, documents, clock, records, settings):
    clock.advance(600)
    saved, restored, count = restart(live, documents, clock, records, settings)
    # Both 171UE sessions are past their deadline; the untimed 172UE sessions are within the idle bound
    assert saved == count == 2
    assert restored.store.get("LS1", "171UE") is None


def test_sessions_expired_while_down_are_purged(live, documents, clock, records, settings):
    assert live.persist() == 4
    completions = len(records.completions)
    recoveries = len(records.recoveries)

    clock.advance(600)
    restored = make_service(documents, clock, records=records, settings=settings)
    assert restored.restore() == 2
    assert restored.store.get("LS1", "171UE") is None
    assert restored.store.get("LS3", "171UE") is None

    # Only the attempt left in progress is scored; the completed one is not scored again
    assert len(records.completions) == completions + 1
    completion = records.completions[-1]
    assert completion.student_id == "111111111"
    assert completion.version == "171UE"
    assert completion.score == 1
    assert [s.reason for s in records.recoveries[recoveries:]] == ["scoring"]


def test_missing_optional_fields_use_defaults(live):
    elem = encode_session(live.store.get("LS3", "171UE"))
    for tag in ("mastery", "deadline", "started", "redirect"):
        child = elem.find(tag)
        if child is not None:
            elem.remove(child)

    session = decode_session(elem, live.build_session)
    assert session.mastery is None
    assert session.deadline == 0.0
    assert session.started is False
    assert session.redirect is None
    assert isinstance(session.state, Completed)


def test_bad_records_are_skipped(live):
    good = encode_session(live.store.get("LS1", "171UE"))
    missing_identity = encode_session(live.store.get("LS2", "172UE"))
    missing_identity.remove(missing_identity.find("interaction"))
    past_the_end = encode_session(live.store.get("LS1", "172UE"))
    past_the_end.find("state").text = "ITEM"
    past_the_end.find("cur-item").text = "9"

    sessions = decode_all([missing_identity, good, past_the_end], live.build_session)
    assert [s.key for s in sessions] == [("LS1", "171UE")]


def test_unknown_state_rejected(live):
    elem = encode_session(live.store.get("LS1", "171UE"))
    elem.find("state").text = "GRADING"
    with pytest.raises(PersistenceError):
        decode_session(elem, live.build_session)


def test_unreadable_file(tmp_path):
    path = tmp_path / "sessions.xml"
    path.write_text("<assessment-sessions>", encoding="utf-8")
    with pytest.raises(PersistenceError):
        read_sessions(str(path))

    ET.ElementTree(ET.Element("other")).write(str(path))
    with pytest.raises(PersistenceError):
        read_sessions(str(path))
