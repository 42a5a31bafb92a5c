import pytest

from examcore.assessments.session.records import InMemoryRecordsService
from examcore.tests.factories import FakeClock, make_document, make_service, make_settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def records():
    return InMemoryRecordsService()


@pytest.fixture
def document():
    return make_document()


@pytest.fixture
def settings(tmp_path):
    return make_settings(persist_dir=str(tmp_path / "sessions"), document_dir=str(tmp_path / "assessments"))


@pytest.fixture
def service(document, clock, records, settings):
    return make_service([document], clock, records=records, settings=settings)
