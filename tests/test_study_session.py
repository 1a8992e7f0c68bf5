"""
Tests for the session registry: lookup, idle eviction, removal
"""
import pytest

from app.errors import NotFoundError, SessionStateError
from app.models.generation_models import Capability
from app.services.extraction_pipeline import DocumentExtractionPipeline
from app.services.study_session import SessionRegistry, StudySession


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def registry(sink, engines, gateway, clock):
    def factory(session_id, owner_id):
        pipeline = DocumentExtractionPipeline(sink, engine_factory=engines())
        return StudySession(session_id, owner_id, store=sink, client=gateway.client(), pipeline=pipeline)

    return SessionRegistry(factory, ttl=60, clock=clock)


class TestRegistry:
    """Idle sessions are evicted, working ones are kept"""

    def test_get_refreshes_idle_timer(self, registry, clock):
        session = registry.create("u1")
        clock.now += 50
        assert registry.get(session.session_id) is session
        clock.now += 50
        assert registry.get(session.session_id) is session

    def test_idle_session_evicted(self, registry, clock):
        session = registry.create("u1")
        clock.now += 61
        with pytest.raises(NotFoundError):
            registry.get(session.session_id)
        assert len(registry) == 0

    def test_eviction_happens_on_create(self, registry, clock):
        registry.create("u1")
        clock.now += 61
        registry.create("u2")
        assert len(registry) == 1

    def test_working_session_kept(self, registry, clock):
        session = registry.create("u1")
        session.extraction_job_id = "job-1"
        clock.now += 600
        assert registry.get(session.session_id) is session

    def test_remove(self, registry):
        session = registry.create("u1")
        registry.remove(session.session_id)
        with pytest.raises(NotFoundError):
            registry.get(session.session_id)
        with pytest.raises(NotFoundError):
            registry.remove(session.session_id)

    def test_remove_while_generating(self, registry):
        session = registry.create("u1")
        session.quiz.busy = Capability.quiz
        with pytest.raises(SessionStateError):
            registry.remove(session.session_id)
