"""
Branch state store operations.
"""
import pytest

from octto.domain.context.state import BranchStateStore
from octto.domain.errors import (
    SessionNotFoundError, BranchNotFoundError, QuestionNotFoundError, InvalidIdentifierError
)
from octto.domain.models.brainstorm_state import BranchQuestion, BranchSpec, BranchStatus
from octto.domain.models.questions import QuestionType


@pytest.fixture
def store(tmp_path):
    return BranchStateStore(str(tmp_path / "state"))


@pytest.fixture
async def state(store):
    return await store.create_session(
        "bs_test0001",
        "Design the reporting service",
        [BranchSpec(id="data", scope="Database choice"), {"id": "api", "scope": "API endpoints"}],
    )


def question(question_id, text="Which option?"):
    return BranchQuestion(id=question_id, type=QuestionType.PICK_ONE, text=text, config={"question": text})


async def test_create_session_keeps_branch_order(store, state):
    assert state.branch_order == ["data", "api"]
    assert all(b.status == BranchStatus.EXPLORING for b in state.branches.values())

    loaded = await store.get_session("bs_test0001")
    assert loaded.request == "Design the reporting service"
    assert [b.id for b in loaded.ordered_branches()] == ["data", "api"]


async def test_create_session_rejects_bad_input(store):
    with pytest.raises(InvalidIdentifierError):
        await store.create_session("../escape", "x", [])

    with pytest.raises(ValueError):
        await store.create_session("bs_dup", "x", [{"id": "a", "scope": "A"}, {"id": "a", "scope": "B"}])


async def test_get_unknown_session_returns_none(store):
    assert await store.get_session("bs_unknown") is None


async def test_set_transport_session_id(store, state):
    await store.set_transport_session_id("bs_test0001", "ses_abc")
    assert (await store.get_session("bs_test0001")).transport_session_id == "ses_abc"

    with pytest.raises(SessionNotFoundError):
        await store.set_transport_session_id("bs_unknown", "ses_abc")


async def test_add_question_to_branch(store, state):
    await store.add_question_to_branch("bs_test0001", "data", question("q_1"))

    loaded = await store.get_session("bs_test0001")
    assert [q.id for q in loaded.branches["data"].questions] == ["q_1"]
    assert loaded.find_branch_for_question("q_1").id == "data"

    with pytest.raises(BranchNotFoundError):
        await store.add_question_to_branch("bs_test0001", "nope", question("q_2"))


async def test_record_answer_sets_answer_once(store, state):
    await store.add_question_to_branch("bs_test0001", "api", question("q_1"))

    assert await store.record_answer("bs_test0001", "q_1", {"selected": "rest"}) is True
    assert await store.record_answer("bs_test0001", "q_1", {"selected": "grpc"}) is False

    recorded = (await store.get_session("bs_test0001")).branches["api"].questions[0]
    assert recorded.answer == {"selected": "rest"}
    assert recorded.answered_at is not None


async def test_record_answer_unknown_ids(store, state):
    with pytest.raises(QuestionNotFoundError):
        await store.record_answer("bs_test0001", "q_missing", "x")

    with pytest.raises(SessionNotFoundError):
        await store.record_answer("bs_unknown", "q_1", "x")


async def test_complete_branch_and_next_exploring(store, state):
    assert (await store.get_next_exploring_branch("bs_test0001")).id == "data"

    await store.complete_branch("bs_test0001", "data", "Use postgres")
    loaded = await store.get_session("bs_test0001")
    assert loaded.branches["data"].status == BranchStatus.DONE
    assert loaded.branches["data"].finding == "Use postgres"
    assert (await store.get_next_exploring_branch("bs_test0001")).id == "api"
    assert await store.is_session_complete("bs_test0001") is False

    await store.complete_branch("bs_test0001", "api", "REST")
    assert await store.get_next_exploring_branch("bs_test0001") is None
    assert await store.is_session_complete("bs_test0001") is True


async def test_unknown_session_queries(store):
    assert await store.get_next_exploring_branch("bs_unknown") is None
    assert await store.is_session_complete("bs_unknown") is False


async def test_delete_and_list_sessions(store, state):
    await store.create_session("bs_test0000", "Other", [])

    assert await store.list_sessions() == ["bs_test0000", "bs_test0001"]
    assert await store.delete_session("bs_test0001") is True
    assert await store.delete_session("bs_test0001") is False
    assert await store.list_sessions() == ["bs_test0000"]
