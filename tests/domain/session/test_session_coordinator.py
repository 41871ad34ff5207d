"""
Session coordinator lifecycle, blocking reads and transport callbacks.
"""
import asyncio
import time
import pytest

from octto.domain.errors import SessionNotFoundError, QuestionConfigError
from octto.domain.models.session_state import QuestionStatus
from octto.domain.session.session_coordinator import SessionCoordinator


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


async def started(coordinator, transports, connect=False):
    result = await coordinator.start_session(title="Test")
    transport = transports[result.session_id]
    if connect:
        await transport.connect()
    return result.session_id, transport


async def test_start_session_registers_session(coordinator, transports):
    result = await coordinator.start_session(title="Design review")

    assert result.session_id.startswith("ses_")
    assert len(result.session_id) == len("ses_") + 8
    assert result.url == transports[result.session_id].url
    assert transports[result.session_id].started
    assert coordinator.get_session(result.session_id).title == "Design review"
    assert result.question_ids is None


async def test_start_session_with_initial_questions(coordinator, transports):
    result = await coordinator.start_session(questions=[
        {"type": "confirm", "config": {"question": "Ready?"}},
        {"type": "ask_text", "config": {"question": "Name?"}},
    ])

    assert len(result.question_ids) == 2
    assert all(qid.startswith("q_") for qid in result.question_ids)

    transport = transports[result.session_id]
    await transport.connect()
    assert [m["id"] for m in transport.sent_of_type("question")] == result.question_ids


async def test_push_question_unknown_session(coordinator):
    with pytest.raises(SessionNotFoundError):
        await coordinator.push_question("ses_missing1", "confirm", {"question": "?"})


async def test_push_question_rejects_unknown_type(coordinator, transports):
    session_id, _ = await started(coordinator, transports)
    with pytest.raises(QuestionConfigError):
        await coordinator.push_question(session_id, "telepathy", {})


async def test_push_question_rejects_malformed_config(coordinator, transports):
    session_id, _ = await started(coordinator, transports)
    with pytest.raises(QuestionConfigError):
        await coordinator.push_question(session_id, "pick_one", {"question": "?", "options": "nope"})


async def test_push_while_connected_sends_immediately(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)

    pushed = await coordinator.push_question(session_id, "pick_one", {
        "question": "Which?",
        "options": [{"id": "a", "label": "A"}],
    })

    messages = transport.sent_of_type("question")
    assert len(messages) == 1
    assert messages[0]["id"] == pushed.question_id
    assert messages[0]["questionType"] == "pick_one"
    assert messages[0]["config"]["options"][0]["id"] == "a"


async def test_push_while_disconnected_queues_until_connect(coordinator, transports):
    session_id, transport = await started(coordinator, transports)

    first = await coordinator.push_question(session_id, "confirm", {"question": "One?"})
    second = await coordinator.push_question(session_id, "confirm", {"question": "Two?"})
    assert transport.sent == []

    await transport.connect()

    assert [m["id"] for m in transport.sent_of_type("question")] == [first.question_id, second.question_id]


async def test_reconnect_receives_only_pending_backlog(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    answered = await coordinator.push_question(session_id, "confirm", {"question": "One?"})
    pending = await coordinator.push_question(session_id, "confirm", {"question": "Two?"})
    transport.respond(answered.question_id, {"choice": "yes"})

    transport.disconnect()
    assert not coordinator.get_session(session_id).connected
    transport.sent.clear()

    await transport.connect()

    assert [m["id"] for m in transport.sent_of_type("question")] == [pending.question_id]


async def test_backlog_flush_skips_question_cancelled_mid_flush(coordinator, transports):
    session_id, transport = await started(coordinator, transports)
    first = await coordinator.push_question(session_id, "confirm", {"question": "One?"})
    second = await coordinator.push_question(session_id, "confirm", {"question": "Two?"})

    send = transport.send_event

    async def cancel_second_after_first(event):
        delivered = await send(event)
        if getattr(event, "id", None) == first.question_id:
            await coordinator.cancel_question(second.question_id)
        return delivered

    transport.send_event = cancel_second_after_first
    await transport.connect()

    assert [(m["type"], m["id"]) for m in transport.sent] == [
        ("question", first.question_id),
        ("cancel", second.question_id),
    ]


async def test_push_while_disconnected_reopens_ui(settings, transport_factory):
    opened = []

    async def open_ui(url):
        opened.append(url)

    coordinator = SessionCoordinator(settings=settings, skip_browser=False, open_ui=open_ui, transport_factory=transport_factory)
    result = await coordinator.start_session()
    assert opened == [result.url]

    await coordinator.push_question(result.session_id, "confirm", {"question": "?"})
    await coordinator.push_question(result.session_id, "confirm", {"question": "?"})
    await settle()

    assert opened == [result.url] * 3


async def test_reopen_ui_failure_does_not_propagate(settings, transport_factory):
    async def broken_open_ui(url):
        raise RuntimeError("no display")

    coordinator = SessionCoordinator(settings=settings, skip_browser=False, open_ui=broken_open_ui, transport_factory=transport_factory)
    result = await coordinator.start_session()
    pushed = await coordinator.push_question(result.session_id, "confirm", {"question": "?"})
    await settle()

    assert pushed.question_id.startswith("q_")


async def test_list_questions_counts_pushes_newest_first(coordinator, transports):
    session_id, _ = await started(coordinator, transports)
    other_id, _ = await started(coordinator, transports)

    ids = []
    for i in range(4):
        ids.append((await coordinator.push_question(session_id, "ask_text", {"question": str(i)})).question_id)
    await coordinator.push_question(other_id, "confirm", {"question": "?"})

    listed = coordinator.list_questions(session_id).questions
    assert len(listed) == 4
    assert [q.created_at for q in listed] == sorted((q.created_at for q in listed), reverse=True)
    assert len(coordinator.list_questions().questions) == 5
    assert coordinator.list_questions("ses_unknown0").questions == []


async def test_get_answer_unknown_question_is_cancelled(coordinator):
    result = await coordinator.get_answer("q_missing0", block=True, timeout=1)

    assert result.completed is False
    assert result.status == QuestionStatus.CANCELLED
    assert result.reason == "cancelled"


async def test_get_answer_non_blocking_reports_pending(coordinator, transports):
    session_id, _ = await started(coordinator, transports)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    result = await coordinator.get_answer(pushed.question_id)

    assert result.completed is False
    assert result.status == "pending"
    assert result.reason == "pending"


async def test_get_answer_blocking_resolves_on_response(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    waiter = asyncio.create_task(coordinator.get_answer(pushed.question_id, block=True, timeout=5))
    await settle()
    transport.respond(pushed.question_id, {"choice": "yes"})
    result = await waiter

    assert result.completed is True
    assert result.status == QuestionStatus.ANSWERED
    assert result.response == {"choice": "yes"}
    assert not coordinator.response_waiters.has(pushed.question_id)


async def test_concurrent_get_answer_all_receive_same_response(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "ask_text", {"question": "?"})

    waiters = [
        asyncio.create_task(coordinator.get_answer(pushed.question_id, block=True, timeout=5))
        for _ in range(3)
    ]
    await settle()
    assert coordinator.response_waiters.count(pushed.question_id) == 3

    transport.respond(pushed.question_id, {"text": "hello"})
    results = await asyncio.gather(*waiters)

    assert all(r.completed and r.response == {"text": "hello"} for r in results)


async def test_get_answer_times_out_and_marks_question(coordinator, transports):
    session_id, transport = await started(coordinator, transports)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    start = time.monotonic()
    result = await coordinator.get_answer(pushed.question_id, block=True, timeout=0.1)
    elapsed = time.monotonic() - start

    assert result.completed is False
    assert result.status == QuestionStatus.TIMEOUT
    assert result.reason == "timeout"
    assert 0.095 <= elapsed < 0.5

    question = coordinator.get_session(session_id).questions[pushed.question_id]
    assert question.status == QuestionStatus.TIMEOUT
    assert not coordinator.response_waiters.has(pushed.question_id)

    # Late answer is dropped
    transport.respond(pushed.question_id, {"choice": "yes"})
    assert question.status == QuestionStatus.TIMEOUT
    again = await coordinator.get_answer(pushed.question_id, block=True, timeout=5)
    assert again.status == QuestionStatus.TIMEOUT


async def test_already_answered_question_returns_immediately(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})
    transport.respond(pushed.question_id, {"choice": "no"})

    result = await coordinator.get_answer(pushed.question_id, block=True, timeout=5)

    assert result.completed is True
    assert result.response == {"choice": "no"}
    assert not coordinator.response_waiters.has(pushed.question_id)


async def test_duplicate_response_is_ignored(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    transport.respond(pushed.question_id, {"choice": "yes"})
    transport.respond(pushed.question_id, {"choice": "no"})
    transport.respond("q_unknown0", {"choice": "no"})

    question = coordinator.get_session(session_id).questions[pushed.question_id]
    assert question.response == {"choice": "yes"}
    assert coordinator.get_session(session_id).answer_order == [pushed.question_id]


async def test_cancel_question_notifies_all_waiters_and_client(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    waiters = [
        asyncio.create_task(coordinator.get_answer(pushed.question_id, block=True, timeout=5))
        for _ in range(2)
    ]
    await settle()

    cancelled = await coordinator.cancel_question(pushed.question_id)
    results = await asyncio.gather(*waiters)

    assert cancelled.ok is True
    assert all(r.status == QuestionStatus.CANCELLED and r.reason == "cancelled" for r in results)
    assert transport.sent_of_type("cancel") == [{"type": "cancel", "id": pushed.question_id}]

    # Terminal: cancel again fails, responses are dropped
    assert (await coordinator.cancel_question(pushed.question_id)).ok is False
    transport.respond(pushed.question_id, {"choice": "yes"})
    assert coordinator.get_session(session_id).questions[pushed.question_id].status == QuestionStatus.CANCELLED


async def test_cancel_unknown_or_answered_question_fails(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})
    transport.respond(pushed.question_id, {"choice": "yes"})

    assert (await coordinator.cancel_question("q_unknown0")).ok is False
    assert (await coordinator.cancel_question(pushed.question_id)).ok is False


async def test_get_next_answer_in_arrival_order(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    q1 = (await coordinator.push_question(session_id, "confirm", {"question": "1"})).question_id
    q2 = (await coordinator.push_question(session_id, "confirm", {"question": "2"})).question_id
    q3 = (await coordinator.push_question(session_id, "confirm", {"question": "3"})).question_id

    transport.respond(q3, {"choice": "yes"})
    transport.respond(q1, {"choice": "no"})

    first = await coordinator.get_next_answer(session_id)
    second = await coordinator.get_next_answer(session_id)
    third = await coordinator.get_next_answer(session_id)

    assert (first.question_id, first.question_type, first.response) == (q3, "confirm", {"choice": "yes"})
    assert (second.question_id, second.response) == (q1, {"choice": "no"})
    assert third.completed is False
    assert third.status == "pending"
    assert q2 not in (first.question_id, second.question_id)


async def test_get_next_answer_none_pending(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)

    empty = await coordinator.get_next_answer(session_id, block=True, timeout=5)
    assert empty.status == "none_pending"
    assert empty.reason == "none_pending"

    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})
    await coordinator.cancel_question(pushed.question_id)

    result = await coordinator.get_next_answer(session_id, block=True, timeout=5)
    assert result.completed is False
    assert result.status == "none_pending"

    unknown = await coordinator.get_next_answer("ses_unknown0")
    assert unknown.status == "none_pending"


async def test_concurrent_get_next_answer_receive_distinct_questions(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    ids = [
        (await coordinator.push_question(session_id, "ask_text", {"question": str(i)})).question_id
        for i in range(3)
    ]

    waiters = [
        asyncio.create_task(coordinator.get_next_answer(session_id, block=True, timeout=5))
        for _ in range(3)
    ]
    await settle()
    assert coordinator.session_waiters.count(session_id) == 3

    for question_id in reversed(ids):
        transport.respond(question_id, {"text": question_id})

    results = await asyncio.gather(*waiters)

    assert [r.question_id for r in results] == list(reversed(ids))
    assert all(r.response == {"text": r.question_id} for r in results)

    # Delivered answers are not handed out again
    after = await coordinator.get_next_answer(session_id)
    assert after.status == "none_pending"


async def test_get_next_answer_timeout_does_not_mutate_questions(coordinator, transports):
    session_id, _ = await started(coordinator, transports)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    result = await coordinator.get_next_answer(session_id, block=True, timeout=0.05)

    assert result.completed is False
    assert result.status == QuestionStatus.TIMEOUT
    assert result.reason == "timeout"
    assert coordinator.get_session(session_id).questions[pushed.question_id].status == QuestionStatus.PENDING
    assert not coordinator.session_waiters.has(session_id)


async def test_answer_reaching_cancelled_next_waiter_passes_to_live_one(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    first = await coordinator.push_question(session_id, "confirm", {"question": "1?"})
    await coordinator.push_question(session_id, "confirm", {"question": "2?"})

    abandoned = asyncio.create_task(coordinator.get_next_answer(session_id, block=True, timeout=5))
    live = asyncio.create_task(coordinator.get_next_answer(session_id, block=True, timeout=0.5))
    await settle()
    assert coordinator.session_waiters.count(session_id) == 2

    # Answer lands in the same tick the oldest caller is cancelled
    abandoned.cancel()
    transport.respond(first.question_id, {"choice": "yes"})

    result = await live
    assert result.completed is True
    assert result.question_id == first.question_id
    assert coordinator.get_session(session_id).questions[first.question_id].retrieved

    with pytest.raises(asyncio.CancelledError):
        await abandoned
    assert not coordinator.session_waiters.has(session_id)


async def test_cancelled_next_waiter_is_deregistered(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    abandoned = asyncio.create_task(coordinator.get_next_answer(session_id, block=True, timeout=5))
    await settle()
    abandoned.cancel()
    with pytest.raises(asyncio.CancelledError):
        await abandoned

    assert not coordinator.session_waiters.has(session_id)
    transport.respond(pushed.question_id, {"choice": "no"})

    result = await coordinator.get_next_answer(session_id)
    assert result.question_id == pushed.question_id
    assert result.response == {"choice": "no"}


async def test_answer_without_session_waiter_is_kept_for_later(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    waiter = asyncio.create_task(coordinator.get_answer(pushed.question_id, block=True, timeout=5))
    await settle()
    transport.respond(pushed.question_id, {"choice": "yes"})
    await waiter

    result = await coordinator.get_next_answer(session_id)
    assert result.question_id == pushed.question_id


async def test_end_session_sends_end_and_purges(coordinator, transports):
    session_id, transport = await started(coordinator, transports, connect=True)
    pushed = await coordinator.push_question(session_id, "confirm", {"question": "?"})

    waiter = asyncio.create_task(coordinator.get_answer(pushed.question_id, block=True, timeout=0.2))
    await settle()

    ended = await coordinator.end_session(session_id)

    assert ended.ok is True
    assert transport.sent_of_type("end") == [{"type": "end"}]
    assert transport.stopped
    assert coordinator.get_session(session_id) is None
    assert not coordinator.response_waiters.has(pushed.question_id)

    # The blocked caller is left to its own timeout
    result = await waiter
    assert result.status == QuestionStatus.TIMEOUT

    assert (await coordinator.end_session(session_id)).ok is False
    assert (await coordinator.get_answer(pushed.question_id)).status == QuestionStatus.CANCELLED


async def test_cleanup_ends_every_session(coordinator, transports):
    await started(coordinator, transports)
    await started(coordinator, transports)

    await coordinator.cleanup()

    assert coordinator.sessions == {}
    assert all(t.stopped for t in transports.values())
