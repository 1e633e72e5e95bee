"""
Concurrency and retry tests for the swap engine.

Racing threads each get their own Session on a file-backed SQLite database so
the writes really contend. Exactly one racer may win; the others must see the
state the winner left behind and fail with InvalidStateError.
"""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from slotswap.models.slot import Slot, SlotState
from slotswap.models.swap_proposal import ProposalState, SwapProposal
from slotswap.services import directory, proposal_store, swap_engine, unit_of_work
from slotswap.services.errors import InvalidStateError, StaleRecordError, TransientStorageError
from slotswap.services.unit_of_work import run_unit_of_work
from slotswap.services.users import register_user

RACERS = 6


@pytest.fixture
def fast_retries(monkeypatch):
    monkeypatch.setattr(unit_of_work, "MAX_ATTEMPTS", 20)
    monkeypatch.setattr(unit_of_work, "RETRY_BACKOFF_SECONDS", 0.005)


def _offered_slot(session: Session, user_id: int, day: int) -> int:
    start = datetime(2026, 5, 1, 9) + timedelta(days=day)
    slot = swap_engine.create_slot(session, user_id, f"Slot {day}", start, start + timedelta(hours=1))
    swap_engine.set_slot_state(session, user_id, slot.id, SlotState.OFFERED)
    return slot.id


def _race(engine, target, args_per_racer):
    """Run ``target(session, *args)`` on one thread per args tuple, released together."""
    barrier = threading.Barrier(len(args_per_racer))
    outcomes = []
    outcomes_lock = threading.Lock()

    def runner(args):
        with Session(engine) as session:
            barrier.wait()
            try:
                result = target(session, *args)
                outcome = ("ok", result.id)
            except Exception as e:
                outcome = ("error", e)
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=runner, args=(args,)) for args in args_per_racer]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def _split(outcomes):
    wins = [value for kind, value in outcomes if kind == "ok"]
    errors = [value for kind, value in outcomes if kind == "error"]
    return wins, errors


# ============================================================================
# Racing threads
# ============================================================================


@pytest.mark.parametrize("respond", [swap_engine.accept_swap, swap_engine.reject_swap])
def test_concurrent_responses_have_exactly_one_winner(file_engine, fast_retries, respond):
    with Session(file_engine) as setup:
        alice = register_user(setup, "Alice", "alice@example.com").id
        bob = register_user(setup, "Bob", "bob@example.com").id
        s1 = _offered_slot(setup, alice, 0)
        s2 = _offered_slot(setup, bob, 1)
        proposal_id = swap_engine.propose_swap(setup, alice, s1, s2).id

    outcomes = _race(file_engine, respond, [(bob, proposal_id)] * RACERS)

    wins, errors = _split(outcomes)
    assert len(outcomes) == RACERS
    assert wins == [proposal_id]
    assert len(errors) == RACERS - 1
    assert all(isinstance(e, InvalidStateError) for e in errors), errors

    with Session(file_engine) as check:
        proposal = check.get(SwapProposal, proposal_id)
        slot1 = check.get(Slot, s1)
        slot2 = check.get(Slot, s2)
        if respond is swap_engine.accept_swap:
            assert proposal.state == ProposalState.ACCEPTED
            assert (slot1.owner_id, slot1.state) == (bob, SlotState.OCCUPIED)
            assert (slot2.owner_id, slot2.state) == (alice, SlotState.OCCUPIED)
            assert slot1.version == 4  # created, offered, locked, swapped
        else:
            assert proposal.state == ProposalState.REJECTED
            assert (slot1.owner_id, slot1.state) == (alice, SlotState.OFFERED)
            assert (slot2.owner_id, slot2.state) == (bob, SlotState.OFFERED)
        assert proposal.version == 2


def test_accept_racing_reject_has_one_winner_and_no_half_swap(file_engine, fast_retries):
    with Session(file_engine) as setup:
        alice = register_user(setup, "Alice", "alice@example.com").id
        bob = register_user(setup, "Bob", "bob@example.com").id
        s1 = _offered_slot(setup, alice, 0)
        s2 = _offered_slot(setup, bob, 1)
        proposal_id = swap_engine.propose_swap(setup, alice, s1, s2).id

    # Each user's holdings, read in one SELECT, must be one of these phases
    allowed = {
        alice: {
            ((s1, SlotState.LOCKED),),
            ((s1, SlotState.OFFERED),),
            ((s2, SlotState.OCCUPIED),),
        },
        bob: {
            ((s2, SlotState.LOCKED),),
            ((s2, SlotState.OFFERED),),
            ((s1, SlotState.OCCUPIED),),
        },
    }
    done = threading.Event()
    observed = []
    violations = []

    def reader():
        while True:
            finished = done.is_set()
            for user_id in (alice, bob):
                with Session(file_engine) as session:
                    view = tuple((s.id, SlotState(s.state)) for s in directory.list_user_slots(session, user_id))
                observed.append(view)
                if view not in allowed[user_id]:
                    violations.append((user_id, view))
            if finished:
                return

    watcher = threading.Thread(target=reader)
    watcher.start()
    try:
        racers = [(bob, proposal_id, n % 2 == 0) for n in range(RACERS)]
        outcomes = _race(file_engine, swap_engine.respond_to_swap, racers)
    finally:
        done.set()
        watcher.join(timeout=60)

    wins, errors = _split(outcomes)
    assert wins == [proposal_id]
    assert len(errors) == RACERS - 1
    assert all(isinstance(e, InvalidStateError) for e in errors), errors
    assert observed
    assert violations == []

    with Session(file_engine) as check:
        proposal = check.get(SwapProposal, proposal_id)
        owners = (check.get(Slot, s1).owner_id, check.get(Slot, s2).owner_id)
        if proposal.state == ProposalState.ACCEPTED:
            assert owners == (bob, alice)
        else:
            assert proposal.state == ProposalState.REJECTED
            assert owners == (alice, bob)


def test_concurrent_proposals_for_same_slot_lock_it_once(file_engine, fast_retries):
    with Session(file_engine) as setup:
        owner = register_user(setup, "Target owner", "target@example.com").id
        target = _offered_slot(setup, owner, 0)
        racers = []
        for n in range(RACERS):
            user_id = register_user(setup, f"Racer {n}", f"racer{n}@example.com").id
            racers.append((user_id, _offered_slot(setup, user_id, n + 1), target))

    outcomes = _race(file_engine, swap_engine.propose_swap, racers)

    wins, errors = _split(outcomes)
    assert len(wins) == 1
    assert len(errors) == RACERS - 1
    assert all(isinstance(e, InvalidStateError) for e in errors), errors

    with Session(file_engine) as check:
        winner = check.get(SwapProposal, wins[0])
        assert winner.state == ProposalState.PENDING
        assert check.get(Slot, target).state == SlotState.LOCKED
        for _, slot_id, _ in racers:
            expected = SlotState.LOCKED if slot_id == winner.proposer_slot_id else SlotState.OFFERED
            assert check.get(Slot, slot_id).state == expected


# ============================================================================
# Retry behaviour
# ============================================================================


@pytest.fixture
def pending_swap(session: Session, make_user, make_slot):
    alice = make_user("Alice")
    bob = make_user("Bob")
    s1 = make_slot(alice, offered=True)
    s2 = make_slot(bob, offered=True)
    proposal = swap_engine.propose_swap(session, alice.id, s1.id, s2.id)
    return {"alice": alice.id, "bob": bob.id, "s1": s1.id, "s2": s2.id, "proposal": proposal.id}


@pytest.mark.parametrize(
    "failure",
    [
        StaleRecordError("swap_proposal", 1, 1),
        OperationalError("UPDATE swap_proposals", {}, Exception("database is locked")),
    ],
)
def test_lost_race_is_retried_then_succeeds(session: Session, pending_swap, monkeypatch, failure):
    monkeypatch.setattr(unit_of_work, "RETRY_BACKOFF_SECONDS", 0)
    real_resolve = proposal_store.resolve
    calls = []

    def resolve_losing_once(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise failure
        return real_resolve(*args, **kwargs)

    monkeypatch.setattr(proposal_store, "resolve", resolve_losing_once)

    proposal = swap_engine.accept_swap(session, pending_swap["bob"], pending_swap["proposal"])

    assert len(calls) == 2
    assert proposal.state == ProposalState.ACCEPTED
    assert session.get(Slot, pending_swap["s1"]).owner_id == pending_swap["bob"]


def test_exhausted_retries_surface_transient_failure(session: Session, pending_swap, monkeypatch):
    monkeypatch.setattr(unit_of_work, "RETRY_BACKOFF_SECONDS", 0)
    monkeypatch.setattr(unit_of_work, "MAX_ATTEMPTS", 3)
    calls = []

    def always_stale(session, proposal, outcome):
        calls.append(1)
        raise StaleRecordError("swap_proposal", proposal.id, proposal.version)

    monkeypatch.setattr(proposal_store, "resolve", always_stale)

    with pytest.raises(TransientStorageError):
        swap_engine.reject_swap(session, pending_swap["bob"], pending_swap["proposal"])

    assert len(calls) == 3
    session.expire_all()
    assert session.get(SwapProposal, pending_swap["proposal"]).state == ProposalState.PENDING
    assert session.get(Slot, pending_swap["s1"]).state == SlotState.LOCKED
    assert session.get(Slot, pending_swap["s2"]).state == SlotState.LOCKED


def test_precondition_failures_are_not_retried(session: Session, monkeypatch):
    calls = []

    def work():
        calls.append(1)
        raise InvalidStateError("nope")

    with pytest.raises(InvalidStateError):
        run_unit_of_work(session, "probe", work, max_attempts=5)
    assert len(calls) == 1


def test_unit_of_work_returns_none_results(session: Session):
    assert run_unit_of_work(session, "noop", lambda: None) is None
