import threading
from datetime import datetime, timedelta, timezone

from docrelay.confirmation import (
    InMemoryProposalStore,
    KeyedLock,
    PendingProposal,
    PhraseMatcher,
    ReplyIntent,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

matcher = PhraseMatcher(
    affirmative=["はい", "yes", "お願い", "よろしく"],
    negative=["いいえ", "no", "キャンセル"],
)


def _proposal(repository: str = "monohub", ttl: timedelta = timedelta(minutes=5)) -> PendingProposal:
    return PendingProposal(
        target_name="モノハブ",
        repository=repository,
        title="t",
        body="b",
        auxiliary_instruction="i",
        expires_at=NOW + ttl,
    )


def test_second_proposal_replaces_first():
    store = InMemoryProposalStore()
    store.put("U1", _proposal("monohub"))
    store.put("U1", _proposal("oshi-katsu"))

    assert store.get("U1", NOW).repository == "oshi-katsu"
    assert len(store) == 1


def test_proposals_are_per_user():
    store = InMemoryProposalStore()
    store.put("U1", _proposal("monohub"))
    store.put("U2", _proposal("achirasama"))

    assert store.get("U1", NOW).repository == "monohub"
    assert store.get("U2", NOW).repository == "achirasama"


def test_expired_proposal_is_dropped_on_read():
    store = InMemoryProposalStore()
    store.put("U1", _proposal(ttl=timedelta(minutes=5)))

    assert store.get("U1", NOW + timedelta(minutes=5)) is not None  # boundary still valid
    assert store.get("U1", NOW + timedelta(minutes=5, seconds=1)) is None
    assert len(store) == 0
    assert store.get("U1", NOW) is None


def test_delete_is_idempotent():
    store = InMemoryProposalStore()
    store.delete("U1")
    store.put("U1", _proposal())
    store.delete("U1")
    store.delete("U1")
    assert store.get("U1", NOW) is None


def test_phrase_matcher_classification():
    assert matcher.classify("はい") is ReplyIntent.AFFIRMATIVE
    assert matcher.classify("それでお願いします") is ReplyIntent.AFFIRMATIVE
    assert matcher.classify("いいえ") is ReplyIntent.NEGATIVE
    assert matcher.classify("やっぱりキャンセルで") is ReplyIntent.NEGATIVE
    assert matcher.classify("明日の天気は？") is ReplyIntent.NEITHER


def test_phrase_matcher_is_case_sensitive_and_affirmative_first():
    assert matcher.classify("YES") is ReplyIntent.NEITHER
    assert matcher.classify("NO") is ReplyIntent.NEITHER
    assert matcher.classify("yes or no") is ReplyIntent.AFFIRMATIVE


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    order = []
    entered = threading.Event()
    release = threading.Event()

    def first():
        with locks.hold("U1"):
            entered.set()
            release.wait(timeout=5)
            order.append("first")

    def second():
        entered.wait(timeout=5)
        with locks.hold("U1"):
            order.append("second")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(timeout=5)
    # Another user is never blocked.
    with locks.hold("U2"):
        order.append("other")
    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)

    assert order == ["other", "first", "second"]
    assert len(locks) == 0


def test_keyed_lock_releases_entries_and_stays_reentrant():
    locks = KeyedLock()
    for n in range(100):
        with locks.hold(f"U{n}"):
            with locks.hold(f"U{n}"):
                assert len(locks) == 1
    assert len(locks) == 0


def test_expiry_boundary_is_inclusive():
    proposal = _proposal(ttl=timedelta(minutes=5))

    assert not proposal.is_expired(proposal.expires_at)
    assert proposal.is_expired(proposal.expires_at + timedelta(microseconds=1))

    store = InMemoryProposalStore()
    store.put("U1", proposal)
    assert store.get("U1", proposal.expires_at) is proposal
    assert store.get("U1", proposal.expires_at + timedelta(microseconds=1)) is None


def test_empty_store_is_still_a_store():
    # Stores report their size; an empty one must not be mistaken for "no store".
    assert len(InMemoryProposalStore()) == 0
