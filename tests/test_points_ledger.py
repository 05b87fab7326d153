import pytest

from recicla.core.errors import ErrorKind, InsufficientBalance, InvalidInput, NotFound
from recicla.models.points import TransactionType
from recicla.services import points_ledger


class TestCredit:
    def test_credit_adds_points_and_journals(self, db, citizen):
        txn = points_ledger.credit(db, user_id=citizen.id, amount=25, reason="bonus")

        assert points_ledger.balance(db, citizen.id) == 25
        assert txn.amount == 25
        assert txn.balance_after == 25
        assert txn.type == TransactionType.EARN

    def test_same_key_applies_once(self, db, citizen):
        first = points_ledger.credit(db, user_id=citizen.id, amount=30, idempotency_key="delivery:d1:credit")
        second = points_ledger.credit(db, user_id=citizen.id, amount=30, idempotency_key="delivery:d1:credit")

        assert first.id == second.id
        assert points_ledger.balance(db, citizen.id) == 30
        assert len(points_ledger.history(db, user_id=citizen.id)) == 1

    @pytest.mark.parametrize("amount", [0, -5, True, 2.5])
    def test_rejects_non_positive_or_non_integer_amounts(self, db, citizen, amount):
        with pytest.raises(InvalidInput):
            points_ledger.credit(db, user_id=citizen.id, amount=amount)
        assert points_ledger.balance(db, citizen.id) == 0

    def test_unknown_user(self, db):
        with pytest.raises(NotFound):
            points_ledger.credit(db, user_id="ghost", amount=10)

    def test_concurrent_credits_with_one_key_apply_once(self, db, citizen, run_concurrently):
        user_id = citizen.id
        outcomes = run_concurrently(
            lambda session, i: points_ledger.credit(
                session, user_id=user_id, amount=40, idempotency_key="delivery:race:credit"
            ),
            8,
        )

        assert all(kind == "ok" for kind, _ in outcomes)
        assert len({txn.id for _, txn in outcomes}) == 1
        assert points_ledger.balance(db, user_id) == 40


class TestDebit:
    def test_debit_subtracts(self, db, make_user):
        user = make_user("bea", points=100)
        txn = points_ledger.debit(db, user_id=user.id, amount=60)

        assert txn.amount == -60
        assert txn.balance_after == 40
        assert points_ledger.balance(db, user.id) == 40

    def test_debit_to_exactly_zero(self, db, make_user):
        user = make_user("bea", points=50)
        points_ledger.debit(db, user_id=user.id, amount=50)
        assert points_ledger.balance(db, user.id) == 0

    def test_insufficient_balance_changes_nothing(self, db, make_user):
        user = make_user("bea", points=20)
        with pytest.raises(InsufficientBalance) as exc:
            points_ledger.debit(db, user_id=user.id, amount=21)

        assert exc.value.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert points_ledger.balance(db, user.id) == 20
        assert len(points_ledger.history(db, user_id=user.id)) == 1

    def test_concurrent_debits_never_overdraw(self, db, make_user, run_concurrently):
        """Ten debits of 30 against 100 points: three succeed, the rest fail cleanly."""
        user_id = make_user("bea", points=100).id
        outcomes = run_concurrently(
            lambda session, i: points_ledger.debit(session, user_id=user_id, amount=30),
            10,
        )

        wins = [value for kind, value in outcomes if kind == "ok"]
        losses = [value for kind, value in outcomes if kind == "error"]
        assert len(wins) == 3
        assert all(isinstance(e, InsufficientBalance) for e in losses)
        assert points_ledger.balance(db, user_id) == 10


class TestHistory:
    def test_newest_first_with_signed_amounts(self, db, make_user):
        user = make_user("bea", points=10)
        points_ledger.debit(db, user_id=user.id, amount=4)
        points_ledger.credit(db, user_id=user.id, amount=7)

        entries = points_ledger.history(db, user_id=user.id)
        assert [e.amount for e in entries] == [7, -4, 10]
        assert [e.balance_after for e in entries] == [13, 6, 10]

    def test_paging(self, db, make_user):
        user = make_user("bea", points=10)
        for _ in range(3):
            points_ledger.credit(db, user_id=user.id, amount=1)

        assert len(points_ledger.history(db, user_id=user.id, limit=2)) == 2
        assert len(points_ledger.history(db, user_id=user.id, limit=2, offset=2)) == 2
