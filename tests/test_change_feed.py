import logging

import pytest

from recicla.core.errors import InsufficientBalance
from recicla.db.feed import CREATED, DELETED, MODIFIED, ChangeEvent
from recicla.models.delivery import DeliveryStatus, Material
from recicla.services import delivery_service, points_ledger, redemption_service, stock_service, user_service


class TestChangeFeed:
    def test_commit_publishes_created_and_modified(self, store, db, citizen, operator):
        events = []
        store.subscribe("deliveries", events.append)

        d = delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        delivery_service.validate(db, delivery_id=d.id, reviewer_id=operator.id, approve=True)

        assert events == [
            ChangeEvent("deliveries", d.id, CREATED),
            ChangeEvent("deliveries", d.id, MODIFIED),
        ]

    def test_withdraw_publishes_delete(self, store, db, citizen):
        d = delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        events = []
        store.subscribe("deliveries", events.append)

        delivery_service.withdraw(db, delivery_id=d.id, requesting_user_id=citizen.id)
        assert events == [ChangeEvent("deliveries", d.id, DELETED)]

    def test_rolled_back_work_is_not_published(self, store, db, admin, make_user):
        user = make_user("bea", points=10)
        reward = stock_service.create_reward(db, created_by=admin.id, title="Pool", cost_points=50, available_quantity=2)
        events = []
        store.subscribe("rewards", events.append)
        store.subscribe("redemptions", events.append)

        with pytest.raises(InsufficientBalance):
            redemption_service.request_redemption(db, user_id=user.id, reward_id=reward.id)
        assert events == []

    def test_broken_subscriber_does_not_starve_the_rest(self, store, db, citizen, caplog):
        def broken(event):
            raise RuntimeError("boom")

        events = []
        store.subscribe("deliveries", broken)
        store.subscribe("deliveries", events.append)

        with caplog.at_level(logging.ERROR):
            delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)

        assert len(events) == 1
        assert "Change subscriber failed" in caplog.text

    def test_unsubscribe(self, store, db, citizen):
        events = []
        unsubscribe = store.subscribe("deliveries", events.append)
        assert store.feed.subscriber_count("deliveries") == 1

        unsubscribe()
        delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        assert events == []
        assert store.feed.subscriber_count("deliveries") == 0


class TestWatch:
    def test_user_deliveries_snapshot_follows_changes(self, store, db, citizen, operator):
        snapshots = []
        unsubscribe = delivery_service.watch_user_deliveries(
            store, citizen.id, lambda items: snapshots.append([(d.id, d.status) for d in items])
        )
        assert snapshots == [[]]

        d = delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        delivery_service.validate(db, delivery_id=d.id, reviewer_id=operator.id, approve=False)

        assert snapshots[-2] == [(d.id, DeliveryStatus.PENDING)]
        assert snapshots[-1] == [(d.id, DeliveryStatus.REJECTED)]

        unsubscribe()
        delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        assert len(snapshots) == 3

    def test_pending_queue_empties_on_review(self, store, db, citizen, operator):
        sizes = []
        delivery_service.watch_pending_deliveries(store, lambda items: sizes.append(len(items)))

        d = delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=1.0)
        delivery_service.validate(db, delivery_id=d.id, reviewer_id=operator.id, approve=True)

        assert sizes == [0, 1, 0]

    def test_active_rewards_reflect_stock(self, store, db, admin, make_user):
        user = make_user("bea", points=100)
        reward = stock_service.create_reward(db, created_by=admin.id, title="Pool", cost_points=40, available_quantity=2)
        quantities = []
        stock_service.watch_active_rewards(store, lambda items: quantities.append([r.available_quantity for r in items]))

        redemption_service.request_redemption(db, user_id=user.id, reward_id=reward.id)
        assert quantities == [[2], [1]]

    def test_user_redemptions(self, store, db, admin, make_user):
        user = make_user("bea", points=100)
        reward = stock_service.create_reward(db, created_by=admin.id, title="Pool", cost_points=40)
        seen = []
        redemption_service.watch_user_redemptions(store, user.id, lambda items: seen.append(len(items)))

        red = redemption_service.request_redemption(db, user_id=user.id, reward_id=reward.id)
        redemption_service.cancel(db, redemption_id=red.id, user_id=user.id)

        assert seen[0] == 0
        assert seen[-1] == 1

    def test_user_profile_follows_balance(self, store, db, citizen, operator):
        """Credits land through core UPDATEs; the watcher still sees every new balance."""
        balances = []
        unsubscribe = user_service.watch_user(store, citizen.id, lambda user: balances.append(user.points))
        assert balances == [0]

        points_ledger.credit(db, user_id=citizen.id, amount=25)
        assert balances[-1] == 25

        d = delivery_service.submit(db, user_id=citizen.id, material=Material.PET, weight_kg=3.0)
        delivery_service.validate(db, delivery_id=d.id, reviewer_id=operator.id, approve=True)
        assert balances[-1] == 55

        user_service.update_profile(db, user_id=citizen.id, fields={"phone": "555-0101"})
        unsubscribe()
        points_ledger.credit(db, user_id=citizen.id, amount=5)
        assert balances[-1] == 55
