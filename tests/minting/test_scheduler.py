"""MintScheduler: Redis SET NX dedup in front of the Celery queue."""
import unittest
from unittest.mock import MagicMock, patch

from bookvault.services.idempotency import IdempotencyStore
from bookvault.services.minting.service import MintScheduler


class FakeRedis:
    def __init__(self):
        self.store = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, key):
        self.store.pop(key, None)


class TestMintScheduler(unittest.TestCase):
    def setUp(self):
        self.redis = FakeRedis()
        self.enqueue = MagicMock()
        self.scheduler = MintScheduler(IdempotencyStore(self.redis), enqueue=self.enqueue)

    def test_schedules_once(self):
        self.assertTrue(self.scheduler.schedule("p1"))
        self.assertFalse(self.scheduler.schedule("p1"))
        self.enqueue.assert_called_once_with("p1")
        self.assertIn("idempotency:mint:p1", self.redis.store)

    def test_different_payments_are_independent(self):
        self.assertTrue(self.scheduler.schedule("p1"))
        self.assertTrue(self.scheduler.schedule("p2"))
        self.assertEqual(self.enqueue.call_count, 2)

    def test_enqueue_failure_releases_key(self):
        self.enqueue.side_effect = [ConnectionError("broker down"), None]
        with self.assertRaises(ConnectionError):
            self.scheduler.schedule("p1")
        self.assertNotIn("idempotency:mint:p1", self.redis.store)
        self.assertTrue(self.scheduler.schedule("p1"))

    def test_default_enqueue_sends_named_task(self):
        from bookvault.services.minting import service

        with patch.object(service.celery_app, "send_task") as send_task:
            MintScheduler(IdempotencyStore(self.redis)).schedule("p9")
        send_task.assert_called_once_with(
            "bookvault.workers.tasks.mint_nft.mint_purchase_nft", args=["p9"]
        )
