"""Investor ledger tests, run against both store implementations."""

import threading
import unittest

from crowdtoken.campaign.store import (
    CampaignState,
    InMemoryInvestorStore,
    InvestorRecord,
    SqlInvestorStore,
    mark_redeemed,
    record_investment,
)
from crowdtoken.errors import CampaignStateError

INVESTOR_A = "02" + "aa" * 32
INVESTOR_B = "03" + "bb" * 32


class StoreContract:
    """Behavior shared by every InvestorStore."""

    def make_store(self, goal: int = 100):
        raise NotImplementedError

    def test_first_investment_creates_record(self):
        store = self.make_store()
        record = record_investment(store, INVESTOR_A, 40, now=1000)
        self.assertEqual(record, InvestorRecord(INVESTOR_A, 40, 1000))
        self.assertEqual(store.get(INVESTOR_A), record)
        self.assertEqual(store.get_campaign().raised, 40)

    def test_repeat_investment_accumulates(self):
        store = self.make_store()
        record_investment(store, INVESTOR_A, 40, now=1000)
        record = record_investment(store, INVESTOR_A, 25, now=2000)
        self.assertEqual(record.amount, 65)
        self.assertEqual(record.timestamp, 2000)
        self.assertEqual(store.get_campaign().raised, 65)
        self.assertEqual(len(store.list_investors()), 1)

    def test_list_keeps_insertion_order(self):
        store = self.make_store()
        record_investment(store, INVESTOR_B, 1, now=1)
        record_investment(store, INVESTOR_A, 1, now=2)
        record_investment(store, INVESTOR_B, 1, now=3)
        self.assertEqual([r.identity_key for r in store.list_investors()], [INVESTOR_B, INVESTOR_A])

    def test_non_positive_amount(self):
        store = self.make_store()
        with self.assertRaises(CampaignStateError):
            record_investment(store, INVESTOR_A, 0)

    def test_complete_campaign_refuses_investment(self):
        store = self.make_store()
        store.put_campaign(CampaignState(goal=100, raised=100, is_complete=True, completion_txid="ff" * 32))
        with self.assertRaises(CampaignStateError):
            record_investment(store, INVESTOR_A, 10)

    def test_mark_redeemed_flips_once(self):
        store = self.make_store()
        record_investment(store, INVESTOR_A, 10, now=1)
        self.assertTrue(mark_redeemed(store, INVESTOR_A).redeemed)
        self.assertTrue(store.get(INVESTOR_A).redeemed)
        with self.assertRaises(CampaignStateError):
            mark_redeemed(store, INVESTOR_A)

    def test_mark_unknown_investor(self):
        with self.assertRaises(CampaignStateError):
            mark_redeemed(self.make_store(), INVESTOR_A)

    def test_snapshot_is_immutable_copy(self):
        store = self.make_store()
        record_investment(store, INVESTOR_A, 10, now=1)
        with store.snapshot() as investors:
            self.assertIsInstance(investors, tuple)
            self.assertEqual(len(investors), 1)

    def test_snapshot_holds_ledger_fixed(self):
        store = self.make_store()
        record_investment(store, INVESTOR_A, 10, now=1)
        writer_done = threading.Event()

        def writer():
            record_investment(store, INVESTOR_B, 5, now=2)
            writer_done.set()

        with store.snapshot() as investors:
            thread = threading.Thread(target=writer)
            thread.start()
            self.assertFalse(writer_done.wait(0.05))
            self.assertEqual(len(investors), 1)
            self.assertEqual(len(store.list_investors()), 1)
        thread.join(1)
        self.assertTrue(writer_done.is_set())
        self.assertEqual(len(store.list_investors()), 2)

    def test_campaign_state_round_trip(self):
        store = self.make_store(goal=500)
        self.assertEqual(store.get_campaign(), CampaignState(goal=500))
        state = CampaignState(goal=500, raised=600, is_complete=True, completion_txid="ab" * 32)
        store.put_campaign(state)
        self.assertEqual(store.get_campaign(), state)
        self.assertEqual(state.percent_funded, 120)


class TestInMemoryInvestorStore(StoreContract, unittest.TestCase):

    def make_store(self, goal: int = 100):
        return InMemoryInvestorStore(CampaignState(goal=goal))


class TestSqlInvestorStore(StoreContract, unittest.TestCase):

    def make_store(self, goal: int = 100):
        return SqlInvestorStore("sqlite://", goal=goal)
