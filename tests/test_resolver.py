# Copyright (C) 2024-2025 The ctvpool developers
#
# This file is part of ctvpool
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of ctvpool, including this file, may be copied,
# modified, propagated, or distributed except according to the terms contained
# in the LICENSE file.

import threading
import unittest
from itertools import permutations

from ctvpool.address import P2trAddress
from ctvpool.config import PoolConfig
from ctvpool.ctv import TemplateCommitment, leaf_commitment
from ctvpool.errors import ExternalError, ResolutionError
from ctvpool.pool import build_pool_tree, participants_from_addresses
from ctvpool.resolver import SettlementState, SpendPathResolver
from ctvpool.script import Script
from ctvpool.taproot import ControlBlock, verify_control_block
from ctvpool.utils import h_to_b

FUNDING_TXID = "f0" * 32


def make_tree(size):
    config = PoolConfig(network="regtest", amount_per_user=100000, fee_amount=1000)
    addresses = [P2trAddress("%064x" % (i + 1), "regtest").to_string() for i in range(size)]
    return build_pool_tree(participants_from_addresses(addresses, "regtest"), config)


class FakeNode:
    """Accepts every transaction, remembering what it saw"""

    def __init__(self):
        self.raw_transactions = []
        self.txids = []

    def broadcaster(self, txid):
        def broadcast(raw_transaction):
            self.raw_transactions.append(raw_transaction)
            self.txids.append(txid)
            return txid

        return broadcast


class TestSpendPathResolver(unittest.TestCase):
    maxDiff = None

    @classmethod
    def setUpClass(cls):
        cls.tree = make_tree(4)

    def new_resolver(self, value=None):
        value = self.tree.root.value if value is None else value
        return SpendPathResolver(self.tree, SettlementState.funded(FUNDING_TXID, 1, value))

    def test_every_exit_order(self):
        for order in permutations(range(4)):
            resolver = self.new_resolver()
            previous = (FUNDING_TXID, 1)
            for step, exiter in enumerate(order[:3]):
                node = resolver.current_node
                leaf = node.leaf_for(exiter)
                tx = resolver.build_spend(exiter)

                self.assertEqual(
                    TemplateCommitment.from_transaction(tx, 0).digest(), leaf.digest
                )
                self.assertEqual((tx.inputs[0].txid, tx.inputs[0].txout_index), previous)
                self.assertEqual(tx.inputs[0].sequence, b"\xfd\xff\xff\xff")
                self.assertEqual(tx.outputs, leaf.outputs)

                script_hex, control_block_hex = tx.witnesses[0].stack
                self.assertEqual(leaf_commitment(Script.from_raw(script_hex)), leaf.digest)
                self.assertTrue(
                    verify_control_block(
                        node.spend_info.output_key,
                        leaf.script,
                        ControlBlock.from_bytes(h_to_b(control_block_hex)),
                    )
                )

                txid = resolver.settle(exiter, lambda raw, txid=tx.get_txid(): txid)
                self.assertEqual(txid, tx.get_txid())
                self.assertEqual(resolver.state.path, order[: step + 1])
                previous = (txid, 2)

            self.assertTrue(resolver.is_terminal)
            self.assertEqual(resolver.remaining, ())

    def test_continuation_values(self):
        resolver = self.new_resolver()
        node = FakeNode()
        tx = resolver.build_spend(2)
        resolver.settle(2, node.broadcaster(tx.get_txid()))

        state = resolver.state
        self.assertEqual(state.txid, tx.get_txid())
        self.assertEqual(state.vout, 2)
        self.assertEqual(state.value, tx.outputs[2].amount)
        self.assertEqual(state.value, self.tree.node_for([2]).value)
        self.assertEqual(resolver.remaining, (0, 1, 3))
        self.assertEqual(node.raw_transactions, [tx.to_hex()])
        # witness bytes are discounted
        self.assertLess(tx.get_vsize(), len(tx.to_bytes()))

    def test_terminal_pays_last_participant(self):
        resolver = self.new_resolver()
        for tx, exiter in zip(resolver.plan([3, 1]), (3, 1)):
            resolver.settle(exiter, lambda raw, txid=tx.get_txid(): txid)

        self.assertTrue(resolver.current_node.is_terminal)
        tx = resolver.build_spend(0)
        participants = self.tree.participants
        self.assertEqual(tx.outputs[0].script_pubkey, participants[0].script_pub_key)
        self.assertEqual(tx.outputs[2].script_pubkey, participants[2].script_pub_key)

        resolver.settle(0, lambda raw: tx.get_txid())
        self.assertTrue(resolver.is_terminal)
        self.assertIsNone(resolver.state.txid)
        with self.assertRaises(ResolutionError):
            resolver.build_spend(2)
        with self.assertRaises(ResolutionError):
            resolver.current_node

    def test_already_exited(self):
        resolver = self.new_resolver()
        tx = resolver.build_spend(1)
        resolver.settle(1, lambda raw: tx.get_txid())
        with self.assertRaises(ResolutionError):
            resolver.build_spend(1)
        with self.assertRaises(ResolutionError):
            resolver.settle(1, lambda raw: tx.get_txid())

    def test_unknown_participant(self):
        with self.assertRaises(ResolutionError):
            self.new_resolver().build_spend(4)

    def test_value_mismatch(self):
        with self.assertRaises(ResolutionError):
            self.new_resolver(self.tree.root.value - 1).build_spend(0)

    def test_failed_broadcast_keeps_state(self):
        resolver = self.new_resolver()

        def unavailable(raw):
            raise ExternalError("node unavailable")

        with self.assertRaises(ExternalError):
            resolver.settle(0, unavailable)
        self.assertEqual(resolver.state.path, ())
        self.assertEqual(resolver.state.txid, FUNDING_TXID)

        # the same step can be retried
        tx = resolver.build_spend(0)
        self.assertEqual(resolver.settle(0, lambda raw: tx.get_txid()), tx.get_txid())
        self.assertEqual(resolver.state.path, (0,))

    def test_txid_mismatch(self):
        resolver = self.new_resolver()
        expected = resolver.plan([0])[0].get_txid()
        with self.assertLogs("ctvpool.resolver", level="ERROR") as logs:
            with self.assertRaises(ResolutionError):
                resolver.settle(0, lambda raw: "00" * 32)
        self.assertEqual(resolver.state.path, ())
        self.assertIn("00" * 32, logs.output[0])
        self.assertIn(expected, logs.output[0])

    def test_plan(self):
        resolver = self.new_resolver()
        txs = resolver.plan([1, 0, 3])
        # the exit pool pays the last participant
        self.assertEqual(len(txs), 3)
        self.assertEqual(txs[1].inputs[0].txid, txs[0].get_txid())
        self.assertEqual(txs[2].inputs[0].txid, txs[1].get_txid())
        self.assertEqual(resolver.state.path, ())

        for tx, exiter in zip(txs, (1, 0, 3)):
            self.assertEqual(resolver.settle(exiter, lambda raw: tx.get_txid()), tx.get_txid())

    def test_plan_past_settlement(self):
        resolver = self.new_resolver()
        with self.assertRaises(ResolutionError):
            resolver.plan([1, 0, 3, 2])
        with self.assertRaises(ResolutionError):
            resolver.plan([1, 1])
        self.assertEqual(resolver.state.path, ())

    def test_plan_is_deterministic(self):
        first = [tx.to_hex() for tx in self.new_resolver().plan([2, 3, 0])]
        second = [tx.to_hex() for tx in self.new_resolver().plan([2, 3, 0])]
        self.assertEqual(first, second)

    def test_concurrent_steps_spend_distinct_outputs(self):
        resolver = self.new_resolver()
        spent = []
        errors = []

        def broadcast(raw):
            spent.append((resolver.state.txid, resolver.state.vout))
            # the raw transaction is the only thing the node sees
            return txid_of_raw(resolver, raw)

        def step(exiter):
            try:
                resolver.settle(exiter, broadcast)
            except ResolutionError as e:
                errors.append(e)

        threads = [threading.Thread(target=step, args=(i,)) for i in (0, 1)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(spent), 2)
        self.assertEqual(len(set(spent)), 2)
        self.assertEqual(sorted(resolver.state.path), [0, 1])


def txid_of_raw(resolver, raw):
    # only called with the lock held, so the state is the one being spent
    for exiter in resolver.remaining:
        tx = resolver.build_spend(exiter)
        if tx.to_hex() == raw:
            return tx.get_txid()
    raise AssertionError("unexpected transaction")


class TestThreeUserSettlement(unittest.TestCase):
    def test_two_steps_to_terminal(self):
        tree = make_tree(3)
        resolver = SpendPathResolver(
            tree, SettlementState.funded(FUNDING_TXID, 0, tree.root.value)
        )
        first = resolver.build_spend(0)
        self.assertEqual([o.amount for o in first.outputs], [99000, 1000, 199000])
        resolver.settle(0, lambda raw: first.get_txid())

        second = resolver.build_spend(1)
        self.assertEqual([o.amount for o in second.outputs], [99000, 1000, 98000])
        self.assertEqual(second.inputs[0].txid, first.get_txid())
        self.assertEqual(second.inputs[0].txout_index, 2)
        resolver.settle(1, lambda raw: second.get_txid())

        self.assertTrue(resolver.is_terminal)
        self.assertEqual(resolver.state.path, (0, 1))


if __name__ == "__main__":
    unittest.main()
