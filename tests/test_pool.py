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

import unittest

from ctvpool.address import P2trAddress
from ctvpool.config import PoolConfig
from ctvpool.ctv import leaf_commitment
from ctvpool.errors import ConfigurationError, ResolutionError
from ctvpool.pool import (
    Participant,
    build_pool_tree,
    node_value,
    participants_from_addresses,
)


def regtest_addresses(count):
    return [P2trAddress("%064x" % (i + 1), "regtest").to_string() for i in range(count)]


def make_tree(size, config=None):
    config = config or PoolConfig(network="regtest")
    participants = participants_from_addresses(regtest_addresses(size), config.network)
    return build_pool_tree(participants, config)


class TestPoolParameters(unittest.TestCase):
    def test_too_few_users(self):
        with self.assertRaises(ConfigurationError):
            make_tree(2)

    def test_share_not_above_dust(self):
        config = PoolConfig(amount_per_user=1546, fee_amount=1000, dust_amount=546)
        with self.assertRaises(ConfigurationError):
            make_tree(3, config)
        config = PoolConfig(amount_per_user=1547, fee_amount=500, dust_amount=546)
        make_tree(3, config)

    def test_last_payout_not_above_dust(self):
        config = PoolConfig(amount_per_user=10000, fee_amount=3000, dust_amount=546)
        make_tree(3, config)
        with self.assertRaises(ConfigurationError):
            make_tree(5, config)

    def test_duplicate_addresses(self):
        addresses = regtest_addresses(3)
        addresses[2] = addresses[0]
        participants = participants_from_addresses(addresses, "regtest")
        with self.assertRaises(ConfigurationError):
            build_pool_tree(participants, PoolConfig())

    def test_indices(self):
        addresses = regtest_addresses(3)
        participants = [
            Participant.from_address(index, address, "regtest")
            for index, address in zip((0, 1, 3), addresses)
        ]
        with self.assertRaises(ConfigurationError):
            build_pool_tree(participants, PoolConfig())

    def test_invalid_address(self):
        with self.assertRaises(ConfigurationError):
            participants_from_addresses(["bc1notanaddress"], "regtest")

    def test_address_of_other_network(self):
        mainnet = P2trAddress("01" * 32, "mainnet").to_string()
        with self.assertRaises(ConfigurationError):
            Participant.from_address(0, mainnet, "regtest")


class TestPoolTree(unittest.TestCase):
    maxDiff = None

    @classmethod
    def setUpClass(cls):
        cls.config = PoolConfig(
            network="regtest", amount_per_user=100000, fee_amount=1000, dust_amount=546
        )
        cls.tree = make_tree(4, cls.config)

    def test_node_count(self):
        self.assertEqual(self.tree.node_count, 2 ** 4 - 4 - 1)
        self.assertEqual(make_tree(3, self.config).node_count, 4)
        self.assertEqual(make_tree(5, self.config).node_count, 26)
        self.assertEqual([len(layer) for layer in self.tree.layers], [6, 4, 1])

    def test_leaf_count(self):
        # every node has one leaf per remaining participant
        self.assertEqual(self.tree.leaf_count, 6 * 2 + 4 * 3 + 4)
        for node in self.tree.nodes():
            self.assertEqual(sorted(node.leaves), list(node.remaining))

    def test_root(self):
        root = self.tree.root
        self.assertEqual(root.exited, ())
        self.assertEqual(root.remaining, (0, 1, 2, 3))
        self.assertEqual(root.depth, 2)
        self.assertEqual(root.value, 4 * 100000)
        self.assertEqual(sorted(root.children), [0, 1, 2, 3])
        for exiter, child in root.children.items():
            self.assertEqual(child.exited, (exiter,))

    def test_children_exit_sets(self):
        for node in self.tree.nodes():
            if node.is_terminal:
                self.assertEqual(node.children, {})
                continue
            for exiter, leaf in node.leaves.items():
                child = node.children[exiter]
                self.assertEqual(child.exited, tuple(sorted(node.exited + (exiter,))))
                self.assertEqual(leaf.child_key, child.exited)
                self.assertEqual(child.depth, node.depth - 1)
                self.assertEqual(leaf.outputs[2].script_pubkey, child.script_pub_key)
                self.assertEqual(leaf.outputs[2].amount, child.value)

    def test_conservation(self):
        for node in self.tree.nodes():
            for leaf in node.leaves.values():
                self.assertEqual(len(leaf.outputs), 3)
                total = sum(output.amount for output in leaf.outputs)
                self.assertEqual(total + self.config.fee_amount, node.value)
                self.assertEqual(leaf.outputs[0].amount, 99000)
                self.assertEqual(leaf.outputs[1].amount, 1000)
                self.assertEqual(leaf.outputs[1].script_pubkey.to_hex(), "51024e73")
                self.assertEqual(
                    leaf.outputs[0].script_pubkey,
                    self.tree.participants[leaf.exiter].script_pub_key,
                )

    def test_node_values(self):
        for node in self.tree.nodes():
            self.assertEqual(node.value, node_value(self.config, 4, len(node.exited)))
        self.assertEqual(node_value(self.config, 4, 2), 2 * 100000 - 2 * 1000)

    def test_exit_pool_pays_both(self):
        node = self.tree.node_for([0, 1])
        self.assertTrue(node.is_terminal)
        self.assertEqual(node.remaining, (2, 3))
        for exiter, last in ((2, 3), (3, 2)):
            outputs = node.leaf_for(exiter).outputs
            self.assertEqual(outputs[0].script_pubkey, self.tree.participants[exiter].script_pub_key)
            self.assertEqual(outputs[2].script_pubkey, self.tree.participants[last].script_pub_key)
            self.assertEqual(outputs[2].amount, node.value - 100000 - 1000)

    def test_leaves_commit(self):
        for node in self.tree.nodes():
            for leaf in node.leaves.values():
                self.assertEqual(len(leaf.script.to_bytes()), 36)
                self.assertEqual(leaf_commitment(leaf.script), leaf.digest)
                self.assertEqual(leaf.commitment.digest(), leaf.digest)

    def test_unique_addresses(self):
        addresses = [node.address for node in self.tree.nodes()]
        self.assertEqual(len(set(addresses)), self.tree.node_count)
        for node in self.tree.nodes():
            self.assertTrue(node.address.startswith("bcrt1p"))
            self.assertIs(self.tree.find_by_script(node.script_pub_key), node)

    def test_deterministic(self):
        other = make_tree(4, self.config)
        self.assertEqual(
            [node.address for node in self.tree.nodes()],
            [node.address for node in other.nodes()],
        )

    def test_node_for(self):
        self.assertIs(self.tree.node_for([]), self.tree.root)
        self.assertIs(self.tree.node_for([2, 0]), self.tree.node_for([0, 2]))
        self.assertIs(self.tree.node_for((3,)), self.tree.root.children[3])
        self.assertEqual(self.tree.depth_for([1]), 1)

    def test_node_for_invalid(self):
        with self.assertRaises(ResolutionError):
            self.tree.node_for([1, 1])
        with self.assertRaises(ResolutionError):
            self.tree.node_for([7])
        with self.assertRaises(ResolutionError):
            self.tree.node_for([0, 1, 2])
        with self.assertRaises(ResolutionError):
            self.tree.root.leaf_for(9)

    def test_fee_anchor_address(self):
        anchor = P2trAddress("ee" * 32, "regtest").to_string()
        tree = make_tree(3, PoolConfig(network="regtest", fee_anchor_address=anchor))
        for node in tree.nodes():
            for leaf in node.leaves.values():
                self.assertEqual(leaf.outputs[1].script_pubkey.to_hex(), "5120" + "ee" * 32)
        self.assertNotEqual(tree.root.address, make_tree(3).root.address)

    def test_logs_tree_size(self):
        with self.assertLogs("ctvpool.pool", level="INFO") as logs:
            make_tree(3, self.config)
        self.assertIn(
            "total taproot addresses across all pools: 4 for 3 users", logs.output[-1]
        )


class TestThreeUserPool(unittest.TestCase):
    """100000 sat per user, 1000 sat fee, participant 0 exits first"""

    def setUp(self):
        self.tree = make_tree(
            3, PoolConfig(network="regtest", amount_per_user=100000, fee_amount=1000)
        )

    def test_amounts(self):
        root = self.tree.root
        self.assertEqual(root.value, 300000)
        first = root.leaf_for(0)
        self.assertEqual([output.amount for output in first.outputs], [99000, 1000, 199000])

        exit_pool = root.children[0]
        self.assertEqual(exit_pool.value, 199000)
        self.assertEqual(exit_pool.remaining, (1, 2))
        second = exit_pool.leaf_for(1)
        self.assertEqual([output.amount for output in second.outputs], [99000, 1000, 98000])


if __name__ == "__main__":
    unittest.main()
