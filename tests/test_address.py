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

from ctvpool.address import P2trAddress, address_to_script_pub_key
from ctvpool.bech32 import Encoding, bech32_decode


class TestP2trAddress(unittest.TestCase):
    def setUp(self):
        # x coordinate of the generator point
        self.witness_program = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        self.address = "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"

    def test_encoding(self):
        addr = P2trAddress(self.witness_program, "mainnet")
        self.assertEqual(addr.to_string(), self.address)
        self.assertEqual(str(addr), self.address)
        _, _, spec = bech32_decode(self.address)
        self.assertEqual(spec, Encoding.BECH32M)

    def test_network_prefixes(self):
        self.assertTrue(P2trAddress(self.witness_program, "testnet").to_string().startswith("tb1p"))
        self.assertTrue(P2trAddress(self.witness_program, "signet").to_string().startswith("tb1p"))
        self.assertTrue(P2trAddress(self.witness_program, "regtest").to_string().startswith("bcrt1p"))

    def test_script_pub_key(self):
        addr = P2trAddress(self.witness_program, "mainnet")
        self.assertEqual(addr.to_script_pub_key().to_hex(), "5120" + self.witness_program)

    def test_invalid(self):
        with self.assertRaises(ValueError):
            P2trAddress("aa" * 20, "mainnet")
        with self.assertRaises(ValueError):
            P2trAddress(self.witness_program, "litecoin")


class TestAddressDecoding(unittest.TestCase):
    def test_segwit_v0(self):
        script = address_to_script_pub_key(
            "BC1QW508D6QEJXTDG4Y5R3ZARVARY0C5XW7KV8F3T4", "mainnet"
        )
        self.assertEqual(script.to_hex(), "0014751e76e8199196d454941c45d1b3a323f1433bd6")

    def test_segwit_v1(self):
        script = address_to_script_pub_key(
            "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0", "mainnet"
        )
        self.assertEqual(
            script.to_hex(),
            "512079be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798",
        )

    def test_regtest_roundtrip(self):
        program = "42" * 32
        address = P2trAddress(program, "regtest").to_string()
        self.assertEqual(
            address_to_script_pub_key(address, "regtest").to_hex(), "5120" + program
        )

    def test_p2pkh(self):
        script = address_to_script_pub_key("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "mainnet")
        self.assertEqual(
            script.to_hex(), "76a914751e76e8199196d454941c45d1b3a323f1433bd688ac"
        )

    def test_p2sh(self):
        script = address_to_script_pub_key("3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy", "mainnet")
        self.assertEqual(script.get_script()[0], "OP_HASH160")
        self.assertEqual(script.get_script()[2], "OP_EQUAL")
        self.assertEqual(len(script.to_bytes()), 23)

    def test_wrong_network(self):
        with self.assertRaises(ValueError):
            address_to_script_pub_key(
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0", "regtest"
            )
        with self.assertRaises(ValueError):
            address_to_script_pub_key("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "testnet")

    def test_bad_checksum(self):
        with self.assertRaises(ValueError):
            address_to_script_pub_key(
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj1", "mainnet"
            )
        with self.assertRaises(ValueError):
            address_to_script_pub_key("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMJ", "mainnet")

    def test_unknown_network(self):
        with self.assertRaises(ValueError):
            address_to_script_pub_key("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "litecoin")


if __name__ == "__main__":
    unittest.main()
