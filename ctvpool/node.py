# Copyright (C) 2024-2025 The ctvpool developers
#
# This file is part of ctvpool
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of ctvpool, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

"""Everything the pool needs from a Bitcoin node: funding the root output,
broadcasting settlement transactions and, on regtest, mining."""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any

from ctvpool.address import address_to_script_pub_key
from ctvpool.config import PoolConfig
from ctvpool.constants import (
    DEFAULT_FEE_RATE,
    ENABLE_RBF_NO_LOCKTIME_SEQUENCE,
    NETWORK_CHAIN_NAMES,
)
from ctvpool.errors import ConfigurationError, ExternalError
from ctvpool.proxy import NodeProxy, RPCError
from ctvpool.script import Script
from ctvpool.transactions import Transaction, TxInput, TxOutput
from ctvpool.utils import to_btc, to_satoshis

logger = logging.getLogger(__name__)

# rough virtual sizes (vbytes) used to size the funding fee; wallet inputs are
# assumed to be segwit v0/v1, outputs are sized for the largest (p2wsh/p2tr)
TX_OVERHEAD_VSIZE = 11
INPUT_VSIZE = 68
OUTPUT_VSIZE = 43

FEE_ESTIMATE_TARGET = 6


class InsufficientFundsError(ExternalError):
    """The wallet's confirmed outputs can not cover the requested amount."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: {required} sat required, {available} sat available"
        )


class NodeCollaborator:
    """Wraps a NodeProxy with the few wallet and chain operations a pool run
    requires. Amounts are in satoshis."""

    def __init__(self, proxy: NodeProxy, config: PoolConfig) -> None:
        self.proxy = proxy
        self.config = config

    def check_network(self) -> None:
        """Raises ConfigurationError if the node runs a different chain than
        the configured network"""
        chain = self.proxy.get_blockchain_info()["chain"]
        expected = NETWORK_CHAIN_NAMES[self.config.network]
        if chain != expected:
            raise ConfigurationError(
                f"Node is on chain '{chain}', configured network {self.config.network} expects '{expected}'"
            )
        logger.debug("Node chain: %s", chain)

    def fee_rate(self) -> int:
        """Fee rate for the funding transaction in sat/vB"""
        try:
            estimate = self.proxy.estimate_smart_fee(FEE_ESTIMATE_TARGET)
        except RPCError as e:
            logger.debug("estimatesmartfee failed: %s", e)
            return DEFAULT_FEE_RATE

        feerate = estimate.get("feerate")
        if feerate is None:
            # regtest and fresh nodes have no estimate
            return DEFAULT_FEE_RATE

        # BTC/kvB to sat/vB
        return max(1, math.ceil(to_satoshis(Decimal(str(feerate))) / 1000))

    def fund(self, address: str, amount: int) -> str:
        """Pays amount to address from confirmed wallet outputs and returns
        the txid of the broadcast funding transaction.

        Raises
        ------
        InsufficientFundsError
            If the wallet can not cover amount plus fees
        RPCError
            If a node call fails or the wallet can not sign
        """
        try:
            script_pub_key = address_to_script_pub_key(address, self.config.network)
        except ValueError as e:
            raise ConfigurationError(f"Invalid funding address: {e}") from e

        rate = self.fee_rate()
        unspent = sorted(
            self.proxy.list_unspent(1),
            key=lambda utxo: to_satoshis(Decimal(str(utxo["amount"]))),
            reverse=True,
        )
        logger.debug("%d spendable wallet outputs, fee rate %d sat/vB", len(unspent), rate)

        inputs: list[TxInput] = []
        total = 0
        fee = 0
        for utxo in unspent:
            inputs.append(
                TxInput(
                    utxo["txid"],
                    utxo["vout"],
                    sequence=ENABLE_RBF_NO_LOCKTIME_SEQUENCE,
                )
            )
            total += to_satoshis(Decimal(str(utxo["amount"])))
            # payment and change
            fee = rate * (TX_OVERHEAD_VSIZE + INPUT_VSIZE * len(inputs) + OUTPUT_VSIZE * 2)
            if total >= amount + fee:
                break
        else:
            raise InsufficientFundsError(amount + fee, total)

        outputs = [TxOutput(amount, script_pub_key)]
        change = total - amount - fee
        if change > self.config.dust_amount:
            change_address = self.proxy.get_raw_change_address()
            outputs.append(
                TxOutput(change, address_to_script_pub_key(change_address, self.config.network))
            )

        unsigned_tx = Transaction(inputs, outputs)
        logger.info(
            "Funding %s with %s BTC from %d wallet outputs", address, to_btc(amount), len(inputs)
        )

        signed = self.proxy.sign_raw_transaction_with_wallet(unsigned_tx.to_hex())
        if not signed.get("complete"):
            raise RPCError(f"Wallet could not sign the funding transaction: {signed.get('errors')}")

        txid = self.proxy.send_raw_transaction(signed["hex"])
        logger.info("Funding transaction: %s", txid)
        return txid

    def broadcast(self, raw_transaction: str) -> str:
        """Submits a raw transaction and returns its txid"""
        return self.proxy.send_raw_transaction(raw_transaction)

    def lookup_outputs(self, txid: str) -> list[TxOutput]:
        """Returns the outputs of a transaction known to the node"""
        tx: Any
        try:
            tx = self.proxy.get_raw_transaction(txid, True)
        except RPCError as e:
            # without -txindex confirmed transactions are only known to the wallet
            logger.debug("getrawtransaction %s failed (%s), asking the wallet", txid, e)
            tx = self.proxy.get_transaction(txid, verbose=True)["decoded"]
        return [
            TxOutput(
                to_satoshis(Decimal(str(vout["value"]))),
                Script.from_raw(vout["scriptPubKey"]["hex"]),
            )
            for vout in tx["vout"]
        ]

    def find_output_index(self, txid: str, script_pub_key: Script) -> int:
        """Index of the first output of txid paying script_pub_key"""
        for index, output in enumerate(self.lookup_outputs(txid)):
            if output.script_pubkey == script_pub_key:
                return index
        raise ExternalError(f"Transaction {txid} has no output paying {script_pub_key.to_hex()}")

    def new_addresses(self, count: int, address_type: str = "bech32m") -> list[str]:
        return [self.proxy.get_new_address("", address_type) for _ in range(count)]

    def mine(self, blocks: int, address: str) -> list[str]:
        """Mines blocks to address (regtest only)"""
        if self.config.network != "regtest":
            raise ConfigurationError("Mining is only available on regtest")
        return self.proxy.generate_to_address(blocks, address)

    def ensure_balance(self, amount: int, address: str) -> None:
        """Mines mature coinbase outputs on regtest until the wallet holds at
        least amount"""
        balance = to_satoshis(Decimal(str(self.proxy.get_balance())))
        if balance >= amount:
            return
        logger.info("Wallet balance %s BTC is too low, mining 101 blocks", to_btc(balance))
        self.mine(101, address)
