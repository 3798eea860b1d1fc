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

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ctvpool.constants import (
    CONTINUATION_OUTPUT_INDEX,
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
    ENABLE_RBF_NO_LOCKTIME_SEQUENCE,
    POOL_INPUT_INDEX,
)
from ctvpool.ctv import TemplateCommitment
from ctvpool.errors import CommitmentMismatchError, ResolutionError
from ctvpool.pool import PoolNode, PoolTree
from ctvpool.taproot import verify_control_block
from ctvpool.transactions import Transaction, TxInput, TxWitnessInput

logger = logging.getLogger(__name__)

# takes a raw transaction hex, returns its txid
Broadcaster = Callable[[str], str]


class SettlementState:
    """Where settlement of a pool stands.

    Attributes
    ----------
    txid : str or None
        transaction holding the unspent pool output; None once terminal
    vout : int or None
        index of the pool output in that transaction
    value : int
        amount of the unspent pool output
    path : tuple[int, ...]
        participants that exited, in order
    terminal : bool
        True once the exit pool was spent and nothing is left to settle
    """

    def __init__(
        self,
        txid: Optional[str],
        vout: Optional[int],
        value: int,
        path: tuple[int, ...] = (),
        terminal: bool = False,
    ) -> None:
        self.txid = txid
        self.vout = vout
        self.value = value
        self.path = path
        self.terminal = terminal

    @classmethod
    def funded(cls, txid: str, vout: int, value: int) -> "SettlementState":
        return cls(txid, vout, value)

    def __repr__(self) -> str:
        if self.terminal:
            return f"SettlementState(terminal, path={list(self.path)})"
        return f"SettlementState({self.txid}:{self.vout}, path={list(self.path)})"


class SpendPathResolver:
    """Builds and broadcasts, one exit at a time, the pre-committed
    transactions of a pool tree.

    The state is only advanced after a broadcast succeeded; every step holds
    the state lock so two steps can never spend the same outpoint.
    """

    def __init__(self, tree: PoolTree, state: SettlementState) -> None:
        self.tree = tree
        self._state = state
        self._lock = threading.Lock()

    @property
    def state(self) -> SettlementState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.terminal

    @property
    def current_node(self) -> PoolNode:
        if self._state.terminal:
            raise ResolutionError("The pool is fully settled")
        return self.tree.node_for(self._state.path)

    @property
    def remaining(self) -> tuple[int, ...]:
        if self._state.terminal:
            return ()
        return self.current_node.remaining

    def build_spend(self, exiter: int) -> Transaction:
        """Builds the fully witnessed transaction paying out exiter from the
        current pool output.

        Raises
        ------
        ResolutionError
            If the pool is settled or exiter can not exit now.
        CommitmentMismatchError
            If the transaction does not match its leaf. This is a bug.
        """
        return self._build_spend(self._state, exiter)

    def _build_spend(self, state: SettlementState, exiter: int) -> Transaction:
        if state.terminal:
            raise ResolutionError("The pool is fully settled")
        if exiter in state.path:
            raise ResolutionError(f"Participant {exiter} already exited")

        node = self.tree.node_for(state.path)
        leaf = node.leaf_for(exiter)
        if state.value != node.value:
            raise ResolutionError(
                f"Pool output holds {state.value}, node {list(node.exited)} "
                f"expects {node.value}"
            )

        control_block = node.spend_info.control_block(node.leaf_index(exiter))
        assert state.txid is not None and state.vout is not None
        tx = Transaction(
            inputs=[
                TxInput(state.txid, state.vout, sequence=ENABLE_RBF_NO_LOCKTIME_SEQUENCE)
            ],
            outputs=list(leaf.outputs),
            locktime=DEFAULT_TX_LOCKTIME,
            version=DEFAULT_TX_VERSION,
            has_segwit=True,
            witnesses=[TxWitnessInput([leaf.script.to_hex(), control_block.to_hex()])],
        )

        commitment = TemplateCommitment.from_transaction(tx, POOL_INPUT_INDEX)
        if commitment.digest() != leaf.digest:
            raise CommitmentMismatchError(
                f"Transaction for participant {exiter} at {list(node.exited)} does not "
                "match its template commitment"
            )
        if not verify_control_block(node.spend_info.output_key, leaf.script, control_block):
            raise CommitmentMismatchError(
                f"Control block for participant {exiter} at {list(node.exited)} does "
                "not verify against the node's output key"
            )
        return tx

    def settle(self, exiter: int, broadcast: Broadcaster) -> str:
        """Broadcasts the exit of a participant and advances the state.

        A failing broadcast propagates its exception and leaves the state
        unchanged, so the step can be retried.

        If the node accepts the transaction but reports a different txid,
        ResolutionError is raised after the broadcast went out. The state is
        not advanced and may then be stale with respect to the chain.

        Returns
        -------
        str
            the txid of the settlement transaction
        """
        with self._lock:
            state = self._state
            tx = self._build_spend(state, exiter)
            txid = tx.get_txid()

            logger.debug(
                "Broadcasting exit of participant %d (%d vB): %s",
                exiter,
                tx.get_vsize(),
                tx.to_hex(),
            )
            broadcast_txid = broadcast(tx.to_hex())
            if broadcast_txid != txid:
                logger.error(
                    "Node accepted exit of participant %d as %s, expected %s; "
                    "settlement state may be stale",
                    exiter,
                    broadcast_txid,
                    txid,
                )
                raise ResolutionError(
                    f"Node reported txid {broadcast_txid}, expected {txid}"
                )

            remaining = len(self.tree.node_for(state.path).remaining) - 1
            self._state = self._next_state(state, exiter, txid)
            logger.info(
                "Participant %d exited in %s, %d remaining", exiter, txid, remaining
            )
            return txid

    def plan(self, order: list[int]) -> list[Transaction]:
        """Builds, without broadcasting, the transactions of an exit order
        starting from the current state. Pool transactions are fully
        determined, so every txid is known in advance.

        Raises
        ------
        ResolutionError
            If an exiter already left, or the order continues past the
            settled pool
        """
        state = self._state
        txs = []
        for exiter in order:
            tx = self._build_spend(state, exiter)
            txs.append(tx)
            state = self._next_state(state, exiter, tx.get_txid())
        return txs

    def _next_state(self, state: SettlementState, exiter: int, txid: str) -> SettlementState:
        node = self.tree.node_for(state.path)
        path = state.path + (exiter,)
        if node.is_terminal:
            return SettlementState(None, None, 0, path, terminal=True)
        child = node.children[exiter]
        return SettlementState(txid, CONTINUATION_OUTPUT_INDEX, child.value, path)
