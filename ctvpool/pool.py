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

"""Construction of the covenant tree of a CTV pool.

A pool of N participants is a tree of taproot outputs. The root ("entry
pool") holds everyone's funds. Spending one of its leaves pays one
participant and moves the rest into a child output for the remaining N-1
participants, and so on until two participants remain ("exit pool"), whose
transaction pays both of them.

Nodes are identified by the set of participants that already exited: every
exit order of the same participants ends up in the same node, so the tree has
2^N - N - 1 nodes. ``layers[d]`` holds the nodes with d + 2 remaining
participants; depth 0 is the exit pool and depth N - 2 the root.
"""

from __future__ import annotations

import logging
import struct
from itertools import combinations
from typing import Iterator, Optional, Sequence

from ctvpool.address import address_to_script_pub_key
from ctvpool.config import PoolConfig
from ctvpool.constants import (
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
    ENABLE_RBF_NO_LOCKTIME_SEQUENCE,
    MAX_SCRIPT_SIZE,
    POOL_INPUT_INDEX,
)
from ctvpool.ctv import TemplateCommitment, build_leaf
from ctvpool.errors import ConfigurationError, ConstructionError, ResolutionError
from ctvpool.script import Script
from ctvpool.taproot import TaprootSpendInfo, compile_leaves
from ctvpool.transactions import TxOutput

logger = logging.getLogger(__name__)

POOL_TX_VERSION = struct.unpack("<i", DEFAULT_TX_VERSION)[0]
POOL_TX_LOCKTIME = struct.unpack("<I", DEFAULT_TX_LOCKTIME)[0]
POOL_TX_SEQUENCE = struct.unpack("<I", ENABLE_RBF_NO_LOCKTIME_SEQUENCE)[0]


class Participant:
    """A pool user and the destination of their withdrawal.

    Attributes
    ----------
    index : int
        position of the participant in the pool, 0..N-1
    address : str
        the withdrawal address
    script_pub_key : Script
        the decoded scriptPubKey of the withdrawal address
    """

    def __init__(self, index: int, address: str, script_pub_key: Script) -> None:
        self.index = index
        self.address = address
        self.script_pub_key = script_pub_key

    @classmethod
    def from_address(cls, index: int, address: str, network: str) -> "Participant":
        try:
            script_pub_key = address_to_script_pub_key(address, network)
        except ValueError as e:
            raise ConfigurationError(f"Participant {index}: {e}") from e
        return cls(index, address, script_pub_key)

    def __repr__(self) -> str:
        return f"Participant({self.index}, {self.address})"


def participants_from_addresses(
    addresses: Sequence[str], network: str
) -> list[Participant]:
    return [
        Participant.from_address(index, address, network)
        for index, address in enumerate(addresses)
    ]


class CovenantLeaf:
    """One admissible next transaction of a pool node.

    Attributes
    ----------
    exiter : int
        the participant this transaction pays out
    outputs : list[TxOutput]
        the committed outputs: withdrawal, fee anchor, continuation (or the
        last participant's payout at the exit pool)
    commitment : TemplateCommitment
        the committed transaction shape
    digest : bytes
        the template hash
    script : Script
        the tapscript enforcing the template hash
    child_key : tuple or None
        exit set of the node the continuation output pays to
    """

    def __init__(
        self,
        exiter: int,
        outputs: list[TxOutput],
        child_key: Optional[tuple[int, ...]] = None,
    ) -> None:
        self.exiter = exiter
        self.outputs = outputs
        self.child_key = child_key
        self.commitment = TemplateCommitment.from_fields(
            version=POOL_TX_VERSION,
            lock_time=POOL_TX_LOCKTIME,
            sequences=[POOL_TX_SEQUENCE],
            outputs=outputs,
            input_index=POOL_INPUT_INDEX,
        )
        self.digest = self.commitment.digest()
        self.script = build_leaf(self.digest)


class PoolNode:
    """A taproot output of the pool tree.

    Attributes
    ----------
    exited : tuple[int, ...]
        the participants that already exited, ascending
    remaining : tuple[int, ...]
        the participants still in the pool, ascending
    depth : int
        number of remaining participants minus two
    value : int
        the amount locked in this node's output
    leaves : dict[int, CovenantLeaf]
        one leaf per remaining participant, keyed by that participant
    spend_info : TaprootSpendInfo
        the compiled taproot output
    address : str
        the P2TR address of the output
    children : dict[int, PoolNode]
        the node reached when a participant exits, empty at the exit pool
    """

    def __init__(
        self,
        exited: tuple[int, ...],
        remaining: tuple[int, ...],
        value: int,
        leaves: list[CovenantLeaf],
        children: dict[int, "PoolNode"],
        network: str,
    ) -> None:
        self.exited = exited
        self.remaining = remaining
        self.depth = len(remaining) - 2
        self.value = value
        self.leaves = {leaf.exiter: leaf for leaf in leaves}
        self.children = children
        self.spend_info: TaprootSpendInfo = compile_leaves([leaf.script for leaf in leaves])
        self.address = self.spend_info.to_address(network)

    @property
    def is_terminal(self) -> bool:
        return self.depth == 0

    @property
    def script_pub_key(self) -> Script:
        return self.spend_info.to_script_pub_key()

    def leaf_for(self, exiter: int) -> CovenantLeaf:
        try:
            return self.leaves[exiter]
        except KeyError:
            raise ResolutionError(
                f"Participant {exiter} can not exit from the pool of {list(self.remaining)}"
            ) from None

    def leaf_index(self, exiter: int) -> int:
        return self.remaining.index(exiter)

    def __repr__(self) -> str:
        return f"PoolNode(exited={list(self.exited)}, depth={self.depth}, {self.address})"


class PoolTree:
    """The complete, immutable covenant tree of a pool.

    Methods
    -------
    node_for(path)
        the node reached after the given ordered exits
    depth_for(path)
        the depth of that node
    nodes()
        iterates over every node, exit pool first
    find_by_script(script_pub_key)
        the node locked by a scriptPubKey, if any
    """

    def __init__(
        self,
        config: PoolConfig,
        participants: list[Participant],
        layers: list[dict[tuple[int, ...], PoolNode]],
    ) -> None:
        self.config = config
        self.participants = participants
        self.layers = layers
        self._by_script = {
            node.script_pub_key.to_bytes(): node for node in self.nodes()
        }

    @property
    def size(self) -> int:
        return len(self.participants)

    @property
    def root(self) -> PoolNode:
        return self.layers[-1][()]

    @property
    def node_count(self) -> int:
        return sum(len(layer) for layer in self.layers)

    @property
    def leaf_count(self) -> int:
        return sum(len(node.leaves) for node in self.nodes())

    def depth_for(self, path: Sequence[int]) -> int:
        return self.size - 2 - len(path)

    def node_for(self, path: Sequence[int]) -> PoolNode:
        """Returns the node reached after the participants in path exited,
        in that order.

        Raises
        ------
        ResolutionError
            If the path repeats or does not know a participant, or is too long.
        """
        if len(set(path)) != len(path):
            raise ResolutionError(f"Exit path {list(path)} repeats a participant")
        if any(not 0 <= index < self.size for index in path):
            raise ResolutionError(f"Exit path {list(path)} has an unknown participant")
        depth = self.depth_for(path)
        if depth < 0:
            raise ResolutionError(f"Exit path {list(path)} goes past the exit pool")

        return self.layers[depth][tuple(sorted(path))]

    def nodes(self) -> Iterator[PoolNode]:
        for layer in self.layers:
            yield from layer.values()

    def find_by_script(self, script_pub_key: Script) -> Optional[PoolNode]:
        return self._by_script.get(script_pub_key.to_bytes())


def node_value(config: PoolConfig, size: int, exited_count: int) -> int:
    """Amount held by a node after exited_count participants left: every exit
    takes one share and burns one fee."""
    return (size - exited_count) * config.amount_per_user - exited_count * config.fee_amount


def check_pool_parameters(config: PoolConfig, size: int) -> None:
    """Rejects configurations that can not produce a valid tree.

    Raises
    ------
    ConfigurationError
        If there are fewer than 3 participants or a payout would not exceed
        the dust amount.
    """
    if size < 3:
        raise ConfigurationError(f"Pool must have at least 3 users, got {size}")

    withdrawal = config.amount_per_user - config.fee_amount
    if withdrawal <= config.dust_amount:
        raise ConfigurationError(
            "Amount per user must be more than the fee amount plus the dust amount "
            f"({config.amount_per_user} <= {config.fee_amount} + {config.dust_amount})"
        )

    # the last participant out also carries the fees of every earlier step
    last_payout = config.amount_per_user - (size - 1) * config.fee_amount
    if last_payout <= config.dust_amount:
        raise ConfigurationError(
            f"Last participant's payout {last_payout} would not exceed the dust "
            f"amount {config.dust_amount} with {size} users"
        )


def _check_script_size(script: Script, what: str) -> None:
    if len(script.to_bytes()) > MAX_SCRIPT_SIZE:
        raise ConstructionError(f"{what} script exceeds {MAX_SCRIPT_SIZE} bytes")


def _exit_pool_leaves(
    config: PoolConfig,
    participants: list[Participant],
    remaining: tuple[int, ...],
    value: int,
    anchor: Script,
) -> list[CovenantLeaf]:
    first, second = remaining
    withdrawal = config.amount_per_user - config.fee_amount
    last_payout = value - config.amount_per_user - config.fee_amount

    leaves = []
    for exiter, last in ((first, second), (second, first)):
        outputs = [
            TxOutput(withdrawal, participants[exiter].script_pub_key),
            TxOutput(config.fee_amount, anchor),
            TxOutput(last_payout, participants[last].script_pub_key),
        ]
        leaves.append(CovenantLeaf(exiter, outputs))
    return leaves


def _pool_leaves(
    config: PoolConfig,
    participants: list[Participant],
    exited: tuple[int, ...],
    remaining: tuple[int, ...],
    value: int,
    anchor: Script,
    child_layer: dict[tuple[int, ...], PoolNode],
) -> tuple[list[CovenantLeaf], dict[int, PoolNode]]:
    withdrawal = config.amount_per_user - config.fee_amount
    continuation = value - config.amount_per_user - config.fee_amount

    leaves = []
    children = {}
    for exiter in remaining:
        child_key = tuple(sorted(exited + (exiter,)))
        child = child_layer[child_key]
        if child.value != continuation:
            raise ConstructionError(
                f"Node {list(child_key)} holds {child.value}, "
                f"its parent would send {continuation}"
            )
        outputs = [
            TxOutput(withdrawal, participants[exiter].script_pub_key),
            TxOutput(config.fee_amount, anchor),
            TxOutput(continuation, child.script_pub_key),
        ]
        leaves.append(CovenantLeaf(exiter, outputs, child_key))
        children[exiter] = child
    return leaves, children


def build_pool_tree(participants: Sequence[Participant], config: PoolConfig) -> PoolTree:
    """Builds every node of the pool tree, bottom-up.

    Parameters
    ----------
    participants : list[Participant]
        the pool users, with indices 0..N-1
    config : PoolConfig
        amounts and network

    Raises
    ------
    ConfigurationError
        If the participants or amounts can not form a pool.
    ConstructionError
        If the tree can not be built consistently.
    """
    participants = sorted(participants, key=lambda p: p.index)
    size = len(participants)
    if [p.index for p in participants] != list(range(size)):
        raise ConfigurationError("Participant indices must be exactly 0..N-1")
    # equal destinations would give sibling nodes identical outputs
    if len({p.script_pub_key.to_bytes() for p in participants}) != size:
        raise ConfigurationError("Participants must have distinct withdrawal addresses")
    check_pool_parameters(config, size)

    anchor = config.anchor_script_pub_key()
    _check_script_size(anchor, "Fee anchor")
    for participant in participants:
        _check_script_size(participant.script_pub_key, f"Participant {participant.index}")

    everyone = tuple(range(size))
    layers: list[dict[tuple[int, ...], PoolNode]] = []

    for depth in range(size - 1):
        layer: dict[tuple[int, ...], PoolNode] = {}
        for remaining in combinations(everyone, depth + 2):
            exited = tuple(i for i in everyone if i not in remaining)
            value = node_value(config, size, len(exited))
            if depth == 0:
                leaves = _exit_pool_leaves(config, participants, remaining, value, anchor)
                children: dict[int, PoolNode] = {}
            else:
                leaves, children = _pool_leaves(
                    config, participants, exited, remaining, value, anchor, layers[depth - 1]
                )
            layer[exited] = PoolNode(
                exited, remaining, value, leaves, children, config.network
            )
        logger.debug("Built %d pool nodes at depth %d", len(layer), depth)
        layers.append(layer)

    tree = PoolTree(config, participants, layers)
    if len(tree._by_script) != tree.node_count:
        raise ConstructionError("Two pool nodes share the same taproot output")

    logger.info(
        "total taproot addresses across all pools: %d for %d users",
        tree.node_count,
        size,
    )
    return tree
