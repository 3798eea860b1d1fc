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

from typing import Sequence

from ctvpool.address import P2trAddress
from ctvpool.constants import LEAF_VERSION_TAPSCRIPT, NUMS_INTERNAL_KEY
from ctvpool.errors import ConstructionError
from ctvpool.script import Script
from ctvpool.utils import (
    b_to_h,
    calculate_tweak,
    tapbranch_tagged_hash,
    tapleaf_tagged_hash,
    tweak_taproot_pubkey,
)


class ControlBlock:
    """Represents a control block for spending a taproot script path

    Attributes
    ----------
    internal_key : bytes
        the x-only internal public key
    merkle_path : list[bytes]
        the sibling hashes from the leaf up to the merkle root
    is_odd : bool
        parity of the tweaked output key
    leaf_version : int
        the tapleaf version of the spent script

    Methods
    -------
    to_bytes()
        returns the control block as bytes
    to_hex()
        returns the control block as a hexadecimal string
    """

    def __init__(
        self,
        internal_key: bytes,
        merkle_path: list[bytes],
        is_odd: bool = False,
        leaf_version: int = LEAF_VERSION_TAPSCRIPT,
    ) -> None:
        self.internal_key = internal_key
        self.merkle_path = merkle_path
        self.is_odd = is_odd
        self.leaf_version = leaf_version

    def to_bytes(self) -> bytes:
        leaf_version = bytes([(1 if self.is_odd else 0) + self.leaf_version])
        return leaf_version + self.internal_key + b"".join(self.merkle_path)

    def to_hex(self) -> str:
        """Converts object to hexadecimal string"""
        return b_to_h(self.to_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> "ControlBlock":
        if len(data) < 33 or (len(data) - 33) % 32 != 0:
            raise ValueError("Invalid control block size")
        path = [data[i : i + 32] for i in range(33, len(data), 32)]
        return cls(data[1:33], path, bool(data[0] & 1), data[0] & 0xFE)


class TaprootSpendInfo:
    """A compiled taproot output with script-path spending data.

    Attributes
    ----------
    internal_key : bytes
        x-only internal key
    leaves : list[Script]
        the tapscripts, in tree order
    merkle_root : bytes
        root of the script tree
    output_key : bytes
        x-only tweaked output key
    is_odd : bool
        parity of the output key

    Methods
    -------
    control_block(index)
        control block proving the leaf at index
    control_block_for(script)
        control block proving the given leaf script
    to_script_pub_key()
        the P2TR scriptPubKey
    to_address(network)
        the P2TR address string
    """

    def __init__(
        self,
        internal_key: bytes,
        leaves: list[Script],
        merkle_root: bytes,
        merkle_paths: list[list[bytes]],
    ) -> None:
        self.internal_key = internal_key
        self.leaves = leaves
        self.merkle_root = merkle_root
        self._merkle_paths = merkle_paths

        tweak = calculate_tweak(internal_key, merkle_root)
        self.output_key, self.is_odd = tweak_taproot_pubkey(internal_key, tweak)

    def control_block(self, index: int) -> ControlBlock:
        return ControlBlock(self.internal_key, self._merkle_paths[index], self.is_odd)

    def control_block_for(self, script: Script) -> ControlBlock:
        for index, leaf in enumerate(self.leaves):
            if leaf == script:
                return self.control_block(index)
        raise ValueError("Script is not a leaf of this taproot output")

    def to_script_pub_key(self) -> Script:
        return Script(["OP_1", b_to_h(self.output_key)])

    def to_address(self, network: str) -> str:
        return P2trAddress(b_to_h(self.output_key), network).to_string()


def _merkleize(hashes: Sequence[bytes], first: int) -> tuple[bytes, dict[int, list[bytes]]]:
    """Balanced merkle tree over the leaf hashes; the left half gets the extra
    leaf. Returns the root and, per leaf index, its path of sibling hashes."""
    if len(hashes) == 1:
        return hashes[0], {first: []}

    middle = (len(hashes) + 1) // 2
    left, left_paths = _merkleize(hashes[:middle], first)
    right, right_paths = _merkleize(hashes[middle:], first + middle)

    for path in left_paths.values():
        path.append(right)
    for path in right_paths.values():
        path.append(left)

    return tapbranch_tagged_hash(left, right), {**left_paths, **right_paths}


def compile_leaves(
    leaves: Sequence[Script], internal_key: bytes = NUMS_INTERNAL_KEY
) -> TaprootSpendInfo:
    """Builds the taproot output committing to the given tapscripts.

    The default internal key is unspendable so the output can only be spent
    through one of the scripts.

    Raises
    ------
    ConstructionError
        If no leaves are given.
    """
    if not leaves:
        raise ConstructionError("A taproot script tree needs at least one leaf")

    leaf_hashes = [tapleaf_tagged_hash(leaf.to_bytes()) for leaf in leaves]
    merkle_root, paths = _merkleize(leaf_hashes, 0)

    return TaprootSpendInfo(
        internal_key,
        list(leaves),
        merkle_root,
        [paths[index] for index in range(len(leaves))],
    )


def verify_control_block(
    output_key: bytes, script: Script, control_block: ControlBlock
) -> bool:
    """Checks a script-path witness against an output key the way consensus
    does: rebuild the merkle root from the leaf and path, tweak the internal
    key and compare key and parity."""
    current = tapleaf_tagged_hash(script.to_bytes(), control_block.leaf_version)
    for sibling in control_block.merkle_path:
        current = tapbranch_tagged_hash(current, sibling)

    tweak = calculate_tweak(control_block.internal_key, current)
    tweaked_key, is_odd = tweak_taproot_pubkey(control_block.internal_key, tweak)

    return tweaked_key == output_key and is_odd == control_block.is_odd
