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

"""BIP-119 template commitments and the covenant leaves that check them."""

from __future__ import annotations

import struct
from typing import Optional, Sequence

from ctvpool.errors import ConstructionError
from ctvpool.script import Script
from ctvpool.transactions import Transaction, TxOutput
from ctvpool.utils import b_to_h, hash_sha256, prepend_compact_size

# <32 byte push> ... OP_CHECKTEMPLATEVERIFY OP_DROP OP_TRUE
_LEAF_PREFIX = b"\x20"
_LEAF_SUFFIX = b"\xb3\x75\x51"


class TemplateCommitment:
    """The fields of a transaction that OP_CHECKTEMPLATEVERIFY commits to.

    Attributes
    ----------
    version : int
        transaction version (signed 32 bits)
    lock_time : int
        transaction lock time
    script_sigs_digest : bytes or None
        sha256 of all serialized scriptSigs; only present when at least one
        input has a non-empty scriptSig
    input_count : int
        number of inputs
    sequences_digest : bytes
        sha256 of all input sequences (4 bytes little-endian each)
    outputs_count : int
        number of outputs
    outputs_digest : bytes
        sha256 of all serialized outputs
    input_index : int
        index of the input executing the covenant

    Methods
    -------
    from_fields(version, lock_time, sequences, outputs, input_index, script_sigs)
        builds the commitment of a (possibly not yet existing) transaction
    from_transaction(tx, input_index)
        builds the commitment of an existing transaction
    to_bytes()
        the hashed preimage
    digest()
        the 32 byte template hash
    """

    def __init__(
        self,
        version: int,
        lock_time: int,
        input_count: int,
        sequences_digest: bytes,
        outputs_count: int,
        outputs_digest: bytes,
        input_index: int,
        script_sigs_digest: Optional[bytes] = None,
    ) -> None:
        self.version = version
        self.lock_time = lock_time
        self.script_sigs_digest = script_sigs_digest
        self.input_count = input_count
        self.sequences_digest = sequences_digest
        self.outputs_count = outputs_count
        self.outputs_digest = outputs_digest
        self.input_index = input_index

    @classmethod
    def from_fields(
        cls,
        version: int,
        lock_time: int,
        sequences: Sequence[int],
        outputs: Sequence[TxOutput],
        input_index: int,
        script_sigs: Optional[Sequence[Script]] = None,
    ) -> "TemplateCommitment":
        script_sigs_digest = None
        if script_sigs and any(s.to_bytes() for s in script_sigs):
            script_sigs_digest = hash_sha256(
                b"".join(_serialize_script_sig(s) for s in script_sigs)
            )

        return cls(
            version=version,
            lock_time=lock_time,
            input_count=len(sequences),
            sequences_digest=hash_sha256(
                b"".join(struct.pack("<I", seq) for seq in sequences)
            ),
            outputs_count=len(outputs),
            outputs_digest=hash_sha256(b"".join(out.to_bytes() for out in outputs)),
            input_index=input_index,
            script_sigs_digest=script_sigs_digest,
        )

    @classmethod
    def from_transaction(cls, tx: Transaction, input_index: int) -> "TemplateCommitment":
        return cls.from_fields(
            version=struct.unpack("<i", tx.version)[0],
            lock_time=struct.unpack("<I", tx.locktime)[0],
            sequences=[struct.unpack("<I", txin.sequence)[0] for txin in tx.inputs],
            outputs=tx.outputs,
            input_index=input_index,
            script_sigs=[txin.script_sig for txin in tx.inputs],
        )

    def to_bytes(self) -> bytes:
        data = struct.pack("<i", self.version) + struct.pack("<I", self.lock_time)
        if self.script_sigs_digest is not None:
            data += self.script_sigs_digest
        data += struct.pack("<I", self.input_count) + self.sequences_digest
        data += struct.pack("<I", self.outputs_count) + self.outputs_digest
        data += struct.pack("<I", self.input_index)
        return data

    def digest(self) -> bytes:
        return hash_sha256(self.to_bytes())

    def __eq__(self, _other: object) -> bool:
        if not isinstance(_other, TemplateCommitment):
            return False
        return self.to_bytes() == _other.to_bytes()

    def __repr__(self) -> str:
        return f"TemplateCommitment({b_to_h(self.digest())})"


def _serialize_script_sig(script_sig: Script) -> bytes:
    # compact size prefix, as in the transaction serialization
    return prepend_compact_size(script_sig.to_bytes())


def commit(
    version: int,
    lock_time: int,
    sequences: Sequence[int],
    outputs: Sequence[TxOutput],
    input_index: int,
    script_sigs: Optional[Sequence[Script]] = None,
) -> bytes:
    """Computes the BIP-119 default template hash of a transaction shape."""
    return TemplateCommitment.from_fields(
        version, lock_time, sequences, outputs, input_index, script_sigs
    ).digest()


def build_leaf(commitment: bytes) -> Script:
    """Tapscript that can only be spent by a transaction matching the
    commitment: <commitment> OP_CHECKTEMPLATEVERIFY OP_DROP OP_TRUE"""
    if len(commitment) != 32:
        raise ConstructionError(
            f"Template commitment must be 32 bytes, got {len(commitment)}"
        )
    return Script([b_to_h(commitment), "OP_CHECKTEMPLATEVERIFY", "OP_DROP", "OP_TRUE"])


def leaf_commitment(script: Script) -> bytes:
    """Returns the template hash a covenant leaf commits to"""
    script_bytes = script.to_bytes()
    if (
        len(script_bytes) != 36
        or not script_bytes.startswith(_LEAF_PREFIX)
        or not script_bytes.endswith(_LEAF_SUFFIX)
    ):
        raise ValueError("Not a covenant leaf script")
    return script_bytes[1:33]
