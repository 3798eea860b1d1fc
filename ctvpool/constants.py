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

NETWORKS = {"mainnet", "testnet", "testnet4", "signet", "regtest"}

NETWORK_DEFAULT_PORTS = {
    "mainnet": 8332,
    "signet": 38332,
    "testnet": 18332,
    "testnet4": 48332,
    "regtest": 18443,
}

# "chain" as reported by getblockchaininfo
NETWORK_CHAIN_NAMES = {
    "mainnet": "main",
    "signet": "signet",
    "testnet": "test",
    "testnet4": "testnet4",
    "regtest": "regtest",
}

NETWORK_P2PKH_PREFIXES = {
    "mainnet": b"\x00",
    "signet": b"\x6f",
    "testnet": b"\x6f",
    "testnet4": b"\x6f",
    "regtest": b"\x6f",
}

NETWORK_P2SH_PREFIXES = {
    "mainnet": b"\x05",
    "signet": b"\xc4",
    "testnet": b"\xc4",
    "testnet4": b"\xc4",
    "regtest": b"\xc4",
}

NETWORK_SEGWIT_PREFIXES = {
    "mainnet": "bc",
    "signet": "tb",
    "testnet": "tb",
    "testnet4": "tb",
    "regtest": "bcrt",
}


# Transaction fields, serialized as they appear on the wire (little-endian)
DEFAULT_TX_VERSION = b"\x02\x00\x00\x00"
DEFAULT_TX_LOCKTIME = b"\x00\x00\x00\x00"

DEFAULT_TX_SEQUENCE = b"\xff\xff\xff\xff"
# BIP-125 signalling, no relative or absolute locktime
ENABLE_RBF_NO_LOCKTIME_SEQUENCE = b"\xfd\xff\xff\xff"

# every pool transaction spends its single input at this index
POOL_INPUT_INDEX = 0
# position of the continuation output in a non-terminal pool transaction
CONTINUATION_OUTPUT_INDEX = 2


# Taproot
LEAF_VERSION_TAPSCRIPT = 0xC0

# BIP-341 "nothing up my sleeve" point: lift_x(sha256(G)), no known private key
NUMS_INTERNAL_KEY = bytes.fromhex(
    "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
)

# pay-to-anchor output script: OP_1 <0x4e73>
PAY_TO_ANCHOR_SCRIPT = bytes.fromhex("51024e73")


# Consensus limit for a script
MAX_SCRIPT_SIZE = 10000


# Monetary constants
SATOSHIS_PER_BITCOIN = 100000000

# Pool defaults (satoshis)
DEFAULT_POOL_USERS = 5
DEFAULT_AMOUNT_PER_USER = 100000
DEFAULT_FEE_AMOUNT = 1000
DEFAULT_DUST_AMOUNT = 546

# Fallback fee rate for the funding transaction (sat/vB)
DEFAULT_FEE_RATE = 2
