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

import re

from base58check import b58decode  # type: ignore

import ctvpool.bech32
from ctvpool.constants import (
    NETWORK_P2PKH_PREFIXES,
    NETWORK_P2SH_PREFIXES,
    NETWORK_SEGWIT_PREFIXES,
)
from ctvpool.script import Script
from ctvpool.utils import b_to_h, h_to_b, hash256


class P2trAddress:
    """Encapsulates a P2TR (Taproot) address.

    Attributes
    ----------
    witness_program : str
        the x-only output key as a hex string
    network : str
        the network the address is encoded for

    Methods
    -------
    to_string()
        returns the address's string encoding (Bech32m)
    to_script_pub_key()
        returns the scriptPubKey of a P2TR witness script
    """

    def __init__(self, witness_program: str, network: str) -> None:
        if len(h_to_b(witness_program)) != 32:
            raise ValueError("A taproot witness program is 32 bytes.")
        if network not in NETWORK_SEGWIT_PREFIXES:
            raise ValueError(f"Unknown network '{network}'.")

        self.witness_program = witness_program
        self.network = network

    def to_string(self) -> str:
        """Returns as address string"""
        witness_int_array = memoryview(h_to_b(self.witness_program)).tolist()

        return ctvpool.bech32.encode(  # type: ignore
            NETWORK_SEGWIT_PREFIXES[self.network], 1, witness_int_array
        )

    def to_script_pub_key(self) -> Script:
        """Returns the scriptPubKey of a P2TR witness script"""
        return Script(["OP_1", self.witness_program])

    def __str__(self) -> str:
        return self.to_string()


def address_to_script_pub_key(address: str, network: str) -> Script:
    """Decodes an address string of the given network into its scriptPubKey

    Segwit addresses (any witness version) are Bech32/Bech32m decoded, legacy
    P2PKH and P2SH addresses Base58Check decoded.

    Raises
    ------
    ValueError
        If the address is malformed or belongs to another network.
    """

    if network not in NETWORK_SEGWIT_PREFIXES:
        raise ValueError(f"Unknown network '{network}'.")

    hrp = NETWORK_SEGWIT_PREFIXES[network]
    if address.lower().startswith(hrp + "1"):
        witness_version, witness_int_array = ctvpool.bech32.decode(hrp, address.lower())
        if witness_version is None:
            raise ValueError(f"Invalid segwit address '{address}'.")
        assert witness_int_array is not None
        return Script(["OP_" + str(witness_version), b_to_h(bytes(witness_int_array))])

    return Script(_base58_address_to_script(address, network))


def _base58_address_to_script(address: str, network: str) -> list:
    digits_58_pattern = r"[^123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz]"

    # check for invalid characters and length (26-35 characters)
    if re.search(digits_58_pattern, address) or not 26 <= len(address) <= 35:
        raise ValueError(f"Invalid address '{address}'.")

    data_checksum = b58decode(address.encode("utf-8"))
    data = data_checksum[:-4]
    checksum = data_checksum[-4:]
    if hash256(data)[0:4] != checksum or len(data) != 21:
        raise ValueError(f"Invalid checksum for address '{address}'.")

    network_prefix = data[:1]
    hash160 = b_to_h(data[1:])
    if network_prefix == NETWORK_P2PKH_PREFIXES[network]:
        return ["OP_DUP", "OP_HASH160", hash160, "OP_EQUALVERIFY", "OP_CHECKSIG"]
    if network_prefix == NETWORK_P2SH_PREFIXES[network]:
        return ["OP_HASH160", hash160, "OP_EQUAL"]

    raise ValueError(f"Address '{address}' does not belong to {network}.")
