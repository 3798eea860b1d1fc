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

"""Immutable pool configuration, passed explicitly to the builder, the
resolver and the node collaborator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from ctvpool.address import address_to_script_pub_key
from ctvpool.constants import (
    DEFAULT_AMOUNT_PER_USER,
    DEFAULT_DUST_AMOUNT,
    DEFAULT_FEE_AMOUNT,
    DEFAULT_POOL_USERS,
    NETWORK_DEFAULT_PORTS,
    NETWORKS,
    PAY_TO_ANCHOR_SCRIPT,
)
from ctvpool.errors import ConfigurationError
from ctvpool.script import Script

ENV_PREFIX = "CTVPOOL_"


@dataclass(frozen=True)
class RpcSettings:
    """Connection settings of the Bitcoin Core JSON-RPC interface."""

    user: Optional[str] = None
    password: Optional[str] = None
    host: str = "127.0.0.1"
    port: Optional[int] = None
    wallet: Optional[str] = None
    timeout: int = 30


@dataclass(frozen=True)
class PoolConfig:
    """Amounts are in satoshis.

    ``fee_amount`` is both the fee every pool transaction leaves to miners
    and the value of its fee anchor output. Without ``fee_anchor_address``
    the anchor is a pay-to-anchor output anyone can spend for CPFP.
    """

    network: str = "regtest"
    amount_per_user: int = DEFAULT_AMOUNT_PER_USER
    fee_amount: int = DEFAULT_FEE_AMOUNT
    dust_amount: int = DEFAULT_DUST_AMOUNT
    pool_users: int = DEFAULT_POOL_USERS
    fee_anchor_address: Optional[str] = None
    rpc: RpcSettings = field(default_factory=RpcSettings)

    def __post_init__(self) -> None:
        if self.network not in NETWORKS:
            raise ConfigurationError(
                f"Unknown network '{self.network}', expected one of {sorted(NETWORKS)}"
            )
        for name in ("amount_per_user", "fee_amount", "dust_amount", "pool_users"):
            if not isinstance(getattr(self, name), int):
                raise ConfigurationError(f"{name} must be an integer")
        if self.fee_amount < 0 or self.dust_amount < 0:
            raise ConfigurationError("fee_amount and dust_amount can not be negative")

    @property
    def rpc_port(self) -> int:
        return self.rpc.port or NETWORK_DEFAULT_PORTS[self.network]

    def anchor_script_pub_key(self) -> Script:
        if self.fee_anchor_address is None:
            return Script.from_raw(PAY_TO_ANCHOR_SCRIPT)
        try:
            return address_to_script_pub_key(self.fee_anchor_address, self.network)
        except ValueError as e:
            raise ConfigurationError(f"Invalid fee anchor address: {e}") from e

    def with_overrides(self, **changes) -> "PoolConfig":
        """Returns a copy with the given (non-None) fields replaced"""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PoolConfig":
        """Reads CTVPOOL_* environment variables, e.g. CTVPOOL_NETWORK,
        CTVPOOL_AMOUNT_PER_USER or CTVPOOL_RPC_USER. Unset variables keep
        their defaults."""
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        def get_int(name: str) -> Optional[int]:
            value = get(name)
            if value is None:
                return None
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(
                    f"{ENV_PREFIX}{name} must be an integer, got '{value}'"
                ) from e

        rpc = RpcSettings(
            user=get("RPC_USER"),
            password=get("RPC_PASSWORD"),
            host=get("RPC_HOST") or "127.0.0.1",
            port=get_int("RPC_PORT"),
            wallet=get("RPC_WALLET"),
            timeout=get_int("RPC_TIMEOUT") or 30,
        )

        return cls(rpc=rpc).with_overrides(
            network=get("NETWORK"),
            amount_per_user=get_int("AMOUNT_PER_USER"),
            fee_amount=get_int("FEE_AMOUNT"),
            dust_amount=get_int("DUST_AMOUNT"),
            pool_users=get_int("POOL_USERS"),
            fee_anchor_address=get("FEE_ANCHOR_ADDRESS"),
        )
