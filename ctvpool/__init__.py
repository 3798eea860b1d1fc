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

__version__ = "0.1.0"

from ctvpool.config import PoolConfig, RpcSettings

from ctvpool.errors import (
    PoolError,
    ConfigurationError,
    ConstructionError,
    CommitmentMismatchError,
    ResolutionError,
    ExternalError,
)

from ctvpool.ctv import TemplateCommitment, build_leaf, commit

from ctvpool.taproot import TaprootSpendInfo, compile_leaves

from ctvpool.pool import Participant, PoolNode, PoolTree, build_pool_tree

from ctvpool.resolver import SettlementState, SpendPathResolver

from ctvpool import proxy

__all__ = [
    'PoolConfig',
    'RpcSettings',
    'PoolError',
    'ConfigurationError',
    'ConstructionError',
    'CommitmentMismatchError',
    'ResolutionError',
    'ExternalError',
    'TemplateCommitment',
    'build_leaf',
    'commit',
    'TaprootSpendInfo',
    'compile_leaves',
    'Participant',
    'PoolNode',
    'PoolTree',
    'build_pool_tree',
    'SettlementState',
    'SpendPathResolver',
    'proxy',
]
