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

"""
ctvpool CLI - build a CTV pool tree and walk it on a Bitcoin node

    ctvpool plan ADDRESS ADDRESS ADDRESS ...   offline: print the tree
    ctvpool run                                 fund and settle a pool (regtest)
"""

import argparse
import json
import logging
import sys
from typing import Optional

from ctvpool.config import PoolConfig
from ctvpool.errors import ExternalError, PoolError
from ctvpool.node import NodeCollaborator
from ctvpool.pool import PoolTree, build_pool_tree, participants_from_addresses
from ctvpool.proxy import NodeProxy
from ctvpool.resolver import SettlementState, SpendPathResolver
from ctvpool.utils import to_btc

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_EXTERNAL = 2

# placeholder outpoint for offline plans
UNFUNDED_TXID = "00" * 32


def _load_config(args) -> PoolConfig:
    return PoolConfig.from_env().with_overrides(
        network=args.network,
        amount_per_user=args.amount_per_user,
        fee_amount=args.fee_amount,
        dust_amount=args.dust_amount,
        fee_anchor_address=args.fee_anchor_address,
        pool_users=getattr(args, "users", None),
    )


def _parse_order(order: Optional[str], tree: PoolTree) -> list[int]:
    if not order:
        # everybody but the last participant, who is paid by the exit pool
        return list(range(tree.size - 1))
    return [int(i) for i in order.split(",")]


def _tree_summary(tree: PoolTree) -> dict:
    return {
        "network": tree.config.network,
        "users": tree.size,
        "amount_per_user": tree.config.amount_per_user,
        "fee_amount": tree.config.fee_amount,
        "root_address": tree.root.address,
        "root_value": tree.root.value,
        "nodes": tree.node_count,
        "leaves": tree.leaf_count,
        "layers": [
            {
                "depth": depth,
                "nodes": [
                    {
                        "exited": list(node.exited),
                        "address": node.address,
                        "value": node.value,
                    }
                    for node in layer.values()
                ],
            }
            for depth, layer in enumerate(tree.layers)
        ],
    }


def plan_pool(args) -> int:
    """Build the tree for the given withdrawal addresses and print it,
    with the settlement transactions of one exit order"""
    config = _load_config(args)
    participants = participants_from_addresses(args.addresses, config.network)
    tree = build_pool_tree(participants, config)

    summary = _tree_summary(tree)
    if args.order is not None or args.funding_txid:
        state = SettlementState.funded(
            args.funding_txid or UNFUNDED_TXID, args.funding_vout, tree.root.value
        )
        transactions = SpendPathResolver(tree, state).plan(_parse_order(args.order, tree))
        summary["transactions"] = [
            {"txid": tx.get_txid(), "hex": tx.to_hex()} for tx in transactions
        ]

    print(json.dumps(summary, indent=2))
    return EXIT_OK


def run_pool(args) -> int:
    """Create participants, fund the root and settle exits one by one"""
    config = _load_config(args)
    proxy = NodeProxy.from_settings(config.rpc, config.rpc_port)
    node = NodeCollaborator(proxy, config)
    regtest = config.network == "regtest"
    node.check_network()

    mining_address = proxy.get_new_address() if regtest else None
    total = config.amount_per_user * config.pool_users
    if regtest:
        node.ensure_balance(total, mining_address)

    addresses = node.new_addresses(config.pool_users)
    participants = participants_from_addresses(addresses, config.network)
    tree = build_pool_tree(participants, config)
    root = tree.root
    logger.info("Pool root address: %s (%s BTC)", root.address, to_btc(root.value))

    funding_txid = node.fund(root.address, root.value)
    # before mining: without -txindex getrawtransaction only sees the mempool
    vout = node.find_output_index(funding_txid, root.script_pub_key)
    if regtest:
        node.mine(1, mining_address)
    logger.info("Pool funded by %s:%d", funding_txid, vout)

    resolver = SpendPathResolver(tree, SettlementState.funded(funding_txid, vout, root.value))
    for exiter in _parse_order(args.order, tree):
        current_txid = resolver.state.txid
        txid = resolver.settle(exiter, node.broadcast)
        logger.info(
            "Participant %d exited to %s: %s -> %s",
            exiter,
            tree.participants[exiter].address,
            current_txid,
            txid,
        )
        if regtest:
            node.mine(1, mining_address)

    logger.info("Settlement finished: %s", resolver.state)
    return EXIT_OK


def _add_pool_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--network', choices=['mainnet', 'testnet', 'testnet4', 'signet', 'regtest'],
                        help='Bitcoin network to use (default: CTVPOOL_NETWORK or regtest)')
    parser.add_argument('--amount-per-user', type=int, help='Share of every participant in satoshis')
    parser.add_argument('--fee-amount', type=int, help='Fee (and fee anchor value) per transaction in satoshis')
    parser.add_argument('--dust-amount', type=int, help='Dust limit in satoshis')
    parser.add_argument('--fee-anchor-address', help='Address of the fee anchor output (default: pay-to-anchor)')
    parser.add_argument('--order', help='Comma separated exit order, e.g. 2,0,1')


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI"""
    parser = argparse.ArgumentParser(description='ctvpool - CTV covenant pools')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    plan_parser = subparsers.add_parser('plan', help='Build a pool tree offline')
    plan_parser.add_argument('addresses', nargs='+', help='Withdrawal addresses, one per participant')
    plan_parser.add_argument('--funding-txid', help='Outpoint txid funding the pool root')
    plan_parser.add_argument('--funding-vout', type=int, default=0, help='Outpoint index funding the pool root')
    _add_pool_options(plan_parser)

    run_parser = subparsers.add_parser('run', help='Fund and settle a pool on a node')
    run_parser.add_argument('--users', type=int, help='Number of participants')
    _add_pool_options(run_parser)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == 'plan':
            return plan_pool(args)
        elif args.command == 'run':
            return run_pool(args)
        else:
            parser.print_help()
            return EXIT_FATAL
    except ExternalError as e:
        logger.error("%s", e)
        return EXIT_EXTERNAL
    except PoolError as e:
        logger.error("%s", e)
        return EXIT_FATAL
    except ValueError as e:
        logger.error("Invalid argument: %s", e)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
