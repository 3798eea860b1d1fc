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
from typing import Optional, Any, Dict, List, Union, cast

from bitcoinrpc.authproxy import AuthServiceProxy  # type: ignore

from ctvpool.config import RpcSettings
from ctvpool.errors import ExternalError


JSONDict = Dict[str, Any]


class RPCError(ExternalError):
    """Exception raised for errors when interfacing with the Bitcoin node.

    Attributes:
        message -- explanation of the error
        code -- error code returned by the node
    """

    def __init__(self, message: str, code: Optional[int] = None):
        self.message = message
        self.code = code
        super().__init__(f"RPC Error ({code}): {message}" if code else message)


class NodeProxy:
    """Bitcoin node proxy for the JSON-RPC calls the pool needs.

    Attributes
    ----------
    proxy : object
        an instance of bitcoinrpc.authproxy.AuthServiceProxy

    Methods
    -------
    call(method, *params)
        Calls any RPC method with provided parameters
    get_new_address(label="", address_type=None)
        Generates a new address
    ... (other methods)
    """

    def __init__(
        self,
        rpcuser: str,
        rpcpassword: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        wallet: Optional[str] = None,
        timeout: int = 30,
        use_https: bool = False,
    ) -> None:
        """Connects to a Bitcoin node using provided credentials.

        Parameters
        ----------
        rpcuser : str
            RPC username as defined in bitcoin.conf
        rpcpassword : str
            RPC password as defined in bitcoin.conf
        host : str, optional
            Host where the Bitcoin node resides; defaults to 127.0.0.1
        port : int, optional
            Port to connect to; defaults to the regtest port
        wallet : str, optional
            Wallet to address wallet calls to (``/wallet/<name>`` endpoint)
        timeout : int, optional
            Timeout for RPC calls in seconds; defaults to 30
        use_https : bool, optional
            Whether to use HTTPS for the connection; defaults to False

        Raises
        ------
        ValueError
            If rpcuser and/or rpcpassword are not specified
        """
        if not rpcuser or not rpcpassword:
            raise ValueError("rpcuser or rpcpassword is missing")

        if not host:
            host = "127.0.0.1"
        if not port:
            port = 18443

        protocol = "https" if use_https else "http"
        service_url = f"{protocol}://{rpcuser}:{rpcpassword}@{host}:{port}"
        if wallet:
            service_url += f"/wallet/{wallet}"

        self.proxy = AuthServiceProxy(service_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: RpcSettings, port: int) -> "NodeProxy":
        """Creates a proxy from the pool configuration's RPC settings"""
        return cls(
            settings.user or "",
            settings.password or "",
            host=settings.host,
            port=settings.port or port,
            wallet=settings.wallet,
            timeout=settings.timeout,
        )

    def __call__(self, method: str, *params: Any) -> Any:
        """Directly call any Bitcoin Core RPC method."""
        return self.call(method, *params)

    def call(self, method: str, *params: Any) -> Any:
        """Call any Bitcoin Core RPC method.

        Parameters
        ----------
        method : str
            The RPC method name
        *params : Any
            Parameters to pass to the RPC method

        Returns
        -------
        Any
            The result of the RPC call

        Raises
        ------
        RPCError
            If the RPC call fails
        """
        try:
            rpc_method = getattr(self.proxy, method)
            return rpc_method(*params)
        except Exception as e:
            # Extract error code if available
            error_code = None
            error = getattr(e, "error", None)
            if isinstance(error, dict) and "code" in error:
                error_code = error["code"]

            raise RPCError(str(e), error_code) from e

    # Blockchain methods
    def get_blockchain_info(self) -> JSONDict:
        """Get information about the blockchain (chain, blocks, ...)."""
        result = self.call("getblockchaininfo")
        return cast(JSONDict, result)

    # Wallet methods
    def get_balance(self, dummy: str = "*", minconf: int = 0, include_watchonly: bool = False) -> float:
        """Get the total available balance of the wallet in BTC."""
        result = self.call("getbalance", dummy, minconf, include_watchonly)
        return cast(float, result)

    def get_new_address(self, label: str = "", address_type: Optional[str] = None) -> str:
        """Generate a new address of the wallet.

        Parameters
        ----------
        label : str, optional
            The label for the address
        address_type : str, optional
            The address type (legacy, p2sh-segwit, bech32, bech32m)
        """
        if address_type:
            result = self.call("getnewaddress", label, address_type)
        else:
            result = self.call("getnewaddress", label)
        return cast(str, result)

    def get_raw_change_address(self, address_type: Optional[str] = None) -> str:
        """Generate a new change address of the wallet."""
        if address_type:
            result = self.call("getrawchangeaddress", address_type)
        else:
            result = self.call("getrawchangeaddress")
        return cast(str, result)

    def list_unspent(
        self,
        minconf: int = 1,
        maxconf: int = 9999999,
        addresses: Optional[List[str]] = None,
    ) -> List[JSONDict]:
        """Get the unspent transaction outputs of the wallet.

        Parameters
        ----------
        minconf : int, optional
            The minimum confirmations to filter
        maxconf : int, optional
            The maximum confirmations to filter
        addresses : list, optional
            Only outputs paying these addresses
        """
        if addresses:
            result = self.call("listunspent", minconf, maxconf, addresses)
        else:
            result = self.call("listunspent", minconf, maxconf)
        return cast(List[JSONDict], result)

    def get_transaction(self, txid: str, include_watchonly: bool = False, verbose: bool = False) -> JSONDict:
        """Get detailed information about a wallet transaction.

        With verbose the decoded transaction is included as 'decoded'.
        """
        if verbose:
            result = self.call("gettransaction", txid, include_watchonly, True)
        else:
            result = self.call("gettransaction", txid, include_watchonly)
        return cast(JSONDict, result)

    # Raw transaction methods
    def sign_raw_transaction_with_wallet(self, hex_string: str) -> JSONDict:
        """Sign the inputs of a raw transaction with the wallet's keys.

        Returns
        -------
        dict
            The signed transaction ('hex') and whether it is 'complete'
        """
        result = self.call("signrawtransactionwithwallet", hex_string)
        return cast(JSONDict, result)

    def send_raw_transaction(self, hex_string: str, max_fee_rate: Optional[float] = None) -> str:
        """Submit a raw transaction to the node and the network.

        Returns
        -------
        str
            The transaction id
        """
        if max_fee_rate is not None:
            result = self.call("sendrawtransaction", hex_string, max_fee_rate)
        else:
            result = self.call("sendrawtransaction", hex_string)
        return cast(str, result)

    def get_raw_transaction(self, txid: str, verbose: bool = False) -> Union[str, JSONDict]:
        """Get a raw transaction, as hex or decoded when verbose."""
        result = self.call("getrawtransaction", txid, verbose)
        return cast(Union[str, JSONDict], result)

    def estimate_smart_fee(self, conf_target: int, estimate_mode: str = "CONSERVATIVE") -> JSONDict:
        """Estimate the fee rate (BTC/kvB) for confirmation within conf_target blocks."""
        result = self.call("estimatesmartfee", conf_target, estimate_mode)
        return cast(JSONDict, result)

    # Mining methods (regtest)
    def generate_to_address(self, nblocks: int, address: str) -> List[str]:
        """Mine blocks to an address; returns the block hashes."""
        result = self.call("generatetoaddress", nblocks, address)
        return cast(List[str], result)
