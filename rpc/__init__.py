"""RPC module for interacting with a Solana JSON-RPC node"""
import requests
from decimal import Decimal
from typing import Any, Optional


class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)


class NodeConnectionError(RPCError):
    """Raised when connection to node fails"""
    pass


class SolanaRPCError(RPCError):
    """Solana-specific JSON-RPC error codes and messages

    Common error codes:
    -32002 - Transaction simulation failed
    -32004 - Block not available for slot
    -32005 - Node is unhealthy
    -32007 - Slot was skipped
    -32009 - Slot missing in long-term storage
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    """
    # Map of known Solana error codes to human-readable messages
    ERROR_MESSAGES = {
        -32002: "Transaction simulation failed",
        -32004: "Block not available for slot",
        -32005: "Node is unhealthy",
        -32007: "Slot was skipped",
        -32009: "Slot missing in long-term storage",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)


class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        return caller


class SolanaRPC:
    """Solana JSON-RPC client"""

    def __init__(self, url: str, timeout: float = 10.0):
        """Initialize RPC client.

        Args:
            url: Node endpoint, e.g. https://api.devnet.solana.com
            timeout: Per-request timeout in seconds
        """
        self.url = url
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            The `result` member of the response

        Raises:
            NodeConnectionError: Connection to node failed
            SolanaRPCError: Node returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            # Try to parse response even if status code is error
            result = response.json()

            if 'error' in result and result['error'] is not None:
                error = result['error']
                raise SolanaRPCError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -32603),
                    method
                )

            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to Solana node at {self.url}"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}"
            ) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}"
            ) from e

    # Transaction methods
    getTransaction = RPCMethod('getTransaction')

    # Account methods
    getTokenAccountsByOwner = RPCMethod('getTokenAccountsByOwner')

    # Cluster methods
    getHealth = RPCMethod('getHealth')
    getSlot = RPCMethod('getSlot')
    getVersion = RPCMethod('getVersion')

    def get_confirmed_transaction(self, signature: str) -> Optional[dict]:
        """Fetch a transaction at `confirmed` commitment, or None if unknown."""
        return self.getTransaction(
            signature,
            {"commitment": "confirmed", "encoding": "json", "maxSupportedTransactionVersion": 0}
        )

    def get_token_balance(self, owner: str, mint: str) -> Decimal:
        """Sum the UI amount of all token accounts `owner` holds for `mint`."""
        result = self.getTokenAccountsByOwner(
            owner,
            {"mint": mint},
            {"encoding": "jsonParsed", "commitment": "confirmed"}
        )
        total = Decimal("0")
        for account in result.get('value', []):
            amount = (
                account.get('account', {}).get('data', {}).get('parsed', {})
                .get('info', {}).get('tokenAmount', {}).get('uiAmountString')
            )
            if amount is not None:
                total += Decimal(amount)
        return total


__all__ = [
    'SolanaRPC', 'RPCMethod', 'RPCError', 'NodeConnectionError', 'SolanaRPCError'
]
