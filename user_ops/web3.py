import asyncio
import functools
import logging
from typing import Any, Optional

from aiohttp import ClientError, ClientTimeout
from httpx import AsyncClient, TransportError
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, Web3Exception, Web3RPCError
from web3.providers.rpc.utils import ExceptionRetryConfiguration

import smart_account.constants as constants
from smart_account.exceptions import NetworkError, RpcError
from user_ops.contracts import EntryPoint

logger = logging.getLogger(__name__)


class RpcClient:
    """JSON-RPC 2.0 over HTTP for methods web3 has no bindings for."""

    def __init__(
        self,
        client: AsyncClient,
        url: str,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
    ):
        self.client = client
        self.url = url
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._request_id = 0

    @classmethod
    def from_url(cls, url: str, timeout: float = 30.0, **kwargs):
        return cls(AsyncClient(timeout=timeout), url, **kwargs)

    async def make_request(self, method: str, params: list) -> dict:
        """Send a request and return the raw JSON-RPC response."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        attempt = 0
        while True:
            try:
                response = await self.client.post(self.url, json=payload)
                break
            except TransportError as e:
                if attempt >= self.max_retries:
                    raise NetworkError(
                        f"'{method}' request failed: {e}"
                    ) from e

                delay = self.retry_backoff * 2**attempt
                logger.warning(
                    f"'{method}' request failed: {e}. Retrying in {delay}s."
                )
                await asyncio.sleep(delay)
                attempt += 1

        try:
            data = response.json()
        except ValueError:
            data = None

        # Some bundlers answer JSON-RPC errors with a non-200 status.
        if not isinstance(data, dict) or not (
            "result" in data or "error" in data
        ):
            raise NetworkError(
                f"'{method}' request failed with HTTP status "
                f"{response.status_code}."
            )
        return data

    async def request(self, method: str, params: list) -> Any:
        response = await self.make_request(method, params)
        error = response.get("error")
        if not error:
            return response.get("result")

        if not isinstance(error, dict):
            raise RpcError(method, None, str(error))
        raise RpcError(
            method,
            error.get("code"),
            error.get("message", "Unknown error"),
            error.get("data"),
        )

    async def aclose(self):
        await self.client.aclose()


def translate_errors(method: str):
    """Reraise web3 and aiohttp failures of `method` as our own errors."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ContractLogicError as e:
                raise RpcError(
                    method, 3, e.message or "execution reverted", e.data
                ) from e
            except Web3RPCError as e:
                error = (e.rpc_response or {}).get("error")
                if not isinstance(error, dict):
                    raise RpcError(method, None, e.message) from e
                raise RpcError(
                    method,
                    error.get("code"),
                    error.get("message", e.message),
                    error.get("data"),
                ) from e
            except Web3Exception as e:
                raise RpcError(method, None, str(e)) from e
            except (ClientError, asyncio.TimeoutError) as e:
                raise NetworkError(f"'{method}' request failed: {e}") from e

        return wrapper

    return decorator


class NodeClient:
    """Read-only access to chain state through web3's async API."""

    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    @classmethod
    def from_url(
        cls,
        url: str,
        timeout: float = 30.0,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
    ) -> "NodeClient":
        provider = AsyncHTTPProvider(
            url,
            request_kwargs={"timeout": ClientTimeout(total=timeout)},
            exception_retry_configuration=ExceptionRetryConfiguration(
                errors=(ClientError, asyncio.TimeoutError),
                retries=max_retries + 1,
                backoff_factor=retry_backoff,
            ),
        )
        return cls(AsyncWeb3(provider))

    async def make_request(self, method: str, params: list) -> dict:
        """
        Raw JSON-RPC response, bypassing web3's error handling. Used where a
        revert is the expected answer.
        """
        try:
            return await self.w3.provider.make_request(method, params)
        except (ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"'{method}' request failed: {e}") from e

    @translate_errors("eth_chainId")
    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    @translate_errors("eth_getCode")
    async def get_code(self, address: str) -> bytes:
        return bytes(await self.w3.eth.get_code(address))

    async def is_contract(self, address: str) -> bool:
        if address == constants.ZERO_ADDRESS:
            return False

        bytecode = await self.get_code(address)
        return bool(len(bytecode))

    @translate_errors("eth_getBalance")
    async def get_balance(self, address: str) -> int:
        return await self.w3.eth.get_balance(address)

    @translate_errors("eth_call")
    async def call(
        self, to: str, data: bytes, from_: Optional[str] = None
    ) -> bytes:
        return bytes(await self.w3.eth.call(_transaction(from_, to, data)))

    @translate_errors("eth_estimateGas")
    async def estimate_gas(
        self, from_: Optional[str], to: str, data: bytes
    ) -> int:
        return await self.w3.eth.estimate_gas(_transaction(from_, to, data))

    @translate_errors("eth_getBlockByNumber")
    async def get_base_fee(self) -> Optional[int]:
        latest_block = await self.w3.eth.get_block("latest")
        return latest_block.get("baseFeePerGas")

    @translate_errors("eth_maxPriorityFeePerGas")
    async def get_max_priority_fee(self) -> int:
        return await self.w3.eth.max_priority_fee

    @translate_errors("eth_gasPrice")
    async def get_gas_price(self) -> int:
        return await self.w3.eth.gas_price

    @translate_errors("eth_call")
    async def get_nonce(
        self, entry_point: str, sender: str, key: int = constants.NONCE_KEY
    ) -> int:
        return (
            await EntryPoint(self.w3, entry_point)
            .functions.getNonce(sender, key)
            .call()
        )

    async def aclose(self):
        await self.w3.provider.disconnect()


def get_address_from_first_20_bytes(data: bytes) -> str:
    return Web3.to_checksum_address("0x" + bytes(data[:20]).hex())


def _transaction(from_: Optional[str], to: str, data: bytes) -> dict:
    transaction = {"to": to, "data": "0x" + bytes(data).hex()}
    if from_ is not None:
        transaction["from"] = from_
    return transaction
