import asyncio
import logging
from typing import Literal, Optional

from pydantic import BaseModel

from smart_account.constants import EntryPointVersion
from smart_account.exceptions import (
    EstimationError,
    NetworkError,
    RpcError,
    SubmissionError,
)
from user_ops.user_op import GasEstimation, UserOp
from user_ops.web3 import RpcClient

logger = logging.getLogger(__name__)


class ReceiptPolling(BaseModel):
    """
    How to wait for a submitted UserOp. `fixed` polls once after `delay`
    seconds; `backoff` polls up to `attempts` times, multiplying the delay by
    `backoff` after each miss.
    """

    mode: Literal["fixed", "backoff"] = "backoff"
    delay: float = 8.0
    attempts: int = 5
    backoff: float = 2.0

    def delays(self) -> list[float]:
        if self.mode == "fixed":
            return [self.delay]
        return [self.delay * self.backoff**i for i in range(self.attempts)]


class BundlerClient(RpcClient):
    async def estimate_user_op_gas(
        self, user_op: UserOp, entry_point: str, version: EntryPointVersion
    ) -> GasEstimation:
        try:
            result = await self.request(
                "eth_estimateUserOperationGas",
                [user_op.to_rpc(version), entry_point],
            )
        except (RpcError, NetworkError) as e:
            raise EstimationError(f"Gas estimation failed: {e}") from e

        if not isinstance(result, dict):
            raise EstimationError("The bundler returned no gas estimation.")
        try:
            return GasEstimation.from_rpc(result)
        except ValueError as e:
            raise EstimationError(
                f"The bundler returned a malformed gas estimation: {result}"
            ) from e

    async def send_user_op(
        self, user_op: UserOp, entry_point: str, version: EntryPointVersion
    ) -> str:
        logger.info(f"Sending UserOp from {user_op.sender} to the bundler")
        try:
            user_op_hash = await self.request(
                "eth_sendUserOperation",
                [user_op.to_rpc(version), entry_point],
            )
        except RpcError as e:
            raise SubmissionError(
                f"The bundler rejected the UserOp: {e}"
            ) from e

        if not isinstance(user_op_hash, str):
            raise SubmissionError("The bundler returned no UserOp hash.")

        logger.info(f"UserOp accepted by the bundler: {user_op_hash}")
        return user_op_hash

    async def get_user_op_by_hash(self, user_op_hash: str) -> Optional[dict]:
        return await self.request("eth_getUserOperationByHash", [user_op_hash])

    async def get_user_op_receipt(self, user_op_hash: str) -> Optional[dict]:
        return await self.request(
            "eth_getUserOperationReceipt", [user_op_hash]
        )

    async def supported_entry_points(self) -> list[str]:
        return await self.request("eth_supportedEntryPoints", [])

    async def wait_for_user_op(
        self, user_op_hash: str, polling: ReceiptPolling
    ) -> Optional[str]:
        """Return the hash of the transaction that included the UserOp."""
        delays = polling.delays()
        for delay in delays:
            await asyncio.sleep(delay)
            user_op = await self.get_user_op_by_hash(user_op_hash)
            if user_op and user_op.get("transactionHash"):
                logger.info(
                    f"UserOp {user_op_hash} included in transaction "
                    f"{user_op['transactionHash']}"
                )
                return user_op["transactionHash"]

        logger.warning(
            f"UserOp {user_op_hash} is not included after {len(delays)} "
            f"poll(s)"
        )
        return None
