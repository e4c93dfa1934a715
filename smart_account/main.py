import logging
from typing import Optional

from pydantic import BaseModel

import user_ops.address
import user_ops.builder
import user_ops.estimation
import user_ops.signer
from smart_account.config import NetworkConfig, Settings, settings
from smart_account.exceptions import ConfigurationError, NetworkError, RpcError
from user_ops.client import BundlerClient, ReceiptPolling
from user_ops.signer import Wallet
from user_ops.user_op import Call, UserOp
from user_ops.validation import ValidationResult, validate_user_op
from user_ops.web3 import NodeClient

logger = logging.getLogger(__name__)


class SendResult(BaseModel):
    user_op_hash: str
    transaction_hash: Optional[str]
    user_op: UserOp


class SmartAccountService:
    """
    Runs a call through the smart account of `wallet` on one network:
    address derivation, building, gas estimation, optional validation,
    signing and submission to the bundler.
    """

    def __init__(
        self,
        network: NetworkConfig,
        wallet: Wallet,
        node: NodeClient,
        bundler: Optional[BundlerClient] = None,
        polling: Optional[ReceiptPolling] = None,
    ):
        self.network = network
        self.wallet = wallet
        self.node = node
        self.bundler = bundler
        self.polling = polling or ReceiptPolling()

    @classmethod
    def from_settings(
        cls,
        chain_id: int,
        wallet: Wallet,
        settings: Settings = settings,
    ) -> "SmartAccountService":
        network = settings.get_network_config(chain_id)
        rpc_options = {
            "timeout": settings.rpc_timeout,
            "max_retries": settings.rpc_max_retries,
            "retry_backoff": settings.rpc_retry_backoff,
        }

        bundler = None
        if network.bundler_url is not None:
            bundler = BundlerClient.from_url(
                network.bundler_url, **rpc_options
            )

        return cls(
            network,
            wallet,
            NodeClient.from_url(network.rpc_url, **rpc_options),
            bundler,
            ReceiptPolling(
                mode=settings.receipt_poll_mode,
                delay=settings.receipt_poll_delay,
                attempts=settings.receipt_poll_attempts,
                backoff=settings.receipt_poll_backoff,
            ),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self):
        await self.node.aclose()
        if self.bundler is not None:
            await self.bundler.aclose()

    async def verify_chain_id(self):
        chain_id = await self.node.chain_id()
        if chain_id != self.network.chain_id:
            raise ConfigurationError(
                f"Node is connected to chain {chain_id}, expected "
                f"{self.network.chain_id}."
            )

    async def get_address(self, salt: int = 0) -> str:
        return await user_ops.address.get_sender_address(
            self.node,
            self.network.entry_point,
            self.network.account_factory,
            user_ops.address.encode_create_account(self.wallet.address, salt),
        )

    async def build(
        self, call: Call, salt: int = 0, sponsored: bool = True
    ) -> UserOp:
        return await user_ops.builder.build_user_op(
            self.node,
            self.network,
            self.wallet.address,
            call,
            salt=salt,
            sponsored=sponsored,
        )

    async def estimate(self, user_op: UserOp) -> UserOp:
        return await user_ops.estimation.estimate_user_op_gas(
            self.node, self.bundler, user_op, self.network
        )

    async def validate(self, user_op: UserOp) -> ValidationResult:
        return await validate_user_op(
            self.node, user_op, self.network.entry_point
        )

    async def sign(self, user_op: UserOp) -> UserOp:
        return await user_ops.signer.sign_user_op(
            user_op,
            self.wallet,
            self.network.entry_point,
            self.network.chain_id,
            self.network.entry_point_version,
        )

    async def submit(self, user_op: UserOp) -> str:
        if self.bundler is None:
            raise ConfigurationError(
                f"No bundler configured for chain ID {self.network.chain_id}."
            )

        return await self.bundler.send_user_op(
            user_op, self.network.entry_point, self.network.entry_point_version
        )

    async def wait(self, user_op_hash: str) -> Optional[str]:
        if self.bundler is None:
            raise ConfigurationError(
                f"No bundler configured for chain ID {self.network.chain_id}."
            )

        return await self.bundler.wait_for_user_op(user_op_hash, self.polling)

    async def send(
        self,
        call: Call,
        salt: int = 0,
        sponsored: bool = True,
        validate: bool = False,
    ) -> SendResult:
        user_op = await self.build(call, salt=salt, sponsored=sponsored)
        user_op = await self.estimate(user_op)

        if validate:
            result = await self.validate(user_op)
            if not result.success:
                logger.warning(
                    f"Submitting UserOp despite failed validation: "
                    f"{result.message}"
                )

        user_op = await self.sign(user_op)
        user_op_hash = await self.submit(user_op)

        # The UserOp is already submitted, so polling failures must not hide
        # its hash.
        try:
            transaction_hash = await self.wait(user_op_hash)
        except (RpcError, NetworkError) as e:
            logger.warning(f"Failed to wait for UserOp {user_op_hash}: {e}")
            transaction_hash = None

        return SendResult(
            user_op_hash=user_op_hash,
            transaction_hash=transaction_hash,
            user_op=user_op,
        )
