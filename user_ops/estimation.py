import logging
from typing import Optional

from pydantic import BaseModel

import smart_account.constants as constants
from smart_account.config import NetworkConfig
from smart_account.exceptions import NetworkError, RpcError
from user_ops.client import BundlerClient
from user_ops.contracts import EntryPoint, encode_abi
from user_ops.user_op import GasEstimation, UserOp
from user_ops.web3 import NodeClient

logger = logging.getLogger(__name__)


class FeeData(BaseModel):
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


def get_pre_verification_gas(call_data: bytes) -> int:
    return (
        constants.BASE_PRE_VERIFICATION_GAS
        + constants.CALLDATA_BYTE_GAS * len(call_data)
    )


async def estimate_verification_gas(
    node: NodeClient, user_op: UserOp, network: NetworkConfig
) -> int:
    version = network.entry_point_version
    data = encode_abi(
        EntryPoint(node.w3, network.entry_point, version),
        "simulateValidation",
        [user_op.abi_values(version)],
    )
    try:
        return await node.estimate_gas(
            from_=constants.ZERO_ADDRESS, to=network.entry_point, data=data
        )
    except (RpcError, NetworkError) as e:
        logger.warning(
            f"Verification gas simulation failed: {e}. Using "
            f"{constants.FALLBACK_VERIFICATION_GAS}."
        )
        return constants.FALLBACK_VERIFICATION_GAS


async def estimate_call_gas_limit(
    node: NodeClient, user_op: UserOp, network: NetworkConfig
) -> int:
    try:
        return await node.estimate_gas(
            from_=network.entry_point,
            to=user_op.sender,
            data=user_op.call_data,
        )
    except (RpcError, NetworkError) as e:
        logger.warning(
            f"Call gas estimation failed: {e}. Using "
            f"{constants.FALLBACK_CALL_GAS_LIMIT}."
        )
        return constants.FALLBACK_CALL_GAS_LIMIT


async def estimate_locally(
    node: NodeClient, user_op: UserOp, network: NetworkConfig
) -> GasEstimation:
    estimation = GasEstimation(
        pre_verification_gas=get_pre_verification_gas(user_op.call_data),
        verification_gas_limit=await estimate_verification_gas(
            node, user_op, network
        ),
        call_gas_limit=await estimate_call_gas_limit(node, user_op, network),
    )
    if user_op.has_paymaster():
        # Paymaster gas can't be simulated apart from the account's.
        estimation = estimation.model_copy(
            update={
                "paymaster_verification_gas_limit": (
                    constants.FALLBACK_PAYMASTER_VERIFICATION_GAS
                ),
                "paymaster_post_op_gas_limit": (
                    constants.FALLBACK_PAYMASTER_POST_OP_GAS
                ),
            }
        )
    return estimation


async def estimate_remotely(
    bundler: BundlerClient, user_op: UserOp, network: NetworkConfig
) -> GasEstimation:
    return await bundler.estimate_user_op_gas(
        user_op, network.entry_point, network.entry_point_version
    )


async def get_fee_data(node: NodeClient) -> FeeData:
    base_fee = await node.get_base_fee()
    if base_fee is None:
        # Pre-London chains have no fee market.
        gas_price = await node.get_gas_price()
        return FeeData(
            max_fee_per_gas=gas_price, max_priority_fee_per_gas=gas_price
        )

    max_priority_fee = await node.get_max_priority_fee()
    return FeeData(
        max_fee_per_gas=2 * base_fee + max_priority_fee,
        max_priority_fee_per_gas=max_priority_fee,
    )


def fill_gas(
    user_op: UserOp, estimation: GasEstimation, fee_data: FeeData
) -> UserOp:
    changes = {
        "pre_verification_gas": estimation.pre_verification_gas,
        "verification_gas_limit": estimation.verification_gas_limit,
        "call_gas_limit": estimation.call_gas_limit,
        "max_fee_per_gas": fee_data.max_fee_per_gas,
        "max_priority_fee_per_gas": fee_data.max_priority_fee_per_gas,
    }
    if user_op.has_paymaster():
        if estimation.paymaster_verification_gas_limit is not None:
            changes["paymaster_verification_gas_limit"] = (
                estimation.paymaster_verification_gas_limit
            )
        if estimation.paymaster_post_op_gas_limit is not None:
            changes["paymaster_post_op_gas_limit"] = (
                estimation.paymaster_post_op_gas_limit
            )

    return user_op.replace(**changes)


async def estimate_user_op_gas(
    node: NodeClient,
    bundler: Optional[BundlerClient],
    user_op: UserOp,
    network: NetworkConfig,
) -> UserOp:
    """
    Fill gas limits and fees. The bundler's estimation is used verbatim when
    a bundler is available and its failures propagate; without one the
    limits come from local simulation with constant fallbacks.
    """
    if bundler is not None:
        estimation = await estimate_remotely(bundler, user_op, network)
    else:
        estimation = await estimate_locally(node, user_op, network)
    logger.info(
        f"Gas estimation for {user_op.sender}: "
        f"{estimation.model_dump(exclude_none=True)}"
    )

    fee_data = await get_fee_data(node)
    return fill_gas(user_op, estimation, fee_data)
