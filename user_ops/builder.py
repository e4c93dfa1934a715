import logging
from typing import Optional

import smart_account.constants as constants
from smart_account.config import NetworkConfig
from smart_account.exceptions import DerivationError
from user_ops.address import encode_create_account, get_sender_address
from user_ops.user_op import Call, UserOp
from user_ops.web3 import NodeClient

logger = logging.getLogger(__name__)


async def build_user_op(
    node: NodeClient,
    network: NetworkConfig,
    owner: str,
    call: Call,
    salt: int = 0,
    sponsored: bool = True,
    sender: Optional[str] = None,
) -> UserOp:
    """
    Build an unsigned UserOp that executes `call` from the smart account of
    `owner`. Gas limits are the defaults and fees are zero until the op goes
    through estimation; the signature is a placeholder.
    """
    user_op = await with_sender(node, network, owner, salt, sender)
    user_op = await with_deployment(node, user_op)
    user_op = with_call_data(user_op, call)
    user_op = await with_nonce(node, network, user_op)
    user_op = with_dummy_signature(user_op)
    return with_paymaster(network, user_op, sponsored)


async def with_sender(
    node: NodeClient,
    network: NetworkConfig,
    owner: str,
    salt: int = 0,
    sender: Optional[str] = None,
) -> UserOp:
    factory = network.account_factory
    factory_data = encode_create_account(owner, salt)

    if sender is None:
        sender = await get_sender_address(
            node, network.entry_point, factory, factory_data
        )

    return UserOp(
        sender=sender, nonce=0, factory=factory, factory_data=factory_data
    )


async def with_deployment(node: NodeClient, user_op: UserOp) -> UserOp:
    if await node.is_contract(user_op.sender):
        logger.info(f"Account {user_op.sender} is already deployed")
        return user_op.replace(factory=None, factory_data=b"")

    if not user_op.has_factory():
        raise DerivationError(
            f"Account {user_op.sender} is not deployed and no factory "
            f"is provided."
        )

    logger.info(f"Account {user_op.sender} will be deployed by the UserOp")
    return user_op


def with_call_data(user_op: UserOp, call: Call) -> UserOp:
    return user_op.replace(call_data=call.encode_execute())


async def with_nonce(
    node: NodeClient, network: NetworkConfig, user_op: UserOp
) -> UserOp:
    nonce = await node.get_nonce(network.entry_point, user_op.sender)
    logger.info(f"Nonce of {user_op.sender}: {nonce}")
    return user_op.replace(nonce=nonce)


def with_dummy_signature(user_op: UserOp) -> UserOp:
    return user_op.replace(signature=constants.DUMMY_SIGNATURE)


def with_paymaster(
    network: NetworkConfig, user_op: UserOp, sponsored: bool = True
) -> UserOp:
    if sponsored and network.paymaster is not None:
        return user_op.replace(
            paymaster=network.paymaster, paymaster_data=network.paymaster_data
        )

    return user_op.replace(
        paymaster=None,
        paymaster_verification_gas_limit=0,
        paymaster_post_op_gas_limit=0,
        paymaster_data=b"",
    )
