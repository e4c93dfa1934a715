import inspect
import logging
from typing import Awaitable, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_defunct

from smart_account.constants import EntryPointVersion
from user_ops.user_op import UserOp

logger = logging.getLogger(__name__)


class Wallet(Protocol):
    """
    Anything holding the account owner's key. `sign_message` is an EIP-191
    personal signature over raw bytes; it may be a coroutine for remote
    signers.
    """

    address: str

    def sign_message(
        self, message: bytes
    ) -> Union[bytes, Awaitable[bytes]]: ...


class LocalWallet:
    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return bytes(signed.signature)


async def sign_user_op(
    user_op: UserOp,
    wallet: Wallet,
    entry_point: str,
    chain_id: int,
    version: EntryPointVersion,
) -> UserOp:
    user_op_hash = user_op.hash(entry_point, chain_id, version)

    signature = wallet.sign_message(user_op_hash)
    if inspect.isawaitable(signature):
        signature = await signature

    logger.info(f"Signed UserOp 0x{user_op_hash.hex()} with {wallet.address}")
    return user_op.replace(signature=signature)
