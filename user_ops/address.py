import logging
from typing import Optional, Union

import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import get_abi_input_types
from hexbytes import HexBytes
from web3 import Web3

import smart_account.constants as constants
from smart_account.exceptions import DerivationError
from user_ops.contracts import (
    SENDER_ADDRESS_RESULT_ABI,
    SENDER_ADDRESS_RESULT_SELECTOR,
    AccountFactory,
    EntryPoint,
    encode_abi,
)
from user_ops.user_op import pack_init_code

logger = logging.getLogger(__name__)


def encode_create_account(owner: str, salt: int = 0) -> bytes:
    return encode_abi(
        AccountFactory,
        "createAccount",
        [Web3.to_checksum_address(owner), salt],
    )


def derive_create2_address(
    deployer: str, salt: Union[int, bytes], init_code: bytes
) -> str:
    """Address of a contract deployed by `deployer` with CREATE2."""
    if isinstance(salt, int):
        salt = salt.to_bytes(32, "big")
    if len(salt) != 32:
        raise ValueError("'salt' must be 32 bytes long.")

    digest = Web3.keccak(
        b"\xff"
        + Web3.to_bytes(hexstr=deployer)
        + salt
        + bytes(Web3.keccak(init_code))
    )
    return Web3.to_checksum_address("0x" + bytes(digest[12:]).hex())


async def get_sender_address(
    node, entry_point: str, factory: Optional[str], factory_data: bytes
) -> str:
    """
    Ask the EntryPoint for the counterfactual address of the account that
    `factory` deploys with `factory_data`.

    `getSenderAddress` always reverts: the address is returned in a
    `SenderAddressResult(address)` error, so a revert is the expected outcome
    here and a successful call is a failure.
    """
    if factory in (None, constants.ZERO_ADDRESS):
        raise DerivationError(
            "Can't derive the sender address without an account factory."
        )

    call_data = EntryPoint(node.w3, entry_point).encode_abi(
        "getSenderAddress", args=[pack_init_code(factory, factory_data)]
    )
    response = await node.make_request(
        "eth_call",
        [
            {
                "from": constants.ZERO_ADDRESS,
                "to": entry_point,
                "data": call_data,
            },
            "latest",
        ],
    )
    error = response.get("error")
    if not error:
        raise DerivationError(
            "'getSenderAddress' didn't revert with the sender address."
        )
    if not isinstance(error, dict):
        raise DerivationError(f"'getSenderAddress' failed: {error}")

    sender = decode_sender_address_result(error.get("data"))
    logger.info(f"Sender address resolved to {sender}")
    return sender


def decode_sender_address_result(data) -> str:
    # Some nodes nest the revert data one level deeper.
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str):
        raise DerivationError("'getSenderAddress' reverted without data.")

    try:
        payload = bytes(HexBytes(data))
    except ValueError as e:
        raise DerivationError(f"Malformed revert data: {data}") from e

    if len(payload) != 36 or payload[:4] != SENDER_ADDRESS_RESULT_SELECTOR:
        raise DerivationError(
            f"'getSenderAddress' reverted with an unexpected error: {data}"
        )

    try:
        (sender,) = eth_abi.decode(
            get_abi_input_types(SENDER_ADDRESS_RESULT_ABI), payload[4:]
        )
    except DecodingError as e:
        raise DerivationError(f"Malformed revert data: {data}") from e

    sender = Web3.to_checksum_address(sender)
    if sender == constants.ZERO_ADDRESS:
        raise DerivationError("The factory did not return an account address.")
    return sender
