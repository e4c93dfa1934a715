import logging
import re
from typing import Annotated

from pydantic import BaseModel, BeforeValidator
from web3 import Web3

import smart_account.constants as constants

logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    success: bool
    gas_used: int = 0
    message: str

    @classmethod
    def failure(cls, message: str) -> "ValidationResult":
        return cls(success=False, gas_used=0, message=message)


def is_address(s) -> bool:
    return bool(re.match(r"^(0x)[0-9a-f]{40}$", s, flags=re.IGNORECASE))


def validate_hex(v):
    if not (isinstance(v, str) and re.fullmatch(r"0x[0-9a-fA-F]*", v)):
        raise ValueError("Not a hex value.")

    return v


def validate_address(v):
    v = validate_hex(v)
    if v == "0x":
        return constants.ZERO_ADDRESS
    if not is_address(v):
        raise ValueError("Must be an Ethereum address.")

    return Web3.to_checksum_address(v)


def validate_uint256(v):
    if isinstance(v, str):
        validate_hex(v)
        v = int(v, 16) if v != "0x" else 0
    if not isinstance(v, int) or not 0 <= v < 2**256:
        raise ValueError("Must be in range [0, 2**256).")

    return v


def validate_bytes(v):
    if isinstance(v, bytes):
        return bytes(v)
    if v == "0x":
        return b""

    validate_hex(v)
    if not (len(v) % 2 == 0):
        raise ValueError("Incorrect bytes string.")
    return bytes.fromhex(v[2:])


Address = Annotated[str, BeforeValidator(validate_address)]
Uint256 = Annotated[int, BeforeValidator(validate_uint256)]
Bytes = Annotated[bytes, BeforeValidator(validate_bytes)]


async def validate_user_op(node, user_op, entry_point) -> ValidationResult:
    """
    Pre-flight checks mirroring what the bundler and the EntryPoint verify.

    The result is advisory: a passing UserOp can still be rejected on
    submission. Faults raised by the checks themselves, network errors
    included, are reported as a failed result.
    """
    try:
        result = await _run_checks(node, user_op, entry_point)
    except Exception as e:
        result = ValidationResult.failure(str(e) or e.__class__.__name__)

    if not result.success:
        logger.warning(
            f"UserOp from {user_op.sender} is invalid: {result.message}"
        )
    return result


async def _run_checks(node, user_op, entry_point) -> ValidationResult:
    if not (await node.is_contract(user_op.sender) or user_op.has_factory()):
        return ValidationResult.failure(
            "Sender doesn't exist and no factory provided."
        )

    nonce = await node.get_nonce(entry_point, user_op.sender)
    if user_op.nonce != nonce:
        return ValidationResult.failure(
            f"Invalid nonce. Expected: {nonce}, got: {user_op.nonce}."
        )

    if user_op.has_paymaster() and not await node.is_contract(
        user_op.paymaster
    ):
        return ValidationResult.failure("Paymaster doesn't exist.")

    gas_used = user_op.pre_verification_gas
    gas_used += await node.estimate_gas(
        from_=entry_point, to=user_op.sender, data=user_op.call_data
    )

    # Only presence is checked; the account verifies the signature itself.
    if not user_op.signature:
        return ValidationResult.failure("Signature is empty.")

    required_prefund = user_op.get_required_prefund()
    balance = await node.get_balance(user_op.sender)
    if balance < required_prefund:
        return ValidationResult.failure(
            f"Insufficient balance. Required: {required_prefund}, "
            f"got: {balance}."
        )

    return ValidationResult(
        success=True, gas_used=gas_used, message="UserOp is valid."
    )
