from enum import Enum


class EntryPointVersion(str, Enum):
    V06 = "0.6"
    V07 = "0.7"


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Accounts may keep several nonce sequences; only key 0 is used.
NONCE_KEY = 0

# Well-formed 65-byte signature that recovers to no owner. Account validation
# code can run against it during estimation.
DUMMY_SIGNATURE = bytes.fromhex(
    "fffffffffffffffffffffffffffffff0000000000000000000000000000000007aaaaa"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)

DEFAULT_GAS_LIMITS = {
    "call": 0x100000,
    "verification": 0x100000,
    "pre_verification": 0x100000,
}

BASE_PRE_VERIFICATION_GAS = 21_000
CALLDATA_BYTE_GAS = 16
FALLBACK_VERIFICATION_GAS = 100_000
FALLBACK_CALL_GAS_LIMIT = 100_000
FALLBACK_PAYMASTER_VERIFICATION_GAS = 100_000
FALLBACK_PAYMASTER_POST_OP_GAS = 100_000

