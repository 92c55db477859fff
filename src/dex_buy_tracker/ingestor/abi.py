"""Swap event ABIs and raw log decoding.

Also decodes the launchpad `CurveBuy` event.

Logs arrive in two encodings: JSON-RPC subscription payloads (hex strings)
and web3 `eth_getLogs` results (HexBytes / ints). Both are normalized here
into `ReserveSwap` / `DeltaSwap` values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from eth_abi import decode
from web3 import Web3

from dex_buy_tracker.ingestor.models import DeltaSwap, LaunchpadBuy, PoolVersion, ReserveSwap, SwapEvent

SWAP_V2_SIGNATURE = "Swap(address,uint256,uint256,uint256,uint256,address)"
SWAP_V3_SIGNATURE = "Swap(address,address,int256,int256,uint160,uint128,int24)"
SWAP_V4_SIGNATURE = "Swap(address,address,int256,int256,uint160,uint128,int24,uint256)"

SWAP_TOPICS: dict[PoolVersion, str] = {
    PoolVersion.V2: Web3.to_hex(Web3.keccak(text=SWAP_V2_SIGNATURE)),
    PoolVersion.V3: Web3.to_hex(Web3.keccak(text=SWAP_V3_SIGNATURE)),
    PoolVersion.V4: Web3.to_hex(Web3.keccak(text=SWAP_V4_SIGNATURE)),
}

_V2_DATA_TYPES = ["uint256", "uint256", "uint256", "uint256"]
_V3_DATA_TYPES = ["int256", "int256", "uint160", "uint128", "int24"]
_V4_DATA_TYPES = ["address", "address", "int256", "int256", "uint160", "uint128", "int24", "uint256"]

# CurveBuy(address indexed to, address indexed token, uint256 actualAmountIn, uint256 effectiveAmountOut)
CURVE_BUY_SIGNATURE = "CurveBuy(address,address,uint256,uint256)"
CURVE_BUY_TOPIC = Web3.to_hex(Web3.keccak(text=CURVE_BUY_SIGNATURE))
_CURVE_BUY_DATA_TYPES = ["uint256", "uint256"]


def _selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


TOKEN0_SELECTOR = _selector("token0()")
TOKEN1_SELECTOR = _selector("token1()")
DECIMALS_SELECTOR = _selector("decimals()")
BALANCE_OF_SELECTOR = _selector("balanceOf(address)")


class LogDecodeError(ValueError):
    """Raised when a raw log does not match the expected swap shape."""


def to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        raw = value[2:] if value.startswith(("0x", "0X")) else value
        return bytes.fromhex(raw)
    raise LogDecodeError(f"Cannot convert {type(value).__name__} to bytes")


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise LogDecodeError("Boolean is not a valid quantity")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise LogDecodeError(f"Cannot convert {type(value).__name__} to int")


def to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower()
    return "0x" + to_bytes(value).hex()


def topic_to_address(topic: Any) -> str:
    """Extract the address stored in the low 20 bytes of a 32-byte topic."""
    raw = to_bytes(topic)
    if len(raw) != 32:
        raise LogDecodeError(f"Topic must be 32 bytes, got {len(raw)}")
    return "0x" + raw[-20:].hex()


def decode_swap_log(log: Mapping[str, Any], version: PoolVersion) -> SwapEvent:
    """Decode a raw Swap log of the given shape.

    Raises:
        LogDecodeError: If the log is malformed for that shape.
    """
    try:
        topics = list(log.get("topics") or [])
        data = to_bytes(log.get("data") or b"")
        pool_address = str(log["address"]).lower()
        tx_hash = to_hex(log.get("transactionHash") or "0x")
        block_number = to_int(log.get("blockNumber") or 0)
        log_index = to_int(log.get("logIndex") or 0)

        if version is PoolVersion.V2:
            if len(topics) < 3:
                raise LogDecodeError("V2 Swap log needs sender and to topics")
            a0_in, a1_in, a0_out, a1_out = decode(_V2_DATA_TYPES, data)
            return ReserveSwap(
                pool_address=pool_address,
                amount0_in=a0_in,
                amount1_in=a1_in,
                amount0_out=a0_out,
                amount1_out=a1_out,
                recipient=topic_to_address(topics[2]),
                tx_hash=tx_hash,
                block_number=block_number,
                log_index=log_index,
            )

        if version is PoolVersion.V3:
            if len(topics) < 3:
                raise LogDecodeError("V3 Swap log needs sender and recipient topics")
            amount0, amount1, *_ = decode(_V3_DATA_TYPES, data)
            recipient = topic_to_address(topics[2])
        else:
            _sender, recipient, amount0, amount1, *_ = decode(_V4_DATA_TYPES, data)
            recipient = str(recipient).lower()

        return DeltaSwap(
            pool_address=pool_address,
            amount0=amount0,
            amount1=amount1,
            recipient=recipient,
            tx_hash=tx_hash,
            block_number=block_number,
            version=version,
            log_index=log_index,
        )
    except LogDecodeError:
        raise
    except Exception as e:
        raise LogDecodeError(f"Failed to decode {version.value} Swap log: {e}") from e


def decode_curve_buy_log(log: Mapping[str, Any]) -> LaunchpadBuy:
    """Decode a raw launchpad CurveBuy log.

    Raises:
        LogDecodeError: If the log is malformed.
    """
    try:
        topics = list(log.get("topics") or [])
        if len(topics) < 3:
            raise LogDecodeError("CurveBuy log needs recipient and token topics")
        if to_hex(topics[0]) != CURVE_BUY_TOPIC:
            raise LogDecodeError("Not a CurveBuy log")
        amount_in, amount_out = decode(_CURVE_BUY_DATA_TYPES, to_bytes(log.get("data") or b""))
        return LaunchpadBuy(
            router_address=str(log["address"]).lower(),
            recipient=topic_to_address(topics[1]),
            token=topic_to_address(topics[2]),
            amount_in=amount_in,
            amount_out=amount_out,
            tx_hash=to_hex(log.get("transactionHash") or "0x"),
            block_number=to_int(log.get("blockNumber") or 0),
            log_index=to_int(log.get("logIndex") or 0),
        )
    except LogDecodeError:
        raise
    except Exception as e:
        raise LogDecodeError(f"Failed to decode CurveBuy log: {e}") from e


def encode_address_arg(address: str) -> str:
    """ABI-encode a single address argument (no 0x prefix)."""
    return address.lower().removeprefix("0x").rjust(64, "0")


def decode_address_result(result: Any) -> str:
    raw = to_bytes(result)
    if len(raw) < 32:
        raise LogDecodeError("Address return value must be at least 32 bytes")
    return "0x" + raw[12:32].hex()


def decode_uint_result(result: Any) -> int:
    raw = to_bytes(result)
    if len(raw) < 32:
        raise LogDecodeError("Integer return value must be at least 32 bytes")
    return int.from_bytes(raw[:32], "big")
