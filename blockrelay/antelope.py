# -----------------------------------------------------------------------------
# Project: BlockRelay v0.1
# File:    antelope.py
# (c)      2025-2026 Wolfgang Lohmann
# License: MIT
# -----------------------------------------------------------------------------

# antelope.py
'''
Binary encoding for the destination chain (Antelope protocol).

Only what is needed to push actions: account names, varuint32, action data
serialized from the contract ABI, the transaction body and the digest that
the wallet daemon signs.
'''

import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

from bsv.hash import sha256

from blockrelay.core_defs import parse_chain_time

NAME_ALPHABET = ".12345abcdefghijklmnopqrstuvwxyz"

_FIXED_FORMATS = {
    "bool": "<B",
    "int8": "<b",
    "uint8": "<B",
    "int16": "<h",
    "uint16": "<H",
    "int32": "<i",
    "uint32": "<I",
    "int64": "<q",
    "uint64": "<Q",
    "float32": "<f",
    "float64": "<d",
}

_CHECKSUM_SIZES = {"checksum160": 20, "checksum256": 32, "checksum512": 64}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# block_timestamp_type counts half seconds since 2000-01-01
_BLOCK_TIMESTAMP_EPOCH_MS = 946684800000
_BLOCK_INTERVAL_MS = 500


def encode_name(name: str) -> int:
    """
    Encodes an account/action name into its 64-bit value.
    Up to 12 characters from [.1-5a-z], a 13th from [.1-5a-j].
    """
    if len(name) > 13:
        raise ValueError(f"Name '{name}' is longer than 13 characters.")

    value = 0
    for i in range(13):
        symbol = 0
        if i < len(name):
            symbol = NAME_ALPHABET.find(name[i])
            if symbol < 0:
                raise ValueError(f"Invalid character '{name[i]}' in name '{name}'.")
        if i < 12:
            value |= (symbol & 0x1F) << (64 - 5 * (i + 1))
        else:
            if symbol > 0x0F:
                raise ValueError(f"Invalid 13th character in name '{name}'.")
            value |= symbol
    return value


def encode_varuint32(value: int) -> bytes:
    if value < 0 or value > 0xFFFFFFFF:
        raise ValueError(f"varuint32 out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value)


def _to_microseconds(value: Any) -> int:
    """Microseconds since the unix epoch from a chain time string, datetime or int."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = parse_chain_time(value)
    if not isinstance(value, datetime):
        raise ValueError(f"Invalid time value: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(microseconds=1)


def encode_symbol_code(code: str) -> int:
    """Up to 7 upper case letters, first letter in the lowest byte."""
    if not code or len(code) > 7 or not all("A" <= c <= "Z" for c in code):
        raise ValueError(f"Invalid symbol code '{code}'.")
    return int.from_bytes(code.encode("ascii").ljust(8, b"\0"), "little")


def encode_symbol(symbol: str) -> int:
    """Encodes a symbol written as "precision,CODE", e.g. "8,BTC"."""
    precision, _, code = symbol.partition(",")
    if not precision.isdigit() or int(precision) > 255:
        raise ValueError(f"Invalid symbol '{symbol}'.")
    return int(precision) | (encode_symbol_code(code) << 8)


def encode_asset(asset: str) -> bytes:
    """Encodes an asset string like "1.00000000 BTC" as int64 amount plus symbol."""
    amount, _, code = asset.strip().partition(" ")
    sign = -1 if amount.startswith("-") else 1
    digits = amount.lstrip("-")
    whole, _, fraction = digits.partition(".")
    if not whole.isdigit() or (fraction and not fraction.isdigit()):
        raise ValueError(f"Invalid asset '{asset}'.")
    units = sign * int(whole + fraction)
    return struct.pack("<q", units) + struct.pack("<Q", encode_symbol(f"{len(fraction)},{code}"))


class AbiSerializer:
    """
    Serializes action data according to a contract ABI (as returned by
    /v1/chain/get_abi).
    """

    def __init__(self, abi: Dict[str, Any]):
        self.aliases = {t["new_type_name"]: t["type"] for t in abi.get("types", [])}
        self.structs = {s["name"]: s for s in abi.get("structs", [])}
        self.actions = {a["name"]: a["type"] for a in abi.get("actions", [])}
        self.variants = {v["name"]: v["types"] for v in abi.get("variants", [])}

    def serialize_action_data(self, action: str, data: Dict[str, Any]) -> bytes:
        if action not in self.actions:
            raise ValueError(f"Action '{action}' is not defined in the ABI.")
        buf = bytearray()
        self._write(buf, self.actions[action], data)
        return bytes(buf)

    def _resolve(self, type_name: str) -> str:
        seen = set()
        while type_name in self.aliases:
            if type_name in seen:
                raise ValueError(f"Circular type alias '{type_name}'.")
            seen.add(type_name)
            type_name = self.aliases[type_name]
        return type_name

    def _write(self, buf: bytearray, type_name: str, value: Any):
        type_name = self._resolve(type_name)

        if type_name.endswith("$"):
            # binary extension, trailing fields may be left out
            if value is not None:
                self._write(buf, type_name[:-1], value)
        elif type_name.endswith("[]"):
            buf += encode_varuint32(len(value))
            for item in value:
                self._write(buf, type_name[:-2], item)
        elif type_name.endswith("?"):
            if value is None:
                buf.append(0)
            else:
                buf.append(1)
                self._write(buf, type_name[:-1], value)
        elif type_name in self.structs:
            self._write_struct(buf, self.structs[type_name], value)
        elif type_name in self.variants:
            self._write_variant(buf, type_name, value)
        else:
            self._write_builtin(buf, type_name, value)

    def _write_struct(self, buf: bytearray, struct_def: Dict[str, Any], value: Dict[str, Any]):
        if struct_def.get("base"):
            self._write(buf, struct_def["base"], value)
        for fld in struct_def.get("fields", []):
            if fld["name"] not in value and not fld["type"].endswith(("?", "$")):
                raise ValueError(f"Missing field '{fld['name']}' for struct '{struct_def['name']}'.")
            self._write(buf, fld["type"], value.get(fld["name"]))

    def _write_variant(self, buf: bytearray, type_name: str, value: Any):
        """A variant value is given as [alternative type, value]."""
        alternatives = self.variants[type_name]
        alternative, inner = value
        if alternative not in alternatives:
            raise ValueError(f"Type '{alternative}' is not an alternative of variant '{type_name}'.")
        buf += encode_varuint32(alternatives.index(alternative))
        self._write(buf, alternative, inner)

    def _write_builtin(self, buf: bytearray, type_name: str, value: Any):
        if type_name in ("float32", "float64"):
            buf += struct.pack(_FIXED_FORMATS[type_name], float(value))
        elif type_name in _FIXED_FORMATS:
            buf += struct.pack(_FIXED_FORMATS[type_name], int(value))
        elif type_name == "varuint32":
            buf += encode_varuint32(int(value))
        elif type_name == "varint32":
            number = int(value)
            buf += encode_varuint32(((number << 1) ^ (number >> 31)) & 0xFFFFFFFF)
        elif type_name in ("int128", "uint128"):
            buf += int(value).to_bytes(16, "little", signed=type_name == "int128")
        elif type_name == "time_point":
            buf += struct.pack("<q", _to_microseconds(value))
        elif type_name == "time_point_sec":
            buf += struct.pack("<I", _to_microseconds(value) // 1_000_000)
        elif type_name == "block_timestamp_type":
            millis = _to_microseconds(value) // 1000
            buf += struct.pack("<I", (millis - _BLOCK_TIMESTAMP_EPOCH_MS) // _BLOCK_INTERVAL_MS)
        elif type_name == "symbol_code":
            buf += struct.pack("<Q", encode_symbol_code(value))
        elif type_name == "symbol":
            buf += struct.pack("<Q", encode_symbol(value))
        elif type_name == "asset":
            buf += encode_asset(value)
        elif type_name == "extended_asset":
            buf += encode_asset(value["quantity"]) + struct.pack("<Q", encode_name(value["contract"]))
        elif type_name == "name":
            buf += struct.pack("<Q", encode_name(value))
        elif type_name == "string":
            raw = value.encode("utf-8")
            buf += encode_varuint32(len(raw)) + raw
        elif type_name == "bytes":
            raw = _to_bytes(value)
            buf += encode_varuint32(len(raw)) + raw
        elif type_name in _CHECKSUM_SIZES:
            raw = _to_bytes(value)
            if len(raw) != _CHECKSUM_SIZES[type_name]:
                raise ValueError(f"{type_name} expects {_CHECKSUM_SIZES[type_name]} bytes, got {len(raw)}.")
            buf += raw
        else:
            raise ValueError(f"Unsupported ABI type '{type_name}'.")


@dataclass
class PackedAction:
    account: str
    name: str
    authorization: List[Tuple[str, str]] = field(default_factory=list)
    data: bytes = b""

    def serialize(self) -> bytes:
        out = struct.pack("<QQ", encode_name(self.account), encode_name(self.name))
        out += encode_varuint32(len(self.authorization))
        for actor, permission in self.authorization:
            out += struct.pack("<QQ", encode_name(actor), encode_name(permission))
        out += encode_varuint32(len(self.data)) + self.data
        return out


def ref_block_from_id(block_id: str) -> Tuple[int, int]:
    """Returns (ref_block_num, ref_block_prefix) for a block id."""
    raw = bytes.fromhex(block_id)
    block_num = int.from_bytes(raw[0:4], "big")
    return block_num & 0xFFFF, int.from_bytes(raw[8:12], "little")


def expiration_from_head(head_block_time: str, seconds: int) -> int:
    """Head block time plus `seconds`, as unix time."""
    head = parse_chain_time(head_block_time)
    if head is None:
        raise ValueError("head_block_time missing")
    return int((head + timedelta(seconds=seconds)).timestamp())


def pack_transaction(expiration: int, ref_block_num: int, ref_block_prefix: int, actions: List[PackedAction]) -> bytes:
    """Serializes a transaction without context free actions or extensions."""
    out = struct.pack("<IHI", expiration, ref_block_num, ref_block_prefix)
    out += encode_varuint32(0)  # max_net_usage_words
    out += struct.pack("<B", 0)  # max_cpu_usage_ms
    out += encode_varuint32(0)  # delay_sec
    out += encode_varuint32(0)  # context_free_actions
    out += encode_varuint32(len(actions))
    for action in actions:
        out += action.serialize()
    out += encode_varuint32(0)  # transaction_extensions
    return out


def signing_digest(chain_id: str, packed_trx: bytes) -> bytes:
    """sha256(chain_id || packed_trx || sha256 of empty context free data)."""
    return sha256(bytes.fromhex(chain_id) + packed_trx + bytes(32))
