"""Minimal Bitcoin primitives: transactions, block headers, merkle roots and PoW."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional

_NULL_HASH = bytes(32)
_NULL_VOUT = 0xFFFFFFFF
_WITNESS_MAGIC = bytes.fromhex("6a24aa21a9ed")


def double_sha256(data: bytes) -> bytes:
    """SHA-256 applied twice."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash_to_hex(digest: bytes) -> str:
    """Render an internal-order hash in the usual byte-reversed hex form."""
    return digest[::-1].hex()


def hex_to_hash(text: str) -> bytes:
    """Parse a displayed (byte-reversed) hex hash into internal byte order."""
    if len(text) != 64:
        raise ValueError(f"invalid hash length: expected 64 hex characters, got {len(text)}")
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"invalid hex in hash: {text!r}") from exc
    if len(raw) != 32:
        raise ValueError(f"invalid hex in hash: {text!r}")
    return raw[::-1]


def merkle_root(hashes: Iterable[bytes]) -> Optional[bytes]:
    """Bitcoin merkle root of internal-order hashes, or None when there are none."""
    level = list(hashes)
    if not level:
        return None
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [double_sha256(left + right) for left, right in zip(level[::2], level[1::2])]
    return level[0]


def compact_to_target(bits: int) -> int:
    """Expand a compact (nBits) encoding into a 256-bit target."""
    exponent = bits >> 24
    if exponent <= 3:
        mantissa = (bits & 0xFFFFFF) >> (8 * (3 - exponent))
        shift = 0
    else:
        mantissa = bits & 0xFFFFFF
        shift = 8 * (exponent - 3)
    if mantissa > 0x7FFFFF:
        return 0
    return (mantissa << shift) & ((1 << 256) - 1)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def read(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise ValueError("unexpected end of data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def read_i32(self) -> int:
        return struct.unpack("<i", self.read(4))[0]

    def read_u64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def read_varint(self) -> int:
        prefix = self.read_u8()
        if prefix < 0xFD:
            return prefix
        if prefix == 0xFD:
            value, minimum = struct.unpack("<H", self.read(2))[0], 0xFD
        elif prefix == 0xFE:
            value, minimum = struct.unpack("<I", self.read(4))[0], 0x10000
        else:
            value, minimum = struct.unpack("<Q", self.read(8))[0], 0x100000000
        if value < minimum:
            raise ValueError("non-minimal varint")
        return value

    def read_var_bytes(self) -> bytes:
        return self.read(self.read_varint())


def _varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", value)
    return b"\xff" + struct.pack("<Q", value)


def _var_bytes(data: bytes) -> bytes:
    return _varint(len(data)) + data


@dataclass
class TxIn:
    """A transaction input."""

    prev_txid: bytes = _NULL_HASH
    prev_vout: int = _NULL_VOUT
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    """A transaction output."""

    value: int
    script_pubkey: bytes


@dataclass
class Transaction:
    """A Bitcoin transaction with optional segregated witness data."""

    version: int
    inputs: list[TxIn]
    outputs: list[TxOut]
    lock_time: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "Transaction":
        """Decode a consensus-serialized transaction."""
        reader = _Reader(bytes(data))
        version = reader.read_i32()
        inputs = _read_inputs(reader)
        if inputs:
            outputs = _read_outputs(reader)
        else:
            flag = reader.read_u8()
            if flag != 1:
                raise ValueError(f"unsupported segwit flag {flag}")
            inputs = _read_inputs(reader)
            outputs = _read_outputs(reader)
            for txin in inputs:
                txin.witness = [reader.read_var_bytes() for _ in range(reader.read_varint())]
            if all(not txin.witness for txin in inputs):
                raise ValueError("segwit flag set but no witnesses present")
        lock_time = reader.read_u32()
        return cls(version=version, inputs=inputs, outputs=outputs, lock_time=lock_time)

    @classmethod
    def from_hex(cls, text: str) -> "Transaction":
        """Decode a hex-encoded transaction."""
        return cls.from_bytes(bytes.fromhex(text))

    def serialize(self, include_witness: bool = True) -> bytes:
        """Consensus serialization, with witness data when present and requested."""
        segwit = include_witness and (
            not self.inputs or any(txin.witness for txin in self.inputs)
        )
        parts = [struct.pack("<i", self.version)]
        if segwit:
            parts.append(b"\x00\x01")
        parts.append(_varint(len(self.inputs)))
        for txin in self.inputs:
            parts.append(txin.prev_txid)
            parts.append(struct.pack("<I", txin.prev_vout))
            parts.append(_var_bytes(txin.script_sig))
            parts.append(struct.pack("<I", txin.sequence))
        parts.append(_varint(len(self.outputs)))
        for txout in self.outputs:
            parts.append(struct.pack("<Q", txout.value))
            parts.append(_var_bytes(txout.script_pubkey))
        if segwit:
            for txin in self.inputs:
                parts.append(_varint(len(txin.witness)))
                parts.extend(_var_bytes(item) for item in txin.witness)
        parts.append(struct.pack("<I", self.lock_time))
        return b"".join(parts)

    def txid(self) -> bytes:
        """Transaction id in internal byte order."""
        return double_sha256(self.serialize(include_witness=False))

    def wtxid(self) -> bytes:
        """Witness transaction id in internal byte order."""
        return double_sha256(self.serialize(include_witness=True))

    def is_coinbase(self) -> bool:
        """True for a single input spending the null outpoint."""
        return (
            len(self.inputs) == 1
            and self.inputs[0].prev_txid == _NULL_HASH
            and self.inputs[0].prev_vout == _NULL_VOUT
        )


def _read_inputs(reader: _Reader) -> list[TxIn]:
    inputs = []
    for _ in range(reader.read_varint()):
        prev_txid = reader.read(32)
        prev_vout = reader.read_u32()
        script_sig = reader.read_var_bytes()
        sequence = reader.read_u32()
        inputs.append(TxIn(prev_txid, prev_vout, script_sig, sequence))
    return inputs


def _read_outputs(reader: _Reader) -> list[TxOut]:
    outputs = []
    for _ in range(reader.read_varint()):
        value = reader.read_u64()
        outputs.append(TxOut(value, reader.read_var_bytes()))
    return outputs


@dataclass
class BlockHeader:
    """An 80-byte Bitcoin block header; hashes are in internal byte order."""

    version: int
    prev_blockhash: bytes
    merkle_root: bytes
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        """The 80-byte consensus serialization."""
        return struct.pack(
            "<i32s32sIII",
            self.version,
            self.prev_blockhash,
            self.merkle_root,
            self.time,
            self.bits,
            self.nonce,
        )

    def block_hash(self) -> bytes:
        """Block hash in internal byte order."""
        return double_sha256(self.serialize())

    def target(self) -> int:
        """Target encoded by the header's bits."""
        return compact_to_target(self.bits)

    def validate_pow(self, required_target: int) -> bytes:
        """Check the header meets ``required_target``; return the block hash.

        Raises ValueError when the target differs or is not attained.
        """
        if self.target() != required_target:
            raise ValueError("block target incorrect")
        digest = self.block_hash()
        if int.from_bytes(digest, "little") > required_target:
            raise ValueError("block target correct but not attained")
        return digest


@dataclass
class Block:
    """A block header with its transactions."""

    header: BlockHeader
    txdata: list[Transaction]

    def _computed_merkle_root(self) -> Optional[bytes]:
        return merkle_root(tx.txid() for tx in self.txdata)

    def check_merkle_root(self) -> bool:
        """True if the header's merkle root matches the transactions."""
        computed = self._computed_merkle_root()
        return computed is not None and computed == self.header.merkle_root

    def check_witness_commitment(self) -> bool:
        """True if the coinbase commits to the block's witness data."""
        if all(not txin.witness for tx in self.txdata for txin in tx.inputs):
            return True
        if not self.txdata:
            return False
        coinbase = self.txdata[0]
        if not coinbase.is_coinbase():
            return False
        commitment_outputs = [
            out
            for out in coinbase.outputs
            if len(out.script_pubkey) >= 38 and out.script_pubkey[:6] == _WITNESS_MAGIC
        ]
        if not commitment_outputs:
            return False
        commitment = commitment_outputs[-1].script_pubkey[6:38]
        witness = coinbase.inputs[0].witness
        if len(witness) != 1 or len(witness[0]) != 32:
            return False
        wtxids = [_NULL_HASH] + [tx.wtxid() for tx in self.txdata[1:]]
        witness_root = merkle_root(wtxids)
        if witness_root is None:
            return False
        return commitment == double_sha256(witness_root + witness[0])