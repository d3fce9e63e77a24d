"""Share blocks: headers, block hashes, builders and the storage form."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import cbor2

from p2poolv2 import builders
from p2poolv2.bitcoin import Transaction, double_sha256, hash_to_hex, hex_to_hash
from p2poolv2.genesis import GenesisData
from p2poolv2.miner_message import MinerShare

_HASH_SIZE = 32


@dataclass(frozen=True, eq=False)
class ShareBlockHash:
    """Hash of a share block, stored in internal byte order."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)):
            raise TypeError(f"share block hash must be bytes, got {type(self.raw).__name__}")
        if len(self.raw) != _HASH_SIZE:
            raise ValueError(f"share block hash must be {_HASH_SIZE} bytes, got {len(self.raw)}")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_hex(cls, text: str) -> "ShareBlockHash":
        """Parse the displayed (byte-reversed) hex form."""
        return cls(hex_to_hash(text))

    def __str__(self) -> str:
        return hash_to_hex(self.raw)

    def __repr__(self) -> str:
        return f"ShareBlockHash({str(self)!r})"

    def __bytes__(self) -> bytes:
        return self.raw

    def __hash__(self) -> int:
        return hash(self.raw)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ShareBlockHash):
            return self.raw == other.raw
        if isinstance(other, str):
            try:
                return self.raw == hex_to_hash(other)
            except ValueError:
                return False
        return NotImplemented


def _normalise_pubkey(pubkey: Any) -> str:
    if isinstance(pubkey, (bytes, bytearray)):
        raw = bytes(pubkey)
    elif isinstance(pubkey, str):
        try:
            raw = bytes.fromhex(pubkey)
        except ValueError:
            raise ValueError(f"invalid public key hex: {pubkey!r}") from None
    else:
        raise TypeError(f"public key must be hex text or bytes, got {type(pubkey).__name__}")
    compressed = len(raw) == 33 and raw[0] in (2, 3)
    uncompressed = len(raw) == 65 and raw[0] == 4
    if not (compressed or uncompressed):
        raise ValueError("invalid public key encoding")
    return raw.hex()


@dataclass(eq=False)
class ShareHeader:
    """Header of a share block.

    ``miner_pubkey`` is hex text and ``merkle_root`` is in internal byte order.
    Two headers are equal when their miner shares carry the same block hash.
    """

    miner_share: MinerShare
    prev_share_blockhash: Optional[ShareBlockHash]
    uncles: list[ShareBlockHash]
    miner_pubkey: str
    merkle_root: bytes

    def __post_init__(self) -> None:
        self.miner_pubkey = _normalise_pubkey(self.miner_pubkey)
        if len(self.merkle_root) != _HASH_SIZE:
            raise ValueError(f"merkle root must be {_HASH_SIZE} bytes")
        self.merkle_root = bytes(self.merkle_root)
        self.uncles = list(self.uncles)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShareHeader):
            return NotImplemented
        return self.miner_share.hash == other.miner_share.hash

    @classmethod
    def genesis(
        cls, genesis_data: GenesisData, public_key: str, merkle_root: bytes
    ) -> "ShareHeader":
        """Header of a network's genesis share block."""
        return cls(
            miner_share=MinerShare.genesis(genesis_data),
            prev_share_blockhash=None,
            uncles=[],
            miner_pubkey=public_key,
            merkle_root=merkle_root,
        )


def _header_to_dict(header: ShareHeader) -> dict:
    prev = header.prev_share_blockhash
    return {
        "miner_share": header.miner_share.to_dict(),
        "prev_share_blockhash": None if prev is None else bytes(prev),
        "uncles": [bytes(uncle) for uncle in header.uncles],
        "miner_pubkey": bytes.fromhex(header.miner_pubkey),
        "merkle_root": header.merkle_root,
    }


def _header_from_dict(data: Any) -> ShareHeader:
    if not isinstance(data, dict):
        raise ValueError("share header must be a map")
    prev = data["prev_share_blockhash"]
    uncles = data["uncles"]
    if not isinstance(uncles, list):
        raise ValueError("uncles must be a list")
    return ShareHeader(
        miner_share=MinerShare.from_dict(data["miner_share"]),
        prev_share_blockhash=None if prev is None else ShareBlockHash(prev),
        uncles=[ShareBlockHash(uncle) for uncle in uncles],
        miner_pubkey=data["miner_pubkey"],
        merkle_root=data["merkle_root"],
    )


@dataclass
class ShareBlock:
    """A block on the share chain; ``cached_blockhash`` is not serialized."""

    header: ShareHeader
    transactions: list[Transaction] = field(default_factory=list)
    cached_blockhash: Optional[ShareBlockHash] = None

    def _serialize(self) -> bytes:
        return cbor2.dumps(
            {
                "header": _header_to_dict(self.header),
                "transactions": [tx.serialize() for tx in self.transactions],
            },
            canonical=True,
        )

    def compute_blockhash(self) -> ShareBlockHash:
        """Hash the serialized block, store it in ``cached_blockhash`` and return it."""
        self.cached_blockhash = ShareBlockHash(double_sha256(self._serialize()))
        return self.cached_blockhash


class ShareBlockBuilder:
    """Builds a ShareBlock from a required header and optional transactions."""

    def __init__(self, header: ShareHeader) -> None:
        self._header = header
        self._transactions: list[Transaction] = []

    def with_transactions(self, transactions: Iterable[Transaction]) -> "ShareBlockBuilder":
        """Use ``transactions`` for the block."""
        self._transactions = list(transactions)
        return self

    def build(self) -> ShareBlock:
        """The block, with its hash computed."""
        block = ShareBlock(header=self._header, transactions=list(self._transactions))
        block.compute_blockhash()
        return block


@dataclass
class StorageShareBlock:
    """A share block as stored: the header without transactions."""

    header: ShareHeader

    @classmethod
    def from_share_block(cls, block: ShareBlock) -> "StorageShareBlock":
        """Drop the transactions of ``block``."""
        return cls(header=block.header)

    def into_share_block(self) -> ShareBlock:
        """A share block with no transactions."""
        return ShareBlockBuilder(self.header).build()

    def into_share_block_with_transactions(
        self, transactions: Iterable[Transaction]
    ) -> ShareBlock:
        """A share block carrying ``transactions``."""
        return ShareBlockBuilder(self.header).with_transactions(transactions).build()

    def cbor_serialize(self) -> bytes:
        """Encode as CBOR."""
        return cbor2.dumps({"header": _header_to_dict(self.header)})

    @classmethod
    def cbor_deserialize(cls, data: bytes) -> "StorageShareBlock":
        """Decode from CBOR; raises ValueError on malformed input."""
        try:
            decoded = cbor2.loads(data)
            if not isinstance(decoded, dict):
                raise ValueError("storage share block must be a map")
            return cls(header=_header_from_dict(decoded["header"]))
        except (cbor2.CBORDecodeError, KeyError, TypeError, IndexError) as exc:
            raise ValueError(f"invalid storage share block: {exc}") from exc


def build_share_header(workbase, share: MinerShare, userworkbase, miner_pubkey: str) -> ShareHeader:
    """Build a header for ``share``; the chain fills in the previous hash and uncles."""
    coinbase = builders.build_coinbase_from_share(userworkbase, share)
    txids = [coinbase.txid(), *builders.decode_txids(workbase.txns)]
    root = builders.compute_merkle_root_from_txids(txids)
    if root is None:
        raise ValueError("Failed to compute merkle root")
    return ShareHeader(
        miner_share=dataclasses.replace(share),
        prev_share_blockhash=None,
        uncles=[],
        miner_pubkey=miner_pubkey,
        merkle_root=root,
    )


def build_share_block(workbase, userworkbase, share: MinerShare, header: ShareHeader) -> ShareBlock:
    """Build a share block holding the coinbase and the workbase transactions."""
    coinbase = builders.build_coinbase_from_share(userworkbase, share)
    transactions = [coinbase, *builders.decode_transactions(workbase.txns)]
    return ShareBlockBuilder(header).with_transactions(transactions).build()