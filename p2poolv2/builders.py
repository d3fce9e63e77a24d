"""Build Bitcoin transactions, headers and blocks from ckpool work data."""

from __future__ import annotations

import string
from typing import Optional, Sequence

from p2poolv2.bitcoin import (
    Block,
    BlockHeader,
    Transaction,
    hex_to_hash,
    merkle_root,
)

_HEX_DIGITS = frozenset(string.hexdigits)


def _parse_u32_hex(text: str) -> int:
    if not text:
        raise ValueError("cannot parse integer from empty string")
    digits = text[1:] if text.startswith("+") else text
    if not digits or any(char not in _HEX_DIGITS for char in digits):
        raise ValueError("invalid digit found in string")
    value = int(digits, 16)
    if value > 0xFFFFFFFF:
        raise ValueError("number too large to fit in target type")
    return value


def _parse_compact_hex(text: str) -> int:
    if text[:2] in ("0x", "0X"):
        raise ValueError(f"hex string contains a prefix: {text!r}")
    return _parse_u32_hex(text)


def build_coinbase_from_share(userworkbase, share) -> Transaction:
    """Assemble the coinbase from coinb1, enonce1, nonce2 and coinb2.

    The result is not validated; ckpool already did that.
    """
    params = userworkbase.params
    complete = f"{params.coinb1}{share.enonce1}{share.nonce2}{params.coinb2}"
    return Transaction.from_bytes(bytes.fromhex(complete))


def decode_transactions(txns: Sequence) -> list[Transaction]:
    """Decode each workbase transaction's hex data."""
    return [Transaction.from_bytes(bytes.fromhex(tx.data)) for tx in txns]


def decode_txids(txns: Sequence) -> list[bytes]:
    """Parse each workbase transaction's txid into internal byte order."""
    return [hex_to_hash(tx.txid) for tx in txns]


def compute_merkle_root_from_txids(txids: Sequence[bytes]) -> Optional[bytes]:
    """Merkle root of the txids, or None if there are none."""
    return merkle_root(txids)


def build_bitcoin_header(workbase, share, merkle_root: bytes) -> BlockHeader:
    """Build a block header from the workbase template and the share's nonce and time."""
    gbt = workbase.gbt
    prev_blockhash = hex_to_hash(gbt.previousblockhash)
    bits = _parse_compact_hex(gbt.bits)
    nonce = _parse_u32_hex(share.nonce)
    return BlockHeader(
        version=gbt.version,
        prev_blockhash=prev_blockhash,
        merkle_root=merkle_root,
        time=int(share.ntime),
        bits=bits,
        nonce=nonce,
    )


def build_bitcoin_block(workbase, userworkbase, share) -> Block:
    """Build the full Bitcoin block for a share.

    Raises ValueError if the coinbase, a transaction, a txid or the header
    cannot be decoded.
    """
    coinbase = build_coinbase_from_share(userworkbase, share)
    txns = [coinbase, *decode_transactions(workbase.txns)]
    txids = [coinbase.txid(), *decode_txids(workbase.txns)]
    root = compute_merkle_root_from_txids(txids)
    if root is None:
        raise ValueError("Failed to compute merkle root")
    header = build_bitcoin_header(workbase, share, root)
    return Block(header=header, txdata=txns)