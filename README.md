# p2poolv2

Building blocks for a peer-to-peer bitcoin mining pool that takes its work
from ckpool: reading ckpool's messages, rebuilding and checking the bitcoin
blocks behind shares, and keeping a chain of share blocks.

## Modules

- `p2poolv2.genesis` — the `Network` enum and `genesis_data(network)`, which
  returns the hard-coded `GenesisData` for `Network.SIGNET` and
  `Network.TESTNET4` and raises `ValueError` for any other network.
- `p2poolv2.bitcoin` — the small part of bitcoin needed here: `Transaction`
  (with `TxIn` and `TxOut`) decoding with `from_bytes`/`from_hex`,
  `serialize`, `txid` and `is_coinbase`; `BlockHeader` with `serialize`,
  `block_hash`, `target` and `validate_pow`; `Block` with
  `check_merkle_root` and `check_witness_commitment`; and the helpers
  `double_sha256`, `hash_to_hex`, `hex_to_hash`, `merkle_root` and
  `compact_to_target`. Hashes are bytes in internal order; `hash_to_hex`
  gives the usual reversed hex form.
- `p2poolv2.builders` — `build_coinbase_from_share`, `decode_transactions`,
  `decode_txids`, `compute_merkle_root_from_txids`, `build_bitcoin_header`
  and `build_bitcoin_block`, which assemble a bitcoin block from a ckpool
  workbase, user workbase and share.
- `p2poolv2.miner_message` — the messages ckpool publishes: `MinerShare`,
  `MinerWorkbase` (with `Gbt`, `WorkbaseTxn`, `WorkbaseMerkleItem`) and
  `UserWorkbase` (with `UserWorkbaseParams`). Each has `from_dict`/`to_dict`
  for decoded JSON. `parse_ckpool_message` reads the tagged form
  `{"Share": {...}}`, `{"Workbase": {...}}` or `{"UserWorkbase": {...}}`, and
  `ckpool_message_to_dict` writes it back. `MinerShare.validate(workbase,
  user_workbase)` checks proof of work, merkle root and witness commitment,
  returning `True` or raising `ShareValidationError`.
- `p2poolv2.shares` — `ShareBlockHash`, `ShareHeader`, `ShareBlock`,
  `ShareBlockBuilder` and `StorageShareBlock` (the header-only form, with
  `cbor_serialize`/`cbor_deserialize`), plus `build_share_header` and
  `build_share_block` for building share blocks from ckpool work.
- `p2poolv2.store` — `ChainStore`, an in-memory index of share blocks by
  hash, height and parent, and of workbases and user workbases by
  workinfoid.
- `p2poolv2.chain` — `Chain`, which tracks tips, the main chain tip, total
  difficulty, reorgs, depth, confirmations (`MIN_CONFIRMATION_DEPTH` is 100)
  and block locators. Failures raise `ChainError`.
- `p2poolv2.ckpool_socket` — `CkPoolConfig`, `create_zmq_socket` and
  `CkPoolSocket`, a ZeroMQ subscriber that connects with exponential backoff
  (1 s doubling up to 60 s), plus `receive_shares` and
  `start_receiving_from_ckpool`, which put each JSON message received on a
  queue and drop messages that cannot be received or parsed.

## Installing

    pip install .

To run the tests:

    pip install ".[test]"
    pytest

## Example

Starting a chain from the Signet genesis share:

    from p2poolv2.chain import Chain
    from p2poolv2.genesis import Network, genesis_data
    from p2poolv2.shares import ShareBlockBuilder, ShareHeader

    miner_pubkey = "02" + "02" * 32   # a compressed public key in hex
    header = ShareHeader.genesis(genesis_data(Network.SIGNET), miner_pubkey, bytes(32))
    block = ShareBlockBuilder(header).build()

    chain = Chain()
    chain.add_share(block)
    print(chain.chain_tip, chain.get_total_difficulty())

Reading a message from ckpool's JSON:

    import json
    from p2poolv2.miner_message import parse_ckpool_message

    message = parse_ckpool_message(json.loads(text))

Receiving from ckpool:

    import queue
    import threading
    from p2poolv2.ckpool_socket import (
        CkPoolConfig, CkPoolSocket, create_zmq_socket, start_receiving_from_ckpool,
    )

    messages = queue.Queue(maxsize=100)
    socket = CkPoolSocket(CkPoolConfig(host="localhost", port=8881), create_zmq_socket())
    socket.connect()
    threading.Thread(
        target=start_receiving_from_ckpool, args=(socket, messages), daemon=True
    ).start()
    message = messages.get()

## What it does not do

- It has no command and runs no node: nothing connects to peers, gossips
  shares or answers requests from other nodes.
- `ChainStore` keeps everything in memory; nothing is written to disk, and a
  chain is gone when the process ends.
- It does not create coinbase transactions paying a miner. Share blocks are
  built from a header and the transactions given to them, or from ckpool
  work with `build_share_block`.
- Messages taken off the queue by `start_receiving_from_ckpool` are not
  added to a chain automatically; the caller parses them with
  `parse_ckpool_message` and adds them itself.