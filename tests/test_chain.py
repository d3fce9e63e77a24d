from decimal import Decimal

import pytest

from p2poolv2.chain import MIN_CONFIRMATION_DEPTH, Chain, ChainError
from p2poolv2.miner_message import (
    Gbt,
    MinerShare,
    MinerWorkbase,
    UserWorkbase,
    UserWorkbaseParams,
)
from p2poolv2.shares import ShareBlockBuilder, ShareBlockHash, ShareHeader

PUBKEY = "02" * 33


def make_share(
    blockhash,
    prev=None,
    uncles=(),
    workinfoid=7452731920372203525,
    diff="1.0",
    sdiff="1.9041854952356509",
):
    miner_share = MinerShare(
        workinfoid=workinfoid,
        clientid=1,
        enonce1="336c6d67",
        nonce2="0000000000000000",
        nonce="2eb7b82b",
        ntime=1735224490,
        diff=Decimal(diff),
        sdiff=Decimal(sdiff),
        hash=blockhash,
        username="user",
    )
    header = ShareHeader(
        miner_share=miner_share,
        prev_share_blockhash=prev,
        uncles=list(uncles),
        miner_pubkey=PUBKEY,
        merkle_root=bytes(32),
    )
    return ShareBlockBuilder(header).build()


def make_workbase(workinfoid):
    gbt = Gbt(
        capabilities=["proposal"],
        version=1,
        rules=[],
        vbavailable=None,
        vbrequired=0,
        previousblockhash="prev_hash",
        transactions=[],
        coinbaseaux=None,
        coinbasevalue=5000000000,
        longpollid="longpoll",
        target="target",
        mintime=1,
        mutable=["time"],
        noncerange="00000000ffffffff",
        sigoplimit=80000,
        sizelimit=4000000,
        weightlimit=4000000,
        curtime=0x676D6CAA,
        bits="bits",
        height=1,
        signet_challenge="51",
        default_witness_commitment="commitment",
        diff=1.0,
        ntime=0x676D6CAA,
        bbversion="20000000",
        nbit="1e0377ae",
    )
    return MinerWorkbase(
        workinfoid=workinfoid,
        gbt=gbt,
        txns=[],
        merkles=[],
        coinb1="01",
        coinb2="02",
        coinb3="03",
        header="01",
    )


def make_user_workbase(workinfoid):
    params = UserWorkbaseParams(
        id="67b6f8fc00000003",
        prevhash="6d600f568f665af26301fcafa53326454b9db355ff5d87f9863a956300000000",
        coinb1="01",
        coinb2="02",
        merkles=[],
        version="20000000",
        nbit="1e0377ae",
        ntime="67b6f938",
        clean_jobs=False,
    )
    return UserWorkbase(params=params, id=None, workinfoid=workinfoid)


HASH_PREFIX = "0000000086704a35f17580d06f76d4c02d2b1f68774800675fb45f0411205bb"


def test_chain_add_shares():
    chain = Chain()

    share1 = make_share(HASH_PREFIX + "5")
    chain.add_share(share1)
    assert chain.tips == {share1.cached_blockhash}
    assert chain.total_difficulty == Decimal("1.0")
    assert chain.chain_tip == share1.cached_blockhash

    uncle1_share2 = make_share(HASH_PREFIX + "6", prev=share1.cached_blockhash)
    uncle2_share2 = make_share(HASH_PREFIX + "7", prev=share1.cached_blockhash)

    chain.add_share(uncle1_share2)
    assert chain.tips == {uncle1_share2.cached_blockhash}
    assert chain.total_difficulty == Decimal("2.0")
    assert chain.chain_tip == uncle1_share2.cached_blockhash

    chain.add_share(uncle2_share2)
    assert chain.tips == {uncle1_share2.cached_blockhash, uncle2_share2.cached_blockhash}
    assert chain.total_difficulty == Decimal("2.0")
    assert chain.chain_tip == uncle1_share2.cached_blockhash

    share2 = make_share(
        HASH_PREFIX + "8",
        prev=share1.cached_blockhash,
        uncles=[uncle1_share2.cached_blockhash, uncle2_share2.cached_blockhash],
        workinfoid=7452731920372203525 + 3,
        diff="2.0",
        sdiff="2.9041854952356509",
    )
    chain.add_share(share2)
    assert chain.tips == {share2.cached_blockhash}
    assert chain.total_difficulty == Decimal("3.0")
    assert chain.chain_tip == share2.cached_blockhash

    uncle1_share3 = make_share(
        HASH_PREFIX + "9", prev=share2.cached_blockhash, workinfoid=7452731920372203525 + 4
    )
    uncle2_share3 = make_share(
        HASH_PREFIX + "a", prev=share2.cached_blockhash, workinfoid=7452731920372203525 + 5
    )

    chain.add_share(uncle1_share3)
    assert chain.tips == {uncle1_share3.cached_blockhash}
    assert chain.total_difficulty == Decimal("4.0")
    assert chain.chain_tip == uncle1_share3.cached_blockhash

    chain.add_share(uncle2_share3)
    assert chain.tips == {uncle1_share3.cached_blockhash, uncle2_share3.cached_blockhash}
    assert chain.total_difficulty == Decimal("4.0")
    assert chain.chain_tip == uncle1_share3.cached_blockhash

    share3 = make_share(
        HASH_PREFIX + "b",
        prev=share2.cached_blockhash,
        uncles=[uncle1_share3.cached_blockhash, uncle2_share3.cached_blockhash],
        workinfoid=7452731920372203525 + 6,
        diff="3.0",
        sdiff="3.9041854952356509",
    )
    chain.add_share(share3)
    assert chain.tips == {share3.cached_blockhash}
    assert chain.total_difficulty == Decimal("6.0")
    assert chain.chain_tip == share3.cached_blockhash

    assert chain.store.get_blockhashes_for_height(0) == [share1.cached_blockhash]
    assert chain.store.get_blockhashes_for_height(1) == [
        uncle1_share2.cached_blockhash,
        uncle2_share2.cached_blockhash,
        share2.cached_blockhash,
    ]
    assert chain.store.get_blockhashes_for_height(2) == [
        uncle1_share3.cached_blockhash,
        uncle2_share3.cached_blockhash,
        share3.cached_blockhash,
    ]
    assert chain.genesis_block_hash == share1.cached_blockhash


def test_confirmations():
    chain = Chain()
    prev = None
    for i in range(MIN_CONFIRMATION_DEPTH + 2):
        share = make_share(f"{i + 1:064x}", prev=prev, workinfoid=7452731920372203525 + i)
        chain.add_share(share)
        prev = share.cached_blockhash
        if i > MIN_CONFIRMATION_DEPTH or i == 0:
            assert chain.is_confirmed(share)
        else:
            assert not chain.is_confirmed(share)


def test_add_workbase():
    chain = Chain()
    workbase = make_workbase(7460801854683742211)
    chain.add_workbase(workbase)
    assert chain.get_workbase(workbase.workinfoid) == workbase
    assert chain.get_workbase(1) is None


def test_add_workbase_rejected():
    chain = Chain()
    with pytest.raises(ChainError, match="Error adding workbase to store"):
        chain.add_workbase("not a workbase")


def test_user_workbases():
    chain = Chain()
    chain.add_user_workbase(make_user_workbase(10))
    chain.add_user_workbase(make_user_workbase(20))
    assert chain.get_user_workbase(10).workinfoid == 10
    assert [wb.workinfoid for wb in chain.get_user_workbases([20, 99, 10])] == [20, 10]
    with pytest.raises(ChainError, match="Error adding user workbase to store"):
        chain.add_user_workbase(make_workbase(1))


def test_get_workbases():
    chain = Chain()
    chain.add_workbase(make_workbase(1000))
    chain.add_workbase(make_workbase(2000))
    assert {wb.workinfoid for wb in chain.get_workbases([1000, 2000])} == {1000, 2000}
    assert [wb.workinfoid for wb in chain.get_workbases([1000, 2**64 - 1])] == [1000]
    assert chain.get_workbases([2**64 - 1, 2**64 - 2]) == []


def test_get_depth():
    chain = Chain()
    random_hash = ShareBlockHash.from_hex(HASH_PREFIX + "5")
    assert chain.get_depth(random_hash) is None

    share1 = make_share(HASH_PREFIX + "5")
    chain.add_share(share1)
    assert chain.get_depth(share1.cached_blockhash) == 0

    share2 = make_share(
        HASH_PREFIX + "6", prev=share1.cached_blockhash, workinfoid=7452731920372203526
    )
    chain.add_share(share2)
    assert chain.get_depth(share2.cached_blockhash) == 0
    assert chain.get_depth(share1.cached_blockhash) == 1

    non_existent = ShareBlockHash.from_hex(HASH_PREFIX + "7")
    assert chain.get_depth(non_existent) is None


def test_get_headers_for_locator():
    chain = Chain()
    shares = []
    prev = None
    for i in range(1, 6):
        share = make_share(HASH_PREFIX + str(i), prev=prev, workinfoid=i)
        shares.append(share)
        prev = share.cached_blockhash
    for share in shares:
        chain.add_share(share)
    share1, share2, share3, share4, share5 = shares

    locator = [share1.cached_blockhash]
    headers = chain.get_headers_for_locator(locator, share3.cached_blockhash, 500)
    assert headers == [share2.header, share3.header]

    headers = chain.get_headers_for_locator(locator, share5.cached_blockhash, 2)
    assert headers == [share2.header, share3.header]

    non_existent = ShareBlockHash.from_hex(HASH_PREFIX + "6")
    headers = chain.get_headers_for_locator([non_existent], share5.cached_blockhash, 500)
    assert len(headers) == 1

    locator = [
        non_existent,
        share3.cached_blockhash,
        share2.cached_blockhash,
        share1.cached_blockhash,
    ]
    headers = chain.get_headers_for_locator(locator, share5.cached_blockhash, 500)
    assert headers == [share4.header, share5.header]

    blockhashes = chain.get_blockhashes_for_locator(locator, share5.cached_blockhash, 500)
    assert blockhashes == [share4.cached_blockhash, share5.cached_blockhash]


def test_locator_queries_on_empty_chain():
    chain = Chain()
    stop = ShareBlockHash.from_hex(HASH_PREFIX + "1")
    assert chain.get_headers_for_locator([stop], stop, 10) == []
    assert chain.get_blockhashes_for_locator([stop], stop, 10) == []
    assert chain.build_locator() == []
    assert chain.get_tip_height() is None


def test_build_locator_with_single_block():
    chain = Chain()
    chain.add_share(make_share(f"{0:064x}"))
    assert chain.get_tip_height() == 0
    assert chain.build_locator() == []


def test_build_locator_with_less_than_10_blocks():
    chain = Chain()
    blocks = []
    for i in range(5):
        prev = blocks[i - 1].cached_blockhash if blocks else None
        block = make_share(f"{i:064x}", prev=prev)
        blocks.append(block)
        chain.add_share(block)
        assert chain.chain_tip == block.cached_blockhash

    locator = chain.build_locator()
    assert locator == [blocks[4 - i].cached_blockhash for i in range(5)]


def test_build_locator_with_more_than_10_blocks():
    chain = Chain()
    blocks = []
    for i in range(1, 26):
        prev = blocks[-1].cached_blockhash if blocks else None
        block = make_share(f"{i:064x}", prev=prev)
        blocks.append(block)
        chain.add_share(block)

    locator = chain.build_locator()
    assert len(locator) == 14
    for i in range(10):
        assert locator[i] == blocks[24 - i].cached_blockhash
    assert locator[10] == blocks[14].cached_blockhash
    assert locator[11] == blocks[12].cached_blockhash
    assert locator[12] == blocks[8].cached_blockhash
    assert locator[13] == blocks[0].cached_blockhash


def test_chain_tip_and_uncles():
    chain = Chain()
    assert chain.get_chain_tip_and_uncles() == (None, set())

    share1 = make_share(HASH_PREFIX + "1")
    chain.add_share(share1)
    uncle_a = make_share(HASH_PREFIX + "2", prev=share1.cached_blockhash)
    uncle_b = make_share(HASH_PREFIX + "3", prev=share1.cached_blockhash)
    chain.add_share(uncle_a)
    chain.add_share(uncle_b)

    tip, uncles = chain.get_chain_tip_and_uncles()
    assert tip == uncle_a.cached_blockhash
    assert uncles == {uncle_b.cached_blockhash}


def test_get_missing_blockhashes():
    chain = Chain()
    block1 = make_share(HASH_PREFIX + "1")
    block2 = make_share(HASH_PREFIX + "2", prev=block1.cached_blockhash)
    chain.add_share(block1)
    missing = ShareBlockHash.from_hex(HASH_PREFIX + "3")

    result = chain.get_missing_blockhashes(
        [block1.cached_blockhash, block2.cached_blockhash, missing]
    )
    assert result == [block2.cached_blockhash, missing]
    assert chain.get_missing_blockhashes([block1.cached_blockhash]) == []
    assert chain.get_missing_blockhashes([]) == []


def test_get_share_and_headers():
    chain = Chain()
    share1 = make_share(HASH_PREFIX + "5")
    share2 = make_share(HASH_PREFIX + "6", prev=share1.cached_blockhash)
    chain.add_share(share1)
    chain.add_share(share2)

    assert chain.get_share(share2.cached_blockhash) is share2
    assert chain.get_shares_at_height(1) == {share2.cached_blockhash: share2}
    assert chain.get_share_headers([share1.cached_blockhash, share2.cached_blockhash]) == [
        share1.header,
        share2.header,
    ]
    assert chain.get_share_headers([ShareBlockHash.from_hex(HASH_PREFIX + "7")]) == []
    assert chain.get_total_difficulty() == Decimal("2.0")


def test_tips_helpers_and_reorg():
    chain = Chain()
    share1 = make_share(HASH_PREFIX + "1")
    share2 = make_share(HASH_PREFIX + "2", prev=share1.cached_blockhash, diff="5")
    chain.add_to_tips(share1.cached_blockhash)
    chain.add_to_tips(share1.cached_blockhash)
    assert chain.tips == {share1.cached_blockhash}
    chain.remove_from_tips(share2.cached_blockhash)
    chain.remove_from_tips(share1.cached_blockhash)
    assert chain.tips == set()

    chain.reorg(share2, Decimal("1.5"))
    assert chain.chain_tip == share2.cached_blockhash
    assert chain.total_difficulty == Decimal("6.5")