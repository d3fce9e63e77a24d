"""The share chain: tips, chain tip, total difficulty and reorgs."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from p2poolv2.miner_message import MinerWorkbase, UserWorkbase
from p2poolv2.shares import ShareBlock, ShareBlockHash, ShareHeader
from p2poolv2.store import ChainStore

logger = logging.getLogger(__name__)

MIN_CONFIRMATION_DEPTH = 100
"""Shares that must precede a share on its chain for it to count as confirmed."""

_LOCATOR_DENSE_COUNT = 10


class ChainError(RuntimeError):
    """Raised when the chain cannot complete an operation."""


class Chain:
    """The main share chain.

    The chain reorgs when a share arrives whose chain carries more total
    difficulty than the current tip's.
    """

    def __init__(self, store: Optional[ChainStore] = None) -> None:
        self.store = store if store is not None else ChainStore()
        self.genesis_block_hash: Optional[ShareBlockHash] = None
        self.chain_tip: Optional[ShareBlockHash] = None
        self.tips: set[ShareBlockHash] = set()
        self.total_difficulty = Decimal("0.0")

    @staticmethod
    def _blockhash_of(share: ShareBlock) -> ShareBlockHash:
        if share.cached_blockhash is None:
            return share.compute_blockhash()
        return share.cached_blockhash

    def _height_for_prevhash(self, prev: Optional[ShareBlockHash]) -> Optional[int]:
        if prev is None:
            return None
        return self.store.get_height(prev)

    def add_share(self, share: ShareBlock) -> None:
        """Add ``share``, updating the tips, and reorg if it extends a heavier chain."""
        blockhash = self._blockhash_of(share)
        logger.info("Adding share to chain: %s", blockhash)
        if not self.tips:
            self.genesis_block_hash = blockhash
        prev = share.header.prev_share_blockhash
        share_difficulty = share.header.miner_share.diff

        prev_height = self._height_for_prevhash(prev)
        height = 0 if prev_height is None else prev_height + 1
        logger.debug("Adding share to store: %s at height: %d", blockhash, height)
        self.store.add_share(share, height)

        if not self.tips:
            logger.info("New chain: %s", blockhash)
            self.tips.add(blockhash)
            self.total_difficulty = share_difficulty
            self.chain_tip = blockhash
            return

        if prev is not None:
            self.tips.discard(prev)
        for uncle in share.header.uncles:
            self.tips.discard(uncle)
        self.tips.add(blockhash)

        if prev is not None:
            logger.info("Checking for reorgs at share: %s", prev)
            difficulty_upto_prev = sum(
                (ancestor.header.miner_share.diff for ancestor in self.store.get_chain_upto(prev)),
                Decimal(0),
            )
            if difficulty_upto_prev + share_difficulty > self.total_difficulty:
                self.reorg(share, difficulty_upto_prev)

    def remove_from_tips(self, blockhash: ShareBlockHash) -> None:
        """Remove ``blockhash`` from the tips; no-op if it is not a tip."""
        self.tips.discard(blockhash)

    def add_to_tips(self, blockhash: ShareBlockHash) -> None:
        """Add ``blockhash`` to the tips; no-op if it already is one."""
        self.tips.add(blockhash)

    def reorg(self, share: ShareBlock, total_difficulty_upto_prev_share_blockhash: Decimal) -> None:
        """Make ``share`` the chain tip.

        Blocks on abandoned branches are not marked; changing the tip is
        enough to treat them as unconfirmed.
        """
        blockhash = self._blockhash_of(share)
        logger.info("Reorging chain to share: %s", blockhash)
        self.total_difficulty = (
            total_difficulty_upto_prev_share_blockhash + share.header.miner_share.diff
        )
        self.chain_tip = blockhash

    def is_confirmed(self, share: ShareBlock) -> bool:
        """True if more than MIN_CONFIRMATION_DEPTH shares precede ``share``."""
        prev = share.header.prev_share_blockhash
        if prev is None:
            return True
        return len(self.store.get_chain_upto(prev)) > MIN_CONFIRMATION_DEPTH

    def add_workbase(self, workbase: MinerWorkbase) -> None:
        """Store a workbase; raises ChainError if the store rejects it."""
        try:
            self.store.add_workbase(workbase)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to add workbase to store: %s", exc)
            raise ChainError("Error adding workbase to store") from exc

    def add_user_workbase(self, user_workbase: UserWorkbase) -> None:
        """Store a user workbase; raises ChainError if the store rejects it."""
        try:
            self.store.add_user_workbase(user_workbase)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to add user workbase to store: %s", exc)
            raise ChainError("Error adding user workbase to store") from exc

    def get_share(self, share_hash: ShareBlockHash) -> Optional[ShareBlock]:
        """The share with ``share_hash``, or None."""
        return self.store.get_share(share_hash)

    def get_shares_at_height(self, height: int) -> dict[ShareBlockHash, ShareBlock]:
        """All shares at ``height`` keyed by block hash."""
        return self.store.get_shares_at_height(height)

    def get_share_headers(self, share_hashes: Iterable[ShareBlockHash]) -> list[ShareHeader]:
        """Headers of the known shares among ``share_hashes``."""
        return self.store.get_share_headers(share_hashes)

    def get_headers_for_locator(
        self,
        block_hashes: Sequence[ShareBlockHash],
        stop_block_hash: ShareBlockHash,
        limit: int,
    ) -> list[ShareHeader]:
        """Headers following the earliest known locator hash; empty on an empty chain."""
        if self.chain_tip is None:
            return []
        return self.store.get_headers_for_locator(block_hashes, stop_block_hash, limit)

    def get_blockhashes_for_locator(
        self,
        locator: Sequence[ShareBlockHash],
        stop_block_hash: ShareBlockHash,
        max_blockhashes: int,
    ) -> list[ShareBlockHash]:
        """Block hashes following the earliest known locator hash; empty on an empty chain."""
        if self.chain_tip is None:
            return []
        return self.store.get_blockhashes_for_locator(locator, stop_block_hash, max_blockhashes)

    def get_tip_height(self) -> Optional[int]:
        """Height of the chain tip, or None on an empty chain."""
        if self.chain_tip is None:
            return None
        height = self.store.get_height(self.chain_tip)
        if height is None:
            raise ChainError("Failed to get metadata for chain tip")
        return height

    def build_locator(self) -> list[ShareBlockHash]:
        """Block hashes from the tip back to genesis.

        The ten highest heights are included one by one, then the step
        doubles each time; height 0 is always included.
        """
        tip_height = self.get_tip_height()
        if not tip_height:
            return []

        heights: list[int] = []
        step = 1
        height = tip_height
        while height > 0:
            if len(heights) >= _LOCATOR_DENSE_COUNT:
                step *= 2
            heights.append(height)
            height = max(0, height - step)
        heights.append(0)

        return [
            blockhash
            for height in heights
            for blockhash in self.store.get_blockhashes_for_height(height)
        ]

    def get_workbase(self, workinfoid: int) -> Optional[MinerWorkbase]:
        """The workbase with ``workinfoid``, or None."""
        return self.store.get_workbase(workinfoid)

    def get_workbases(self, workinfoids: Iterable[int]) -> list[MinerWorkbase]:
        """The stored workbases among ``workinfoids``."""
        return self.store.get_workbases(workinfoids)

    def get_user_workbase(self, workinfoid: int) -> Optional[UserWorkbase]:
        """The user workbase with ``workinfoid``, or None."""
        return self.store.get_user_workbase(workinfoid)

    def get_user_workbases(self, workinfoids: Iterable[int]) -> list[UserWorkbase]:
        """The stored user workbases among ``workinfoids``."""
        return self.store.get_user_workbases(workinfoids)

    def get_total_difficulty(self) -> Decimal:
        """Total difficulty of the chain up to the tip."""
        return self.total_difficulty

    def get_chain_tip_and_uncles(
        self,
    ) -> tuple[Optional[ShareBlockHash], set[ShareBlockHash]]:
        """The chain tip and the other tips, which serve as uncles."""
        uncles = set(self.tips)
        if self.chain_tip is not None:
            uncles.discard(self.chain_tip)
        return self.chain_tip, uncles

    def get_missing_blockhashes(
        self, blockhashes: Iterable[ShareBlockHash]
    ) -> list[ShareBlockHash]:
        """The hashes among ``blockhashes`` that the chain does not hold."""
        return self.store.get_missing_blockhashes(blockhashes)

    def get_depth(self, blockhash: ShareBlockHash) -> Optional[int]:
        """Depth of ``blockhash`` from the tip: 0 for the tip, None if unknown."""
        if self.chain_tip is None:
            return None
        if self.chain_tip == blockhash:
            return 0
        chain = self.store.get_chain_upto(blockhash)
        if not chain:
            return None
        return len(chain)