"""In-memory storage for share blocks, workbases and user workbases."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Iterable, Iterator, Optional, Sequence

from p2poolv2.miner_message import MinerWorkbase, UserWorkbase
from p2poolv2.shares import ShareBlock, ShareBlockHash, ShareHeader


class ChainStore:
    """Indexes share blocks by hash, height and parent, and workbases by workinfoid.

    Heights keep the order in which shares were added. A share whose parent
    is unknown is a root; walking back from any share stops at the first
    unknown ancestor.
    """

    def __init__(self) -> None:
        self._shares: dict[ShareBlockHash, ShareBlock] = {}
        self._heights: dict[ShareBlockHash, int] = {}
        self._by_height: defaultdict[int, list[ShareBlockHash]] = defaultdict(list)
        self._children: defaultdict[ShareBlockHash, list[ShareBlockHash]] = defaultdict(list)
        self._workbases: dict[int, MinerWorkbase] = {}
        self._user_workbases: dict[int, UserWorkbase] = {}

    # Shares

    @staticmethod
    def _blockhash_of(share: ShareBlock) -> ShareBlockHash:
        if share.cached_blockhash is None:
            return share.compute_blockhash()
        return share.cached_blockhash

    def add_share(self, share: ShareBlock, height: int) -> ShareBlockHash:
        """Store ``share`` at ``height`` and return its block hash."""
        if height < 0:
            raise ValueError(f"height must not be negative, got {height}")
        blockhash = self._blockhash_of(share)
        previous_height = self._heights.get(blockhash)
        if previous_height is not None and previous_height != height:
            self._by_height[previous_height].remove(blockhash)
        if previous_height != height:
            self._by_height[height].append(blockhash)
        if blockhash not in self._shares:
            prev = share.header.prev_share_blockhash
            if prev is not None:
                self._children[prev].append(blockhash)
        self._shares[blockhash] = share
        self._heights[blockhash] = height
        return blockhash

    def get_share(self, blockhash: ShareBlockHash) -> Optional[ShareBlock]:
        """The share with ``blockhash``, or None."""
        return self._shares.get(blockhash)

    def get_height(self, blockhash: ShareBlockHash) -> Optional[int]:
        """The height the share was stored at, or None if unknown."""
        return self._heights.get(blockhash)

    def get_shares_at_height(self, height: int) -> dict[ShareBlockHash, ShareBlock]:
        """All shares stored at ``height``, keyed by block hash."""
        return {blockhash: self._shares[blockhash] for blockhash in self._by_height.get(height, [])}

    def get_blockhashes_for_height(self, height: int) -> list[ShareBlockHash]:
        """Block hashes at ``height`` in the order they were added."""
        return list(self._by_height.get(height, []))

    def get_share_headers(self, share_hashes: Iterable[ShareBlockHash]) -> list[ShareHeader]:
        """Headers of the known shares among ``share_hashes``, in the given order."""
        return [
            self._shares[blockhash].header
            for blockhash in share_hashes
            if blockhash in self._shares
        ]

    def _walk_back(self, blockhash: ShareBlockHash) -> Iterator[ShareBlock]:
        seen: set[ShareBlockHash] = set()
        current: Optional[ShareBlockHash] = blockhash
        while current is not None and current not in seen:
            share = self._shares.get(current)
            if share is None:
                return
            seen.add(current)
            yield share
            current = share.header.prev_share_blockhash

    def get_chain_upto(self, blockhash: ShareBlockHash) -> list[ShareBlock]:
        """Shares from ``blockhash`` back through its ancestors; empty if unknown."""
        return list(self._walk_back(blockhash))

    def _descendants(
        self, start: ShareBlockHash, stop: ShareBlockHash, limit: int
    ) -> list[ShareBlockHash]:
        found: list[ShareBlockHash] = []
        queue = deque(self._children.get(start, []))
        visited: set[ShareBlockHash] = {start}
        while queue and len(found) < limit:
            blockhash = queue.popleft()
            if blockhash in visited:
                continue
            visited.add(blockhash)
            found.append(blockhash)
            if blockhash == stop:
                break
            queue.extend(self._children.get(blockhash, []))
        return found

    def _locator_blockhashes(
        self, locator: Sequence[ShareBlockHash], stop_block_hash: ShareBlockHash, limit: int
    ) -> list[ShareBlockHash]:
        start = next((blockhash for blockhash in locator if blockhash in self._shares), None)
        if start is None:
            return self.get_blockhashes_for_height(0)[:limit]
        return self._descendants(start, stop_block_hash, limit)

    def get_headers_for_locator(
        self,
        block_hashes: Sequence[ShareBlockHash],
        stop_block_hash: ShareBlockHash,
        limit: int,
    ) -> list[ShareHeader]:
        """Headers following the first known locator hash, up to the stop hash or limit.

        When no locator hash is known, the genesis headers are returned.
        """
        found = self._locator_blockhashes(block_hashes, stop_block_hash, limit)
        return [self._shares[blockhash].header for blockhash in found]

    def get_blockhashes_for_locator(
        self,
        locator: Sequence[ShareBlockHash],
        stop_block_hash: ShareBlockHash,
        max_blockhashes: int,
    ) -> list[ShareBlockHash]:
        """Block hashes following the first known locator hash, as for headers."""
        return self._locator_blockhashes(locator, stop_block_hash, max_blockhashes)

    def get_missing_blockhashes(
        self, blockhashes: Iterable[ShareBlockHash]
    ) -> list[ShareBlockHash]:
        """The hashes among ``blockhashes`` that are not stored, in the given order."""
        return [blockhash for blockhash in blockhashes if blockhash not in self._shares]

    # Workbases

    def add_workbase(self, workbase: MinerWorkbase) -> None:
        """Store ``workbase`` under its workinfoid."""
        if not isinstance(workbase, MinerWorkbase):
            raise TypeError(f"expected a MinerWorkbase, got {type(workbase).__name__}")
        self._workbases[workbase.workinfoid] = workbase

    def get_workbase(self, workinfoid: int) -> Optional[MinerWorkbase]:
        """The workbase with ``workinfoid``, or None."""
        return self._workbases.get(workinfoid)

    def get_workbases(self, workinfoids: Iterable[int]) -> list[MinerWorkbase]:
        """The stored workbases among ``workinfoids``, in the given order."""
        return [self._workbases[wid] for wid in workinfoids if wid in self._workbases]

    def add_user_workbase(self, user_workbase: UserWorkbase) -> None:
        """Store ``user_workbase`` under its workinfoid."""
        if not isinstance(user_workbase, UserWorkbase):
            raise TypeError(f"expected a UserWorkbase, got {type(user_workbase).__name__}")
        self._user_workbases[user_workbase.workinfoid] = user_workbase

    def get_user_workbase(self, workinfoid: int) -> Optional[UserWorkbase]:
        """The user workbase with ``workinfoid``, or None."""
        return self._user_workbases.get(workinfoid)

    def get_user_workbases(self, workinfoids: Iterable[int]) -> list[UserWorkbase]:
        """The stored user workbases among ``workinfoids``, in the given order."""
        return [
            self._user_workbases[wid] for wid in workinfoids if wid in self._user_workbases
        ]