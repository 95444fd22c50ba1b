from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator

from engine.config import LabelConfig
from events.districts import DistrictTable
from events.types import normalize_group_name
from lod.bins import Bin
from lod.grid import memory_grid_key

logger = logging.getLogger(__name__)

MemoryKey = tuple[int, int, int]  # (rounded grid size, gx, gy)


@dataclass(frozen=True)
class MemoryEntry:
    label: str
    lead_share: float
    leader: str
    last_seen: int


class LabelMemory:
    """
    Labels assigned on previous frames, keyed by (rounded grid size, gx, gy).

    Lives as long as the engine; pan/zoom never resets it. Only the label stabilizer writes it.
    """

    def __init__(self) -> None:
        self._entries: dict[MemoryKey, MemoryEntry] = {}
        self.generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[MemoryKey]:
        return iter(self._entries)

    def get(self, key: MemoryKey) -> MemoryEntry | None:
        return self._entries.get(key)

    def put(self, key: MemoryKey, *, label: str, lead_share: float, leader: str) -> MemoryEntry:
        entry = MemoryEntry(
            label=label, lead_share=float(lead_share), leader=leader, last_seen=self.generation
        )
        self._entries[key] = entry
        return entry

    def advance(self) -> int:
        self.generation += 1
        return self.generation

    def prune(self, max_idle: int) -> int:
        """
        Drop entries not written during the last `max_idle` generations.
        """
        cutoff = self.generation - int(max_idle)
        stale = [k for k, e in self._entries.items() if e.last_seen <= cutoff]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("Pruned %d idle label memory entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()


@dataclass(frozen=True)
class LabelDecision:
    label: str
    candidate: str
    leader: str
    top_share: float
    second_share: float
    umbrella_share: float
    kept_previous: bool


def _name_key(name: str) -> str:
    return normalize_group_name(name).casefold()


def umbrella_predicate(cfg: LabelConfig) -> Callable[[str], bool]:
    members = {_name_key(m) for m in cfg.umbrella_members}

    def is_member(name: str) -> bool:
        return _name_key(name) in members

    return is_member


class LabelStabilizer:
    """
    Picks a readable label per cluster and holds it steady across frames.

    Naive "most common district" labels flicker while marginal counts shift during a smooth
    zoom; candidates here only replace a remembered label when they lead clearly.
    """

    def __init__(
        self,
        cfg: LabelConfig,
        memory: LabelMemory,
        *,
        is_umbrella_member: Callable[[str], bool] | None = None,
    ) -> None:
        self.cfg = cfg
        self.memory = memory
        self.is_umbrella_member = is_umbrella_member or umbrella_predicate(cfg)
        self._umbrella_enabled = bool(cfg.umbrella_name.strip()) and (
            is_umbrella_member is not None or bool(cfg.umbrella_members)
        )

    def memory_key(self, b: Bin) -> MemoryKey:
        return (memory_grid_key(b.grid_size), b.gx, b.gy)

    def candidate(
        self, b: Bin, districts: DistrictTable | None = None
    ) -> tuple[str, str, float, float, float]:
        """
        Frame-local label for `b`: (label, leader, top share, second share, umbrella share).
        """
        cfg = self.cfg
        total = b.total
        ranked = sorted(b.groups.items(), key=lambda kv: (-kv[1], kv[0]))
        top_name, top_count = ranked[0]
        second_name, second_count = ranked[1] if len(ranked) > 1 else ("", 0)
        top_share = top_count / total
        second_share = second_count / total

        umbrella_share = 0.0
        if self._umbrella_enabled:
            umbrella_share = (
                sum(n for name, n in ranked if self.is_umbrella_member(name)) / total
            )

        if self._umbrella_enabled and umbrella_share >= cfg.umbrella_share:
            if self.is_umbrella_member(top_name) and top_share >= cfg.umbrella_top_share:
                label = top_name
            else:
                label = cfg.umbrella_name
        elif top_share < cfg.pair_top_share and second_share >= cfg.pair_second_share:
            label = f"{top_name} & {second_name}"
        elif top_share < cfg.nearest_top_share:
            cx, cy = b.centroid
            nearest = districts.nearest(cx, cy) if districts is not None else None
            label = nearest or top_name
        else:
            label = top_name

        return label, top_name, top_share, second_share, umbrella_share

    def label(self, b: Bin, districts: DistrictTable | None = None) -> LabelDecision:
        cfg = self.cfg
        key = self.memory_key(b)
        candidate, leader, top_share, second_share, umbrella_share = self.candidate(b, districts)

        prev = self.memory.get(key)
        label = candidate
        if prev is not None and prev.label != candidate:
            if prev.label == cfg.umbrella_name and umbrella_share >= cfg.umbrella_keep_share:
                label = prev.label
            elif top_share - second_share < cfg.tie_gap:
                label = prev.label
            elif top_share >= max(cfg.switch_floor, prev.lead_share + cfg.switch_margin) and (
                leader == prev.leader or top_share - second_share >= cfg.takeover_gap
            ):
                # A different leader must also be clearly ahead of the runner-up.
                label = candidate
            else:
                label = prev.label

        self.memory.put(key, label=label, lead_share=top_share, leader=leader)
        return LabelDecision(
            label=label,
            candidate=candidate,
            leader=leader,
            top_share=top_share,
            second_share=second_share,
            umbrella_share=umbrella_share,
            kept_previous=label != candidate,
        )
