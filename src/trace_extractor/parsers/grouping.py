"""
Bubble grouping for conversation reconstruction.

Grouping is an explicit fold over ordered bubbles. The only state is the
currently open assistant group; `step` is a pure transition returning the
new state plus the groups that were closed by the bubble.

Rules:
- A user bubble closes any open assistant group and forms its own group.
- An assistant bubble joins the open group unless its generation id and the
  group's generation id are both real and differ, in which case the open
  group is closed and a new one starts.
- A group that has absorbed two or more distinct real generation ids is
  marked MIXED_GENERATION_ID and never forces a split again.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from trace_extractor.models.parsed import MIXED_GENERATION_ID, Bubble, BubbleRole


@dataclass(frozen=True)
class BubbleGroup:
    """An ordered run of bubbles that becomes one logical message."""

    role: BubbleRole
    bubbles: tuple[Bubble, ...]
    generation_id: Optional[str] = None  # Split key; MIXED_GENERATION_ID once mixed
    seen_generation_ids: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def open(cls, bubble: Bubble) -> "BubbleGroup":
        seen = (bubble.generation_id,) if bubble.generation_id else ()
        return cls(
            role=bubble.role,
            bubbles=(bubble,),
            generation_id=bubble.generation_id,
            seen_generation_ids=seen,
        )

    def accepts(self, bubble: Bubble) -> bool:
        """Whether an assistant bubble may join this group."""
        if self.generation_id == MIXED_GENERATION_ID:
            return True
        if bubble.generation_id is None or self.generation_id is None:
            return True
        return bubble.generation_id == self.generation_id

    def absorb(self, bubble: Bubble) -> "BubbleGroup":
        seen = self.seen_generation_ids
        if bubble.generation_id and bubble.generation_id not in seen:
            seen = seen + (bubble.generation_id,)

        generation_id = MIXED_GENERATION_ID if len(seen) >= 2 else self.generation_id

        return BubbleGroup(
            role=self.role,
            bubbles=self.bubbles + (bubble,),
            generation_id=generation_id,
            seen_generation_ids=seen,
        )

    @property
    def resolved_generation_id(self) -> Optional[str]:
        """Generation id reported on the message built from this group."""
        if self.generation_id == MIXED_GENERATION_ID:
            return MIXED_GENERATION_ID
        if self.seen_generation_ids:
            return self.seen_generation_ids[0]
        return None


@dataclass(frozen=True)
class GroupingState:
    open_group: Optional[BubbleGroup] = None


def step(
    state: GroupingState, bubble: Bubble
) -> tuple[GroupingState, tuple[BubbleGroup, ...]]:
    """
    Advance the grouping fold by one bubble.

    Returns:
        (new state, groups closed by this bubble in emission order)
    """
    open_group = state.open_group

    if bubble.is_user:
        emitted = (open_group,) if open_group else ()
        return GroupingState(), emitted + (BubbleGroup.open(bubble),)

    if open_group is None:
        return GroupingState(open_group=BubbleGroup.open(bubble)), ()

    if open_group.accepts(bubble):
        return GroupingState(open_group=open_group.absorb(bubble)), ()

    return GroupingState(open_group=BubbleGroup.open(bubble)), (open_group,)


def flush(state: GroupingState) -> tuple[BubbleGroup, ...]:
    """Close the fold, emitting any group still open."""
    return (state.open_group,) if state.open_group else ()


def group_bubbles(bubbles: Iterable[Bubble]) -> list[BubbleGroup]:
    """Group ordered, content-bearing bubbles into logical message groups."""
    state = GroupingState()
    groups: list[BubbleGroup] = []
    for bubble in bubbles:
        state, emitted = step(state, bubble)
        groups.extend(emitted)
    groups.extend(flush(state))
    return groups
