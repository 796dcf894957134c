"""
Bracket Layout Engine

Pure function from matches-by-round to card coordinates, connectors and
canvas bounds. No I/O and no mutation of its input, so the same bracket
always lays out identically.

Geometry (pixels):
- round 1 cards stack top-down below the round header
- a later-round card sits at the midpoint of its two feeder cards, at
  its single feeder's height after a bye, or below everything placed so
  far when no feeder can be found
- connectors are four-point elbows from a card's right edge to its
  successor's left edge, both at mid-height
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from foodfight.orm.match import decide_winner

CARD_WIDTH = 192
CARD_HEIGHT = 72
ROUND_GAP = 80
ROUND1_GAP = 24
HEADER_HEIGHT = 40
PADDING_TOP = 20
PADDING_LEFT = 20


# =============================================================================
# Data shapes
# =============================================================================

@dataclass(frozen=True)
class MatchView:
    """The slice of a match the layout needs."""
    id: int
    round: int
    position: int
    slot_a_id: int
    slot_b_id: Optional[int]
    votes_a: int = 0
    votes_b: int = 0

    @property
    def winner_id(self) -> Optional[int]:
        return decide_winner(self.slot_a_id, self.slot_b_id, self.votes_a, self.votes_b)

    @classmethod
    def from_match(cls, match: Any) -> "MatchView":
        return cls(
            id=match.id,
            round=match.round,
            position=match.position,
            slot_a_id=match.slot_a_id,
            slot_b_id=match.slot_b_id,
            votes_a=match.votes_a or 0,
            votes_b=match.votes_b or 0,
        )


@dataclass
class MatchPosition:
    match_id: int
    round: int
    x: float
    y: float
    winner_id: Optional[int]
    next_match_id: Optional[int] = None
    parent_match_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Connector:
    from_match_id: int
    to_match_id: int
    points: List[tuple]


@dataclass(frozen=True)
class Bounds:
    width: float
    height: float


@dataclass
class BracketLayout:
    positions: List[MatchPosition]
    connectors: List[Connector]
    bounds: Bounds
    round_labels: Dict[int, str] = field(default_factory=dict)

    def position_of(self, match_id: int) -> Optional[MatchPosition]:
        for position in self.positions:
            if position.match_id == match_id:
                return position
        return None

    def to_dict(self) -> dict:
        return {
            "positions": [asdict(p) for p in self.positions],
            "connectors": [
                {
                    "from_match_id": c.from_match_id,
                    "to_match_id": c.to_match_id,
                    "points": [list(point) for point in c.points],
                }
                for c in self.connectors
            ],
            "bounds": asdict(self.bounds),
            "round_labels": {str(k): v for k, v in self.round_labels.items()},
        }


# =============================================================================
# Layout
# =============================================================================

def round_label(index: int, total: int, round_number: int) -> str:
    if index == total - 1:
        return "Final"
    if index == total - 2:
        return "Semi-final"
    return f"Round {round_number}"


def _successor(winner_id: Optional[int], next_round: Sequence[MatchView]) -> Optional[int]:
    if winner_id is None:
        return None
    for candidate in next_round:
        if winner_id in (candidate.slot_a_id, candidate.slot_b_id):
            return candidate.id
    return None


def _elbow(start_x: float, start_y: float, end_x: float, end_y: float) -> List[tuple]:
    mid_x = start_x + (end_x - start_x) / 2
    return [(start_x, start_y), (mid_x, start_y), (mid_x, end_y), (end_x, end_y)]


def layout_bracket(matches_by_round: Mapping[int, Iterable[Any]]) -> BracketLayout:
    """
    Lay out a bracket.

    Args:
        matches_by_round: round number -> matches (ORM Match or MatchView)

    Returns:
        BracketLayout; empty positions and zero bounds for an empty bracket
    """
    rounds = {
        number: sorted((MatchView.from_match(m) for m in matches), key=lambda m: m.position)
        for number, matches in matches_by_round.items()
    }
    round_numbers = sorted(number for number, matches in rounds.items() if matches)
    if not round_numbers:
        return BracketLayout(positions=[], connectors=[], bounds=Bounds(width=0, height=0))

    placed: Dict[int, MatchPosition] = {}
    ordered: List[MatchPosition] = []
    max_right = 0.0
    max_bottom = 0.0

    for index, number in enumerate(round_numbers):
        x = PADDING_LEFT + index * (CARD_WIDTH + ROUND_GAP)
        next_round = rounds.get(number + 1, [])
        previous = [placed[m.id] for m in rounds.get(round_numbers[index - 1], [])] if index else []
        fallback_y = max_bottom

        for i, match in enumerate(rounds[number]):
            parents: List[int] = []
            if index == 0:
                y = PADDING_TOP + HEADER_HEIGHT + i * (CARD_HEIGHT + ROUND1_GAP)
            else:
                feeders = [p for p in previous if p.next_match_id == match.id]
                parents = [p.match_id for p in feeders[:2]]
                if len(feeders) >= 2:
                    y = (feeders[0].y + feeders[1].y) / 2
                elif feeders:
                    y = feeders[0].y
                else:
                    y = fallback_y
                    fallback_y += CARD_HEIGHT + ROUND1_GAP

            position = MatchPosition(
                match_id=match.id,
                round=number,
                x=x,
                y=y,
                winner_id=match.winner_id,
                next_match_id=_successor(match.winner_id, next_round),
                parent_match_ids=parents,
            )
            placed[match.id] = position
            ordered.append(position)
            max_right = max(max_right, x + CARD_WIDTH)
            max_bottom = max(max_bottom, y + CARD_HEIGHT)

    connectors = []
    for position in ordered:
        successor = placed.get(position.next_match_id) if position.next_match_id else None
        if successor is None:
            continue
        connectors.append(Connector(
            from_match_id=position.match_id,
            to_match_id=successor.match_id,
            points=_elbow(
                position.x + CARD_WIDTH,
                position.y + CARD_HEIGHT / 2,
                successor.x,
                successor.y + CARD_HEIGHT / 2,
            ),
        ))

    labels = {
        number: round_label(index, len(round_numbers), number)
        for index, number in enumerate(round_numbers)
    }
    return BracketLayout(
        positions=ordered,
        connectors=connectors,
        bounds=Bounds(width=max_right + PADDING_LEFT, height=max_bottom + PADDING_TOP),
        round_labels=labels,
    )
