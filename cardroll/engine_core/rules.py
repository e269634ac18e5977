"""
Round rules - scoring, game end and winner ranking.

Pure functions over a Session. resolve_round mutates the session it is
given; the state machine always hands it a clone.
"""

from __future__ import annotations

from .state import Session, Player


def score_round(session: Session, outcome: int) -> list[str]:
    """
    Apply an outcome to every player's commitment.

    A matching selection earns one credit (and records the first winning
    round). A non-matching selection burns that card. Skips never burn.

    Returns human-readable changes.
    """
    changes = []
    for player in session.players:
        commitment = session.commitments.get(player.player_id)
        if commitment is None or commitment.skip:
            continue

        if commitment.selected_value == outcome:
            player.credits += 1
            if player.first_correct_round is None:
                player.first_correct_round = session.round
            changes.append(f"{player.display_name} matched {outcome}")
        elif player.burn_card(commitment.selected_value):
            changes.append(f"{player.display_name} burned {commitment.selected_value}")
    return changes


def check_game_end(session: Session, max_rounds: int = 5) -> bool:
    """True when no player has an unburned card or the round cap is reached."""
    if session.round >= max_rounds:
        return True
    return not any(p.unburned_cards for p in session.players)


def ranking_key(player: Player) -> tuple:
    """
    Sort key: credits desc, unburned cards desc, first win asc.

    A player who never won sorts after every player who did.
    Ties beyond that keep join order (sorted() is stable).
    """
    first = player.first_correct_round
    return (
        -player.credits,
        -len(player.unburned_cards),
        first is None,
        first if first is not None else 0,
    )


def rank_players(session: Session) -> list[Player]:
    ordered = sorted(session.players, key=lambda p: p.ordinal)
    return sorted(ordered, key=ranking_key)


def determine_winner(session: Session) -> Player | None:
    """Head of the ranking, or None with no players."""
    if not session.players:
        return None
    return rank_players(session)[0]
