"""
Tests for scoring, game end and winner ranking.
"""

from ..engine_core.rules import score_round, check_game_end, determine_winner, rank_players
from ..engine_core.state import Session, Player, Card, Commitment, CommitPhase


def make_player(player_id, ordinal, credits=0, burned=(), first=None):
    hand = [Card(value=v, burned=v in burned) for v in (1, 2, 3)]
    return Player(
        player_id=player_id,
        display_name=player_id.title(),
        ordinal=ordinal,
        hand=hand,
        credits=credits,
        first_correct_round=first,
    )


def make_session(players, round=1):
    return Session(code="RULES1", phase=CommitPhase(commit_deadline=0.0), round=round, players=players)


class TestScoreRound:
    """Tests for score_round."""

    def test_skip_never_burns(self):
        session = make_session([make_player("ana", 0)])
        session.commitments["ana"] = Commitment.skipped()

        score_round(session, 2)

        assert not any(c.burned for c in session.players[0].hand)
        assert session.players[0].credits == 0

    def test_first_correct_round_set_once(self):
        session = make_session([make_player("ana", 0)], round=2)
        session.commitments["ana"] = Commitment.select(1)
        score_round(session, 1)

        session.round = 4
        session.commitments["ana"] = Commitment.select(3)
        score_round(session, 3)

        ana = session.players[0]
        assert ana.credits == 2
        assert ana.first_correct_round == 2

    def test_burned_card_stays_burned(self):
        """A burned card is never restored by later rounds."""
        session = make_session([make_player("ana", 0)])
        session.commitments["ana"] = Commitment.select(2)
        score_round(session, 1)

        for outcome in (1, 2, 3, 2):
            session.commitments["ana"] = Commitment.skipped()
            score_round(session, outcome)
            assert session.players[0].hand[1].burned

    def test_changes_describe_round(self):
        session = make_session([make_player("ana", 0), make_player("ben", 1)])
        session.commitments = {"ana": Commitment.select(2), "ben": Commitment.select(3)}

        changes = score_round(session, 2)

        assert changes == ["Ana matched 2", "Ben burned 3"]


class TestCheckGameEnd:

    def test_round_cap(self):
        session = make_session([make_player("ana", 0)], round=5)
        assert check_game_end(session)

    def test_all_cards_burned(self):
        session = make_session([make_player("ana", 0, burned=(1, 2, 3))], round=2)
        assert check_game_end(session)

    def test_game_continues(self):
        session = make_session([make_player("ana", 0, burned=(1, 2))], round=4)
        assert not check_game_end(session)

    def test_custom_round_cap(self):
        session = make_session([make_player("ana", 0)], round=3)
        assert check_game_end(session, max_rounds=3)


class TestDetermineWinner:
    """Ranking is credits, then unburned cards, then earliest first win, then join order."""

    def test_no_players(self):
        assert determine_winner(make_session([])) is None

    def test_most_credits_wins(self):
        session = make_session([make_player("ana", 0, credits=1), make_player("ben", 1, credits=2)])
        assert determine_winner(session).player_id == "ben"

    def test_unburned_cards_break_tie(self):
        session = make_session([
            make_player("ana", 0, credits=1, burned=(1, 2), first=1),
            make_player("ben", 1, credits=1, burned=(1,), first=3),
        ])
        assert determine_winner(session).player_id == "ben"

    def test_earlier_first_win_breaks_tie(self):
        session = make_session([
            make_player("ana", 0, credits=1, first=3),
            make_player("ben", 1, credits=1, first=2),
        ])
        assert determine_winner(session).player_id == "ben"

    def test_never_won_sorts_last(self):
        session = make_session([
            make_player("ana", 0, credits=0),
            make_player("ben", 1, credits=0, first=5),
        ])
        assert determine_winner(session).player_id == "ben"

    def test_full_tie_keeps_join_order(self):
        """Ties are broken by ordinal, not by list position."""
        session = make_session([
            make_player("cy", 2),
            make_player("ana", 0),
            make_player("ben", 1),
        ])
        assert [p.player_id for p in rank_players(session)] == ["ana", "ben", "cy"]
        assert determine_winner(session).player_id == "ana"
