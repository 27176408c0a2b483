import pytest

from models import GameStatus
from services.board_engine import FREE_INDEX, check_win, deserialize_board, marked_indices, serialize_board
from core.exceptions import (
    ExhaustedPool,
    GameNotFound,
    GameNotPlaying,
    InvalidStateTransition,
    NotHost,
    StoreUnavailable,
)
from core.session_controller import SessionController


def fail_once(monkeypatch, repository, method):
    """讓 repository 的某個寫入方法下一次呼叫失敗"""
    original = getattr(repository, method)
    state = {"failed": False}

    def flaky(*args, **kwargs):
        if not state["failed"]:
            state["failed"] = True
            raise StoreUnavailable("connection dropped")
        return original(*args, **kwargs)

    monkeypatch.setattr(repository, method, flaky)


def play_until_finished(host, registry, repository, game_id, limit=75):
    for _ in range(limit):
        host.call_number()
        registry.pump_game(game_id)
        if repository.get_game(game_id).status == GameStatus.FINISHED:
            return
    raise AssertionError("game never finished")


def test_first_join_creates_player_and_board(repository, rng):
    game = repository.create_game()
    session = SessionController(repository, game.id, "Alice", rng=rng)
    view = session.bootstrap()

    assert view.me.player_name == "Alice"
    assert view.me.has_bingo is False
    stored = repository.get_board(view.me.id)
    assert stored.marked_cells == [FREE_INDEX]
    assert stored.board_data == serialize_board(view.my_board)
    assert [pv.player.id for pv in view.players] == [view.me.id]


def test_bootstrap_unknown_game_raises_and_unsubscribes(repository, feed):
    session = SessionController(repository, "missing", "Alice")
    with pytest.raises(GameNotFound):
        session.bootstrap()
    assert feed.subscriber_count("missing") == 0


def test_rejoin_reuses_player_and_board(repository, rng):
    game = repository.create_game()
    first = SessionController(repository, game.id, "Alice", rng=rng).bootstrap()
    again = SessionController(repository, game.id, "Alice", rng=rng).bootstrap()

    assert again.me.id == first.me.id
    assert again.my_board == first.my_board
    assert len(repository.list_players_with_boards(game.id)) == 1


def test_host_is_earliest_joined_player(registry, repository):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")
    alice.pump()

    assert alice.is_host is True
    assert bob.is_host is False


def test_only_host_can_start(registry, repository):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")

    with pytest.raises(NotHost):
        bob.start_game()

    assert alice.start_game().status == GameStatus.PLAYING
    with pytest.raises(InvalidStateTransition):
        alice.start_game()

    registry.pump_game(game.id)
    assert bob.view.game.status == GameStatus.PLAYING


def test_call_number_requires_playing_and_host(registry, repository):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")

    with pytest.raises(GameNotPlaying):
        alice.call_number()

    alice.start_game()
    with pytest.raises(NotHost):
        bob.call_number()


def test_called_number_marks_every_connected_board(registry, repository):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")
    alice.start_game()

    calls = [alice.call_number().number for _ in range(10)]
    registry.pump_game(game.id)

    for session in (alice, bob):
        assert session.view.called_set == set(calls)
        stored = repository.get_board(session.player_id)
        board = deserialize_board(stored.board_data, stored.marked_cells)
        for row in board:
            for cell in row:
                if not cell.is_free:
                    assert cell.marked == (cell.number in calls)
        assert board == session.view.my_board


def test_game_finishes_once_with_single_winner(registry, repository):
    game = repository.create_game()
    sessions = [registry.connect(game.id, name) for name in ("Alice", "Bob", "Carol")]
    host = sessions[0]
    host.start_game()

    play_until_finished(host, registry, repository, game.id)

    final = repository.get_game(game.id)
    assert final.status == GameStatus.FINISHED
    players = repository.list_players_with_boards(game.id)
    winners = [p for p, _ in players if p.has_bingo]
    assert [w.id for w in winners] == [final.winner_id]

    winner_board = next(b for p, b in players if p.id == final.winner_id)
    assert check_win(deserialize_board(winner_board.board_data, winner_board.marked_cells))

    with pytest.raises(GameNotPlaying):
        host.call_number()

    # 第二次宣告不會改變贏家
    loser = next(p for p, _ in players if p.id != final.winner_id)
    assert repository.finalize_winner(game.id, loser.id) is None
    assert repository.get_game(game.id).winner_id == final.winner_id


def test_exhausted_pool(registry, repository):
    game = repository.create_game()
    host = registry.connect(game.id, "Alice")
    host.start_game()
    for number in range(1, 76):
        repository.insert_call(game.id, number)

    with pytest.raises(ExhaustedPool):
        host.call_number()


def test_rejoin_catches_up_missed_calls(registry, repository):
    game = repository.create_game()
    host = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")
    bob_id = bob.player_id
    host.start_game()

    registry.disconnect(game.id, bob_id)
    called = {host.call_number().number for _ in range(20)}
    registry.pump_game(game.id)

    stored = repository.get_board(bob_id)
    assert stored.marked_cells == [FREE_INDEX]

    bob = registry.connect(game.id, "Bob")
    assert bob.player_id == bob_id
    expected = {
        r * 5 + c
        for r, row in enumerate(stored.board_data)
        for c, number in enumerate(row)
        if number in called
    }
    assert set(repository.get_board(bob_id).marked_cells) == expected | {FREE_INDEX}


def test_closed_session_discards_events(registry, repository):
    game = repository.create_game()
    host = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")
    host.start_game()

    bob.close()
    host.call_number()
    assert bob.pump() == 0
    assert bob.closed is True


def test_failed_mark_write_keeps_unread_events(registry, repository, monkeypatch):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    alice.start_game()
    alice.pump()

    numbers = [cell.number for cell in alice.view.my_board[0][:3]]
    for number in numbers:
        repository.insert_call(game.id, number)

    fail_once(monkeypatch, repository, "update_marks")
    with pytest.raises(StoreUnavailable):
        alice.pump()
    alice.pump()

    assert alice.view.called_set == set(numbers)
    assert marked_indices(alice.view.my_board) == [0, 1, 2]
    assert {0, 1, 2} <= set(repository.get_board(alice.player_id).marked_cells)


def test_failed_bingo_claim_is_retried(registry, repository, monkeypatch):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    alice.start_game()
    alice.pump()

    fail_once(monkeypatch, repository, "finalize_winner")
    for cell in alice.view.my_board[0]:
        repository.insert_call(game.id, cell.number)

    with pytest.raises(StoreUnavailable):
        alice.pump()
    assert check_win(alice.view.my_board)
    assert repository.get_game(game.id).status == GameStatus.PLAYING

    alice.pump()
    final = repository.get_game(game.id)
    assert final.status == GameStatus.FINISHED
    assert final.winner_id == alice.player_id
    assert alice.view.me.has_bingo is True


def test_pump_game_continues_past_a_failing_player(registry, repository, monkeypatch):
    game = repository.create_game()
    alice = registry.connect(game.id, "Alice")
    bob = registry.connect(game.id, "Bob")
    alice.start_game()
    registry.pump_game(game.id)

    number = alice.view.my_board[0][0].number
    repository.insert_call(game.id, number)

    fail_once(monkeypatch, repository, "update_marks")
    registry.pump_game(game.id)

    assert bob.view.called_set == {number}
    assert 0 not in repository.get_board(alice.player_id).marked_cells

    registry.pump_game(game.id)
    assert 0 in repository.get_board(alice.player_id).marked_cells


def test_finished_game_releases_sessions_and_feed(registry, repository, feed):
    game = repository.create_game()
    sessions = [registry.connect(game.id, name) for name in ("Alice", "Bob")]
    host = sessions[0]
    host.start_game()

    play_until_finished(host, registry, repository, game.id)

    assert registry.sessions_for(game.id) == []
    assert all(session.closed for session in sessions)
    assert feed.subscriber_count(game.id) == 0
    assert feed.events_since(game.id) == []
