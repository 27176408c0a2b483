import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from models import GameStatus
from core.change_feed import ChangeFeed
from core.exceptions import (
    GameNotFound,
    InvalidStateTransition,
    NoPlayersInGame,
    NumberAlreadyCalled,
    PlayerNotFound,
    StoreUnavailable,
)
from core.repository import SqlGameRepository
from tests.conftest import FIXED_MATRIX


def test_create_game_starts_waiting(repository):
    game = repository.create_game()

    assert game.status == GameStatus.WAITING
    assert game.winner_id is None
    assert game.host_id.startswith("host_")
    assert repository.get_game(game.id) == game


def test_get_unknown_game_raises(repository):
    with pytest.raises(GameNotFound):
        repository.get_game("missing")


def test_list_open_games_excludes_finished(repository):
    waiting = repository.create_game()
    finished = repository.create_game()
    player = repository.insert_player(finished.id, "Alice")
    repository.start_game(finished.id)
    repository.finalize_winner(finished.id, player.id)

    assert [g.id for g in repository.list_open_games()] == [waiting.id]


def test_insert_player_with_same_name_reuses_player(repository):
    game = repository.create_game()
    first = repository.insert_player(game.id, "Alice")
    again = repository.insert_player(game.id, "Alice")

    assert again.id == first.id
    assert [p.id for p, _ in repository.list_players_with_boards(game.id)] == [first.id]


def test_players_are_ordered_by_join_time(repository):
    game = repository.create_game()
    names = ["Carol", "Alice", "Bob"]
    for name in names:
        repository.insert_player(game.id, name)

    assert [p.player_name for p, _ in repository.list_players_with_boards(game.id)] == names


def test_update_marks_only_adds(repository):
    game = repository.create_game()
    player = repository.insert_player(game.id, "Alice")
    repository.insert_board(player.id, FIXED_MATRIX, [12])

    repository.update_marks(player.id, [0, 3])
    board = repository.update_marks(player.id, [1])
    assert board.marked_cells == [0, 1, 3, 12]


def test_start_game_requires_players_and_waiting(repository):
    game = repository.create_game()
    with pytest.raises(NoPlayersInGame):
        repository.start_game(game.id)

    repository.insert_player(game.id, "Alice")
    assert repository.start_game(game.id).status == GameStatus.PLAYING

    with pytest.raises(InvalidStateTransition):
        repository.start_game(game.id)


def test_duplicate_call_is_rejected(repository):
    game = repository.create_game()
    repository.insert_call(game.id, 42)

    with pytest.raises(NumberAlreadyCalled):
        repository.insert_call(game.id, 42)
    assert [c.number for c in repository.list_calls(game.id)] == [42]


def test_finalize_winner_happens_once(repository):
    game = repository.create_game()
    alice = repository.insert_player(game.id, "Alice")
    bob = repository.insert_player(game.id, "Bob")
    repository.start_game(game.id)

    finished = repository.finalize_winner(game.id, alice.id)
    assert finished.status == GameStatus.FINISHED
    assert finished.winner_id == alice.id

    assert repository.finalize_winner(game.id, bob.id) is None

    players = {p.id: p for p, _ in repository.list_players_with_boards(game.id)}
    assert players[alice.id].has_bingo is True
    assert players[bob.id].has_bingo is False
    assert repository.get_game(game.id).winner_id == alice.id


def test_writes_publish_change_events(repository, feed):
    game = repository.create_game()
    sub = repository.subscribe(game.id)

    player = repository.insert_player(game.id, "Alice")
    repository.insert_board(player.id, FIXED_MATRIX, [12])
    repository.start_game(game.id)
    repository.insert_call(game.id, 7)

    events = sub.drain()
    assert [(e.table, e.kind) for e in events] == [
        ("players", "INSERT"),
        ("boards", "INSERT"),
        ("games", "UPDATE"),
        ("called_numbers", "INSERT"),
    ]
    assert events[-1].row.number == 7

    # 短輪詢：backlog 也包含訂閱之前的 games INSERT
    backlog = feed.events_since(game.id)
    assert backlog[0].table == "games"
    assert feed.events_since(game.id, since=events[-1].seq) == []


def test_closed_subscription_receives_nothing(repository, feed):
    game = repository.create_game()
    sub = repository.subscribe(game.id)
    sub.close()

    repository.insert_player(game.id, "Alice")
    assert sub.drain() == []
    assert feed.subscriber_count(game.id) == 0


def test_store_failure_surfaces_as_store_unavailable(tmp_path):
    broken = create_engine(f"sqlite:///{tmp_path}/missing/dir/bingo.db")
    repository = SqlGameRepository(sessionmaker(bind=broken), ChangeFeed())

    with pytest.raises(StoreUnavailable):
        repository.create_game()


def test_finalize_winner_requires_playing_game(repository):
    game = repository.create_game()
    alice = repository.insert_player(game.id, "Alice")

    assert repository.finalize_winner(game.id, alice.id) is None
    stored = repository.get_game(game.id)
    assert stored.status == GameStatus.WAITING
    assert stored.winner_id is None


def test_finalize_winner_rejects_player_from_another_game(repository):
    game = repository.create_game()
    other = repository.create_game()
    repository.insert_player(game.id, "Alice")
    stranger = repository.insert_player(other.id, "Mallory")
    repository.start_game(game.id)

    with pytest.raises(PlayerNotFound):
        repository.finalize_winner(game.id, stranger.id)
    assert repository.get_game(game.id).status == GameStatus.PLAYING


def test_release_drops_backlog_only_without_subscribers(repository, feed):
    game = repository.create_game()
    sub = repository.subscribe(game.id)

    assert feed.release(game.id) is False
    assert feed.events_since(game.id) != []

    sub.close()
    repository.release(game.id)
    assert feed.events_since(game.id) == []
    assert game.id not in feed._subscribers
