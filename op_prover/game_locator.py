import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from .chain_reader import ChainReader
from .custom_errors import NoCoveringGame
from .types import DisputeGame, GameStatus

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 50


def read_game(reader: ChainReader, index: int) -> DisputeGame:
    game_type, timestamp, proxy = reader.read_game_at(index)

    return {
        "index": index,
        "game_type": game_type,
        "timestamp": timestamp,
        "proxy": proxy,
        "l2_block_number": reader.read_game_l2_block(proxy),
    }


def fetch_games(
    reader: ChainReader, indices: Sequence[int], workers: int = 1
) -> List[DisputeGame]:
    """
    Read every game in `indices`, optionally with a thread pool. The result is
    ordered by index regardless of which read finished first.
    """
    if workers <= 1 or len(indices) <= 1:
        games = [read_game(reader, index) for index in indices]
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(indices))) as pool:
            games = list(pool.map(lambda index: read_game(reader, index), indices))

    return sorted(games, key=lambda game: game["index"])


def is_monotonic(games: Sequence[DisputeGame]) -> bool:
    """True when checkpoint blocks never decrease as the game index grows."""
    ordered = sorted(games, key=lambda game: game["index"])

    return all(
        earlier["l2_block_number"] <= later["l2_block_number"]
        for earlier, later in zip(ordered, ordered[1:])
    )


def _covers(game: DisputeGame, l2_block_number: int, game_type: Optional[int]) -> bool:
    if game_type is not None and game["game_type"] != game_type:
        return False

    return game["l2_block_number"] >= l2_block_number


def covering_games(
    games: Sequence[DisputeGame],
    l2_block_number: int,
    game_type: Optional[int] = None,
) -> List[DisputeGame]:
    """Games that attest to a block at or after `l2_block_number`, lowest index first."""
    return sorted(
        (game for game in games if _covers(game, l2_block_number, game_type)),
        key=lambda game: game["index"],
    )


def _scan_until_uncovered(
    reader: ChainReader,
    indices: Sequence[int],
    l2_block_number: int,
    game_type: Optional[int],
) -> List[DisputeGame]:
    # newest first; relies on checkpoints being monotone across the window
    games: List[DisputeGame] = []
    seen_cover = False

    for index in indices:
        game = read_game(reader, index)
        games.append(game)

        if _covers(game, l2_block_number, game_type):
            seen_cover = True
        elif seen_cover and game["l2_block_number"] < l2_block_number:
            break

    return games


def find_covering_game(
    reader: ChainReader,
    l2_block_number: int,
    window: int = DEFAULT_LOOKBACK,
    workers: int = 1,
    strict: bool = True,
    game_type: Optional[int] = None,
) -> DisputeGame:
    """
    Locate the earliest dispute game, within the `window` most recent games,
    whose checkpoint block covers `l2_block_number`.

    Parameters
    ----------
    reader : ChainReader

    l2_block_number : int
        L2 block that contains the withdrawal.

    window : int, optional
        Number of most recent games to consider.

    workers : int, optional
        Concurrent game reads when `strict` (1 = sequential).

    strict : bool, optional
        Read the whole window. When ``False`` the scan walks from the newest
        game down and stops at the first game below `l2_block_number` once a
        covering game has been seen, which is only correct if checkpoints are
        monotone in the window. Out-of-order checkpoints among the games it
        did read trigger a read of the rest of the window; out-of-order
        games below the stopping point are never read, so the mode cannot
        detect them.

    game_type : int | None, optional
        Only consider games of this type (normally the portal's respected
        game type).

    Returns
    -------
    DisputeGame
        The covering game with the smallest index. Games the challenger has
        already won are skipped.
    """
    if window <= 0:
        raise ValueError("`window` must be positive")

    game_count = reader.read_game_count()

    if game_count == 0:
        raise NoCoveringGame(l2_block_number, "Dispute game factory has no games yet")

    lowest = max(0, game_count - window)
    indices = list(range(game_count - 1, lowest - 1, -1))

    if strict:
        games = fetch_games(reader, indices, workers)
    else:
        games = _scan_until_uncovered(reader, indices, l2_block_number, game_type)

    if not is_monotonic(games):
        logger.warning(
            "Checkpoint blocks are not monotone across games %d..%d; selection uses the full window",
            lowest,
            game_count - 1,
        )

        fetched = {game["index"] for game in games}
        rest = [index for index in indices if index not in fetched]

        if rest:
            games = sorted(
                games + fetch_games(reader, rest, workers), key=lambda game: game["index"]
            )

    for game in covering_games(games, l2_block_number, game_type):
        status = reader.read_game_status(game["proxy"])

        if status == GameStatus.CHALLENGER_WINS:
            logger.warning("Skipping game %d: challenger won", game["index"])
            continue

        logger.info(
            "Game %d (%s) covers block %d with checkpoint %d",
            game["index"],
            game["proxy"],
            l2_block_number,
            game["l2_block_number"],
        )

        return game

    newest = max(games, key=lambda game: game["index"])

    raise NoCoveringGame(
        l2_block_number,
        f"No game in {lowest}..{game_count - 1} covers block {l2_block_number} "
        f"(newest game {newest['index']} checkpoints block {newest['l2_block_number']}). "
        "Try again once a newer dispute game is created.",
    )
