"""
Puzzle move checking on top of python-chess.

A puzzle is a starting FEN plus a UCI solution line. The solver plays the
side to move in the FEN, so solution indices 0, 2, 4... are solver moves
and the odd indices are the scripted opponent replies.

All rules (legality, FEN parsing, SAN rendering) come from python-chess;
this module only compares the solver's moves against the stored line.
"""

import re
from dataclasses import dataclass, field

import chess

UCI_MOVE_PATTERN = re.compile(r'^[a-h][1-8][a-h][1-8][qrbn]?$')


class PuzzleLineError(ValueError):
    """Raised when a position or move line cannot be played."""


@dataclass
class MoveCheck:
    legal: bool
    correct: bool
    move: str | None
    fen: str
    reply: str | None = None
    solved: bool = False
    next_index: int = 0


@dataclass
class AttemptEvaluation:
    correct: bool
    matched_moves: int
    illegal_move: str | None = None
    san: list[str] = field(default_factory=list)


def normalize_uci(move: str) -> str:
    normalized = move.strip().lower()
    if not UCI_MOVE_PATTERN.match(normalized):
        raise PuzzleLineError(f'Invalid UCI move: {move!r}')
    return normalized


def load_board(fen: str) -> chess.Board:
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise PuzzleLineError(f'Invalid FEN: {exc}') from exc

    if not board.is_valid():
        raise PuzzleLineError('FEN does not describe a legal position.')
    return board


def moves_match(played: str, expected: str) -> bool:
    """Compare a played move to the expected one, tolerating promotion suffixes."""
    if played == expected:
        return True
    if played[:4] != expected[:4]:
        return False
    return len(played) == 5 or len(expected) == 5


def is_solver_move(index: int) -> bool:
    return index % 2 == 0


def last_solver_index(solution: list[str]) -> int:
    if not solution:
        return -1
    return len(solution) - 1 if is_solver_move(len(solution) - 1) else len(solution) - 2


def complete_promotion(board: chess.Board, move: str, expected: str | None) -> str:
    """Add a promotion piece to a bare pawn move onto the last rank."""
    if len(move) != 4:
        return move

    from_square = chess.parse_square(move[:2])
    to_square = chess.parse_square(move[2:4])
    piece = board.piece_at(from_square)
    if piece is None or piece.piece_type != chess.PAWN:
        return move
    if chess.square_rank(to_square) not in (0, 7):
        return move

    if expected and len(expected) == 5 and expected[:4] == move:
        return move + expected[4]
    return move + 'q'


def parse_legal_move(board: chess.Board, move: str) -> chess.Move | None:
    try:
        parsed = chess.Move.from_uci(move)
    except ValueError:
        return None
    if not board.is_legal(parsed):
        return None
    return parsed


def play_line(fen: str, moves: list[str]) -> chess.Board:
    """Play ``moves`` from ``fen`` and return the resulting board."""
    board = load_board(fen)
    for move in moves:
        parsed = parse_legal_move(board, normalize_uci(move))
        if parsed is None:
            raise PuzzleLineError(f'Illegal move in line: {move}')
        board.push(parsed)
    return board


def validate_solution(fen: str, solution: list[str]) -> list[str]:
    """Check that a puzzle's solution is a legal line and return it normalized."""
    if not solution:
        raise PuzzleLineError('Solution must contain at least one move.')

    normalized = [normalize_uci(move) for move in solution]
    play_line(fen, normalized)
    return normalized


def san_line(fen: str, moves: list[str]) -> list[str]:
    """Render UCI moves as SAN, keeping raw UCI from the first unplayable move on."""
    try:
        board = load_board(fen)
    except PuzzleLineError:
        return list(moves)

    rendered: list[str] = []
    for index, move in enumerate(moves):
        parsed = parse_legal_move(board, move)
        if parsed is None:
            rendered.extend(moves[index:])
            break
        rendered.append(board.san(parsed))
        board.push(parsed)
    return rendered


def format_line(san_moves: list[str]) -> str:
    """Number a SAN line from the solver's point of view, e.g. ``1. Qh5 g6 2. Qxf7#``."""
    parts: list[str] = []
    for index, san in enumerate(san_moves):
        if is_solver_move(index):
            parts.append(f'{index // 2 + 1}. {san}')
        else:
            parts.append(san)
    return ' '.join(parts)


def check_move(fen: str, solution: list[str], played: list[str], move: str) -> MoveCheck:
    """Check one solver move against the solution after ``played`` moves."""
    played = [normalize_uci(item) for item in played]
    move = normalize_uci(move)
    index = len(played)

    for position, item in enumerate(played):
        if position >= len(solution) or not moves_match(item, solution[position]):
            raise PuzzleLineError('Played moves do not follow the puzzle solution.')

    # Accepted moves stand for their solution counterpart, promotion piece included.
    board = play_line(fen, solution[:index])

    if index > last_solver_index(solution):
        return MoveCheck(legal=False, correct=False, move=None, fen=board.fen(), solved=True, next_index=index)
    if not is_solver_move(index):
        raise PuzzleLineError('It is not the solver\'s turn to move.')

    expected = solution[index]
    move = complete_promotion(board, move, expected)
    parsed = parse_legal_move(board, move)
    if parsed is None:
        return MoveCheck(legal=False, correct=False, move=move, fen=board.fen(), next_index=index)

    if not moves_match(move, expected):
        return MoveCheck(legal=True, correct=False, move=move, fen=board.fen(), next_index=index)

    solution_move = parse_legal_move(board, expected)
    if solution_move is None:
        raise PuzzleLineError(f'Illegal move in solution: {expected}')
    move = expected
    board.push(solution_move)
    next_index = index + 1
    reply = None
    if next_index < len(solution):
        reply_move = parse_legal_move(board, solution[next_index])
        if reply_move is None:
            raise PuzzleLineError(f'Illegal reply in solution: {solution[next_index]}')
        board.push(reply_move)
        reply = solution[next_index]
        next_index += 1

    return MoveCheck(
        legal=True,
        correct=True,
        move=move,
        fen=board.fen(),
        reply=reply,
        solved=index == last_solver_index(solution),
        next_index=next_index,
    )


def evaluate_attempt(fen: str, solution: list[str], moves: list[str]) -> AttemptEvaluation:
    """Grade a full attempt; it is correct once every solver move has been matched."""
    board = load_board(fen)
    matched = 0
    played: list[str] = []

    for index, move in enumerate(moves):
        expected = solution[index] if index < len(solution) else None
        move = complete_promotion(board, normalize_uci(move), expected)
        played.append(move)
        parsed = parse_legal_move(board, move)
        if parsed is None:
            return AttemptEvaluation(
                correct=False,
                matched_moves=matched,
                illegal_move=move,
                san=san_line(fen, played + list(moves[index + 1:])),
            )
        if expected is None or not moves_match(move, expected):
            break
        solution_move = parse_legal_move(board, expected)
        if solution_move is None:
            raise PuzzleLineError(f'Illegal move in solution: {expected}')
        played[-1] = expected
        board.push(solution_move)
        matched += 1

    played.extend(moves[len(played):])
    correct = matched == len(moves) and matched > last_solver_index(solution)
    return AttemptEvaluation(correct=correct, matched_moves=matched, san=san_line(fen, played))
