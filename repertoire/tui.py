"""Rich renderers for repertoire trees, stats and drill positions.

Used by ``repertoire.cli`` when ``--show`` is passed; every function
returns a Rich renderable and never prints by itself.
"""

from __future__ import annotations

import chess
from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from repertoire.models import BLACK, COLORS, Entry, LineNode

# Unicode piece symbols
_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"


def _node_label(node: LineNode) -> Text:
    if node.is_virtual:
        return Text(node.move_sequence, style="bold")
    label = Text()
    if node.opponent_san:
        label.append(f"{node.opponent_san} ", style="dim")
    label.append(node.expected_san or node.expected_move, style="bold cyan")
    label.append(f"  {node.move_sequence}", style="italic")
    return label


def render_tree(root: LineNode, color: str) -> Panel:
    """Render a repertoire tree as a Rich Tree inside a Panel.

    Args:
        root: Display root from ``RepertoireManager.get_tree``.
        color: Repertoire color, for the title.

    Returns:
        Panel containing the tree.
    """

    def attach(branch: Tree, node: LineNode) -> None:
        for child in node.children:
            attach(branch.add(_node_label(child)), child)

    tree = Tree(_node_label(root), guide_style="blue")
    attach(tree, root)
    return Panel(tree, title=f"{color.capitalize()} repertoire", border_style="blue")


def render_stats(stats: dict) -> Panel:
    """Render the stats dict as a table with a due-count header."""
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Color")
    table.add_column("Learned", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Progress", justify="left")

    bar_len = 20
    color_stats = stats.get("color_stats", {})
    for color in COLORS:
        counts = color_stats.get(color, {"learned": 0, "total": 0})
        total = counts["total"]
        filled = int(bar_len * counts["learned"] / total) if total else 0
        bar = "█" * filled + "░" * (bar_len - filled)
        table.add_row(color.capitalize(), str(counts["learned"]), str(total), bar)

    header = Text(
        f"Due now: {stats.get('due_count', 0)}   "
        f"Positions: {stats.get('total_positions', 0)}",
        style="bold",
    )
    return Panel(Group(header, table), title="Training", border_style="green")


def render_position(entry: Entry) -> Panel:
    """Render the board of a drill entry from the repertoire side's view.

    Args:
        entry: Entry to drill; its FEN is the position to answer from.

    Returns:
        Panel containing the board.
    """
    board = chess.Board(entry.fen)
    is_flipped = entry.color == BLACK

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if is_flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if is_flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            sq = chess.square(file, rank)
            piece = board.piece_at(sq)
            bg = _LIGHT_SQ if (rank + file) % 2 == 1 else _DARK_SQ
            if piece is not None:
                symbol = _PIECE_SYMBOLS.get(piece.symbol(), "?")
                row.append(Text(f" {symbol} ", style=f"on {bg}"))
            else:
                row.append(Text("   ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in files:
        file_labels.append(Text(f" {chr(ord('a') + f)} ", style="bold"))
    table.add_row(*file_labels)

    to_move = "White" if board.turn == chess.WHITE else "Black"
    return Panel(table, title=f"{to_move} to move", border_style="blue")
