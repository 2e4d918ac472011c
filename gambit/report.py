"""Rich terminal rendering for game reviews."""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gambit.models import BLACK, WHITE, Classification, GameReview

_CLASSIFICATION_STYLES = {
    Classification.BLUNDER: "bold red",
    Classification.MISTAKE: "red",
    Classification.INACCURACY: "yellow",
    Classification.GOOD: "green",
    Classification.EXCELLENT: "bold green",
    Classification.BRILLIANT: "bold cyan",
}


def _format_eval(evaluation: int | None) -> str:
    if evaluation is None:
        return "-"
    if abs(evaluation) >= 9000:
        return "#" if evaluation > 0 else "-#"
    return f"{evaluation / 100.0:+.2f}"


def render_moves(review: GameReview) -> Table:
    """Table of judged moves, one row per ply."""
    table = Table(title="Moves", expand=True)
    table.add_column("#", justify="right")
    table.add_column("Move")
    table.add_column("Eval", justify="right")
    table.add_column("Class")
    table.add_column("Best")
    table.add_column("Comment")

    for move in review.moves:
        number = f"{(move.ply + 1) // 2}{'.' if move.color == WHITE else '...'}"
        style = _CLASSIFICATION_STYLES[move.classification]
        table.add_row(
            number,
            f"{move.san}{move.classification.symbol}",
            _format_eval(move.evaluation),
            Text(move.classification.value, style=style),
            move.best_move or "-",
            move.rationale,
        )
    return table


def render_summary(review: GameReview) -> Table:
    """Per-side counts and accuracy."""
    table = Table(title="Summary")
    table.add_column("")
    table.add_column("White", justify="right")
    table.add_column("Black", justify="right")

    for classification in Classification:
        counts = review.summary.get(classification.value, {})
        table.add_row(
            Text(classification.value.capitalize(), style=_CLASSIFICATION_STYLES[classification]),
            str(counts.get(WHITE, 0)),
            str(counts.get(BLACK, 0)),
        )
    table.add_row(
        Text("Accuracy", style="bold"),
        f"{review.accuracy.get(WHITE, 100.0):.1f}%",
        f"{review.accuracy.get(BLACK, 100.0):.1f}%",
    )
    return table


def render_review(review: GameReview) -> Panel:
    """Full review panel with headers, move table and summary."""
    white = review.headers.get("White", "White")
    black = review.headers.get("Black", "Black")
    result = review.headers.get("Result", "*")
    title = f"{white} vs {black}  {result}"
    subtitle = f"first {review.opening_skip} moves treated as theory"
    return Panel(
        Group(render_moves(review), render_summary(review)),
        title=title,
        subtitle=subtitle,
    )


def print_review(review: GameReview, console: Console | None = None) -> None:
    (console or Console()).print(render_review(review))
