"""Plain-text tables for terminal output."""

from typing import Any, List, Sequence


def format_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    """Render headers and rows as a bordered table followed by a row count."""
    cells: List[List[str]] = [[str(h) for h in headers]]
    for row in rows:
        if len(row) != len(headers):
            raise ValueError(f'row has {len(row)} columns, expected {len(headers)}: {row!r}')
        cells.append(['' if v is None else str(v) for v in row])

    widths = [max(len(r[i]) for r in cells) for i in range(len(headers))]

    def line(values):
        return ' | ' + ' | '.join(v.ljust(w) for v, w in zip(values, widths)) + ' |'

    rule = ' ' + '-' * (sum(widths) + 3 * len(widths) + 1)
    out = [rule, line(cells[0]), rule]
    out.extend(line(r) for r in cells[1:])
    out.append(rule)
    out.append('')
    out.append(f' Count: {len(rows)}')
    return '\n'.join(out)


def format_score(score: float) -> str:
    return f'{score:.4f}'
