import csv
import logging
from typing import IO, Iterable, List, Sequence

from .schemas import ReportRow

LOG = logging.getLogger(__name__)


def group_marker(group: str) -> List[str]:
    return [group]


def assemble(group_rows: Iterable[tuple]) -> List[List[str]]:
    """Flatten ``(group, rows)`` pairs into the output stream, each group led by its marker row."""
    out: List[List[str]] = []
    for group, rows in group_rows:
        out.append(group_marker(group))
        LOG.debug("appended marker for group %s", group)
        for row in rows:
            out.append(row.as_list() if isinstance(row, ReportRow) else list(row))
    return out


def write_csv(outfile: IO[str], data: Sequence[Sequence[str]]) -> int:
    writer = csv.writer(outfile)
    for row in data:
        writer.writerow(row)
    return len(data)


def write_report(outfile: IO[str], lines: Iterable[str]) -> int:
    n = 0
    for line in lines:
        outfile.write(line + "\n")
        n += 1
    return n
