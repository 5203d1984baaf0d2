# betaflow/utils/parser.py
import csv
import io
from typing import Dict, Iterator, List, Optional, Tuple

RawRow = Dict[str, str]


def _is_blank(cells: List[str]) -> bool:
    return not cells or (len(cells) == 1 and not cells[0].strip())


class CSVDocument:
    """
    Lazy view over CSV text. Every iteration re-reads the text, so the same
    document can be walked any number of times.

    The first non-blank line is the header; a header naming the same column
    twice raises csv.Error. Lines whose field count differs from the header
    are left out of the rows and reported by ``skipped_lines``.
    """

    def __init__(self, text: str, delimiter: str = ","):
        self.text = text[1:] if text.startswith("\ufeff") else text
        self.delimiter = delimiter

    def _scan(self) -> Iterator[Tuple[int, Optional[RawRow]]]:
        reader = csv.reader(io.StringIO(self.text), delimiter=self.delimiter)
        headers: Optional[List[str]] = None
        for cells in reader:
            if _is_blank(cells):
                continue
            if headers is None:
                headers = [h.strip() for h in cells]
                repeated = sorted({h for h in headers if h and headers.count(h) > 1})
                if repeated:
                    raise csv.Error(f"Duplicate column name(s) in header: {', '.join(repeated)}")
                continue
            if len(cells) != len(headers):
                yield reader.line_num, None
                continue
            yield reader.line_num, {h: v.strip() for h, v in zip(headers, cells)}

    def __iter__(self) -> Iterator[RawRow]:
        return (row for _, row in self._scan() if row is not None)

    @property
    def headers(self) -> List[str]:
        reader = csv.reader(io.StringIO(self.text), delimiter=self.delimiter)
        for cells in reader:
            if not _is_blank(cells):
                return [h.strip() for h in cells]
        return []

    @property
    def skipped_lines(self) -> List[int]:
        return [line for line, row in self._scan() if row is None]


def parse_csv(text: str, delimiter: str = ",") -> CSVDocument:
    return CSVDocument(text, delimiter=delimiter)
