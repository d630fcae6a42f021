from __future__ import annotations

from typing import Iterable

import pandas as pd


def records_to_csv(rows: Iterable[dict], columns: list[str] | None = None) -> str:
    """Render ``rows`` as CSV text; ``columns`` fixes the header for empty input."""

    df = pd.DataFrame(list(rows), columns=columns)
    return df.to_csv(index=False)
