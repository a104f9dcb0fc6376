from __future__ import annotations

import uuid
from typing import Iterable, List

import numpy as np
import pandas as pd

from .config import FIELD_NAME_LIMIT, FIPS_WIDTH


def pad_fips(s: pd.Series, width: int = FIPS_WIDTH) -> pd.Series:
    """Left-pad county FIPS codes to ``width`` digits.

    Accepts ints, floats read from CSV ("1001.0") and strings. Values with no
    digits become <NA>.
    """
    x = (
        s.astype("string")
        .str.strip()
        .str.replace(r"\.0+$", "", regex=True)
        .str.replace(r"[^0-9]", "", regex=True)
    )
    x = x.mask((x.str.len() == 0).fillna(False), pd.NA)
    return x.str.zfill(width)


def make_unique(names: Iterable[str], reserved: Iterable[str] = ()) -> List[str]:
    """First occurrence keeps its name; later ones get 1, 2, ... appended.

    A candidate that is already taken (by an earlier name or by ``reserved``)
    is skipped, so the result never collides.
    """
    taken = set(reserved)
    seen_counts: dict[str, int] = {}
    out: List[str] = []
    for name in names:
        if name not in taken:
            out.append(name)
            taken.add(name)
            seen_counts.setdefault(name, 0)
            continue
        n = seen_counts.get(name, 0)
        while True:
            n += 1
            candidate = f"{name}{n}"
            if candidate not in taken:
                break
        seen_counts[name] = n
        out.append(candidate)
        taken.add(candidate)
    return out


def truncate_field_names(
    names: Iterable[str],
    limit: int = FIELD_NAME_LIMIT,
    reserved: Iterable[str] = (),
) -> List[str]:
    """Truncate to ``limit`` chars, then disambiguate duplicates in field order.

    >>> truncate_field_names(["PRESIDENT_2020", "PRESIDENT_2024"])
    ['PRESIDENT_', 'PRESIDENT_1']
    """
    return make_unique([n[:limit] for n in names], reserved=reserved)


def fit_field_names(
    names: Iterable[str],
    limit: int = FIELD_NAME_LIMIT,
    reserved: Iterable[str] = (),
) -> List[str]:
    """Shorten names that still exceed ``limit`` after suffixing.

    The trailing numeric suffix is kept and the base is trimmed in front of
    it (``PRESIDENT_1`` -> ``PRESIDENT1``). Names already within the limit
    are left alone.
    """
    names = list(names)
    taken = set(reserved) | {n for n in names if len(n) <= limit}
    out: List[str] = []
    for name in names:
        if len(name) <= limit:
            out.append(name)
            continue
        digits = len(name) - len(name.rstrip("0123456789"))
        base, n = name[: len(name) - digits], int(name[len(name) - digits :] or 0)
        while True:
            suffix = str(n) if n else ""
            candidate = base[: limit - len(suffix)] + suffix
            if candidate not in taken:
                break
            n += 1
        taken.add(candidate)
        out.append(candidate)
    return out


def random_unit_ids(n: int, rng: np.random.Generator) -> List[str]:
    """``n`` UUID4-formatted keys drawn from ``rng``.

    Same generator state gives the same keys, so a re-run of the whole batch
    with the same seed reproduces every identifier.
    """
    return [str(uuid.UUID(bytes=rng.bytes(16), version=4)) for _ in range(n)]
