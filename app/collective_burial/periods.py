"""Consolidation track classification.

Contracts signed before 2015-01-01 are consolidated after 7 years, contracts
signed on or after 2021-04-01 after 13 years, everything in between after 33
years. The boundaries are fixed by the cemetery's regulations.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Iterable, TypeVar

from app.core.i18n import translate

T = TypeVar("T")

SEVEN_YEAR_CUTOFF = date(2015, 1, 1)
THIRTEEN_YEAR_START = date(2021, 4, 1)


class ConsolidationTrack(str, Enum):
    SEVEN_YEAR = "7year"
    THIRTEEN_YEAR = "13year"
    THIRTY_THREE_YEAR = "33year"

    @property
    def years(self) -> int:
        return TRACK_YEARS[self]


TRACK_YEARS: dict[ConsolidationTrack, int] = {
    ConsolidationTrack.SEVEN_YEAR: 7,
    ConsolidationTrack.THIRTEEN_YEAR: 13,
    ConsolidationTrack.THIRTY_THREE_YEAR: 33,
}


@dataclass(frozen=True)
class Consolidation:
    track: ConsolidationTrack
    target_year: int


@dataclass
class TargetYearGroup:
    year: int
    records: list
    total_count: int = 0


def classify(contract_date: date) -> Consolidation:
    if contract_date < SEVEN_YEAR_CUTOFF:
        track = ConsolidationTrack.SEVEN_YEAR
    elif contract_date >= THIRTEEN_YEAR_START:
        track = ConsolidationTrack.THIRTEEN_YEAR
    else:
        track = ConsolidationTrack.THIRTY_THREE_YEAR
    return Consolidation(track=track, target_year=contract_date.year + track.years)


def track_label(track: ConsolidationTrack) -> str:
    return translate(f"track.{track.value}")


def group_by_target_year(
    records: Iterable[T],
    contract_date_of: Callable[[T], date],
    count_of: Callable[[T], int] = lambda _record: 1,
) -> list[TargetYearGroup]:
    groups: dict[int, TargetYearGroup] = {}
    for record in records:
        year = classify(contract_date_of(record)).target_year
        group = groups.setdefault(year, TargetYearGroup(year=year, records=[]))
        group.records.append(record)
        group.total_count += count_of(record)
    return [groups[year] for year in sorted(groups)]
