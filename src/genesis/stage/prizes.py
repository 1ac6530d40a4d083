"""Prize reveal table and end-of-stage messages.

A player's final place is their rank in the stage they were eliminated in
(or the final stage for the last three), so a full ten-player show reveals
places 10-7 after stage 1, 6-4 after stage 2 and 3-1 after stage 3.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Prize:
    place: int
    title: str
    prize: str
    description: str


ROUND_PRIZES: dict[int, dict[int, Prize]] = {
    1: {
        10: Prize(10, "10TH PLACE", 'iPhone 17 (512GB)', "Top 10 Finalist"),
        9: Prize(9, "9TH PLACE", 'MacBook Air 13" (M4)', "Top 10 Finalist"),
        8: Prize(8, "8TH PLACE", "Samsung Galaxy Z Flip 7 (512GB)", "Top 10 Finalist"),
        7: Prize(7, "7TH PLACE", "iPhone 17 Pro (512GB)", "Top 10 Finalist"),
    },
    2: {
        6: Prize(6, "6TH PLACE", 'iPad Pro 13" (512GB) WiFi', "Elite Finalist"),
        5: Prize(5, "5TH PLACE", 'MacBook Pro 14" (M5)', "Elite Finalist"),
        4: Prize(4, "4TH PLACE", "iPhone 17 Pro Max (1TB)", "Elite Finalist"),
    },
    3: {
        3: Prize(3, "3RD PLACE", "Travel Voucher to Maldives", "Package for 2 Pax"),
        2: Prize(2, "2ND PLACE", "Travel Voucher to Japan", "Package for 2 Pax"),
        1: Prize(1, "1ST PLACE", "Travel Voucher to Europe", "Package for 2 Pax"),
    },
}

# 1st and 2nd are revealed together on the champion screen, not here.
_REVEALED_PLACES: dict[int, list[int]] = {
    1: [10, 9, 8, 7],
    2: [6, 5, 4],
    3: [3],
}

SESSION_END_MESSAGES: dict[int, dict[str, str]] = {
    1: {
        "title": "ROUND 01 COMPLETE",
        "subtitle": "4 ELIMINATED • 6 SURVIVORS ADVANCE",
    },
    2: {
        "title": "ROUND 02 COMPLETE",
        "subtitle": "3 ELIMINATED • 3 FINALISTS ADVANCE",
    },
    3: {
        "title": "PROTOCOL COMPLETE",
        "subtitle": "THE CHAMPION HAS BEEN CROWNED",
    },
}


def eliminated_places(stage: int) -> list[int]:
    """Places announced in the prize reveal after ``stage``, worst first."""
    return list(_REVEALED_PLACES.get(stage, []))


def prize_for(stage: int, place: int) -> Prize | None:
    return ROUND_PRIZES.get(stage, {}).get(place)


def session_end_message(stage: int) -> dict[str, str] | None:
    message = SESSION_END_MESSAGES.get(stage)
    return dict(message) if message else None
