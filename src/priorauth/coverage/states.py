"""State Directory: U.S. state / territory names to CMS Coverage API state ids.

The ids are the `state_id` values the CMS Coverage API expects on the
local LCD and article report endpoints. Some states are split by MAC
jurisdiction (California, Missouri, New York) and carry several entries.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StateEntry:
    state_id: int
    description: str


STATES: tuple[StateEntry, ...] = (
    StateEntry(2, "Alabama"),
    StateEntry(1, "Alaska"),
    StateEntry(4, "American Samoa"),
    StateEntry(5, "Arizona"),
    StateEntry(3, "Arkansas"),
    StateEntry(6, "California - Entire State"),
    StateEntry(66, "California - Northern"),
    StateEntry(67, "California - Southern"),
    StateEntry(8, "Colorado"),
    StateEntry(9, "Connecticut"),
    StateEntry(11, "Delaware"),
    StateEntry(10, "District of Columbia"),
    StateEntry(12, "Florida"),
    StateEntry(14, "Georgia"),
    StateEntry(15, "Guam"),
    StateEntry(16, "Hawaii"),
    StateEntry(18, "Idaho"),
    StateEntry(19, "Illinois"),
    StateEntry(20, "Indiana"),
    StateEntry(17, "Iowa"),
    StateEntry(21, "Kansas"),
    StateEntry(22, "Kentucky"),
    StateEntry(23, "Louisiana"),
    StateEntry(26, "Maine"),
    StateEntry(25, "Maryland"),
    StateEntry(24, "Massachusetts"),
    StateEntry(27, "Michigan"),
    StateEntry(28, "Minnesota"),
    StateEntry(31, "Mississippi"),
    StateEntry(29, "Missouri - Entire State"),
    StateEntry(61, "Missouri - Northeastern & Southern"),
    StateEntry(62, "Missouri - Northwestern"),
    StateEntry(32, "Montana"),
    StateEntry(36, "Nebraska"),
    StateEntry(40, "Nevada"),
    StateEntry(37, "New Hampshire"),
    StateEntry(38, "New Jersey"),
    StateEntry(39, "New Mexico"),
    StateEntry(63, "New York - Downstate"),
    StateEntry(41, "New York - Entire State"),
    StateEntry(64, "New York - Queens"),
    StateEntry(65, "New York - Upstate"),
    StateEntry(34, "North Carolina"),
    StateEntry(35, "North Dakota"),
    StateEntry(60, "Northern Mariana Islands"),
    StateEntry(42, "Ohio"),
    StateEntry(43, "Oklahoma"),
    StateEntry(44, "Oregon"),
    StateEntry(45, "Pennsylvania"),
    StateEntry(46, "Puerto Rico"),
    StateEntry(47, "Rhode Island"),
    StateEntry(48, "South Carolina"),
    StateEntry(49, "South Dakota"),
    StateEntry(50, "Tennessee"),
    StateEntry(51, "Texas"),
    StateEntry(52, "Utah"),
    StateEntry(55, "Vermont"),
    StateEntry(54, "Virgin Islands"),
    StateEntry(53, "Virginia"),
    StateEntry(56, "Washington"),
    StateEntry(58, "West Virginia"),
    StateEntry(57, "Wisconsin"),
    StateEntry(59, "Wyoming"),
)

_BY_DESCRIPTION: dict[str, int] = {entry.description.lower(): entry.state_id for entry in STATES}


def resolve_state_id(description: str) -> int | None:
    """Case-insensitive exact lookup. Returns None when the name is unknown.

    A bare name of a split state ("New York") resolves to its
    "Entire State" entry.
    """
    key = description.strip().lower()
    if key in _BY_DESCRIPTION:
        return _BY_DESCRIPTION[key]
    return _BY_DESCRIPTION.get(f"{key} - entire state")


def state_names() -> list[str]:
    return [entry.description for entry in STATES]
