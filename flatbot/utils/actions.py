"""
Inline-button actions.

Handlers work with Action objects (name + named parameters). The string form
only exists in Telegram callback_data and is produced/parsed here.
"""

from dataclasses import dataclass, field
from typing import Optional

from flatbot.models import CollectionPeriod

SEPARATOR = "|"
MAX_CALLBACK_BYTES = 64  # Telegram limit for callback_data

# --- Action names ---
MAIN_MENU = "main_menu"
ADD_EXPENSE = "add_expense"
ADD_INCOME = "add_income"
MONTHLY_REPORT = "monthly_report"
QUARTERLY_REPORT = "quarterly_report"
MANAGE_FLATS = "manage_flats"
ADD_FLAT = "add_flat"
UPDATE_FLAT_MENU = "update_flat_menu"
EDIT_FLAT = "edit_flat"
VIEW_FLATS = "view_flats"
SEARCH_FLAT = "search_flat"
SHOW_FLAT = "show_flat"
COLLECT_MAINTENANCE = "collect_maintenance"
CREATE_COLLECTION = "create_collection"
CREATE_WATER_COLLECTION = "create_water_collection"
CREATE_MAINTENANCE_COLLECTION = "create_maintenance_collection"
CREATE_OTHER_COLLECTION = "create_other_collection"
VIEW_COLLECTIONS = "view_collections"
VIEW_COLLECTION = "view_collection"
UPDATE_COLLECTION = "update_collection"
UPDATE_FLAT = "update_flat"
CANCEL = "cancel"

_PERIOD_PARAMS = ("kind", "month", "year", "label")

# Parameter names per action, in wire order. Actions not listed take none.
ACTION_PARAMS: dict[str, tuple[str, ...]] = {
    EDIT_FLAT: ("flat",),
    SHOW_FLAT: ("flat",),
    VIEW_COLLECTION: _PERIOD_PARAMS,
    UPDATE_COLLECTION: _PERIOD_PARAMS,
    UPDATE_FLAT: ("flat",) + _PERIOD_PARAMS,
}


class ActionError(ValueError):
    """Callback data that cannot be turned into an Action (or back)."""


@dataclass(frozen=True)
class Action:
    name: str
    params: dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.params.get(key, default)

    @property
    def period(self) -> CollectionPeriod:
        """Collection period carried by view/update collection actions."""
        try:
            year = int(self.params["year"])
        except (KeyError, ValueError) as e:
            raise ActionError(f"Action {self.name} has no valid collection period") from e
        return CollectionPeriod(
            kind=self.params["kind"],
            month=self.params["month"],
            year=year,
            label=self.params.get("label") or None,
        )


def action(name: str, **params) -> Action:
    return Action(name, {k: str(v) for k, v in params.items()})


def period_action(name: str, period: CollectionPeriod, **extra) -> Action:
    """Build a collection action from a CollectionPeriod."""
    return action(
        name,
        kind=period.kind,
        month=period.month,
        year=period.year,
        label=period.label or "",
        **extra,
    )


def encode(act: Action) -> str:
    """Action → callback_data string."""
    names = ACTION_PARAMS.get(act.name, ())
    if set(act.params) - set(names):
        raise ActionError(f"Unexpected parameters for {act.name}: {sorted(act.params)}")
    values = [act.params.get(n, "") for n in names]
    for value in values:
        if SEPARATOR in value:
            raise ActionError(f"Parameter contains separator: {value!r}")
    data = SEPARATOR.join([act.name, *values])
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ActionError(f"Callback data too long for {act.name}: {len(data)} chars")
    return data


def decode(data: str) -> Action:
    """callback_data string → Action."""
    if not data:
        raise ActionError("Empty callback data")
    name, *values = data.split(SEPARATOR)
    names = ACTION_PARAMS.get(name, ())
    if len(values) != len(names):
        raise ActionError(f"Expected {len(names)} parameters for {name}, got {len(values)}")
    return Action(name, dict(zip(names, values)))
