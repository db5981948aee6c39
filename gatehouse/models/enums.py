# gatehouse/models/enums.py
"""Closed value sets stored in the visit tables."""

import enum


class RegistroKind(str, enum.Enum):
    VEHICULAR = "vehicular"          # complete vehicular visit (driver + car)
    SUPPLIER = "supplier"
    UNREGISTERED = "unregistered"
    PEDESTRIAN = "pedestrian"


class RegistroStatus(str, enum.Enum):
    INITIATED = "initiated"
    COMPLETED = "completed"


class LegStatus(str, enum.Enum):
    AT_GATE = "at_gate"
    IN_BUILDING = "in_building"
    EXITED_BUILDING = "exited_building"
    AWAITING_PICKUP = "awaiting_pickup"
    COMPLETED = "completed"


class VehicleLegStatus(str, enum.Enum):
    ON_SITE = "on_site"
    COMPLETED = "completed"


class TokenKind(str, enum.Enum):
    TAG = "tag"      # printed badge, identified by the leg tag
    CARD = "card"    # reusable numbered card, exclusive across open sessions


class EventKind(str, enum.Enum):
    GATE_IN = "gate_in"
    BUILDING_IN = "building_in"
    BUILDING_OUT = "building_out"
    GATE_OUT = "gate_out"


def enum_values(enum_cls):
    return [member.value for member in enum_cls]
