"""Typed views over XAPI records.

Records are built only from live server data via ``from_xapi``; fields the
lifecycle code does not use are ignored.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from xapi_lifecycle import constants

_OPAQUE_REF_RE = re.compile(constants.OPAQUE_REF_PATTERN)


def is_valid_ref(ref: object) -> bool:
    """True if ``ref`` is a non-null, well-formed opaque reference."""
    return isinstance(ref, str) and ref != constants.NULL_REF and _OPAQUE_REF_RE.fullmatch(ref) is not None


class PowerState(str, Enum):
    """VM power states reported by XAPI."""

    HALTED = "Halted"
    RUNNING = "Running"
    SUSPENDED = "Suspended"
    PAUSED = "Paused"


class XapiRecord(BaseModel):
    """Base for a snapshot of one server-side object."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    ref: str = Field(description="Opaque reference, valid for the current session")
    uuid: str = Field(description="Stable object id")

    @property
    def id(self) -> str:
        return self.uuid

    @classmethod
    def from_xapi(cls, ref: str, fields: dict[str, Any]) -> Self:
        return cls.model_validate({**fields, "ref": ref})


class VmRecord(XapiRecord):
    """VM (or snapshot / template) record."""

    name_label: str = ""
    power_state: PowerState = PowerState.HALTED
    blocked_operations: dict[str, str] = Field(default_factory=dict)
    other_config: dict[str, str] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    vbds: list[str] = Field(default_factory=list, alias="VBDs")
    snapshots: list[str] = Field(default_factory=list)
    is_a_template: bool = False

    @property
    def is_destroy_blocked(self) -> bool:
        return constants.BLOCKED_OPERATION_DESTROY in self.blocked_operations

    @property
    def is_default_template(self) -> bool:
        return self.other_config.get(constants.OTHER_CONFIG_DEFAULT_TEMPLATE) == "true"


class VbdRecord(XapiRecord):
    """Virtual block device: the link between one VM and one disk."""

    type: str = ""
    vdi: str = Field(default=constants.NULL_REF, alias="VDI")
    vm: str = Field(default=constants.NULL_REF, alias="VM")

    @property
    def is_disk(self) -> bool:
        return self.type == constants.VBD_TYPE_DISK


class VdiRecord(XapiRecord):
    """Virtual disk image, with every VBD attached to it across the pool."""

    name_label: str = ""
    vbds: list[str] = Field(default_factory=list, alias="VBDs")
