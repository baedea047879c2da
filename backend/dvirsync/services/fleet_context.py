"""
Session-scoped fleet context.

Holds the device, group and driver maps for one session. The context is
populated at session start (devices and groups), grows as driver
identities are resolved, and is discarded with the session. It is passed
explicitly to whatever reads or writes it.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Set

from dvirsync.core.logging import PerformanceLogger, get_logger
from dvirsync.schemas.inspection import Device, DriverIdentity, Group
from dvirsync.schemas.sync import VehicleFilter
from dvirsync.services.geotab_client import InspectionApi, get_call

logger = get_logger(__name__)

# Built-in groups that are never offered as a filter choice
HIDDEN_GROUP_IDS = frozenset({"GroupCompanyId", "GroupNothingId"})
HIDDEN_GROUP_NAMES = frozenset({"CompanyGroup", "**Nothing**"})


@dataclass
class FleetContext:
    """Device, group and driver maps for one session. Additive only."""

    devices: Dict[str, Device] = field(default_factory=dict)
    groups: Dict[str, Group] = field(default_factory=dict)
    drivers: Dict[str, DriverIdentity] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------------

    def has_driver(self, driver_id: str) -> bool:
        return driver_id in self.drivers

    def add_driver(self, driver: DriverIdentity) -> bool:
        """
        Cache a resolved driver unless one is already cached under its id.

        Returns:
            True if the driver was added
        """
        if driver.id in self.drivers:
            return False
        self.drivers[driver.id] = driver
        return True

    def driver(self, driver_id: Optional[str]) -> Optional[DriverIdentity]:
        if not driver_id:
            return None
        return self.drivers.get(driver_id)

    # -------------------------------------------------------------------------
    # Devices and groups
    # -------------------------------------------------------------------------

    def device(self, device_id: Optional[str]) -> Optional[Device]:
        if not device_id:
            return None
        return self.devices.get(device_id)

    def add_devices(self, devices: List[Device]) -> None:
        for device in devices:
            self.devices.setdefault(device.id, device)

    def add_groups(self, groups: List[Group]) -> None:
        for group in groups:
            self.groups.setdefault(group.id, group)

    def selectable_vehicles(self) -> List[Device]:
        """Vehicles sorted by display name."""
        return sorted(self.devices.values(), key=lambda d: (d.name or "").casefold())

    def selectable_groups(self) -> List[Group]:
        """User-facing groups sorted by name; built-in and unnamed groups are skipped."""
        groups = [
            g
            for g in self.groups.values()
            if g.id not in HIDDEN_GROUP_IDS and g.name and g.name not in HIDDEN_GROUP_NAMES
        ]
        return sorted(groups, key=lambda g: (g.name or "").casefold())

    def allowed_device_ids(self, vehicle_filter: Optional[VehicleFilter]) -> Optional[Set[str]]:
        """
        Resolve a filter into the set of device ids it admits.

        Returns:
            None when the filter admits every device
        """
        if vehicle_filter is None or vehicle_filter.is_unrestricted:
            return None
        if vehicle_filter.vehicle_id:
            return {vehicle_filter.vehicle_id}
        return {d.id for d in self.devices.values() if d.in_group(vehicle_filter.group_id)}


def build_device_predicate(context: FleetContext, vehicle_filter: Optional[VehicleFilter]):
    """
    Build a predicate over a record's device id.

    Records with no device id always pass.
    """
    allowed = context.allowed_device_ids(vehicle_filter)

    def predicate(device_id: Optional[str]) -> bool:
        if allowed is None or not device_id:
            return True
        return device_id in allowed

    return predicate


def _parse_all(model, raw_items: Any) -> list:
    if not isinstance(raw_items, list):
        return []
    parsed = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            parsed.append(model.model_validate(raw))
        except ValueError:
            continue
    return parsed


@PerformanceLogger.track("load_foundation")
async def load_foundation(
    api: InspectionApi,
    context: FleetContext,
    now: Optional[datetime] = None,
    results_limit: int = 5000,
) -> FleetContext:
    """
    Populate devices and groups with one multi-call.

    Devices whose activeTo lies in the past are dropped.
    """
    now = now or datetime.now(UTC)
    results = await api.multi_call([
        get_call("Device", results_limit=results_limit),
        get_call("Group", results_limit=results_limit),
    ])
    raw_devices = results[0] if len(results) > 0 else []
    raw_groups = results[1] if len(results) > 1 else []

    devices = [d for d in _parse_all(Device, raw_devices) if d.is_active(now)]
    groups = _parse_all(Group, raw_groups)

    context.add_devices(devices)
    context.add_groups(groups)
    logger.info(
        f"Loaded {len(devices)} active devices and {len(groups)} groups",
        extra={"devices": len(devices), "groups": len(groups)},
    )
    return context
