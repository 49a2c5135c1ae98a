"""
Virtual device reconciliation.

Matches the devices a VM should have against the devices vCenter reports,
using backing equality. Device keys are assigned by vCenter and are not
stable across passes, so they are never used to pair devices (disks with an
explicit device key in the VM spec are the one exception, see
update_virtual_disk_device_changes).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pyVmomi import vim

from vm_reconciler.constants import (
    EPHEMERAL_STORAGE_RESOURCE,
    MAC_ADDRESS_TYPE_MANUAL,
    PCI_DEVICE_KEY_START,
)
from vm_reconciler.errors import DiskResizeError
from vm_reconciler.models import VirtualDevices, VirtualMachineVolume
from vm_reconciler.utils import storage_quantity_to_bytes

logger = logging.getLogger(__name__)


class DeviceOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    EDIT = "edit"


_VIM_DEVICE_OPERATIONS = {
    DeviceOperation.ADD: vim.vm.device.VirtualDeviceSpec.Operation.add,
    DeviceOperation.REMOVE: vim.vm.device.VirtualDeviceSpec.Operation.remove,
    DeviceOperation.EDIT: vim.vm.device.VirtualDeviceSpec.Operation.edit,
}


@dataclass
class DeviceChange:
    device: Any
    operation: DeviceOperation

    def to_device_spec(self) -> vim.vm.device.VirtualDeviceSpec:
        return vim.vm.device.VirtualDeviceSpec(
            operation=_VIM_DEVICE_OPERATIONS[self.operation],
            device=self.device,
        )


def select_by_type(devices: Optional[Sequence[Any]], device_type: type) -> List[Any]:
    """Devices that are instances of device_type (subclasses included)."""
    return [d for d in (devices or []) if isinstance(d, device_type)]


# =============================================================================
# Backing equality, one function per backing variant
# =============================================================================

def _network_backing_match(cur, exp) -> bool:
    return cur.deviceName == exp.deviceName


def _distributed_port_backing_match(cur, exp) -> bool:
    if cur.port is None or exp.port is None:
        return False
    return (cur.port.switchUuid == exp.port.switchUuid
            and cur.port.portgroupKey == exp.port.portgroupKey)


def _opaque_network_backing_match(cur, exp) -> bool:
    return cur.opaqueNetworkId == exp.opaqueNetworkId


def _vgpu_backing_match(cur, exp) -> bool:
    return cur.vgpu == exp.vgpu


def _dynamic_direct_path_backing_match(cur, exp) -> bool:
    if cur.customLabel != exp.customLabel:
        return False
    current_ids = {(d.vendorId, d.deviceId) for d in (cur.allowedDevice or [])}
    return any((d.vendorId, d.deviceId) in current_ids for d in (exp.allowedDevice or []))


ETHERNET_BACKING_MATCHERS: Dict[type, Callable[[Any, Any], bool]] = {
    vim.vm.device.VirtualEthernetCard.NetworkBackingInfo: _network_backing_match,
    vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo: _distributed_port_backing_match,
    vim.vm.device.VirtualEthernetCard.OpaqueNetworkBackingInfo: _opaque_network_backing_match,
}

PCI_BACKING_MATCHERS: Dict[type, Callable[[Any, Any], bool]] = {
    vim.vm.device.VirtualPCIPassthrough.VmiopBackingInfo: _vgpu_backing_match,
    vim.vm.device.VirtualPCIPassthrough.DynamicBackingInfo: _dynamic_direct_path_backing_match,
}


def backing_match(expected_backing, current_backing, matchers: Dict[type, Callable[[Any, Any], bool]]) -> bool:
    """
    Same backing variant and same payload for that variant.

    A missing current backing, or a variant not in matchers, never matches.
    """
    if current_backing is None or expected_backing is None:
        return False
    if type(current_backing) is not type(expected_backing):
        return False
    matcher = matchers.get(type(expected_backing))
    if matcher is None:
        return False
    return matcher(current_backing, expected_backing)


def ethernet_card_match(expected, current) -> bool:
    # Only the network provider sets a manual MAC or an external id; when it
    # does, the current card has to carry the same one.
    if expected.addressType == MAC_ADDRESS_TYPE_MANUAL:
        if not expected.macAddress or expected.macAddress != current.macAddress:
            return False

    if expected.externalId:
        if expected.externalId != current.externalId:
            return False

    return backing_match(expected.backing, current.backing, ETHERNET_BACKING_MATCHERS)


def pci_device_match(expected, current) -> bool:
    return backing_match(expected.backing, current.backing, PCI_BACKING_MATCHERS)


def match_devices(expected: Sequence[Any], current: Sequence[Any],
                  device_match: Callable[[Any, Any], bool]) -> List[DeviceChange]:
    """
    Compute the add/remove changes turning current into expected.

    Each expected device consumes the first current device it matches, so
    several identical devices (two vGPUs with one profile) pair up one to one.
    Unmatched current devices are removed, unmatched expected devices added.
    Removes come first.
    """
    candidates = list(current)
    adds = []

    for expected_device in expected:
        matching_idx = None
        for idx, current_device in enumerate(candidates):
            if device_match(expected_device, current_device):
                matching_idx = idx
                break

        if matching_idx is None:
            adds.append(DeviceChange(expected_device, DeviceOperation.ADD))
        else:
            del candidates[matching_idx]

    removes = [DeviceChange(device, DeviceOperation.REMOVE) for device in candidates]
    return removes + adds


def update_eth_card_device_changes(expected_eth_cards: Sequence[Any],
                                   current_eth_cards: Sequence[Any]) -> List[DeviceChange]:
    return match_devices(expected_eth_cards, current_eth_cards, ethernet_card_match)


def update_pci_device_changes(expected_pci_devices: Sequence[Any],
                              current_pci_devices: Sequence[Any]) -> List[DeviceChange]:
    return match_devices(expected_pci_devices, current_pci_devices, pci_device_match)


def create_pci_devices(devices: VirtualDevices) -> List[vim.vm.device.VirtualPCIPassthrough]:
    """Build the expected passthrough devices for a VM class, keyed from -200 down."""
    expected = []
    device_key = PCI_DEVICE_KEY_START

    for vgpu in devices.vgpu_devices:
        backing = vim.vm.device.VirtualPCIPassthrough.VmiopBackingInfo(vgpu=vgpu.profile_name)
        expected.append(vim.vm.device.VirtualPCIPassthrough(key=device_key, backing=backing))
        device_key -= 1

    for dynamic_direct_path in devices.dynamic_direct_path_io_devices:
        allowed_device = vim.vm.device.VirtualPCIPassthrough.AllowedDevice(
            vendorId=dynamic_direct_path.vendor_id,
            deviceId=dynamic_direct_path.device_id,
        )
        backing = vim.vm.device.VirtualPCIPassthrough.DynamicBackingInfo(
            allowedDevice=[allowed_device],
            customLabel=dynamic_direct_path.custom_label,
        )
        expected.append(vim.vm.device.VirtualPCIPassthrough(key=device_key, backing=backing))
        device_key -= 1

    return expected


def update_virtual_disk_device_changes(volumes: Sequence[VirtualMachineVolume],
                                       current_disks: Sequence[Any]) -> List[DeviceChange]:
    """
    Grow disks whose desired capacity exceeds the current one.

    Raises:
        DiskResizeError: if a disk would shrink or its device key is unknown
    """
    changes = []

    for volume in volumes:
        vsphere_volume = volume.vsphere_volume
        if vsphere_volume is None or vsphere_volume.device_key is None:
            continue

        device_key = vsphere_volume.device_key
        disk = next((d for d in current_disks if d.key == device_key), None)
        if disk is None:
            raise DiskResizeError(f"could not find volume with device key {device_key}")

        capacity = vsphere_volume.capacity.get(EPHEMERAL_STORAGE_RESOURCE)
        if not capacity:
            continue

        new_capacity = storage_quantity_to_bytes(capacity)
        current_capacity = disk.capacityInBytes or (disk.capacityInKB or 0) * 1024
        if new_capacity < current_capacity:
            raise DiskResizeError(
                f"cannot shrink disk with device key {device_key} "
                f"from {current_capacity} bytes to {new_capacity} bytes"
            )

        if current_capacity < new_capacity:
            logger.debug(f"Growing disk {device_key} from {current_capacity} to {new_capacity} bytes")
            resized = vim.vm.device.VirtualDisk(
                key=disk.key,
                controllerKey=disk.controllerKey,
                unitNumber=disk.unitNumber,
                backing=disk.backing,
                capacityInBytes=new_capacity,
                capacityInKB=new_capacity // 1024,
            )
            changes.append(DeviceChange(resized, DeviceOperation.EDIT))

    return changes


_OPERATION_ORDER = {
    DeviceOperation.REMOVE: 0,
    DeviceOperation.EDIT: 1,
    DeviceOperation.ADD: 2,
}


def order_device_changes(changes: Sequence[DeviceChange]) -> List[DeviceChange]:
    """All removes, then edits, then adds; order within each group is kept."""
    return sorted(changes, key=lambda change: _OPERATION_ORDER[change.operation])
