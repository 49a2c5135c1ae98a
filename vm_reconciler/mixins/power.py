"""
Power-state transitions and the reconfigure paths they gate.

A powered off VM that should run gets the full pre-power-on sequence
(interfaces, reconfigure, customization, volume checks) before power on.
A running VM only gets the changes vCenter accepts live.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pyVmomi import vim

from vm_reconciler.config_spec import (
    ConfigDelta,
    update_config_spec,
    update_config_spec_change_block_tracking,
)
from vm_reconciler.devices import (
    create_pci_devices,
    order_device_changes,
    select_by_type,
    update_eth_card_device_changes,
    update_pci_device_changes,
    update_virtual_disk_device_changes,
)
from vm_reconciler.errors import NameserverError, VolumeNotAttachedError, VolumeStatusPendingError
from vm_reconciler.models import PowerState, VmConfigArgs, VmMetadata
from vm_reconciler.network import (
    NetworkInterfaceInfoList,
    ensure_network_interfaces,
    fake_up_cloned_net_if_list,
    get_nameservers,
    template_data,
)
from vm_reconciler.utils import render_template


class PowerTransition(str, Enum):
    NONE = "none"
    POWER_OFF = "powerOff"
    POWER_ON = "powerOn"
    RECONFIGURE_POWERED_ON = "reconfigurePoweredOn"


def plan_power_transition(desired: PowerState, current: Optional[str]) -> PowerTransition:
    """
    Decide what a pass does from desired and reported power state.

    Anything vCenter does not report as poweredOff (suspended included) is
    treated as on.
    """
    is_off = current == PowerState.POWERED_OFF.value

    if desired == PowerState.POWERED_OFF:
        # Reconfiguring a powered off VM is deferred to its next power on
        return PowerTransition.NONE if is_off else PowerTransition.POWER_OFF

    if desired == PowerState.POWERED_ON:
        return PowerTransition.POWER_ON if is_off else PowerTransition.RECONFIGURE_POWERED_ON

    return PowerTransition.NONE


@dataclass
class VmUpdateArgs:
    config_args: VmConfigArgs
    net_if_list: NetworkInterfaceInfoList = field(default_factory=NetworkInterfaceInfoList)
    dns_servers: List[str] = field(default_factory=list)
    vm_metadata: Optional[VmMetadata] = None


class PowerStateMixin:
    """Drives power operations and the reconfigures allowed around them."""

    def get_nameservers(self) -> List[str]:
        return get_nameservers(self.nameserver_file)

    def render_metadata_templates(self, vm_ctx, update_args: VmUpdateArgs) -> Optional[VmMetadata]:
        """Metadata with values rendered against interface and DNS data; bad templates stay literal."""
        vm_metadata = update_args.vm_metadata
        if vm_metadata is None:
            return None

        data = template_data(update_args.net_if_list, update_args.dns_servers)
        rendered = {}
        for key, value in vm_metadata.data.items():
            try:
                rendered[key] = render_template(value, data)
            except Exception as e:
                vm_ctx.recoverable.add(f"render metadata template {key}", e)
                rendered[key] = value

        return VmMetadata(data=rendered, transport=vm_metadata.transport)

    def pre_power_on_config_spec(self, vm_ctx, config, update_args: VmUpdateArgs) -> ConfigDelta:
        config_args = update_args.config_args
        vm = vm_ctx.vm

        delta = update_config_spec(
            config,
            vm,
            config_args.vm_image,
            config_args.vm_class.spec,
            update_args.vm_metadata,
            self.global_extra_config,
            self.get_cpu_min_mhz_in_cluster(),
            self.options,
            vm_ctx.recoverable,
        )

        devices = config.hardware.device
        device_changes = []

        current_disks = select_by_type(devices, vim.vm.device.VirtualDisk)
        device_changes.extend(update_virtual_disk_device_changes(vm.spec.volumes, current_disks))

        current_eth_cards = select_by_type(devices, vim.vm.device.VirtualEthernetCard)
        expected_eth_cards = update_args.net_if_list.get_virtual_device_list()
        device_changes.extend(update_eth_card_device_changes(expected_eth_cards, current_eth_cards))

        if self.options.pci_devices_enabled:
            current_pci_devices = select_by_type(devices, vim.vm.device.VirtualPCIPassthrough)
            expected_pci_devices = create_pci_devices(config_args.vm_class.spec.hardware.devices)
            device_changes.extend(update_pci_device_changes(expected_pci_devices, current_pci_devices))

        delta.device_changes = order_device_changes(device_changes)
        return delta

    def pre_power_on_vm_reconfigure(self, vm_ctx, res_vm, config, update_args: VmUpdateArgs) -> ConfigDelta:
        delta = self.pre_power_on_config_spec(vm_ctx, config, update_args)

        if not delta.is_empty():
            vm_ctx.logger.info(f"Pre PowerOn Reconfigure: {delta}")
            try:
                res_vm.reconfigure(delta.to_config_spec())
            except Exception as e:
                vm_ctx.logger.error(f"pre power on reconfigure failed: {e}")
                raise

        return delta

    def ensure_cns_volumes(self, vm_ctx):
        """
        Every claimed persistent volume must be reported attached in status.

        Raises:
            VolumeNotAttachedError: volume in status but not attached
            VolumeStatusPendingError: volume not in status yet
        """
        vm = vm_ctx.vm
        for volume in vm.spec.volumes:
            if volume.persistent_volume_claim is None:
                # Disks attached directly have no volume status
                continue

            volume_status = next((s for s in vm.status.volumes if s.name == volume.name), None)
            if volume_status is None:
                raise VolumeStatusPendingError(volume.name)
            if not volume_status.attached:
                raise VolumeNotAttachedError(volume.name)

    def prepare_vm_for_power_on(self, vm_ctx, res_vm, config, config_args: VmConfigArgs):
        net_if_list = ensure_network_interfaces(vm_ctx, self.network_provider)
        if not net_if_list:
            # An empty list here comes from a cloned VM whose interfaces the
            # VM spec doesn't list; keep its cards instead of removing them all.
            net_if_list = fake_up_cloned_net_if_list(config)

        dns_servers = []
        try:
            dns_servers = self.get_nameservers()
        except NameserverError as e:
            vm_ctx.recoverable.add("get DNS servers", e)

        update_args = VmUpdateArgs(
            config_args=config_args,
            net_if_list=net_if_list,
            dns_servers=dns_servers,
            vm_metadata=config_args.vm_metadata,
        )

        if self.options.v1alpha2_enabled:
            update_args.vm_metadata = self.render_metadata_templates(vm_ctx, update_args)

        self.pre_power_on_vm_reconfigure(vm_ctx, res_vm, config, update_args)
        self.customize_vm(vm_ctx, res_vm, config, update_args)
        self.ensure_cns_volumes(vm_ctx)

    def powered_on_vm_reconfigure(self, vm_ctx, res_vm, config) -> ConfigDelta:
        """Only change block tracking can change while the VM runs."""
        delta = ConfigDelta()
        update_config_spec_change_block_tracking(config, delta, vm_ctx.vm)

        if not delta.is_empty():
            vm_ctx.logger.info(f"PoweredOn Reconfigure: {delta}")
            try:
                res_vm.reconfigure(delta.to_config_spec())
            except Exception as e:
                vm_ctx.logger.error(f"powered on reconfigure failed: {e}")
                raise

            # Tracking changes on a running VM only take effect after a
            # checkpoint save/restore.
            if delta.change_tracking_enabled is not None:
                try:
                    res_vm.invoke_fsr()
                except Exception as e:
                    vm_ctx.logger.error(f"Failed to invoke FSR for CBT update: {e}")
                    raise

        return delta
