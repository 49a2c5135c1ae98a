"""Guest OS customization gate"""

from typing import Dict

from pyVmomi import vim

from vm_reconciler.config_spec import extra_config_to_dict
from vm_reconciler.constants import (
    GOSC_PENDING_EXTRA_CONFIG_KEY,
    VSPHERE_CUSTOMIZATION_BYPASS_DISABLE,
    VSPHERE_CUSTOMIZATION_BYPASS_KEY,
)
from vm_reconciler.errors import is_customization_pending_fault


def is_customization_pending_extra_config(extra_config) -> bool:
    """True when vCenter has a customization package queued for the guest."""
    current: Dict[str, str] = extra_config_to_dict(extra_config)
    return current.get(GOSC_PENDING_EXTRA_CONFIG_KEY, "") != ""


def build_customization_spec(vm_name: str, dns_servers, nic_setting_map) -> vim.vm.customization.Specification:
    spec = vim.vm.customization.Specification()

    identity = vim.vm.customization.LinuxPrep()
    identity.hostName = vim.vm.customization.FixedName(name=vm_name)
    identity.hwClockUTC = True
    spec.identity = identity

    global_ip = vim.vm.customization.GlobalIPSettings()
    global_ip.dnsServerList = list(dns_servers or [])
    spec.globalIPSettings = global_ip

    spec.nicSettingMap = list(nic_setting_map or [])
    return spec


class CustomizationMixin:
    """Decides whether to (re-)issue guest customization and issues it."""

    def customize_vm(self, vm_ctx, res_vm, config, update_args) -> bool:
        """
        Issue guest customization unless bypassed or already pending.

        Args:
            vm_ctx: VMContext of this pass
            res_vm: VirtualMachine resource
            config: vim.vm.ConfigInfo fetched at the start of the pass
            update_args: VmUpdateArgs with DNS servers and interfaces

        Returns:
            True if a customization request was issued
        """
        vm = vm_ctx.vm

        if vm.annotations.get(VSPHERE_CUSTOMIZATION_BYPASS_KEY) == VSPHERE_CUSTOMIZATION_BYPASS_DISABLE:
            vm_ctx.logger.info("Skipping vsphere customization because of vsphere-customization bypass annotation")
            return False

        if is_customization_pending_extra_config(config.extraConfig):
            # TODO: detect a stale pending customization, clear it and re-customize;
            # until then a stuck marker keeps this VM uncustomized.
            vm_ctx.logger.info("Skipping customization because it is already pending")
            return False

        spec = build_customization_spec(
            vm.name,
            update_args.dns_servers,
            update_args.net_if_list.get_interface_customizations(),
        )

        vm_ctx.logger.info(f"Customizing VM with {len(spec.nicSettingMap)} adapter mapping(s)")
        try:
            res_vm.customize(spec)
        except Exception as e:
            # The pending check above should prevent this, but a customization
            # can be queued between the property fetch and this call.
            if not is_customization_pending_fault(e):
                raise
            vm_ctx.logger.info("Customization already pending, continuing")

        return True
