"""VM status projection from vCenter properties"""

from typing import Optional

from vm_reconciler.constants import VM_STATUS_PROPERTIES
from vm_reconciler.errors import AggregateError, RecoverableErrors
from vm_reconciler.models import NetworkInterfaceStatus, Phase, PowerState
from vm_reconciler.utils import ip_cidr_notation


def nic_info_to_network_if_status(nic_info) -> NetworkInterfaceStatus:
    ip_addresses = []
    ip_config = nic_info.ipConfig
    if ip_config is not None:
        for ip_address in ip_config.ipAddress or []:
            ip_addresses.append(ip_cidr_notation(ip_address.ipAddress, ip_address.prefixLength))

    return NetworkInterfaceStatus(
        connected=bool(nic_info.connected),
        mac_address=nic_info.macAddress or "",
        ip_addresses=ip_addresses,
    )


class StatusMixin:
    """Overwrites VM status from what vCenter reports now."""

    def update_vm_status(self, vm_ctx, res_vm) -> Optional[AggregateError]:
        """
        Refresh status from config, guest and summary properties.

        Failing to fetch the properties raises and leaves status untouched.
        A failed host name lookup clears the host and is returned
        (aggregated) while the rest of the status is still filled in.

        Returns:
            AggregateError of non-fatal lookup failures, or None
        """
        props = res_vm.get_properties(VM_STATUS_PROPERTIES)
        errors = RecoverableErrors()
        status = vm_ctx.vm.status
        summary = props.get("summary")

        status.phase = Phase.CREATED
        status.unique_id = res_vm.moref_value()

        runtime = summary.runtime if summary is not None else None
        summary_config = summary.config if summary is not None else None

        status.power_state = PowerState(runtime.powerState) if runtime is not None and runtime.powerState else None
        status.bios_uuid = (summary_config.uuid or "") if summary_config is not None else ""
        status.instance_uuid = (summary_config.instanceUuid or "") if summary_config is not None else ""

        host = runtime.host if runtime is not None else None
        if host is not None:
            try:
                status.host = self.client.object_name(host)
            except Exception as e:
                status.host = ""
                errors.add("host name lookup", e)
        else:
            status.host = ""

        guest = props.get("guest")
        if guest is not None:
            status.vm_ip = guest.ipAddress or ""
            status.network_interfaces = [nic_info_to_network_if_status(nic) for nic in guest.net or []]
        else:
            status.vm_ip = ""
            status.network_interfaces = []

        change_tracking = props.get("config.changeTrackingEnabled")
        status.change_block_tracking = bool(change_tracking) if change_tracking is not None else None

        return errors.aggregate()
