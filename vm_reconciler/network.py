"""
Network interfaces for a convergence pass.

The network provider turns each desired interface into a concrete virtual
ethernet card plus its guest customization mapping. The reconciler only
consumes the result; allocating network identities is the provider's job.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pyVmomi import vim

from vm_reconciler.constants import NETWORK_INTERFACE_DEVICE_KEY_START
from vm_reconciler.devices import select_by_type
from vm_reconciler.errors import NameserverError
from vm_reconciler.models import NetworkInterface

logger = logging.getLogger(__name__)


@dataclass
class IPConfig:
    ip: str
    ip_family: str = "ipv4"
    gateway: str = ""
    subnet_mask: str = ""


@dataclass
class NetworkInterfaceInfo:
    device: Any
    customization: Optional[vim.vm.customization.AdapterMapping] = None
    ip_configuration: Optional[IPConfig] = None


class NetworkInterfaceInfoList(list):
    """List of NetworkInterfaceInfo, in spec order."""

    def get_virtual_device_list(self) -> List[Any]:
        return [info.device for info in self]

    def get_interface_customizations(self) -> List[vim.vm.customization.AdapterMapping]:
        return [info.customization for info in self if info.customization is not None]

    def get_ip_configs(self) -> List[IPConfig]:
        return [info.ip_configuration for info in self if info.ip_configuration is not None]


class NetworkProvider:
    """Allocates the concrete device for one desired network interface."""

    def ensure_network_interface(self, vm_ctx, vif: NetworkInterface) -> NetworkInterfaceInfo:
        raise NotImplementedError


ETHERNET_CARD_TYPES = {
    "vmxnet3": vim.vm.device.VirtualVmxnet3,
    "vmxnet2": vim.vm.device.VirtualVmxnet2,
    "e1000": vim.vm.device.VirtualE1000,
    "e1000e": vim.vm.device.VirtualE1000e,
    "pcnet32": vim.vm.device.VirtualPCNet32,
}


class NamedNetworkProvider(NetworkProvider):
    """
    Attaches interfaces to standard port groups by name, using DHCP in the guest.

    The backing only names the network, so no identity needs allocating.
    """

    def ensure_network_interface(self, vm_ctx, vif: NetworkInterface) -> NetworkInterfaceInfo:
        card_type = ETHERNET_CARD_TYPES.get(vif.ethernet_card_type)
        if card_type is None:
            raise ValueError(f"unsupported ethernet card type {vif.ethernet_card_type}")

        nic = card_type()
        nic.backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo()
        nic.backing.deviceName = vif.network_name
        nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo()
        nic.connectable.startConnected = True
        nic.connectable.allowGuestControl = True

        customization = vim.vm.customization.AdapterMapping(
            adapter=vim.vm.customization.IPSettings(ip=vim.vm.customization.DhcpIpGenerator()),
        )
        return NetworkInterfaceInfo(device=nic, customization=customization)


def ensure_network_interfaces(vm_ctx, network_provider: NetworkProvider) -> NetworkInterfaceInfoList:
    """
    Resolve every desired interface, assigning device keys from -100 down.

    The provider's device key is overwritten so the keys stay clear of
    vCenter's positive range and of the passthrough range.
    """
    device_key = NETWORK_INTERFACE_DEVICE_KEY_START
    net_if_list = NetworkInterfaceInfoList()

    for vif in vm_ctx.vm.spec.network_interfaces:
        info = network_provider.ensure_network_interface(vm_ctx, vif)
        info.device.key = device_key
        net_if_list.append(info)
        device_key -= 1

    return net_if_list


def fake_up_cloned_net_if_list(config) -> NetworkInterfaceInfoList:
    """
    Interface list mirroring the cards already on the VM, with DHCP customization.

    Used when the VM spec resolves to no interfaces, so the pass keeps the
    cloned cards rather than removing them all.
    """
    net_if_list = NetworkInterfaceInfoList()
    current_eth_cards = select_by_type(config.hardware.device, vim.vm.device.VirtualEthernetCard)

    for card in current_eth_cards:
        net_if_list.append(NetworkInterfaceInfo(
            device=card,
            customization=vim.vm.customization.AdapterMapping(
                macAddress=card.macAddress,
                adapter=vim.vm.customization.IPSettings(ip=vim.vm.customization.DhcpIpGenerator()),
            ),
        ))

    return net_if_list


def get_nameservers(path: str) -> List[str]:
    """
    Read nameserver entries from a resolv.conf style file.

    Raises:
        NameserverError: if the file is unreadable or lists no nameservers
    """
    if not os.path.exists(path):
        raise NameserverError(f"nameserver file {path} does not exist")

    nameservers = []
    try:
        with open(path, "r") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2 and parts[0] == "nameserver":
                    nameservers.append(parts[1])
    except OSError as e:
        raise NameserverError(f"unable to read nameserver file {path}: {e}")

    if not nameservers:
        raise NameserverError(f"no nameservers found in {path}")

    return nameservers


def template_data(net_if_list: NetworkInterfaceInfoList, dns_servers: List[str]) -> Dict[str, Any]:
    """
    Values available to metadata templates, e.g.
    {{ network_interfaces[0].gateway }} or {{ name_servers | join(",") }}.
    """
    return {
        "network_interfaces": net_if_list.get_ip_configs(),
        "name_servers": list(dns_servers),
    }
