import os
import tempfile
import unittest

from pyVmomi import vim

from vm_reconciler.config import BuilderOptions
from vm_reconciler.context import VMContext
from vm_reconciler.errors import NameserverError
from vm_reconciler.mixins.power import VmUpdateArgs
from vm_reconciler.models import (
    MetadataTransport,
    NetworkInterface,
    VirtualMachine,
    VirtualMachineSpec,
    VmConfigArgs,
    VmMetadata,
)
from vm_reconciler.network import (
    IPConfig,
    NamedNetworkProvider,
    NetworkInterfaceInfo,
    NetworkInterfaceInfoList,
    ensure_network_interfaces,
    fake_up_cloned_net_if_list,
    get_nameservers,
    template_data,
)
from vm_reconciler.tests.fakes import FakeSession, FakeVirtualMachine, make_config, make_nic


def vm_with_interfaces(*interfaces):
    return VirtualMachine(name="vm-1", spec=VirtualMachineSpec(network_interfaces=list(interfaces)))


class NetworkInterfaceTests(unittest.TestCase):
    def test_keys_assigned_from_minus_100(self):
        vm_ctx = VMContext(vm=vm_with_interfaces(
            NetworkInterface(network_name="net-1"),
            NetworkInterface(network_name="net-2", ethernet_card_type="e1000e"),
        ))

        net_if_list = ensure_network_interfaces(vm_ctx, NamedNetworkProvider())

        devices = net_if_list.get_virtual_device_list()
        self.assertEqual([d.key for d in devices], [-100, -101])
        self.assertIsInstance(devices[0], vim.vm.device.VirtualVmxnet3)
        self.assertIsInstance(devices[1], vim.vm.device.VirtualE1000e)
        self.assertEqual(devices[1].backing.deviceName, "net-2")
        self.assertEqual(len(net_if_list.get_interface_customizations()), 2)

    def test_unknown_card_type(self):
        vm_ctx = VMContext(vm=vm_with_interfaces(NetworkInterface(network_name="net-1", ethernet_card_type="rtl8139")))

        with self.assertRaises(ValueError):
            ensure_network_interfaces(vm_ctx, NamedNetworkProvider())

    def test_fake_up_mirrors_current_cards(self):
        config = make_config(devices=[make_nic(key=4000, mac="00:50:56:00:00:01"), make_nic(key=4001, mac="00:50:56:00:00:02")])

        net_if_list = fake_up_cloned_net_if_list(config)

        self.assertEqual([d.key for d in net_if_list.get_virtual_device_list()], [4000, 4001])
        self.assertEqual([c.macAddress for c in net_if_list.get_interface_customizations()],
                         ["00:50:56:00:00:01", "00:50:56:00:00:02"])


class NameserverTests(unittest.TestCase):
    def write(self, text):
        fd, path = tempfile.mkstemp()
        with os.fdopen(fd, "w") as f:
            f.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_reads_nameservers(self):
        path = self.write("# comment\nnameserver 10.0.0.2\nsearch example.com\nnameserver 10.0.0.3\n")
        self.assertEqual(get_nameservers(path), ["10.0.0.2", "10.0.0.3"])

    def test_missing_file(self):
        with self.assertRaises(NameserverError):
            get_nameservers("/nonexistent/resolv.conf")

    def test_no_nameservers(self):
        with self.assertRaises(NameserverError):
            get_nameservers(self.write("search example.com\n"))


class MetadataTemplateTests(unittest.TestCase):
    def test_template_data(self):
        net_if_list = NetworkInterfaceInfoList([
            NetworkInterfaceInfo(device=make_nic(), ip_configuration=IPConfig(ip="10.0.0.5", gateway="10.0.0.1")),
        ])

        data = template_data(net_if_list, ["10.0.0.2"])

        self.assertEqual(data["name_servers"], ["10.0.0.2"])
        self.assertEqual(data["network_interfaces"][0].gateway, "10.0.0.1")

    def test_render_metadata_templates(self):
        session = FakeSession(FakeVirtualMachine(make_config()), options=BuilderOptions(v1alpha2_enabled=True))
        vm_ctx = VMContext(vm=VirtualMachine(name="vm-1"))
        metadata = VmMetadata(
            data={
                "guestinfo.dns": "{{ name_servers | join(',') }}",
                "guestinfo.broken": "{{ .V1alpha1.Hostname }}",
                "guestinfo.bad-op": "{{ name_servers + 1 }}",
            },
            transport=MetadataTransport.EXTRA_CONFIG,
        )
        update_args = VmUpdateArgs(config_args=VmConfigArgs(), dns_servers=["10.0.0.2", "10.0.0.3"], vm_metadata=metadata)

        rendered = session.render_metadata_templates(vm_ctx, update_args)

        self.assertEqual(rendered.data["guestinfo.dns"], "10.0.0.2,10.0.0.3")
        self.assertEqual(rendered.data["guestinfo.broken"], "{{ .V1alpha1.Hostname }}")
        self.assertEqual(rendered.data["guestinfo.bad-op"], "{{ name_servers + 1 }}")
        self.assertEqual(rendered.transport, MetadataTransport.EXTRA_CONFIG)
        self.assertEqual(len(vm_ctx.recoverable), 2)


if __name__ == '__main__':
    unittest.main()
