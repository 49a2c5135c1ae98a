import os
import tempfile
import unittest

from pyVmomi import vim

from vm_reconciler.constants import CLUSTER_MODULE_NAME_ANNOTATION, PROVIDER_TAGS_ANNOTATION
from vm_reconciler.context import VMContext
from vm_reconciler.errors import (
    AggregateError,
    ConfigNotAvailableError,
    VolumeNotAttachedError,
    VolumeStatusPendingError,
)
from vm_reconciler.mixins.power import PowerTransition, VmUpdateArgs, plan_power_transition
from vm_reconciler.models import (
    AdvancedOptions,
    ClassHardware,
    ClusterModuleStatus,
    NetworkInterface,
    PersistentVolumeClaimSource,
    PowerState,
    ResourcePolicyStatus,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineClassSpec,
    VirtualMachineSetResourcePolicy,
    VirtualMachineSpec,
    VirtualMachineVolume,
    VmConfigArgs,
    VolumeStatus,
)
from vm_reconciler.network import ensure_network_interfaces
from vm_reconciler.tests.fakes import (
    FakeAffinityClient,
    FakeClient,
    FakeNetworkProvider,
    FakeSession,
    FakeVirtualMachine,
    make_config,
    make_nic,
)


def config_args(cpus=2, memory="2Gi", resource_policy=None):
    return VmConfigArgs(
        vm_class=VirtualMachineClass(
            name="best-effort-small",
            spec=VirtualMachineClassSpec(hardware=ClassHardware(cpus=cpus, memory=memory)),
        ),
        resource_policy=resource_policy,
    )


def make_vm(power_state=PowerState.POWERED_ON, interfaces=None, volumes=None,
            change_block_tracking=None, annotations=None):
    return VirtualMachine(
        name="vm-1",
        namespace="ns-1",
        annotations=annotations or {},
        spec=VirtualMachineSpec(
            image_name="ubuntu-22.04",
            power_state=power_state,
            network_interfaces=[NetworkInterface(network_name=n) for n in (interfaces or [])],
            volumes=volumes or [],
            advanced_options=AdvancedOptions(change_block_tracking=change_block_tracking),
        ),
    )


class PowerTransitionTests(unittest.TestCase):
    def test_plan(self):
        cases = [
            (PowerState.POWERED_OFF, "poweredOff", PowerTransition.NONE),
            (PowerState.POWERED_OFF, "poweredOn", PowerTransition.POWER_OFF),
            (PowerState.POWERED_OFF, "suspended", PowerTransition.POWER_OFF),
            (PowerState.POWERED_ON, "poweredOff", PowerTransition.POWER_ON),
            (PowerState.POWERED_ON, "poweredOn", PowerTransition.RECONFIGURE_POWERED_ON),
            (PowerState.POWERED_ON, "suspended", PowerTransition.RECONFIGURE_POWERED_ON),
        ]
        for desired, current, expected in cases:
            with self.subTest(desired=desired, current=current):
                self.assertEqual(plan_power_transition(desired, current), expected)


class ClusterCpuFrequencyTests(unittest.TestCase):
    def test_cluster_minimum_is_read_every_pass(self):
        client = FakeClient(cpu_mhz=2000)
        session = FakeSession(FakeVirtualMachine(make_config()), client=client, cluster=object(), min_cpu_freq=None)

        self.assertEqual(session.get_cpu_min_mhz_in_cluster(), 2000)
        client.cpu_mhz = 1800
        self.assertEqual(session.get_cpu_min_mhz_in_cluster(), 1800)
        self.assertEqual(client.cpu_lookups, 2)

    def test_fixed_frequency_skips_lookup(self):
        client = FakeClient(cpu_mhz=1800)
        session = FakeSession(FakeVirtualMachine(make_config()), client=client, cluster=object(), min_cpu_freq=2500)

        self.assertEqual(session.get_cpu_min_mhz_in_cluster(), 2500)
        self.assertEqual(client.cpu_lookups, 0)

    def test_no_cluster_is_zero(self):
        client = FakeClient()
        session = FakeSession(FakeVirtualMachine(make_config()), client=client, min_cpu_freq=None)

        self.assertEqual(session.get_cpu_min_mhz_in_cluster(), 0)
        self.assertEqual(client.cpu_lookups, 0)


class UpdateVirtualMachineTests(unittest.TestCase):
    def setUp(self):
        fd, self.resolv_conf = tempfile.mkstemp()
        with os.fdopen(fd, "w") as f:
            f.write("search example.com\nnameserver 10.0.0.2\nnameserver 10.0.0.3\n")

    def tearDown(self):
        os.remove(self.resolv_conf)

    def session(self, res_vm, **kwargs):
        kwargs.setdefault("nameserver_file", self.resolv_conf)
        return FakeSession(res_vm, **kwargs)

    def test_power_on_with_converged_hardware(self):
        """Nothing to reconfigure: customize, power on, status Created."""
        res_vm = FakeVirtualMachine(make_config(num_cpus=2, memory_mb=2048))
        vm_ctx = VMContext(vm=make_vm())

        self.session(res_vm).update_virtual_machine(vm_ctx, config_args())

        self.assertEqual(res_vm.calls_named("reconfigure"), [])
        self.assertEqual([c[0] for c in res_vm.calls], ["customize", "power"])
        customize_spec = res_vm.calls_named("customize")[0][1]
        self.assertEqual(list(customize_spec.globalIPSettings.dnsServerList), ["10.0.0.2", "10.0.0.3"])
        status = vm_ctx.vm.status
        self.assertEqual(status.phase.value, "Created")
        self.assertEqual(status.power_state, PowerState.POWERED_ON)
        self.assertEqual(status.bios_uuid, "bios-uuid-1")

    def test_enable_cbt_on_running_vm(self):
        """Only change tracking is sent, followed by exactly one checkpoint restore."""
        res_vm = FakeVirtualMachine(make_config(change_tracking=False), power_state=PowerState.POWERED_ON)
        vm_ctx = VMContext(vm=make_vm(change_block_tracking=True))

        self.session(res_vm).update_virtual_machine(vm_ctx, config_args(cpus=8))

        reconfigures = res_vm.calls_named("reconfigure")
        self.assertEqual(len(reconfigures), 1)
        spec = reconfigures[0][1]
        self.assertTrue(spec.changeTrackingEnabled)
        self.assertIsNone(spec.numCPUs)
        self.assertEqual(len(res_vm.calls_named("fsr")), 1)
        self.assertTrue(vm_ctx.vm.status.change_block_tracking)

    def test_running_vm_without_changes_does_nothing(self):
        res_vm = FakeVirtualMachine(make_config(change_tracking=True), power_state=PowerState.POWERED_ON)
        vm_ctx = VMContext(vm=make_vm(change_block_tracking=True))

        self.session(res_vm).update_virtual_machine(vm_ctx, config_args())

        self.assertEqual(res_vm.calls, [])

    def test_power_off(self):
        res_vm = FakeVirtualMachine(make_config(num_cpus=1), power_state=PowerState.POWERED_ON)
        vm_ctx = VMContext(vm=make_vm(power_state=PowerState.POWERED_OFF))

        self.session(res_vm).update_virtual_machine(vm_ctx, config_args(cpus=4))

        self.assertEqual([c[0] for c in res_vm.calls], ["power"])
        self.assertEqual(vm_ctx.vm.status.power_state, PowerState.POWERED_OFF)

    def test_second_pass_makes_no_calls(self):
        res_vm = FakeVirtualMachine(make_config(num_cpus=1, memory_mb=1024, annotation=None, managed=False))
        session = self.session(res_vm, global_extra_config={"guestinfo.image": "{{ image_name }}"})

        session.update_virtual_machine(VMContext(vm=make_vm(interfaces=["net-1"])), config_args())
        self.assertEqual([c[0] for c in res_vm.calls], ["reconfigure", "customize", "power"])

        res_vm.calls.clear()
        session.update_virtual_machine(VMContext(vm=make_vm(interfaces=["net-1"])), config_args())
        self.assertEqual(res_vm.calls, [])

    def test_pre_power_on_reconfigure_converges(self):
        """Applying the pre power on delta once leaves nothing for the next build."""
        res_vm = FakeVirtualMachine(make_config(num_cpus=1, memory_mb=1024, devices=[make_nic(key=4000, network="old-net")]))
        session = self.session(res_vm, global_extra_config={"guestinfo.image": "{{ image_name }}"})
        vm = make_vm(interfaces=["net-1", "net-2"])

        session.update_virtual_machine(VMContext(vm=vm), config_args())

        spec = res_vm.calls_named("reconfigure")[0][1]
        operations = [change.operation for change in spec.deviceChange]
        self.assertEqual(operations, ["remove", "add", "add"])
        self.assertEqual([change.device.key for change in spec.deviceChange[1:]], [4100, 4101])
        self.assertEqual(spec.numCPUs, 2)
        self.assertEqual(spec.memoryMB, 2048)

        res_vm.power_state = PowerState.POWERED_OFF.value
        res_vm.calls.clear()
        vm_ctx = VMContext(vm=make_vm(interfaces=["net-1", "net-2"]))
        delta = session.pre_power_on_vm_reconfigure(
            vm_ctx, res_vm, res_vm.config,
            session_update_args(session, vm_ctx),
        )
        self.assertTrue(delta.is_empty())
        self.assertEqual(res_vm.calls, [])

    def test_cloned_interfaces_are_kept(self):
        """No interfaces in the VM spec keeps the cards already on the VM."""
        nic = make_nic(key=4000, network="cloned-net", mac="00:50:56:00:00:09")
        res_vm = FakeVirtualMachine(make_config(devices=[nic]))

        self.session(res_vm).update_virtual_machine(VMContext(vm=make_vm()), config_args())

        self.assertEqual(res_vm.calls_named("reconfigure"), [])
        customize_spec = res_vm.calls_named("customize")[0][1]
        self.assertEqual(customize_spec.nicSettingMap[0].macAddress, "00:50:56:00:00:09")

    def test_provider_mac_is_used(self):
        res_vm = FakeVirtualMachine(make_config())
        provider = FakeNetworkProvider(macs={"net-1": "00:50:56:11:22:33"})

        self.session(res_vm, network_provider=provider).update_virtual_machine(
            VMContext(vm=make_vm(interfaces=["net-1"])), config_args())

        added = res_vm.calls_named("reconfigure")[0][1].deviceChange[0].device
        self.assertEqual(added.macAddress, "00:50:56:11:22:33")
        self.assertEqual(provider.requests, ["net-1"])

    def test_missing_nameservers_do_not_block_power_on(self):
        res_vm = FakeVirtualMachine(make_config())
        vm_ctx = VMContext(vm=make_vm())

        self.session(res_vm, nameserver_file="/nonexistent/resolv.conf").update_virtual_machine(vm_ctx, config_args())

        self.assertEqual(res_vm.power_state, "poweredOn")
        self.assertEqual(len(vm_ctx.recoverable), 1)

    def test_unattached_volume_blocks_power_on(self):
        volume = VirtualMachineVolume(name="data", persistent_volume_claim=PersistentVolumeClaimSource(claim_name="pvc-1"))
        res_vm = FakeVirtualMachine(make_config())

        vm = make_vm(volumes=[volume])
        with self.assertRaises(VolumeStatusPendingError) as ctx:
            self.session(res_vm).update_virtual_machine(VMContext(vm=vm), config_args())
        self.assertIn("Status update pending for persistent volume: data on VM", str(ctx.exception))
        self.assertTrue(ctx.exception.retryable)

        vm = make_vm(volumes=[volume])
        vm.status.volumes = [VolumeStatus(name="data", attached=False)]
        with self.assertRaises(VolumeNotAttachedError) as ctx:
            self.session(res_vm).update_virtual_machine(VMContext(vm=vm), config_args())
        self.assertIn("Persistent volume: data not attached to VM", str(ctx.exception))
        self.assertEqual(res_vm.power_state, "poweredOff")

    def test_attached_volume_allows_power_on(self):
        volume = VirtualMachineVolume(name="data", persistent_volume_claim=PersistentVolumeClaimSource(claim_name="pvc-1"))
        vm = make_vm(volumes=[volume])
        vm.status.volumes = [VolumeStatus(name="data", attached=True)]
        res_vm = FakeVirtualMachine(make_config())

        self.session(res_vm).update_virtual_machine(VMContext(vm=vm), config_args())

        self.assertEqual(res_vm.power_state, "poweredOn")

    def test_config_not_available(self):
        res_vm = FakeVirtualMachine(None, connection_state="disconnected")
        vm_ctx = VMContext(vm=make_vm())

        with self.assertRaises(ConfigNotAvailableError) as ctx:
            self.session(res_vm).update_virtual_machine(vm_ctx, config_args())
        self.assertIn("disconnected", str(ctx.exception))
        self.assertEqual(res_vm.calls, [])

    def test_power_off_does_not_need_config(self):
        res_vm = FakeVirtualMachine(None, power_state=PowerState.POWERED_ON, connection_state="disconnected")

        self.session(res_vm).update_virtual_machine(
            VMContext(vm=make_vm(power_state=PowerState.POWERED_OFF)), config_args())

        self.assertEqual(res_vm.power_state, "poweredOff")

    def test_status_errors_raised_after_affinity(self):
        """A failed host lookup still lets tags and modules be attached."""
        res_vm = FakeVirtualMachine(make_config(change_tracking=True), power_state=PowerState.POWERED_ON,
                                    host=vim.HostSystem("host-1"))
        affinity = FakeAffinityClient()
        session = self.session(
            res_vm,
            client=FakeClient(name_error=RuntimeError("no host")),
            affinity_client=affinity,
            tag_info={"tag-a": "vc-tag-a", "VmVmAntiAffinityTagCategoryName": "anti-affinity"},
        )
        policy = VirtualMachineSetResourcePolicy(status=ResourcePolicyStatus(
            cluster_modules=[ClusterModuleStatus(group_name="group-a", module_uuid="module-1")],
        ))
        vm = make_vm(annotations={CLUSTER_MODULE_NAME_ANNOTATION: "group-a", PROVIDER_TAGS_ANNOTATION: "tag-a"})

        with self.assertRaises(AggregateError):
            session.update_virtual_machine(VMContext(vm=vm), config_args(resource_policy=policy))

        self.assertEqual(affinity.added, [("module-1", "vm-42")])
        self.assertEqual(affinity.attached, [("vc-tag-a", "anti-affinity", "vm-42")])
        self.assertEqual(vm.status.phase.value, "Created")


def session_update_args(session, vm_ctx):
    return VmUpdateArgs(
        config_args=config_args(),
        net_if_list=ensure_network_interfaces(vm_ctx, session.network_provider),
        vm_metadata=None,
    )


if __name__ == '__main__':
    unittest.main()
