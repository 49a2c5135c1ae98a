"""
Session - VM convergence entry point

One Session per vCenter connection. update_virtual_machine() runs a single
convergence pass for one VM: fetch config and runtime, act on the power
state difference, then refresh status and anti-affinity membership.

A pass keeps nothing between invocations; every step re-derives its changes
from what vCenter reports at the start of the pass, so a pass that failed
halfway can simply be run again.
"""

import logging
from typing import Dict, Optional

from vm_reconciler.config import BuilderOptions, Settings
from vm_reconciler.constants import VM_UPDATE_PROPERTIES
from vm_reconciler.context import VMContext
from vm_reconciler.errors import ConfigNotAvailableError, ReconcileError
from vm_reconciler.mixins import AffinityMixin, CustomizationMixin, PowerStateMixin, StatusMixin
from vm_reconciler.mixins.power import PowerTransition, plan_power_transition
from vm_reconciler.models import PowerState, VmConfigArgs
from vm_reconciler.resources import VirtualMachine, find_vm_by_name

logger = logging.getLogger(__name__)


class Session(PowerStateMixin, CustomizationMixin, StatusMixin, AffinityMixin):
    """
    Converges VMs on one vCenter toward their desired state.

    Args:
        client: VSphereClient for property lookups and VM discovery
        network_provider: NetworkProvider allocating interface devices
        affinity_client: AffinityClient for cluster modules and tags
        global_extra_config: extra-config applied to every VM (values are templates)
        tag_info: provider tag name -> vCenter tag name, plus the category entry
        options: feature switches for the config spec builder
        nameserver_file: resolv.conf style file listing DNS servers
        cluster: vim.ClusterComputeResource, used for the CPU MHz conversion
        min_cpu_freq: fixed CPU MHz, skips the cluster lookup
    """

    def __init__(self, client, network_provider, affinity_client,
                 global_extra_config: Optional[Dict[str, str]] = None,
                 tag_info: Optional[Dict[str, str]] = None,
                 options: Optional[BuilderOptions] = None,
                 nameserver_file: str = "/etc/resolv.conf",
                 cluster=None,
                 min_cpu_freq: Optional[int] = None):
        self.client = client
        self.network_provider = network_provider
        self.affinity_client = affinity_client
        self.global_extra_config = dict(global_extra_config or {})
        self.tag_info = dict(tag_info or {})
        self.options = options or BuilderOptions()
        self.nameserver_file = nameserver_file
        self.cluster = cluster
        self.min_cpu_freq = min_cpu_freq

    @classmethod
    def from_settings(cls, settings: Settings, client, network_provider, affinity_client,
                      cluster=None) -> "Session":
        return cls(
            client,
            network_provider,
            affinity_client,
            global_extra_config=settings.global_extra_config,
            tag_info=settings.tag_info,
            options=settings.builder_options(),
            nameserver_file=settings.nameserver_file,
            cluster=cluster,
        )

    def get_cpu_min_mhz_in_cluster(self) -> int:
        """Read fresh each pass, hosts can join or leave the cluster."""
        if self.min_cpu_freq is not None:
            return self.min_cpu_freq
        if self.cluster is None:
            return 0
        return self.client.cpu_min_mhz_in_cluster(self.cluster)

    def get_virtual_machine(self, vm_ctx: VMContext) -> VirtualMachine:
        res_vm = find_vm_by_name(self.client, vm_ctx.vm.name)
        if res_vm is None:
            raise ReconcileError(f"VM {vm_ctx.vm.name} not found in vCenter", vm_name=vm_ctx.vm.name)
        return res_vm

    def update_virtual_machine(self, vm_ctx: VMContext, config_args: VmConfigArgs):
        """
        Run one convergence pass.

        Raises:
            ConfigNotAvailableError: the VM should run but vCenter reports no config
            PreconditionNotMetError: a claimed volume is not attached yet
            ReconcileError: other reconcile failures, incl. aggregated status lookups
            vim/vmodl faults: vCenter call failures, propagated as raised
        """
        res_vm = self.get_virtual_machine(vm_ctx)
        vm = vm_ctx.vm

        props = res_vm.get_properties(VM_UPDATE_PROPERTIES)
        config = props.get("config")
        runtime = props.get("runtime")
        current_power_state = runtime.powerState if runtime is not None else None

        # Early BIOS UUID so volume attachment isn't held up by power on
        if config is not None and config.uuid:
            vm.status.bios_uuid = config.uuid

        transition = plan_power_transition(vm.spec.power_state, current_power_state)
        vm_ctx.logger.debug(f"Power state {current_power_state} -> {vm.spec.power_state.value}: {transition.value}")

        if transition in (PowerTransition.POWER_ON, PowerTransition.RECONFIGURE_POWERED_ON) and config is None:
            connection_state = runtime.connectionState if runtime is not None else None
            raise ConfigNotAvailableError(connection_state)

        if transition == PowerTransition.POWER_OFF:
            res_vm.set_power_state(PowerState.POWERED_OFF)
        elif transition == PowerTransition.POWER_ON:
            self.prepare_vm_for_power_on(vm_ctx, res_vm, config, config_args)
            res_vm.set_power_state(PowerState.POWERED_ON)
        elif transition == PowerTransition.RECONFIGURE_POWERED_ON:
            self.powered_on_vm_reconfigure(vm_ctx, res_vm, config)

        status_errors = self.update_vm_status(vm_ctx, res_vm)
        self.attach_tags_and_modules(vm_ctx, res_vm, config_args.resource_policy)

        vm_ctx.recoverable.log(vm_ctx.logger)
        if status_errors is not None:
            raise status_errors

    converge = update_virtual_machine
