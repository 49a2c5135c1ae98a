"""
vCenter Resources - pyVmomi bindings

Thin wrappers over a pyVmomi service instance and a vim.VirtualMachine that
expose exactly the calls a convergence pass makes: property retrieval
through the PropertyCollector, reconfigure, power operations, guest
customization and object-name lookup. Every task is awaited synchronously
with pyVim's WaitForTask, which raises the task's fault on failure.
"""

import logging
import ssl
from typing import Any, Dict, List, Optional, Tuple

from pyVim.connect import Disconnect, SmartConnect
from pyVim.task import WaitForTask
from pyVmomi import vim

from vm_reconciler.models import PowerState

logger = logging.getLogger(__name__)


def _parse_object_content(oc) -> Tuple[Any, Dict[str, Any]]:
    """
    Parse PropertyCollector ObjectContent into (obj, props) tuple.

    Args:
        oc: vim.PropertyCollector.ObjectContent

    Returns:
        Tuple of (vim_object, {property_path: property_value})
    """
    obj = oc.obj
    props = {p.name: p.val for p in (oc.propSet or [])}
    return obj, props


class VSphereClient:
    """Connection to one vCenter, shared read-only by every pass."""

    def __init__(self, service_instance):
        self.service_instance = service_instance
        self.content = service_instance.RetrieveContent()

    @classmethod
    def connect(cls, host: str, username: str, password: str,
                port: int = 443, verify_ssl: bool = False) -> "VSphereClient":
        """Connect to vCenter using pyVmomi"""
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if not verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        si = SmartConnect(
            host=host,
            user=username,
            pwd=password,
            port=port,
            sslContext=ssl_context,
            disableSslCertValidation=not verify_ssl
        )
        logger.info(f"Connected to vCenter {host}")
        return cls(si)

    def disconnect(self):
        Disconnect(self.service_instance)

    def retrieve_properties(self, obj, paths: List[str]) -> Dict[str, Any]:
        """
        Fetch the given property paths of one managed object.

        Unset properties are absent from the result.
        """
        obj_spec = vim.PropertyCollector.ObjectSpec(obj=obj, skip=False)
        prop_spec = vim.PropertyCollector.PropertySpec(
            type=type(obj),
            pathSet=list(paths),
            all=False
        )
        filter_spec = vim.PropertyCollector.FilterSpec(
            objectSet=[obj_spec],
            propSet=[prop_spec]
        )

        result = self.content.propertyCollector.RetrieveContents([filter_spec])
        props: Dict[str, Any] = {}
        for oc in result or []:
            _, oc_props = _parse_object_content(oc)
            props.update(oc_props)
        return props

    def object_name(self, obj) -> str:
        return self.retrieve_properties(obj, ["name"]).get("name", "")

    def wait_for_task(self, task):
        return WaitForTask(task)

    def cpu_min_mhz_in_cluster(self, cluster) -> int:
        """Slowest host CPU frequency in the cluster, 0 if it has no hosts."""
        frequencies = []
        for host in cluster.host or []:
            hardware = self.retrieve_properties(host, ["summary.hardware"]).get("summary.hardware")
            if hardware is not None and hardware.cpuMhz:
                frequencies.append(hardware.cpuMhz)
        return min(frequencies) if frequencies else 0


class VirtualMachine:
    """One vCenter VM, addressed by its managed object reference."""

    def __init__(self, client: VSphereClient, mo: vim.VirtualMachine, name: str = ""):
        self.client = client
        self.mo = mo
        self.name = name

    def moref(self):
        return self.mo

    def moref_value(self) -> str:
        return self.mo._moId

    def get_properties(self, paths: List[str]) -> Dict[str, Any]:
        return self.client.retrieve_properties(self.mo, paths)

    def reconfigure(self, config_spec: vim.vm.ConfigSpec):
        logger.info(f"Reconfiguring VM {self.name}")
        self.client.wait_for_task(self.mo.ReconfigVM_Task(spec=config_spec))

    def set_power_state(self, desired: PowerState):
        """Power the VM on or off; does nothing when it is already there."""
        current = self.get_properties(["runtime.powerState"]).get("runtime.powerState")
        if current == desired.value:
            logger.debug(f"VM {self.name} already {desired.value}")
            return

        if desired == PowerState.POWERED_ON:
            logger.info(f"Powering on VM {self.name}")
            self.client.wait_for_task(self.mo.PowerOnVM_Task())
        elif desired == PowerState.POWERED_OFF:
            logger.info(f"Powering off VM {self.name}")
            self.client.wait_for_task(self.mo.PowerOffVM_Task())
        else:
            raise ValueError(f"unsupported power state {desired.value}")

    def customize(self, spec: vim.vm.customization.Specification):
        logger.info(f"Customizing VM {self.name}")
        self.client.wait_for_task(self.mo.CustomizeVM_Task(spec=spec))

    def invoke_fsr(self):
        """
        Checkpoint save/restore of a running VM.

        Done as suspend then power on, which saves and reloads the VM
        checkpoint so live config such as change tracking takes effect.
        """
        logger.info(f"Suspending and resuming VM {self.name}")
        self.client.wait_for_task(self.mo.SuspendVM_Task())
        self.client.wait_for_task(self.mo.PowerOnVM_Task())


def find_vm_by_name(client: VSphereClient, name: str,
                    datacenter: Optional[Any] = None) -> Optional[VirtualMachine]:
    """Look a VM up by inventory name, optionally within one datacenter."""
    root = datacenter.vmFolder if datacenter is not None else client.content.rootFolder
    view = client.content.viewManager.CreateContainerView(root, [vim.VirtualMachine], True)
    try:
        for vm in view.view:
            if vm.name == name:
                return VirtualMachine(client, vm, name)
    finally:
        view.Destroy()
    return None
