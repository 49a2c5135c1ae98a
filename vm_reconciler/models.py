"""
Pydantic models for the desired VM state and its observed status.

The VirtualMachine.spec side is supplied by the caller for each pass and treated as
read-only; only VirtualMachine.status is written by the reconciler.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from vm_reconciler.constants import V1ALPHA1_COMPATIBLE_CONDITION


class PowerState(str, Enum):
    """Power states, valued as vCenter reports them."""
    POWERED_OFF = "poweredOff"
    POWERED_ON = "poweredOn"
    SUSPENDED = "suspended"


class MetadataTransport(str, Enum):
    NONE = ""
    EXTRA_CONFIG = "ExtraConfig"
    OVF_ENV = "OvfEnv"


class Phase(str, Enum):
    UNKNOWN = ""
    CREATING = "Creating"
    CREATED = "Created"
    DELETING = "Deleting"


# =============================================================================
# VM class
# =============================================================================

class ResourceList(BaseModel):
    """Kubernetes-style quantities, e.g. cpu="500m", memory="2Gi"."""
    cpu: Optional[str] = None
    memory: Optional[str] = None


class ResourceRequirements(BaseModel):
    requests: ResourceList = Field(default_factory=ResourceList)
    limits: ResourceList = Field(default_factory=ResourceList)


class ClassPolicies(BaseModel):
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)


class VGPUDevice(BaseModel):
    profile_name: str


class DynamicDirectPathIODevice(BaseModel):
    vendor_id: int
    device_id: int
    custom_label: str = ""


class VirtualDevices(BaseModel):
    vgpu_devices: List[VGPUDevice] = Field(default_factory=list)
    dynamic_direct_path_io_devices: List[DynamicDirectPathIODevice] = Field(default_factory=list)


class ClassHardware(BaseModel):
    cpus: int = 0
    memory: Optional[str] = None
    devices: VirtualDevices = Field(default_factory=VirtualDevices)


class VirtualMachineClassSpec(BaseModel):
    hardware: ClassHardware = Field(default_factory=ClassHardware)
    policies: ClassPolicies = Field(default_factory=ClassPolicies)


class VirtualMachineClass(BaseModel):
    name: str = ""
    spec: VirtualMachineClassSpec = Field(default_factory=VirtualMachineClassSpec)


# =============================================================================
# Image, metadata and resource policy
# =============================================================================

class Condition(BaseModel):
    type: str
    status: str  # "True", "False", "Unknown"


class VirtualMachineImage(BaseModel):
    name: str = ""
    conditions: List[Condition] = Field(default_factory=list)

    def is_condition_true(self, condition_type: str) -> bool:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition.status == "True"
        return False

    @property
    def v1alpha1_compatible(self) -> bool:
        return self.is_condition_true(V1ALPHA1_COMPATIBLE_CONDITION)


class VmMetadata(BaseModel):
    """Guest metadata resolved from its source, with its transport."""
    data: Dict[str, str] = Field(default_factory=dict)
    transport: MetadataTransport = MetadataTransport.NONE


class ClusterModuleStatus(BaseModel):
    group_name: str
    module_uuid: str


class ResourcePolicyStatus(BaseModel):
    cluster_modules: List[ClusterModuleStatus] = Field(default_factory=list)


class VirtualMachineSetResourcePolicy(BaseModel):
    name: str = ""
    status: ResourcePolicyStatus = Field(default_factory=ResourcePolicyStatus)


# =============================================================================
# VM spec
# =============================================================================

class NetworkInterface(BaseModel):
    network_type: str = ""
    network_name: str = ""
    provider_ref: Optional[str] = None
    ethernet_card_type: str = "vmxnet3"


class PersistentVolumeClaimSource(BaseModel):
    claim_name: str
    read_only: bool = False


class VsphereVolumeSource(BaseModel):
    """A disk already present on the VM, addressed by its device key."""
    device_key: Optional[int] = None
    capacity: Dict[str, str] = Field(default_factory=dict)


class VirtualMachineVolume(BaseModel):
    name: str
    persistent_volume_claim: Optional[PersistentVolumeClaimSource] = None
    vsphere_volume: Optional[VsphereVolumeSource] = None


class AdvancedOptions(BaseModel):
    # None means "leave whatever vCenter currently has"
    change_block_tracking: Optional[bool] = None


class VirtualMachineSpec(BaseModel):
    image_name: str = ""
    class_name: str = ""
    power_state: PowerState = PowerState.POWERED_OFF
    network_interfaces: List[NetworkInterface] = Field(default_factory=list)
    volumes: List[VirtualMachineVolume] = Field(default_factory=list)
    resource_policy_name: str = ""
    advanced_options: Optional[AdvancedOptions] = None


# =============================================================================
# VM status
# =============================================================================

class NetworkInterfaceStatus(BaseModel):
    connected: bool = False
    mac_address: str = ""
    ip_addresses: List[str] = Field(default_factory=list)


class VolumeStatus(BaseModel):
    name: str
    attached: bool = False
    disk_uuid: str = ""
    error: str = ""


class VirtualMachineStatus(BaseModel):
    phase: Phase = Phase.UNKNOWN
    power_state: Optional[PowerState] = None
    unique_id: str = ""
    bios_uuid: str = ""
    instance_uuid: str = ""
    host: str = ""
    vm_ip: str = ""
    network_interfaces: List[NetworkInterfaceStatus] = Field(default_factory=list)
    change_block_tracking: Optional[bool] = None
    volumes: List[VolumeStatus] = Field(default_factory=list)


class VirtualMachine(BaseModel):
    name: str
    namespace: str = "default"
    annotations: Dict[str, str] = Field(default_factory=dict)
    spec: VirtualMachineSpec = Field(default_factory=VirtualMachineSpec)
    status: VirtualMachineStatus = Field(default_factory=VirtualMachineStatus)


class VmConfigArgs(BaseModel):
    """Everything besides the VM itself that a pass needs, resolved by the caller."""
    vm_class: VirtualMachineClass = Field(default_factory=VirtualMachineClass)
    vm_image: Optional[VirtualMachineImage] = None
    vm_metadata: Optional[VmMetadata] = None
    resource_policy: Optional[VirtualMachineSetResourcePolicy] = None
