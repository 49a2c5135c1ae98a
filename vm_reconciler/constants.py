"""
Well-known keys and marker values shared with vCenter and the guest.

Extra-config keys live in a guest-writable namespace, so the values here
are only ever added when absent (see config_spec.extra_config_changes).
"""

# Annotation stamped on every managed VM
VC_VM_ANNOTATION = "Virtual Machine managed by the vSphere Virtual Machine service"

# ManagedByInfo marker
MANAGED_BY_EXTENSION_KEY = "com.vmware.vcenter.wcp"
MANAGED_BY_TYPE = "VirtualMachine"

# Guest customization
GOSC_PENDING_EXTRA_CONFIG_KEY = "tools.deployPkg.fileName"
VSPHERE_CUSTOMIZATION_BYPASS_KEY = "vmoperator.vmware.com/vsphere-customization"
VSPHERE_CUSTOMIZATION_BYPASS_DISABLE = "disable"

# Extra-config
EXTRA_CONFIG_TRUE = "TRUE"
EXTRA_CONFIG_GUEST_INFO_PREFIX = "guestinfo."
MM_POWER_OFF_VM_EXTRA_CONFIG_KEY = "maintenance.vm.evacuation.poweroff"

# PCI passthrough MMIO
PCI_PASSTHRU_MMIO_OVERRIDE_ANNOTATION = "vmoperator.vmware.com/pci-passthru-64bit-mmio-size"
PCI_PASSTHRU_MMIO_EXTRA_CONFIG_KEY = "pciPassthru.use64bitMMIO"
PCI_PASSTHRU_MMIO_SIZE_EXTRA_CONFIG_KEY = "pciPassthru.64bitMMIOSizeGB"
PCI_PASSTHRU_MMIO_SIZE_DEFAULT = "512"

# v1alpha1 image compatibility
V1ALPHA1_EXTRA_CONFIG_KEY = "guestinfo.vmservice.defer-cloud-init"
V1ALPHA1_CONFIG_READY = "ready"
V1ALPHA1_CONFIG_ENABLED = "enabled"
V1ALPHA1_COMPATIBLE_CONDITION = "VirtualMachineImageV1Alpha1Compatible"

# OVF environment
OVF_ENVIRONMENT_TRANSPORT_GUEST_INFO = "com.vmware.guestInfo"

# Anti-affinity
CLUSTER_MODULE_NAME_ANNOTATION = "vsphere-cluster-module-group"
PROVIDER_TAGS_ANNOTATION = "vsphere-tag"
PROVIDER_TAG_CATEGORY_NAME_KEY = "VmVmAntiAffinityTagCategoryName"

# Negative device key ranges for devices that don't exist yet
NETWORK_INTERFACE_DEVICE_KEY_START = -100
PCI_DEVICE_KEY_START = -200

# Properties fetched at the start of a pass and for status projection
VM_UPDATE_PROPERTIES = ["config", "runtime"]
VM_STATUS_PROPERTIES = ["config.changeTrackingEnabled", "guest", "summary"]

# Storage capacity resource name for directly attached disks
EPHEMERAL_STORAGE_RESOURCE = "ephemeral-storage"

# VirtualEthernetCard.addressType for provider-assigned MACs
MAC_ADDRESS_TYPE_MANUAL = "manual"
