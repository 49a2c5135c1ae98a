"""
VM Reconciler - converges vCenter VMs toward a declared state.

Provides:
- Config spec building (hardware, allocation, extra-config, vApp, CBT)
- Device reconciliation by backing equality (NICs, vGPU/passthrough, disks)
- Power-state transitions with guest customization gating
- Status projection and cluster-module/tag anti-affinity
"""

__version__ = "1.0.0"
