"""
Reconciler Errors and vCenter Fault Mapping

Exception types raised by a convergence pass, a collector for best-effort
failures that must not abort the pass, and a table mapping vCenter/vModl
fault types to operator-friendly messages.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from pyVmomi import vim


class ReconcileError(Exception):
    """Base exception for a VM convergence pass"""

    retryable = False

    def __init__(self, message: str, vm_name: Optional[str] = None):
        self.message = message
        self.vm_name = vm_name
        super().__init__(self.message)


class ConfigNotAvailableError(ReconcileError):
    """vCenter reported no config for the VM (e.g. host disconnected)"""

    retryable = True

    def __init__(self, connection_state: Any):
        super().__init__(f"VM config is not available, connectionState={connection_state}")
        self.connection_state = connection_state


class PreconditionNotMetError(ReconcileError):
    """A precondition for power on does not hold yet"""

    retryable = True


class VolumeNotAttachedError(PreconditionNotMetError):

    def __init__(self, volume_name: str):
        super().__init__(f"Persistent volume: {volume_name} not attached to VM")
        self.volume_name = volume_name


class VolumeStatusPendingError(PreconditionNotMetError):

    def __init__(self, volume_name: str):
        super().__init__(f"Status update pending for persistent volume: {volume_name} on VM")
        self.volume_name = volume_name


class DiskResizeError(ReconcileError):
    """Requested disk capacity cannot be applied"""


class ClusterModuleNotFoundError(ReconcileError):

    def __init__(self, module_name: str):
        super().__init__(f"ClusterModule {module_name} not found")
        self.module_name = module_name


class AffinityError(ReconcileError):
    """Cluster module or tag service call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NameserverError(ReconcileError):
    """DNS servers for customization could not be determined"""


class AggregateError(ReconcileError):
    """Several independent failures, reported together"""

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        if len(self.errors) == 1:
            message = str(self.errors[0])
        else:
            message = "[" + ", ".join(str(e) for e in self.errors) + "]"
        super().__init__(message)


class RecoverableErrors:
    """
    Collects failures of best-effort steps during a pass.

    Steps record what went wrong here instead of raising; the caller decides
    at the end of the pass whether to log them or return them aggregated.
    """

    def __init__(self):
        self.errors: List[Tuple[str, Exception]] = []

    def add(self, step: str, error: Exception):
        self.errors.append((step, error))

    def __bool__(self) -> bool:
        return bool(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def log(self, logger):
        for step, error in self.errors:
            logger.warning(f"{step} failed: {error}")

    def aggregate(self) -> Optional[AggregateError]:
        """Return one error wrapping all collected failures, or None."""
        if not self.errors:
            return None
        return AggregateError([error for _, error in self.errors])


def is_customization_pending_fault(error: Exception) -> bool:
    """True for the fault raised when a customization is already queued."""
    return isinstance(error, vim.fault.CustomizationPending)


# Mapping of vCenter fault patterns to user-friendly messages
VCENTER_ERROR_MESSAGES: Dict[str, Dict[str, Any]] = {
    'vim.fault.CustomizationPending': {
        'title': 'Customization Pending',
        'message': 'A guest customization is already pending for this VM.',
        'severity': 'warning',
        'is_recoverable': True,
    },
    'vim.fault.InvalidPowerState': {
        'title': 'Invalid Power State',
        'message': 'The VM is not in the power state required for this operation.',
        'severity': 'warning',
        'is_recoverable': True,
    },
    'vim.fault.InvalidState': {
        'title': 'Invalid VM State',
        'message': 'The VM is in an invalid state for this operation.',
        'severity': 'error',
        'is_recoverable': True,
    },
    'vim.fault.VmConfigFault': {
        'title': 'VM Configuration Issue',
        'message': 'The VM configuration prevents this operation. Check passthrough devices and disk sizes.',
        'severity': 'error',
        'is_recoverable': True,
    },
    'vim.fault.TaskInProgress': {
        'title': 'Task In Progress',
        'message': 'Another task is already operating on this VM.',
        'severity': 'warning',
        'is_recoverable': True,
    },
    'vim.fault.Timedout': {
        'title': 'Operation Timeout',
        'message': 'The vCenter operation timed out.',
        'severity': 'warning',
        'is_recoverable': True,
    },
    'vmodl.fault.RequestCanceled': {
        'title': 'Task Cancelled',
        'message': 'The task was cancelled by a user in vCenter.',
        'severity': 'warning',
        'is_recoverable': True,
    },
    'vim.fault.NoPermission': {
        'title': 'Permission Denied',
        'message': 'Insufficient permissions to perform this operation.',
        'severity': 'error',
        'is_recoverable': False,
    },
    'vim.fault.NotSupported': {
        'title': 'Operation Not Supported',
        'message': 'This operation is not supported for the VM or its host.',
        'severity': 'error',
        'is_recoverable': False,
    },
}


def parse_vcenter_error(error: Exception) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Parse a vCenter exception and return a user-friendly message.
    
    Returns:
        Tuple of (friendly_message, error_info_dict or None)
    """
    error_str = str(error)
    error_type = getattr(error, '_wsdlName', None) or type(error).__name__

    for fault_pattern, info in VCENTER_ERROR_MESSAGES.items():
        if fault_pattern.rsplit('.', 1)[-1] == error_type or fault_pattern in error_str:
            msg_match = re.search(r"msg\s*=\s*'([^']+)'", error_str)
            actual_msg = msg_match.group(1) if msg_match else None

            return info['message'], {
                'title': info['title'],
                'severity': info['severity'],
                'is_recoverable': info['is_recoverable'],
                'original_message': actual_msg,
                'fault_type': fault_pattern,
            }

    msg_match = re.search(r"msg\s*=\s*'([^']+)'", error_str)
    if msg_match:
        return msg_match.group(1), None

    return error_str, None


def format_vcenter_error(error: Exception, operation: str = "") -> str:
    """
    Format a vCenter error for a log line or status message.
    """
    friendly_msg, info = parse_vcenter_error(error)
    prefix = f"{operation}: " if operation else ""

    if info:
        return f"{prefix}{info['title']}: {friendly_msg}"

    return f"{prefix}{friendly_msg}"
