"""Per-pass context handed through a convergence pass."""

import logging
from dataclasses import dataclass, field

from vm_reconciler.errors import RecoverableErrors
from vm_reconciler.models import VirtualMachine


class VMLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with namespace/name of the VM."""

    def process(self, msg, kwargs):
        return f"[{self.extra['vm']}] {msg}", kwargs


@dataclass
class VMContext:
    vm: VirtualMachine
    logger: logging.LoggerAdapter = None
    recoverable: RecoverableErrors = field(default_factory=RecoverableErrors)

    def __post_init__(self):
        if self.logger is None:
            self.logger = VMLoggerAdapter(
                logging.getLogger("vm_reconciler.session"),
                {'vm': f"{self.vm.namespace}/{self.vm.name}"},
            )
