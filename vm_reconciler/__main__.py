"""
Run one convergence pass from the command line
==============================================

Usage:
    python -m vm_reconciler vm.json

vm.json holds {"vm": {...VirtualMachine...}, "config_args": {...VmConfigArgs...}}.
Connection settings come from VM_RECONCILER_* environment variables. The
resulting status is printed as JSON.
"""

import json
import logging
import sys

from vm_reconciler.affinity import AffinityClient
from vm_reconciler.config import Settings, configure_logging
from vm_reconciler.context import VMContext
from vm_reconciler.errors import ReconcileError, format_vcenter_error
from vm_reconciler.models import VirtualMachine, VmConfigArgs
from vm_reconciler.network import NamedNetworkProvider
from vm_reconciler.resources import VSphereClient
from vm_reconciler.session import Session

logger = logging.getLogger("vm_reconciler")


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        sys.stderr.write(__doc__)
        return 2

    settings = Settings()
    configure_logging(settings.log_level)

    with open(argv[0], "r") as f:
        document = json.load(f)
    vm = VirtualMachine.model_validate(document["vm"])
    config_args = VmConfigArgs.model_validate(document.get("config_args", {}))

    client = VSphereClient.connect(
        settings.vcenter_host,
        settings.vcenter_user,
        settings.vcenter_password,
        verify_ssl=settings.verify_ssl,
    )
    affinity_client = AffinityClient(
        settings.vcenter_host,
        settings.vcenter_user,
        settings.vcenter_password,
        verify_ssl=settings.verify_ssl,
        timeout=settings.request_timeout,
    )
    session = Session.from_settings(settings, client, NamedNetworkProvider(), affinity_client)

    exit_code = 0
    try:
        session.update_virtual_machine(VMContext(vm=vm), config_args)
    except ReconcileError as e:
        logger.error(f"Reconcile of {vm.name} failed (retryable={e.retryable}): {e}")
        exit_code = 1
    except Exception as e:
        logger.error(f"Reconcile of {vm.name} failed: {format_vcenter_error(e)}")
        exit_code = 1
    finally:
        client.disconnect()

    print(vm.status.model_dump_json(indent=2))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
