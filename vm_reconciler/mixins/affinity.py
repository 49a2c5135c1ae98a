"""Cluster module and tag attachment for VM-VM anti-affinity"""

from typing import Optional

from vm_reconciler.constants import (
    CLUSTER_MODULE_NAME_ANNOTATION,
    PROVIDER_TAG_CATEGORY_NAME_KEY,
    PROVIDER_TAGS_ANNOTATION,
)
from vm_reconciler.errors import ClusterModuleNotFoundError
from vm_reconciler.models import VirtualMachineSetResourcePolicy


class AffinityMixin:
    """Puts a VM in its cluster module and tags it, both idempotently."""

    def attach_tags_and_modules(self, vm_ctx, res_vm,
                                resource_policy: Optional[VirtualMachineSetResourcePolicy]) -> bool:
        """
        Returns:
            False when the VM carries no anti-affinity annotations
        """
        vm = vm_ctx.vm
        cluster_module_name = vm.annotations.get(CLUSTER_MODULE_NAME_ANNOTATION, "")
        provider_tags_name = vm.annotations.get(PROVIDER_TAGS_ANNOTATION, "")

        # Anti-affinity needs both the module and the tag
        if not cluster_module_name or not provider_tags_name:
            return False

        module_uuid = ""
        if resource_policy is not None:
            for cluster_module in resource_policy.status.cluster_modules:
                if cluster_module.group_name == cluster_module_name:
                    module_uuid = cluster_module.module_uuid
                    break
        if not module_uuid:
            raise ClusterModuleNotFoundError(cluster_module_name)

        vm_ref = res_vm.moref_value()

        if not self.affinity_client.is_member(module_uuid, vm_ref):
            vm_ctx.logger.info(f"Adding VM to cluster module {cluster_module_name}")
            self.affinity_client.add_member(module_uuid, vm_ref)

        tag_name = self.tag_info.get(provider_tags_name, "")
        tag_category_name = self.tag_info.get(PROVIDER_TAG_CATEGORY_NAME_KEY, "")
        self.affinity_client.attach_tag(tag_name, tag_category_name, vm_ref)

        return True
