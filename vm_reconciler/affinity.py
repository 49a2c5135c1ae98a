"""
vSphere Automation REST client for cluster modules and tags.

Cluster modules and tagging are not part of the SOAP API pyVmomi covers, so
these calls go to the REST endpoints with a session token.
"""

import logging
from typing import Dict, List, Optional

import requests

from vm_reconciler.errors import AffinityError

logger = logging.getLogger(__name__)


class AffinityClient:
    """Cluster-module membership and tag attachment for VMs."""

    def __init__(self, host: str, username: str, password: str,
                 verify_ssl: bool = False, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = f"https://{host}/api"
        self.username = username
        self.password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None

    def _login(self):
        response = self.session.post(
            f"{self.base_url}/session",
            auth=(self.username, self.password),
            verify=self.verify_ssl,
            timeout=self.timeout
        )
        if response.status_code not in (200, 201):
            raise AffinityError(f"vCenter REST login failed: HTTP {response.status_code}",
                                status_code=response.status_code)
        self._token = response.json()
        logger.debug("Created vCenter REST session")

    def _request(self, method: str, path: str, **kwargs):
        if self._token is None:
            self._login()

        headers = {'vmware-api-session-id': self._token, 'Content-Type': 'application/json'}
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            verify=self.verify_ssl,
            timeout=self.timeout,
            **kwargs
        )

        if response.status_code == 401:
            # Session expired, log in again once
            self._token = None
            self._login()
            headers['vmware-api-session-id'] = self._token
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                verify=self.verify_ssl,
                timeout=self.timeout,
                **kwargs
            )

        if response.status_code >= 400:
            raise AffinityError(f"{method} {path} failed: HTTP {response.status_code} {response.text[:200]}",
                                status_code=response.status_code)
        return response

    # =========================================================================
    # Cluster modules
    # =========================================================================

    def is_member(self, module_uuid: str, vm_moref_value: str) -> bool:
        response = self._request('GET', f"/vcenter/cluster/modules/{module_uuid}/vms")
        return vm_moref_value in (response.json() or [])

    def add_member(self, module_uuid: str, vm_moref_value: str):
        logger.info(f"Adding VM {vm_moref_value} to cluster module {module_uuid}")
        self._request(
            'POST',
            f"/vcenter/cluster/modules/{module_uuid}/vms",
            params={'action': 'add'},
            json={'vms': [vm_moref_value]}
        )

    # =========================================================================
    # Tags
    # =========================================================================

    def _find_category_id(self, category_name: str) -> str:
        for category_id in self._request('GET', "/cis/categories").json() or []:
            category = self._request('GET', f"/cis/categories/{category_id}").json()
            if category.get('name') == category_name:
                return category_id
        raise AffinityError(f"tag category {category_name} not found")

    def _find_tag_id(self, tag_name: str, category_id: str) -> str:
        tag_ids: List[str] = self._request(
            'POST', "/cis/tags", params={'action': 'list-tags-for-category'},
            json={'category_id': category_id}
        ).json() or []
        for tag_id in tag_ids:
            tag: Dict = self._request('GET', f"/cis/tags/{tag_id}").json()
            if tag.get('name') == tag_name:
                return tag_id
        raise AffinityError(f"tag {tag_name} not found in category {category_id}")

    def attach_tag(self, tag_name: str, category_name: str, vm_moref_value: str):
        """Attach a tag to a VM. vCenter treats re-attaching an attached tag as success."""
        category_id = self._find_category_id(category_name)
        tag_id = self._find_tag_id(tag_name, category_id)
        logger.info(f"Attaching tag {tag_name} ({category_name}) to VM {vm_moref_value}")
        self._request(
            'POST',
            f"/cis/tagging/tag-association/{tag_id}",
            params={'action': 'attach'},
            json={'object_id': {'id': vm_moref_value, 'type': 'VirtualMachine'}}
        )
