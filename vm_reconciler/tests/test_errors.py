import logging
import os
import unittest
from unittest.mock import patch

from pyVmomi import vim

from vm_reconciler.config import BuilderOptions, Settings
from vm_reconciler.errors import (
    AggregateError,
    ConfigNotAvailableError,
    DiskResizeError,
    RecoverableErrors,
    format_vcenter_error,
    is_customization_pending_fault,
    parse_vcenter_error,
)


class ErrorTests(unittest.TestCase):
    def test_retryable_flags(self):
        self.assertTrue(ConfigNotAvailableError("disconnected").retryable)
        self.assertFalse(DiskResizeError("shrink").retryable)

    def test_recoverable_errors_aggregate(self):
        errors = RecoverableErrors()
        self.assertFalse(errors)
        self.assertIsNone(errors.aggregate())

        errors.add("step one", RuntimeError("first"))
        errors.add("step two", RuntimeError("second"))

        aggregate = errors.aggregate()
        self.assertIsInstance(aggregate, AggregateError)
        self.assertEqual(len(aggregate.errors), 2)
        self.assertEqual(str(aggregate), "[first, second]")

    def test_recoverable_errors_log_as_warnings(self):
        errors = RecoverableErrors()
        errors.add("get DNS servers", RuntimeError("no file"))

        with self.assertLogs("vm_reconciler.test", level="WARNING") as logs:
            errors.log(logging.getLogger("vm_reconciler.test"))
        self.assertIn("get DNS servers failed: no file", logs.output[0])

    def test_customization_pending_fault(self):
        self.assertTrue(is_customization_pending_fault(vim.fault.CustomizationPending()))
        self.assertFalse(is_customization_pending_fault(RuntimeError("CustomizationPending")))

    def test_vcenter_fault_mapping(self):
        message, info = parse_vcenter_error(vim.fault.TaskInProgress())
        self.assertEqual(info['title'], 'Task In Progress')
        self.assertTrue(info['is_recoverable'])

        self.assertEqual(format_vcenter_error(vim.fault.NoPermission(), "reconfigure"),
                         "reconfigure: Permission Denied: Insufficient permissions to perform this operation.")

    def test_unknown_error_keeps_its_message(self):
        self.assertEqual(format_vcenter_error(RuntimeError("socket closed")), "socket closed")


class SettingsTests(unittest.TestCase):
    def test_env_settings(self):
        env = {
            "VM_RECONCILER_VCENTER_HOST": "vc01.example.com",
            "VM_RECONCILER_GLOBAL_EXTRA_CONFIG": '{"guestinfo.image": "{{ image_name }}"}',
            "VM_RECONCILER_PCI_DEVICES_ENABLED": "true",
        }
        with patch.dict(os.environ, env):
            settings = Settings()

        self.assertEqual(settings.vcenter_host, "vc01.example.com")
        self.assertEqual(settings.global_extra_config, {"guestinfo.image": "{{ image_name }}"})
        self.assertEqual(settings.builder_options(), BuilderOptions(pci_devices_enabled=True, v1alpha2_enabled=False))


if __name__ == '__main__':
    unittest.main()
