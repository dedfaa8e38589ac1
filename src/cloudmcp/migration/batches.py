"""Linode tool migration batches.

Each batch is rolled out together. Every tool starts at 0% provider-native
traffic with migration enabled; operators raise the percentage per tool.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MigrationBatch:
    key: str
    name: str
    description: str
    tools: tuple[str, ...]

    @property
    def tools_count(self) -> int:
        return len(self.tools)


BATCH_1 = MigrationBatch(
    "batch_1", "batch-1", "Foundation tools: Account Management (7) + System Information (2)",
    (
        "linode_account_info",
        "linode_account_availability",
        "linode_account_invoices_list",
        "linode_account_invoice_get",
        "linode_account_payments_list",
        "linode_account_transfer_get",
        "cloudmcp_account_switch",
        "cloudmcp_version",
        "cloudmcp_version_extended",
    ),
)

BATCH_2 = MigrationBatch(
    "batch_2", "batch-2", "Compute tools: Instances (7) + Images (7)",
    (
        "linode_instances_list",
        "linode_instance_get",
        "linode_instance_create",
        "linode_instance_delete",
        "linode_instance_boot",
        "linode_instance_shutdown",
        "linode_instance_reboot",
        "linode_images_list",
        "linode_image_get",
        "linode_image_create",
        "linode_image_update",
        "linode_image_delete",
        "linode_image_replicate",
        "linode_image_upload_create",
    ),
)

BATCH_3 = MigrationBatch(
    "batch_3", "batch-3", "Storage tools: Volumes (6) + Object Storage (6)",
    (
        "linode_volumes_list",
        "linode_volume_get",
        "linode_volume_create",
        "linode_volume_update",
        "linode_volume_delete",
        "linode_volume_attach",
        "linode_objectstorage_buckets_list",
        "linode_objectstorage_bucket_create",
        "linode_objectstorage_bucket_delete",
        "linode_objectstorage_objects_list",
        "linode_objectstorage_object_create",
        "linode_objectstorage_object_delete",
    ),
)

BATCH_4 = MigrationBatch(
    "batch_4", "batch-4", "Simple Operations: DNS (10) + Monitoring (5) + Automation (3) + Support (3)",
    (
        "linode_domains_list",
        "linode_domain_get",
        "linode_domain_create",
        "linode_domain_update",
        "linode_domain_delete",
        "linode_domain_records_list",
        "linode_domain_record_get",
        "linode_domain_record_create",
        "linode_domain_record_update",
        "linode_domain_record_delete",
        "linode_longview_clients_list",
        "linode_longview_client_get",
        "linode_longview_client_create",
        "linode_longview_client_update",
        "linode_longview_client_delete",
        "linode_stackscripts_list",
        "linode_stackscript_get",
        "linode_stackscript_create",
        "linode_support_tickets_list",
        "linode_support_ticket_get",
        "linode_support_ticket_create",
    ),
)

DEFAULT_BATCHES: tuple[MigrationBatch, ...] = (BATCH_1, BATCH_2, BATCH_3, BATCH_4)
