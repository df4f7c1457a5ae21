"""Internal field names ↔ Salesforce Opportunity API names.

Defines:
- SALESFORCE_FIELD_MAP: internal field name → Opportunity field API name
- DEFAULT_EXTERNAL_ID_FIELD: custom field holding the Prolibu proposal id
- to_salesforce_fields(): internal dict → Salesforce create/update payload
- from_salesforce_record(): Salesforce query record → RemoteRecord
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from src.proposal_sync.crm.schemas import RemoteRecord

DEFAULT_EXTERNAL_ID_FIELD = "Prolibu_External_Id__c"


# ── Opportunity Field Mappings ─────────────────────────────────────────────
# external_id is resolved per store since the custom field name is configurable.

SALESFORCE_FIELD_MAP: dict[str, str] = {
    "name": "Name",
    "amount": "Amount",
    "stage": "StageName",
    "close_date": "CloseDate",
    "description": "Description",
}

# Read-only system fields returned by lookups.
SALESFORCE_SYSTEM_FIELDS: dict[str, str] = {
    "id": "Id",
    "created_at": "CreatedDate",
    "updated_at": "LastModifiedDate",
}


def select_fields(external_id_field: str = DEFAULT_EXTERNAL_ID_FIELD) -> list[str]:
    """API names to SELECT when reading an Opportunity."""
    return [
        SALESFORCE_SYSTEM_FIELDS["id"],
        *SALESFORCE_FIELD_MAP.values(),
        external_id_field,
        SALESFORCE_SYSTEM_FIELDS["created_at"],
        SALESFORCE_SYSTEM_FIELDS["updated_at"],
    ]


# ── Conversion Functions ───────────────────────────────────────────────────


def to_salesforce_fields(
    data: dict[str, Any],
    external_id_field: str = DEFAULT_EXTERNAL_ID_FIELD,
    field_map: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Convert an internal field dict to a Salesforce Opportunity payload.

    Unknown keys are dropped. Enum values are sent as their string value.

    Args:
        data: Internal field names to values.
        external_id_field: API name of the external-id custom field.
        field_map: Optional custom map. Defaults to SALESFORCE_FIELD_MAP.

    Returns:
        Dict suitable for ``sf.Opportunity.create`` / ``update``.
    """
    if field_map is None:
        field_map = SALESFORCE_FIELD_MAP

    payload: dict[str, Any] = {}
    for field_name, value in data.items():
        if isinstance(value, Enum):
            value = value.value
        if field_name == "external_id":
            payload[external_id_field] = value
        elif field_name in field_map:
            payload[field_map[field_name]] = value
    return payload


def from_salesforce_record(
    record: dict[str, Any],
    external_id_field: str = DEFAULT_EXTERNAL_ID_FIELD,
    field_map: dict[str, str] | None = None,
) -> RemoteRecord:
    """Convert a Salesforce query record to a RemoteRecord.

    The ``attributes`` metadata entry Salesforce adds to every record is ignored.
    """
    if field_map is None:
        field_map = SALESFORCE_FIELD_MAP

    values: dict[str, Any] = {
        internal: record.get(api_name) for internal, api_name in field_map.items()
    }
    for internal, api_name in SALESFORCE_SYSTEM_FIELDS.items():
        values[internal] = record.get(api_name)
    values["external_id"] = record.get(external_id_field)

    return RemoteRecord(**values)
