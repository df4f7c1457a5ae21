"""Remote record store layer.

- RecordStore: abstract contract used by the SyncEngine
- SalesforceStore: Opportunity store over simple-salesforce
- Field mapping between internal names and Salesforce API names
"""

from src.proposal_sync.crm.adapter import RecordStore
from src.proposal_sync.crm.field_mapping import (
    DEFAULT_EXTERNAL_ID_FIELD,
    SALESFORCE_FIELD_MAP,
    from_salesforce_record,
    to_salesforce_fields,
)
from src.proposal_sync.crm.salesforce import SalesforceStore, categorize_salesforce_error
from src.proposal_sync.crm.schemas import RemoteRecord, SessionInfo, StoreHealth, StoreStatus

__all__ = [
    "RecordStore",
    "SalesforceStore",
    "categorize_salesforce_error",
    "DEFAULT_EXTERNAL_ID_FIELD",
    "SALESFORCE_FIELD_MAP",
    "to_salesforce_fields",
    "from_salesforce_record",
    "RemoteRecord",
    "SessionInfo",
    "StoreHealth",
    "StoreStatus",
]
