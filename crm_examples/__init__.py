"""
CRM CRUD examples.

Modules:
    - models: pydantic records for Account, Contact, Opportunity, Lead and Case
    - store: RecordStore interface and StoreRejectedError
    - memory_store: in-process RecordStore
    - salesforce_store: RecordStore over a simple_salesforce connection
    - config: credential loading and Salesforce connection
    - linker: AccountContactLinker
    - examples: CrudExamples, the numbered CRUD examples

Usage:
    from crm_examples import CrudExamples, SalesforceStore, connect

    store = SalesforceStore(connect("original"))
    CrudExamples.upsert_account(store, "Doe")
"""

from .config import connect, load_credentials
from .examples import CrudExamples
from .linker import AccountContactLinker
from .memory_store import MemoryStore
from .models import Account, Case, Contact, Lead, Opportunity
from .salesforce_store import SalesforceStore
from .store import RecordStore, StoreRejectedError, UpsertResult

__version__ = "1.0.0"
