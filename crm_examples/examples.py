"""
Self-contained CRUD examples against the CRM object model.

Each static method stands alone: it takes the record store first, issues one
or two store calls and returns what it wrote. Store rejections propagate as
StoreRejectedError.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

from .linker import AccountContactLinker
from .models import Account, Case, Contact, Lead, Opportunity
from .store import RecordStore, StoreRejectedError

logger = logging.getLogger(__name__)

CLOSED_CASE_STATUS = "Closed"


class CrudExamples:

    @staticmethod
    def create_account(store: RecordStore, name: str, industry: Optional[str] = None) -> Account:
        """1. Insert a single Account."""
        account = Account(name=name, industry=industry)
        store.insert([account])
        return account

    @staticmethod
    def create_contact(store: RecordStore, account: Account, first_name: str, last_name: str,
                       email: Optional[str] = None) -> Contact:
        """2. Insert a Contact under an existing Account."""
        contact = Contact(first_name=first_name, last_name=last_name, email=email, account_id=account.id)
        store.insert([contact])
        return contact

    @staticmethod
    def create_opportunity(store: RecordStore, account: Account, name: str, amount: float,
                           close_date: Optional[date] = None) -> Opportunity:
        """3. Insert a Prospecting Opportunity, closing in 30 days unless a date is given."""
        opportunity = Opportunity(
            name=name,
            amount=amount,
            stage_name="Prospecting",
            close_date=close_date or date.today() + timedelta(days=30),
            account_id=account.id,
        )
        store.insert([opportunity])
        return opportunity

    @staticmethod
    def update_opportunity_stage(store: RecordStore, opportunity_id: str, stage_name: str) -> Opportunity:
        """4. Move an Opportunity to another stage."""
        matches = store.query(Opportunity, id__in=[opportunity_id])
        if not matches:
            raise StoreRejectedError(
                f"Opportunity {opportunity_id} does not exist or has been deleted",
                status_code="ENTITY_IS_DELETED",
                fields=["Id"],
            )
        opportunity = matches[0]
        opportunity.stage_name = stage_name
        store.update([opportunity])
        return opportunity

    @staticmethod
    def open_case(store: RecordStore, contact: Contact, subject: str, priority: str = "Medium") -> Case:
        """5. Open a web Case for a Contact and its Account."""
        case = Case(
            subject=subject,
            status="New",
            priority=priority,
            origin="Web",
            contact_id=contact.id,
            account_id=contact.account_id,
        )
        store.insert([case])
        return case

    @staticmethod
    def escalate_account_cases(store: RecordStore, account_id: str) -> List[Case]:
        """6. Raise every open Case of an Account to High priority in one update."""
        cases = [case for case in store.query(Case, account_id=account_id) if case.status != CLOSED_CASE_STATUS]
        for case in cases:
            case.priority = "High"
        if cases:
            store.update(cases)
        logger.info(f"Escalated {len(cases)} Cases for Account {account_id}")
        return cases

    @staticmethod
    def set_industry_description(store: RecordStore, industry: str, description: str) -> List[Account]:
        """7. Overwrite the description of every Account in an industry."""
        accounts = store.query(Account, industry=industry)
        for account in accounts:
            account.description = description
        if accounts:
            store.update(accounts)
        return accounts

    @staticmethod
    def insert_and_delete_leads(store: RecordStore, count: int, company: str = "Acme") -> List[str]:
        """8. Bulk insert ``count`` generated Leads, then bulk delete them. Returns the deleted ids."""
        leads = [
            Lead(first_name="Test", last_name=f"Lead {i}", company=company, email=f"lead{i}@example.com")
            for i in range(1, count + 1)
        ]
        if not leads:
            return []
        store.insert(leads)
        ids = [lead.id for lead in leads]
        store.delete(leads)
        logger.info(f"Inserted and deleted {len(ids)} Leads")
        return ids

    @staticmethod
    def upsert_account(store: RecordStore, name: str) -> Account:
        """9. Update the Account with this name, or create it."""
        return AccountContactLinker(store).resolve_account(name)

    @staticmethod
    def link_contacts_to_accounts(store: RecordStore, contacts: Sequence[Contact]) -> List[Contact]:
        """10. Attach each Contact to the Account named after its last name."""
        return AccountContactLinker(store).link_contacts(contacts)
