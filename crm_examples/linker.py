import logging
from typing import Dict, List, Sequence

from .models import Account, Contact
from .store import RecordStore, StoreRejectedError, check_required_fields

logger = logging.getLogger(__name__)

NEW_ACCOUNT_DESCRIPTION = "New Account"
EXISTING_ACCOUNT_DESCRIPTION = "Updated Account"


class AccountContactLinker:
    """
    Links Contacts to the Account named after their last name.

    Accounts are looked up by exact name: no case folding, no trimming.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def resolve_account(self, name: str) -> Account:
        """
        Return the Account called ``name``, creating it if it does not exist.

        An existing Account gets its description set to "Updated Account", a
        new one is created with "New Account". The write is an upsert keyed on
        the name, so a concurrent insert of the same name is updated instead of
        duplicated on stores with an atomic upsert; the description follows what
        the upsert actually did, not the earlier lookup.

        Raises:
            StoreRejectedError: if the store rejects the lookup or the write.
        """
        matches = [account for account in self.store.query(Account, name=name) if account.name == name]
        if len(matches) > 1:
            raise StoreRejectedError(
                f"{len(matches)} Accounts are named {name!r}",
                status_code="DUPLICATES_DETECTED",
                fields=["Name"],
            )
        if matches:
            account = matches[0]
            account.description = EXISTING_ACCOUNT_DESCRIPTION
        else:
            account = Account(name=name, description=NEW_ACCOUNT_DESCRIPTION)
        result = self.store.upsert([account], match_key="name")[0]
        expected = NEW_ACCOUNT_DESCRIPTION if result.created else EXISTING_ACCOUNT_DESCRIPTION
        if account.description != expected:
            logger.info(f"Account {name!r} changed between lookup and upsert")
            self.store.update([Account(id=account.id, description=expected)])
            account.description = expected
        logger.debug(f"Resolved Account {name!r} -> {account.id} ({'new' if result.created else 'existing'})")
        return account

    def link_contacts(self, contacts: Sequence[Contact]) -> List[Contact]:
        """
        Point every Contact at the Account matching its last name and save them in one batch.

        Contacts keep their input order. Repeated last names reuse the Account
        resolved earlier in the same call. Accounts are committed as they are
        resolved; a rejected Contact write leaves them in place.
        """
        contacts = list(contacts)
        # Fail before any write when a key is missing
        check_required_fields(contacts)

        resolved: Dict[str, Account] = {}
        for contact in contacts:
            key = contact.last_name
            if key not in resolved:
                resolved[key] = self.resolve_account(key)
            contact.account_id = resolved[key].id

        with self.store.transaction():
            existing = [contact for contact in contacts if contact.id]
            pending = [contact for contact in contacts if not contact.id]
            if existing:
                self.store.update(existing)
            if pending:
                self.store.insert(pending)

        logger.info(f"Linked {len(contacts)} Contacts to {len(resolved)} Accounts")
        return contacts
