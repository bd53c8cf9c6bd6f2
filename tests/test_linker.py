import pytest

from crm_examples.linker import AccountContactLinker
from crm_examples.models import Account, Contact
from crm_examples.store import StoreRejectedError


def test_resolve_account_creates_then_updates(store):
    linker = AccountContactLinker(store)

    first = linker.resolve_account("Doe")
    assert first.id is not None
    assert store.query(Account, id__in=[first.id])[0].description == "New Account"

    second = linker.resolve_account("Doe")
    assert second.id == first.id
    assert store.query(Account, id__in=[first.id])[0].description == "Updated Account"
    assert store.count(Account) == 1


def test_resolve_account_keeps_other_fields(store):
    store.insert([Account(name="Doe", industry="Banking")])

    account = AccountContactLinker(store).resolve_account("Doe")

    assert account.industry == "Banking"
    assert store.query(Account, name="Doe")[0].industry == "Banking"


def test_name_matching_is_exact(store):
    linker = AccountContactLinker(store)
    ids = {linker.resolve_account(name).id for name in ["Doe", "doe", "Doe "]}
    assert len(ids) == 3


def test_link_contacts_example(store):
    contacts = [Contact(last_name="Doe"), Contact(last_name="Jane"), Contact(last_name="Doe")]

    linked = AccountContactLinker(store).link_contacts(contacts)

    accounts = store.query(Account)
    assert sorted(account.name for account in accounts) == ["Doe", "Jane"]
    assert all(contact.account_id for contact in linked)
    assert linked[0].account_id == linked[2].account_id
    assert linked[0].account_id != linked[1].account_id
    assert [contact.last_name for contact in linked] == ["Doe", "Jane", "Doe"]


def test_every_contact_points_at_account_named_after_it(store):
    names = ["Smith", "Lee", "smith", "Lee", "Nguyen", "Smith"]
    contacts = [Contact(first_name=f"C{i}", last_name=name) for i, name in enumerate(names)]

    AccountContactLinker(store).link_contacts(contacts)

    accounts = {account.id: account for account in store.query(Account)}
    assert len(accounts) == 4
    for contact in store.query(Contact):
        assert accounts[contact.account_id].name == contact.last_name


def test_link_contacts_persists_in_one_batch(store, mocker):
    insert = mocker.spy(store, "insert")
    update = mocker.spy(store, "update")
    existing = Contact(last_name="Doe")
    store.insert([existing])
    insert.reset_mock()

    AccountContactLinker(store).link_contacts([existing, Contact(last_name="Doe"), Contact(last_name="Roe")])

    # one upsert per distinct name, then one update and one insert for the contacts
    assert update.call_count == 1
    assert len(update.call_args.args[0]) == 1
    contact_inserts = [call for call in insert.call_args_list if isinstance(call.args[0][0], Contact)]
    assert len(contact_inserts) == 1
    assert len(contact_inserts[0].args[0]) == 2


def test_link_contacts_reuses_existing_account(store):
    existing = AccountContactLinker(store).resolve_account("Doe")

    contacts = AccountContactLinker(store).link_contacts([Contact(last_name="Doe")])

    assert contacts[0].account_id == existing.id
    assert store.count(Account) == 1


def test_contact_without_last_name_is_rejected_before_any_write(store):
    with pytest.raises(StoreRejectedError) as exc_info:
        AccountContactLinker(store).link_contacts([Contact(last_name="Doe"), Contact(first_name="Anon")])

    assert exc_info.value.status_code == "REQUIRED_FIELD_MISSING"
    assert store.count(Account) == 0


def test_failed_contact_write_keeps_resolved_accounts(store):
    store.validation_rules["Contact"] = [
        lambda row: "Email is required" if not row.get("Email") else None
    ]
    contacts = [Contact(last_name="Doe", email="doe@example.com"), Contact(last_name="Roe")]

    with pytest.raises(StoreRejectedError) as exc_info:
        AccountContactLinker(store).link_contacts(contacts)

    assert exc_info.value.status_code == "FIELD_CUSTOM_VALIDATION_EXCEPTION"
    assert sorted(account.name for account in store.query(Account)) == ["Doe", "Roe"]
    assert store.count(Contact) == 0


def test_failed_contact_batch_leaves_existing_contacts_untouched(store):
    existing = Contact(last_name="Doe", email="doe@example.com")
    store.insert([existing])
    store.validation_rules["Contact"] = [
        lambda row: "Email is required" if not row.get("Email") else None
    ]

    with pytest.raises(StoreRejectedError):
        AccountContactLinker(store).link_contacts([existing, Contact(last_name="Roe")])

    assert store.query(Contact, id__in=[existing.id])[0].account_id is None
    assert store.count(Account) == 2


def test_account_created_after_lookup_is_marked_existing(store, mocker):
    store.insert([Account(name="Doe", industry="Banking")])
    # another writer creates the Account after our lookup came back empty
    mocker.patch.object(store, "query", return_value=[])

    account = AccountContactLinker(store).resolve_account("Doe")

    mocker.stopall()
    saved = store.query(Account, name="Doe")
    assert len(saved) == 1
    assert account.id == saved[0].id
    assert account.description == "Updated Account"
    assert saved[0].description == "Updated Account"
    assert saved[0].industry == "Banking"


def test_rejected_account_write_propagates(store):
    store.validation_rules["Account"] = [lambda row: "Name too short" if len(row["Name"]) < 3 else None]

    with pytest.raises(StoreRejectedError, match="Name too short"):
        AccountContactLinker(store).resolve_account("Li")
