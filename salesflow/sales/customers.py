from __future__ import annotations

import uuid
from dataclasses import dataclass

from salesflow.errors import InvalidStateError, NotFoundError
from salesflow.sales.lifecycle import record_transition, touch
from salesflow.sales.schemas import Account, AccountCreate, AccountUpdate, Contact, ContactCreate, ContactUpdate
from salesflow.store.base import ACCOUNT, CONTACT, OPPORTUNITY, EntityStore


def full_name(firstname: str | None, lastname: str | None) -> str:
    return " ".join(part for part in (firstname, lastname) if part)


@dataclass(slots=True)
class CustomerService:
    store: EntityStore

    def create_account(self, payload: AccountCreate) -> Account:
        account = Account(**payload.model_dump(mode="python"))
        self.store.put(ACCOUNT, account)
        record_transition(ACCOUNT, account, "created")
        return account

    def get_account(self, account_id: uuid.UUID) -> Account:
        account = self.store.get(ACCOUNT, account_id)
        if account is None:
            raise NotFoundError(ACCOUNT, account_id)
        return account

    def list_accounts(self, statecode: str | None = None) -> list[Account]:
        if statecode is None:
            return self.store.list(ACCOUNT)
        return self.store.list(ACCOUNT, statecode=statecode)

    def update_account(self, account_id: uuid.UUID, payload: AccountUpdate) -> Account:
        account = self.get_account(account_id)
        before = account.model_copy()
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(account, field, value)
        self.store.put(ACCOUNT, touch(account))
        record_transition(ACCOUNT, account, "updated", before=before)
        return account

    def delete_account(self, account_id: uuid.UUID) -> None:
        self.get_account(account_id)
        if self.store.list(OPPORTUNITY, customerid=account_id):
            raise InvalidStateError("account is referenced by opportunities")
        self.store.remove(ACCOUNT, account_id)

    def create_contact(self, payload: ContactCreate) -> Contact:
        data = payload.model_dump(mode="python")
        if data.get("parentcustomerid") is not None:
            self.get_account(data["parentcustomerid"])
        contact = Contact(**data, fullname=full_name(payload.firstname, payload.lastname))
        self.store.put(CONTACT, contact)
        record_transition(CONTACT, contact, "created")
        return contact

    def get_contact(self, contact_id: uuid.UUID) -> Contact:
        contact = self.store.get(CONTACT, contact_id)
        if contact is None:
            raise NotFoundError(CONTACT, contact_id)
        return contact

    def list_contacts(self, statecode: str | None = None) -> list[Contact]:
        if statecode is None:
            return self.store.list(CONTACT)
        return self.store.list(CONTACT, statecode=statecode)

    def list_contacts_by_account(self, account_id: uuid.UUID) -> list[Contact]:
        return self.store.list(CONTACT, parentcustomerid=account_id)

    def update_contact(self, contact_id: uuid.UUID, payload: ContactUpdate) -> Contact:
        contact = self.get_contact(contact_id)
        before = contact.model_copy()
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("parentcustomerid") is not None:
            self.get_account(changes["parentcustomerid"])
        for field, value in changes.items():
            setattr(contact, field, value)
        contact.fullname = full_name(contact.firstname, contact.lastname)
        self.store.put(CONTACT, touch(contact))
        record_transition(CONTACT, contact, "updated", before=before)
        return contact

    def delete_contact(self, contact_id: uuid.UUID) -> None:
        self.get_contact(contact_id)
        if self.store.list(OPPORTUNITY, customerid=contact_id):
            raise InvalidStateError("contact is referenced by opportunities")
        self.store.remove(CONTACT, contact_id)
