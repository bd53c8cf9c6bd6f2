from datetime import date
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SObject(BaseModel):
    """Base class for CRM records.

    Python attributes are snake_case; the platform API name of each field is
    its alias, so ``to_record()`` produces the dict shape the REST API expects.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    sobject_type: ClassVar[str] = ""
    key_prefix: ClassVar[str] = "000"
    required_fields: ClassVar[List[str]] = []

    id: Optional[str] = Field(None, alias="Id")

    @classmethod
    def api_name(cls, field_name: str) -> str:
        field = cls.model_fields.get(field_name)
        if field is None:
            raise KeyError(f"{cls.sobject_type} has no field '{field_name}'")
        return field.alias or field_name

    @classmethod
    def api_fields(cls) -> List[str]:
        return [cls.api_name(name) for name in cls.model_fields]

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        # Query results carry an "attributes" entry with type and url
        data = {k: v for k, v in record.items() if k != "attributes"}
        return cls.model_validate(data)

    def to_record(self, include_id: bool = True, set_only: bool = False) -> Dict[str, Any]:
        """Platform-shaped dict; ``set_only`` keeps just the fields assigned on this instance."""
        record = self.model_dump(by_alias=True, mode="json", exclude_unset=set_only)
        if not include_id:
            record.pop("Id", None)
        return record

    def missing_required(self) -> List[str]:
        return [self.api_name(name) for name in self.required_fields if getattr(self, name) in (None, "")]


class Account(SObject):
    sobject_type = "Account"
    key_prefix = "001"
    required_fields = ["name"]

    name: Optional[str] = Field(None, alias="Name")
    description: Optional[str] = Field(None, alias="Description")
    industry: Optional[str] = Field(None, alias="Industry")
    annual_revenue: Optional[float] = Field(None, alias="AnnualRevenue")


class Contact(SObject):
    sobject_type = "Contact"
    key_prefix = "003"
    required_fields = ["last_name"]

    first_name: Optional[str] = Field(None, alias="FirstName")
    last_name: Optional[str] = Field(None, alias="LastName")
    email: Optional[str] = Field(None, alias="Email")
    account_id: Optional[str] = Field(None, alias="AccountId")


class Opportunity(SObject):
    sobject_type = "Opportunity"
    key_prefix = "006"
    required_fields = ["name", "stage_name", "close_date"]

    name: Optional[str] = Field(None, alias="Name")
    stage_name: Optional[str] = Field(None, alias="StageName")
    close_date: Optional[date] = Field(None, alias="CloseDate")
    amount: Optional[float] = Field(None, alias="Amount")
    account_id: Optional[str] = Field(None, alias="AccountId")


class Lead(SObject):
    sobject_type = "Lead"
    key_prefix = "00Q"
    required_fields = ["last_name", "company"]

    first_name: Optional[str] = Field(None, alias="FirstName")
    last_name: Optional[str] = Field(None, alias="LastName")
    company: Optional[str] = Field(None, alias="Company")
    status: Optional[str] = Field("Open - Not Contacted", alias="Status")
    email: Optional[str] = Field(None, alias="Email")


class Case(SObject):
    sobject_type = "Case"
    key_prefix = "500"

    subject: Optional[str] = Field(None, alias="Subject")
    status: Optional[str] = Field("New", alias="Status")
    priority: Optional[str] = Field("Medium", alias="Priority")
    origin: Optional[str] = Field(None, alias="Origin")
    account_id: Optional[str] = Field(None, alias="AccountId")
    contact_id: Optional[str] = Field(None, alias="ContactId")


SOBJECT_TYPES = {model.sobject_type: model for model in (Account, Contact, Opportunity, Lead, Case)}
