from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


LeadState = Literal["Open", "Qualified", "Disqualified"]
LeadStatus = Literal["New", "Contacted", "Qualified", "Lost", "CannotContact", "NoLongerInterested", "Canceled"]
CustomerState = Literal["Active", "Inactive"]
CustomerType = Literal["account", "contact"]
OpportunityState = Literal["Open", "Won", "Lost"]
SalesStage = Literal["Qualify", "Develop", "Propose", "Close"]
QuoteState = Literal["Draft", "Active", "Won", "Lost", "Canceled"]
OrderState = Literal["Active", "Submitted", "Fulfilled", "Canceled"]
InvoiceState = Literal["Active", "Closed", "Paid", "Canceled"]

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SalesRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid.uuid4)
    createdon: datetime = Field(default_factory=utcnow)
    modifiedon: datetime = Field(default_factory=utcnow)
    ownerid: str | None = None


class AddressFields(BaseModel):
    billto_line1: str | None = None
    billto_city: str | None = None
    billto_stateorprovince: str | None = None
    billto_postalcode: str | None = None
    billto_country: str | None = None
    shipto_line1: str | None = None
    shipto_city: str | None = None
    shipto_stateorprovince: str | None = None
    shipto_postalcode: str | None = None
    shipto_country: str | None = None


ADDRESS_FIELDS: tuple[str, ...] = tuple(AddressFields.model_fields)


class HeaderTotals(BaseModel):
    totallineitemamount: Decimal = ZERO
    discountamount: Decimal = ZERO
    totaltax: Decimal = ZERO
    freightamount: Decimal = ZERO
    totalamountlessfreight: Decimal = ZERO
    totalamount: Decimal = ZERO


TOTAL_FIELDS: tuple[str, ...] = tuple(HeaderTotals.model_fields)


class LineItemRecord(SalesRecord):
    lineitemnumber: int = 1
    productid: UUID | None = None
    productdescription: str | None = None
    quantity: Decimal = ZERO
    priceperunit: Decimal = ZERO
    baseamount: Decimal = ZERO
    manualdiscountamount: Decimal = ZERO
    volumediscountamount: Decimal = ZERO
    tax: Decimal = ZERO
    extendedamount: Decimal = ZERO


LINE_AMOUNT_FIELDS: tuple[str, ...] = (
    "productid",
    "productdescription",
    "quantity",
    "priceperunit",
    "baseamount",
    "manualdiscountamount",
    "volumediscountamount",
    "tax",
    "extendedamount",
)


# Stored records


class Lead(SalesRecord):
    firstname: str | None = None
    lastname: str
    fullname: str = ""
    jobtitle: str | None = None
    companyname: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    leadsourcecode: int | None = None
    budgetstatus: int | None = None
    purchasetimeframe: int | None = None
    description: str | None = None
    estimatedvalue: Decimal = ZERO
    qualifyingopportunityid: UUID | None = None
    parentaccountid: UUID | None = None
    parentcontactid: UUID | None = None
    statecode: LeadState = "Open"
    statuscode: LeadStatus = "New"


class Account(SalesRecord):
    name: str
    emailaddress1: str | None = None
    telephone1: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    description: str | None = None
    originatingleadid: UUID | None = None
    statecode: CustomerState = "Active"


class Contact(SalesRecord):
    firstname: str | None = None
    lastname: str
    fullname: str = ""
    jobtitle: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    parentcustomerid: UUID | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    originatingleadid: UUID | None = None
    statecode: CustomerState = "Active"


class Opportunity(SalesRecord):
    name: str
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    salesstage: SalesStage = "Qualify"
    closeprobability: int = 25
    estimatedvalue: Decimal = ZERO
    estimatedclosedate: date | None = None
    actualvalue: Decimal = ZERO
    actualclosedate: date | None = None
    closestatus: str | None = None
    description: str | None = None
    originatingleadid: UUID | None = None
    statecode: OpportunityState = "Open"


class Quote(SalesRecord, AddressFields, HeaderTotals):
    name: str
    quotenumber: str = ""
    revisionnumber: int = 0
    opportunityid: UUID | None = None
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    effectivefrom: date | None = None
    effectiveto: date | None = None
    closedon: datetime | None = None
    closingnotes: str | None = None
    statecode: QuoteState = "Draft"


class QuoteDetail(LineItemRecord):
    quoteid: UUID


class SalesOrder(SalesRecord, AddressFields, HeaderTotals):
    name: str
    ordernumber: str = ""
    quoteid: UUID | None = None
    opportunityid: UUID | None = None
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    submitdate: datetime | None = None
    datefulfilled: datetime | None = None
    statecode: OrderState = "Active"


class SalesOrderDetail(LineItemRecord):
    salesorderid: UUID
    quotedetailid: UUID | None = None


class Invoice(SalesRecord, AddressFields, HeaderTotals):
    name: str
    invoicenumber: str = ""
    salesorderid: UUID | None = None
    opportunityid: UUID | None = None
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    duedate: date | None = None
    datedelivered: datetime | None = None
    paymentdate: datetime | None = None
    totalpaid: Decimal = ZERO
    totalbalance: Decimal = ZERO
    statecode: InvoiceState = "Active"


class InvoiceDetail(LineItemRecord):
    invoiceid: UUID
    salesorderdetailid: UUID | None = None


# Requests


class LeadCreate(BaseModel):
    firstname: str | None = None
    lastname: str = Field(min_length=1)
    jobtitle: str | None = None
    companyname: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    leadsourcecode: int | None = None
    budgetstatus: int | None = None
    purchasetimeframe: int | None = None
    description: str | None = None
    estimatedvalue: Decimal = Field(default=ZERO, ge=ZERO)
    ownerid: str | None = None


class LeadUpdate(BaseModel):
    firstname: str | None = None
    lastname: str | None = Field(default=None, min_length=1)
    jobtitle: str | None = None
    companyname: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    leadsourcecode: int | None = None
    budgetstatus: int | None = None
    purchasetimeframe: int | None = None
    description: str | None = None
    estimatedvalue: Decimal | None = Field(default=None, ge=ZERO)
    statuscode: Literal["New", "Contacted"] | None = None
    ownerid: str | None = None


class QualifyLeadRequest(BaseModel):
    create_account: bool = False
    existing_account_id: UUID | None = None
    create_contact: bool = True
    existing_contact_id: UUID | None = None
    opportunity_name: str | None = None
    estimated_value: Decimal | None = Field(default=None, ge=ZERO)
    estimated_close_date: date | None = None
    description: str | None = None


class QualifyLeadResult(BaseModel):
    lead: Lead
    opportunity: Opportunity
    account: Account | None = None
    contact: Contact | None = None


class DisqualifyLeadRequest(BaseModel):
    statuscode: Literal["Lost", "CannotContact", "NoLongerInterested", "Canceled"] = "Lost"
    reason: str | None = None


class AccountCreate(BaseModel):
    name: str = Field(min_length=1)
    emailaddress1: str | None = None
    telephone1: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    description: str | None = None
    originatingleadid: UUID | None = None
    ownerid: str | None = None


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    emailaddress1: str | None = None
    telephone1: str | None = None
    websiteurl: str | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    description: str | None = None
    statecode: CustomerState | None = None


class ContactCreate(BaseModel):
    firstname: str | None = None
    lastname: str = Field(min_length=1)
    jobtitle: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    parentcustomerid: UUID | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    originatingleadid: UUID | None = None
    ownerid: str | None = None


class ContactUpdate(BaseModel):
    firstname: str | None = None
    lastname: str | None = Field(default=None, min_length=1)
    jobtitle: str | None = None
    emailaddress1: str | None = None
    telephone1: str | None = None
    mobilephone: str | None = None
    parentcustomerid: UUID | None = None
    address1_line1: str | None = None
    address1_city: str | None = None
    address1_stateorprovince: str | None = None
    address1_postalcode: str | None = None
    address1_country: str | None = None
    statecode: CustomerState | None = None


class OpportunityCreate(BaseModel):
    name: str = Field(min_length=1)
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    salesstage: SalesStage = "Qualify"
    estimatedvalue: Decimal = Field(default=ZERO, ge=ZERO)
    estimatedclosedate: date | None = None
    description: str | None = None
    originatingleadid: UUID | None = None
    ownerid: str | None = None


class OpportunityUpdate(BaseModel):
    # stage moves go through next-stage / previous-stage only
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    estimatedvalue: Decimal | None = Field(default=None, ge=ZERO)
    estimatedclosedate: date | None = None
    description: str | None = None
    ownerid: str | None = None


class CloseOpportunityRequest(BaseModel):
    statecode: Literal["Won", "Lost"]
    actualvalue: Decimal | None = Field(default=None, ge=ZERO)
    actualclosedate: date | None = None
    closestatus: str | None = None
    description: str | None = None


class LineItemCreate(BaseModel):
    productid: UUID | None = None
    productdescription: str | None = None
    quantity: Decimal
    priceperunit: Decimal
    manualdiscountamount: Decimal = ZERO
    volumediscountamount: Decimal = ZERO
    tax: Decimal = ZERO


class LineItemUpdate(BaseModel):
    productid: UUID | None = None
    productdescription: str | None = None
    quantity: Decimal | None = None
    priceperunit: Decimal | None = None
    manualdiscountamount: Decimal | None = None
    volumediscountamount: Decimal | None = None
    tax: Decimal | None = None


class ReorderLinesRequest(BaseModel):
    line_ids: list[UUID] = Field(min_length=1)


class QuoteCreate(AddressFields):
    name: str = Field(min_length=1)
    opportunityid: UUID | None = None
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    effectivefrom: date | None = None
    effectiveto: date | None = None
    freightamount: Decimal = Field(default=ZERO, ge=ZERO)
    ownerid: str | None = None


class QuoteUpdate(AddressFields):
    name: str | None = Field(default=None, min_length=1)
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    effectivefrom: date | None = None
    effectiveto: date | None = None
    freightamount: Decimal | None = Field(default=None, ge=ZERO)
    ownerid: str | None = None


class CloseQuoteRequest(BaseModel):
    closingnotes: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class SalesOrderCreate(AddressFields):
    name: str = Field(min_length=1)
    quoteid: UUID | None = None
    opportunityid: UUID | None = None
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    freightamount: Decimal = Field(default=ZERO, ge=ZERO)
    ownerid: str | None = None


class SalesOrderUpdate(AddressFields):
    name: str | None = Field(default=None, min_length=1)
    customerid: UUID | None = None
    customeridtype: CustomerType | None = None
    paymenttermscode: int | None = None
    description: str | None = None
    freightamount: Decimal | None = Field(default=None, ge=ZERO)
    ownerid: str | None = None


class FulfillOrderRequest(BaseModel):
    datefulfilled: datetime | None = None


class InvoiceUpdate(AddressFields):
    name: str | None = Field(default=None, min_length=1)
    paymenttermscode: int | None = None
    description: str | None = None
    duedate: date | None = None
    freightamount: Decimal | None = Field(default=None, ge=ZERO)
    ownerid: str | None = None


class RecordPaymentRequest(BaseModel):
    amount: Decimal = Field(gt=ZERO)
    paymentdate: datetime | None = None


class MarkPaidRequest(BaseModel):
    paymentdate: datetime | None = None


class CancelInvoiceRequest(BaseModel):
    reason: str | None = None


# Read models


class QuoteWithLines(BaseModel):
    quote: Quote
    lines: list[QuoteDetail] = Field(default_factory=list)


class SalesOrderWithLines(BaseModel):
    order: SalesOrder
    lines: list[SalesOrderDetail] = Field(default_factory=list)


class InvoiceWithLines(BaseModel):
    invoice: Invoice
    lines: list[InvoiceDetail] = Field(default_factory=list)


class QuoteWinResult(BaseModel):
    quote: Quote
    order: SalesOrder
    order_lines: list[SalesOrderDetail] = Field(default_factory=list)
    opportunity: Opportunity | None = None


class QuoteStatistics(BaseModel):
    total: int = 0
    by_state: dict[str, int] = Field(default_factory=dict)
    total_value: Decimal = ZERO
    won_value: Decimal = ZERO
    average_won_value: Decimal = ZERO
    win_rate: Decimal = ZERO


class OrderStatistics(BaseModel):
    total: int = 0
    by_state: dict[str, int] = Field(default_factory=dict)
    total_value: Decimal = ZERO
    average_value: Decimal = ZERO


class InvoiceStatistics(BaseModel):
    total: int = 0
    by_state: dict[str, int] = Field(default_factory=dict)
    overdue: int = 0
    total_amount: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_due: Decimal = ZERO
