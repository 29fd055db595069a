from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from salesflow.core.database import Base
from salesflow.sales.schemas import utcnow


def _money() -> Mapped[Decimal]:
    return mapped_column(Numeric(18, 6), nullable=False, default=Decimal("0"), server_default="0")


class _AuditColumns:
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    createdon: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    modifiedon: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ownerid: Mapped[str | None] = mapped_column(String(255), nullable=True)


class _Address1Columns:
    address1_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address1_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    address1_stateorprovince: Mapped[str | None] = mapped_column(String(128), nullable=True)
    address1_postalcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address1_country: Mapped[str | None] = mapped_column(String(128), nullable=True)


class _BillShipColumns:
    billto_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billto_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billto_stateorprovince: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billto_postalcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    billto_country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipto_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipto_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipto_stateorprovince: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipto_postalcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    shipto_country: Mapped[str | None] = mapped_column(String(128), nullable=True)


class _HeaderTotalColumns:
    totallineitemamount: Mapped[Decimal] = _money()
    discountamount: Mapped[Decimal] = _money()
    totaltax: Mapped[Decimal] = _money()
    freightamount: Mapped[Decimal] = _money()
    totalamountlessfreight: Mapped[Decimal] = _money()
    totalamount: Mapped[Decimal] = _money()


class _LineColumns:
    lineitemnumber: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    productid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    productdescription: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = _money()
    priceperunit: Mapped[Decimal] = _money()
    baseamount: Mapped[Decimal] = _money()
    manualdiscountamount: Mapped[Decimal] = _money()
    volumediscountamount: Mapped[Decimal] = _money()
    tax: Mapped[Decimal] = _money()
    extendedamount: Mapped[Decimal] = _money()


class LeadRow(_AuditColumns, _Address1Columns, Base):
    __tablename__ = "sales_lead"

    firstname: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lastname: Mapped[str] = mapped_column(String(128), nullable=False)
    fullname: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    jobtitle: Mapped[str | None] = mapped_column(String(128), nullable=True)
    companyname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emailaddress1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telephone1: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mobilephone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    websiteurl: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leadsourcecode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budgetstatus: Mapped[int | None] = mapped_column(Integer, nullable=True)
    purchasetimeframe: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimatedvalue: Mapped[Decimal] = _money()
    qualifyingopportunityid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    parentaccountid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    parentcontactid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Open", server_default="Open")
    statuscode: Mapped[str] = mapped_column(String(32), nullable=False, default="New", server_default="New")

    __table_args__ = (Index("ix_sales_lead_statecode", "statecode"),)


class AccountRow(_AuditColumns, _Address1Columns, Base):
    __tablename__ = "sales_account"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    emailaddress1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telephone1: Mapped[str | None] = mapped_column(String(64), nullable=True)
    websiteurl: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    originatingleadid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")


class ContactRow(_AuditColumns, _Address1Columns, Base):
    __tablename__ = "sales_contact"

    firstname: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lastname: Mapped[str] = mapped_column(String(128), nullable=False)
    fullname: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    jobtitle: Mapped[str | None] = mapped_column(String(128), nullable=True)
    emailaddress1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telephone1: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mobilephone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parentcustomerid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    originatingleadid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")


class OpportunityRow(_AuditColumns, Base):
    __tablename__ = "sales_opportunity"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    customerid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customeridtype: Mapped[str | None] = mapped_column(String(16), nullable=True)
    salesstage: Mapped[str] = mapped_column(String(32), nullable=False, default="Qualify")
    closeprobability: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    estimatedvalue: Mapped[Decimal] = _money()
    estimatedclosedate: Mapped[date | None] = mapped_column(Date(), nullable=True)
    actualvalue: Mapped[Decimal] = _money()
    actualclosedate: Mapped[date | None] = mapped_column(Date(), nullable=True)
    closestatus: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    originatingleadid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Open", server_default="Open")

    __table_args__ = (
        Index("ix_sales_opportunity_customer", "customerid"),
        Index("ix_sales_opportunity_lead", "originatingleadid"),
    )


class QuoteRow(_AuditColumns, _BillShipColumns, _HeaderTotalColumns, Base):
    __tablename__ = "sales_quote"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quotenumber: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    revisionnumber: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opportunityid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customerid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customeridtype: Mapped[str | None] = mapped_column(String(16), nullable=True)
    paymenttermscode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    effectivefrom: Mapped[date | None] = mapped_column(Date(), nullable=True)
    effectiveto: Mapped[date | None] = mapped_column(Date(), nullable=True)
    closedon: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closingnotes: Mapped[str | None] = mapped_column(Text, nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Draft", server_default="Draft")

    __table_args__ = (Index("ix_sales_quote_opportunity", "opportunityid"),)


class QuoteDetailRow(_AuditColumns, _LineColumns, Base):
    __tablename__ = "sales_quote_detail"

    quoteid: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_quote.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (Index("ix_sales_quote_detail_quoteid", "quoteid"),)


class SalesOrderRow(_AuditColumns, _BillShipColumns, _HeaderTotalColumns, Base):
    __tablename__ = "sales_order"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    ordernumber: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    quoteid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    opportunityid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customerid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customeridtype: Mapped[str | None] = mapped_column(String(16), nullable=True)
    paymenttermscode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitdate: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    datefulfilled: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")

    __table_args__ = (Index("ix_sales_order_quoteid", "quoteid"),)


class SalesOrderDetailRow(_AuditColumns, _LineColumns, Base):
    __tablename__ = "sales_order_detail"

    salesorderid: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_order.id", ondelete="CASCADE"),
        nullable=False,
    )
    quotedetailid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (Index("ix_sales_order_detail_salesorderid", "salesorderid"),)


class InvoiceRow(_AuditColumns, _BillShipColumns, _HeaderTotalColumns, Base):
    __tablename__ = "sales_invoice"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    invoicenumber: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    salesorderid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    opportunityid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customerid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    customeridtype: Mapped[str | None] = mapped_column(String(16), nullable=True)
    paymenttermscode: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duedate: Mapped[date | None] = mapped_column(Date(), nullable=True)
    datedelivered: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paymentdate: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    totalpaid: Mapped[Decimal] = _money()
    totalbalance: Mapped[Decimal] = _money()
    statecode: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", server_default="Active")

    __table_args__ = (
        Index("ix_sales_invoice_salesorderid", "salesorderid"),
        Index("ix_sales_invoice_state_due", "statecode", "duedate"),
    )


class InvoiceDetailRow(_AuditColumns, _LineColumns, Base):
    __tablename__ = "sales_invoice_detail"

    invoiceid: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_invoice.id", ondelete="CASCADE"),
        nullable=False,
    )
    salesorderdetailid: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (Index("ix_sales_invoice_detail_invoiceid", "invoiceid"),)
