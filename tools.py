"""MCP tools exposed behind the OAuth-protected /mcp endpoint.

``ping`` and ``whoami`` let a client check that its token works. The vendor
and bill tools proxy to Bill.com through the client installed with
``configure_billcom``; without one they fail with a tool error.
"""

import json
import logging
from datetime import date
from typing import Annotated, Any, Literal, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request
from pydantic import BaseModel, Field

from billcom import DEFAULT_PAGE_SIZE, BillComClient, BillComError

logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP("mcp-oauth-broker")

_billcom: Optional[BillComClient] = None

Start = Annotated[int, Field(ge=0, description="Starting position (default 0)")]
MaxResults = Annotated[int, Field(ge=1, le=100, description="Max records per page (default 20, max 100)")]


def configure_billcom(client: Optional[BillComClient]) -> None:
    """Install (or clear) the Bill.com client used by the business tools."""
    global _billcom
    _billcom = client


def _client() -> BillComClient:
    if _billcom is None:
        raise ToolError("Bill.com is not configured")
    return _billcom


async def _call(tool: str, pending) -> str:
    try:
        result = await pending
    except BillComError as e:
        logger.warning(f"[TOOL] {tool} failed: {e.message}")
        raise ToolError(e.message) from e
    return json.dumps(result, indent=2)


@mcp.tool()
def ping() -> str:
    """Simple ping tool to test connectivity.

    Returns:
        A pong response
    """
    logger.info("[TOOL] ping invoked")
    return "pong"


@mcp.tool()
def whoami() -> str:
    """Return the email address the current access token was issued for."""
    try:
        request = get_http_request()
    except RuntimeError:
        # stdio transport: no HTTP request, no token
        request = None
    identity = getattr(request.state, "identity", None) if request else None
    logger.info(f"[TOOL] whoami invoked by: {identity}")
    return identity or "anonymous (no OAuth identity)"


# ============== Vendors ==============


@mcp.tool()
async def list_vendors(start: Start = 0, max_results: MaxResults = DEFAULT_PAGE_SIZE) -> str:
    """List vendors with pagination."""
    logger.info(f"[TOOL] list_vendors invoked, start={start} max={max_results}")
    return await _call("list_vendors", _client().list_vendors(start, max_results))


@mcp.tool()
async def get_vendor(vendor_id: Annotated[str, Field(min_length=1, description="The vendor ID")]) -> str:
    """Get a vendor by ID."""
    logger.info("[TOOL] get_vendor invoked")
    return await _call("get_vendor", _client().get_vendor(vendor_id))


@mcp.tool()
async def create_vendor(
    name: Annotated[str, Field(min_length=1, description="Vendor name")],
    account_type: Optional[Literal["Company", "Individual"]] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address1: Optional[str] = None,
    address2: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    zip_code: Optional[str] = None,
    country: Optional[str] = None,
) -> str:
    """Create a new vendor. Bank account fields are deliberately not exposed.

    Args:
        name: Vendor name
        account_type: "Company" or "Individual"
        email: Vendor email
        phone: Vendor phone number
        address1: Street address line 1
        address2: Street address line 2
        city: City
        state: State/province
        zip_code: ZIP/postal code
        country: Country code
    """
    data: dict[str, Any] = {"name": name}
    if account_type:
        data["accountType"] = account_type
    if email:
        data["email"] = email
    if phone:
        data["phone"] = phone
    if address1 or city or state or zip_code or country:
        data["address"] = {
            "address1": address1,
            "address2": address2,
            "city": city,
            "state": state,
            "zip": zip_code,
            "country": country,
        }

    logger.info("[TOOL] create_vendor invoked")
    return await _call("create_vendor", _client().create_vendor(data))


# ============== Bills ==============


class BillLineItem(BaseModel):
    amount: float = Field(description="Line item amount")
    chart_of_account_id: Optional[str] = Field(
        None, serialization_alias="chartOfAccountId", description="Chart of account ID"
    )
    description: Optional[str] = Field(None, description="Line item description")


@mcp.tool()
async def list_bills(start: Start = 0, max_results: MaxResults = DEFAULT_PAGE_SIZE) -> str:
    """List bills with pagination."""
    logger.info(f"[TOOL] list_bills invoked, start={start} max={max_results}")
    return await _call("list_bills", _client().list_bills(start, max_results))


@mcp.tool()
async def get_bill(bill_id: Annotated[str, Field(min_length=1, description="The bill ID")]) -> str:
    """Get a bill by ID."""
    logger.info("[TOOL] get_bill invoked")
    return await _call("get_bill", _client().get_bill(bill_id))


@mcp.tool()
async def create_bill(
    vendor_id: Annotated[str, Field(min_length=1, description="The vendor ID for this bill")],
    due_date: date,
    line_items: Annotated[list[BillLineItem], Field(min_length=1, description="At least one line item")],
    invoice_number: Optional[str] = None,
    invoice_date: Optional[date] = None,
    description: Optional[str] = None,
) -> str:
    """Create a new bill for a vendor.

    Args:
        vendor_id: The vendor ID for this bill
        due_date: Payment due date (YYYY-MM-DD)
        line_items: Bill line items
        invoice_number: Vendor's invoice number
        invoice_date: Invoice date (YYYY-MM-DD)
        description: Bill description/memo
    """
    data: dict[str, Any] = {
        "vendorId": vendor_id,
        "dueDate": due_date.isoformat(),
        "billLineItems": [item.model_dump(by_alias=True, exclude_none=True) for item in line_items],
    }
    if invoice_number:
        data["invoiceNumber"] = invoice_number
    if invoice_date:
        data["invoiceDate"] = invoice_date.isoformat()
    if description:
        data["description"] = description

    logger.info(f"[TOOL] create_bill invoked, {len(line_items)} line item(s)")
    return await _call("create_bill", _client().create_bill(data))
