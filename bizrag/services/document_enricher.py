"""Turns raw business records into enriched, searchable documents.

Records arrive as dicts in the business API's camelCase shape. Enrichment is
pure and deterministic: the same record in the same batch always yields the
same document (no clocks, no randomness), which keeps checksums and tests
stable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from bizrag.models.documents import (
    BalanceMetadata,
    BaseDocumentMetadata,
    ClientMetadata,
    EnrichedDocument,
    InvoiceMetadata,
    LedgerMetadata,
    ProductMetadata,
    PurchaseMetadata,
    Relationship,
    SupplierMetadata,
    SystemFeatureMetadata,
    UserMetadata,
)
from bizrag.utils.errors import UnknownEntityTypeError

Record = Dict[str, Any]

DEFAULT_REORDER_POINT = 10


# -- value helpers -----------------------------------------------------------

def _get(record: Record, *keys: str, default: Any = None) -> Any:
    """First non-empty value among ``keys``; dotted keys walk nested dicts."""
    for key in keys:
        value: Any = record
        for part in key.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value not in (None, ""):
            return value
    return default


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _money(value: Any) -> str:
    return f"${_num(value):,.2f}"


def _iso(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _fmt_date(value: Any, missing: str = "Not set") -> str:
    iso = _iso(value)
    return iso[:10] if iso else missing


def _names(values: Any) -> List[str]:
    """Normalise a list of strings or ``{"name": ...}`` dicts."""
    names = []
    for item in values or []:
        name = item.get("name") if isinstance(item, dict) else item
        if name:
            names.append(str(name))
    return names


def _label(value: Any) -> str:
    return str(value).strip().lower().replace(" ", "-")


def _dedupe(items: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def _lines(*lines: Optional[str]) -> str:
    return "\n".join(line for line in lines if line)


@dataclass(frozen=True)
class RelationRule:
    """Pairs records that share a derived attribute."""

    label: str
    key: Callable[[Record], Any]
    strength: float


# -- base enricher -----------------------------------------------------------

class EntityEnricher(ABC):
    """Enrichment recipe for one entity type."""

    entity_type: str
    source_system: str
    synonyms: Sequence[str] = ()
    relation_rules: Sequence[RelationRule] = ()

    def enrich_batch(self, records: Sequence[Record]) -> List[EnrichedDocument]:
        return [self.enrich(record, records) for record in records]

    def enrich(self, record: Record, batch: Sequence[Record] = ()) -> EnrichedDocument:
        return EnrichedDocument(
            id=str(record["id"]),
            content=self.content(record),
            metadata=self.metadata(record),
            keywords=self.keywords(record),
            tags=_dedupe(self.tags(record)),
            relationships=self.relationships(record, batch),
            summary=self.summary(record),
        )

    @abstractmethod
    def content(self, record: Record) -> str: ...

    @abstractmethod
    def metadata(self, record: Record) -> BaseDocumentMetadata: ...

    @abstractmethod
    def keyword_values(self, record: Record) -> List[Any]: ...

    @abstractmethod
    def tags(self, record: Record) -> List[str]: ...

    @abstractmethod
    def summary(self, record: Record) -> str: ...

    @abstractmethod
    def priority(self, record: Record) -> str: ...

    def keywords(self, record: Record) -> List[str]:
        terms: List[str] = []
        for value in self.keyword_values(record):
            if value in (None, ""):
                continue
            text = str(value).strip().lower()
            terms.append(text)
            if " " in text:
                terms.extend(word for word in text.split() if len(word) > 2)
        terms.extend(self.synonyms)
        return _dedupe(terms)

    def relationships(self, record: Record, batch: Sequence[Record]) -> List[Relationship]:
        own_id = str(record["id"])
        edges: List[Relationship] = []
        for rule in self.relation_rules:
            own_key = rule.key(record)
            if own_key in (None, ""):
                continue
            for other in batch:
                if str(other.get("id")) == own_id or rule.key(other) != own_key:
                    continue
                edges.append(
                    Relationship(
                        type="related",
                        target_entity_type=self.entity_type,
                        target_entity_id=str(other["id"]),
                        strength=rule.strength,
                        description=f"Same {rule.label}: {own_key}",
                    )
                )
        return edges

    def common(self, record: Record, **fields: Any) -> Dict[str, Any]:
        """Shared metadata fields; type-specific values override the defaults."""
        status = str(_get(record, "status", default="Active"))
        base = {
            "entity_id": str(record["id"]),
            "status": status,
            "priority": self.priority(record),
            "created_at": _iso(_get(record, "createdAt")),
            "updated_at": _iso(_get(record, "updatedAt", "createdAt")),
            "created_by": str(_get(record, "createdBy", default="system")),
            "last_modified_by": str(_get(record, "lastModifiedBy", default="system")),
            "is_active": status.lower() != "inactive",
            "source_system": self.source_system,
        }
        base.update(fields)
        return base


# -- entity enrichers --------------------------------------------------------

def profile_completion(user: Record) -> int:
    """Percentage of the seven profile fields that are filled in."""
    fields = ("firstName", "lastName", "email", "phone", "department", "location", "bio")
    filled = sum(1 for f in fields if user.get(f))
    return round(filled / len(fields) * 100)


def profit_margin(product: Record) -> float:
    cost = _num(product.get("costPrice"))
    price = _num(product.get("price"))
    if not cost or not price:
        return 0.0
    return round((price - cost) / price * 100, 2)


class UserEnricher(EntityEnricher):
    entity_type = "users"
    source_system = "user_management"
    synonyms = ("user", "account", "profile", "employee", "staff", "member")
    relation_rules = (RelationRule("department", lambda r: r.get("department"), 0.7),)

    def _name(self, user: Record) -> str:
        full = f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
        return full or str(user.get("username") or user["id"])

    def content(self, user: Record) -> str:
        roles = ", ".join(_names(user.get("roles"))) or "No role assigned"
        skills = _names(user.get("skills"))
        return _lines(
            f"User Profile: {user.get('username') or self._name(user)}",
            f"Full Name: {self._name(user)}",
            f"Email Address: {user.get('email') or 'Not provided'}",
            f"Contact Information: {user.get('phone') or 'Not provided'}",
            f"Role and Permissions: {roles}",
            f"Account Status: {_get(user, 'status', default='Active')}",
            f"Account Creation: {_fmt_date(user.get('createdAt'))}",
            f"Last Login Activity: {_fmt_date(user.get('lastLogin'), 'Never')}",
            f"Department: {user.get('department') or 'Not assigned'}",
            f"Location: {user.get('location') or 'Not specified'}",
            f"Account Type: {user.get('accountType') or 'Standard'}",
            f"Profile Completion: {profile_completion(user)}%",
            f"Bio: {user['bio']}" if user.get("bio") else None,
            f"Skills: {', '.join(skills)}" if skills else None,
        )

    def metadata(self, user: Record) -> UserMetadata:
        roles = _names(user.get("roles"))
        return UserMetadata(
            **self.common(
                user,
                title=self._name(user),
                description=f"User account for {user.get('email')} with role {', '.join(roles) or 'No role'}",
                category=user.get("department") or "General",
                email=user.get("email"),
                username=user.get("username"),
                roles=roles,
                department=user.get("department"),
                location=user.get("location"),
                account_type=user.get("accountType"),
                profile_completion=profile_completion(user),
                last_login=_iso(user.get("lastLogin")),
                phone=user.get("phone"),
                skills=_names(user.get("skills")),
            )
        )

    def keyword_values(self, user: Record) -> List[Any]:
        return [
            user.get("username"),
            user.get("firstName"),
            user.get("lastName"),
            user.get("email"),
            user.get("department"),
            user.get("location"),
            *_names(user.get("roles")),
            *_names(user.get("skills")),
        ]

    def tags(self, user: Record) -> List[str]:
        roles = [r.lower() for r in _names(user.get("roles"))]
        tags = []
        if "admin" in roles:
            tags += ["admin", "administrator"]
        if "manager" in roles:
            tags += ["manager", "management"]
        status = str(_get(user, "status", default="Active")).lower()
        tags.append("inactive" if status == "inactive" else "active")
        if user.get("department"):
            tags.append(_label(user["department"]))
        if user.get("accountType"):
            tags.append(_label(user["accountType"]))
        return tags

    def priority(self, user: Record) -> str:
        roles = [r.lower() for r in _names(user.get("roles"))]
        if "admin" in roles:
            return "high"
        if "manager" in roles:
            return "medium"
        return "low"

    def summary(self, user: Record) -> str:
        roles = ", ".join(_names(user.get("roles"))) or "No role"
        status = str(_get(user, "status", default="Active")).lower()
        department = user.get("department") or "General"
        return f"{self._name(user)} is a {status} user with role {roles} in the {department} department."


class _PartyEnricher(EntityEnricher):
    """Shared rules for clients and suppliers."""

    kind: str = "client"

    def tags(self, party: Record) -> List[str]:
        status = str(_get(party, "status", default="Active")).lower()
        tags = ["inactive" if status == "inactive" else "active"]
        if party.get("industry"):
            tags.append(_label(party["industry"]))
        if party.get("companyType"):
            tags.append(_label(party["companyType"]))
        if _num(party.get("creditLimit")) > 0:
            tags.append("credit-approved")
        return tags

    def priority(self, party: Record) -> str:
        limit = _num(party.get("creditLimit"))
        if limit > 10000:
            return "high"
        if limit > 5000:
            return "medium"
        return "low"

    def _credit(self, party: Record) -> str:
        return _money(party["creditLimit"]) if party.get("creditLimit") else "Not set"

    def keyword_values(self, party: Record) -> List[Any]:
        return [
            party.get("name"),
            party.get("email"),
            party.get("industry"),
            party.get("companyType"),
            party.get("city"),
            party.get("country"),
            party.get("contactPerson"),
        ]


class ClientEnricher(_PartyEnricher):
    entity_type = "clients"
    source_system = "client_management"
    synonyms = ("client", "customer", "company", "business", "account")
    relation_rules = (RelationRule("industry", lambda r: r.get("industry"), 0.6),)

    def content(self, client: Record) -> str:
        return _lines(
            f"Client Profile: {client.get('name')}",
            "Contact Information:",
            f"  - Email: {client.get('email') or 'Not provided'}",
            f"  - Phone: {client.get('phone') or 'Not provided'}",
            f"  - Address: {client.get('address') or 'Not provided'}",
            f"  - City: {client.get('city') or 'Not specified'}",
            f"  - Country: {client.get('country') or 'Not specified'}",
            "Business Information:",
            f"  - Company Type: {client.get('companyType') or 'Not specified'}",
            f"  - Industry: {client.get('industry') or 'Not specified'}",
            f"  - Tax ID: {client.get('taxId') or 'Not provided'}",
            f"Account Status: {_get(client, 'status', default='Active')}",
            f"Client Since: {_fmt_date(client.get('createdAt'))}",
            f"Last Contact: {_fmt_date(client.get('lastContact'), 'No contact recorded')}",
            f"Credit Limit: {self._credit(client)}",
            f"Payment Terms: {client.get('paymentTerms') or 'Standard'}",
            f"Notes: {client.get('notes') or 'No additional notes'}",
        )

    def metadata(self, client: Record) -> ClientMetadata:
        industry = client.get("industry") or "General"
        return ClientMetadata(
            **self.common(
                client,
                title=str(client.get("name") or client["id"]),
                description=f"Client account for {client.get('name')} in {industry} industry",
                category=industry,
                email=client.get("email"),
                phone=client.get("phone"),
                address=client.get("address"),
                city=client.get("city"),
                country=client.get("country"),
                company_type=client.get("companyType"),
                industry=client.get("industry"),
                tax_id=client.get("taxId"),
                credit_limit=_num(client["creditLimit"]) if client.get("creditLimit") else None,
                payment_terms=client.get("paymentTerms"),
                last_contact=_iso(client.get("lastContact")),
            )
        )

    def summary(self, client: Record) -> str:
        status = str(_get(client, "status", default="Active")).lower()
        industry = client.get("industry") or "General"
        return (
            f"{client.get('name')} is a {status} client in the {industry} industry "
            f"with credit limit of {self._credit(client)}."
        )


class SupplierEnricher(_PartyEnricher):
    entity_type = "suppliers"
    source_system = "purchasing"
    synonyms = ("supplier", "vendor", "provider", "company", "business")
    relation_rules = (RelationRule("industry", lambda r: r.get("industry"), 0.6),)

    def content(self, supplier: Record) -> str:
        return _lines(
            f"Supplier Profile: {supplier.get('name')}",
            "Contact Information:",
            f"  - Contact Person: {supplier.get('contactPerson') or 'Not specified'}",
            f"  - Email: {supplier.get('email') or 'Not provided'}",
            f"  - Phone: {supplier.get('phone') or 'Not provided'}",
            f"  - Address: {supplier.get('address') or 'Not provided'}",
            f"  - City: {supplier.get('city') or 'Not specified'}",
            f"  - Country: {supplier.get('country') or 'Not specified'}",
            "Business Information:",
            f"  - Company Type: {supplier.get('companyType') or 'Not specified'}",
            f"  - Industry: {supplier.get('industry') or 'Not specified'}",
            f"  - Tax ID: {supplier.get('taxId') or 'Not provided'}",
            f"  - Website: {supplier.get('website') or 'Not provided'}",
            f"Account Status: {_get(supplier, 'status', default='Active')}",
            f"Supplier Since: {_fmt_date(supplier.get('createdAt'))}",
            f"Payment Terms: {supplier.get('paymentTerms') or 'Standard'}",
            f"Credit Limit: {self._credit(supplier)}",
            f"Notes: {supplier.get('notes') or 'No additional notes'}",
        )

    def metadata(self, supplier: Record) -> SupplierMetadata:
        industry = supplier.get("industry") or "General"
        return SupplierMetadata(
            **self.common(
                supplier,
                title=str(supplier.get("name") or supplier["id"]),
                description=f"Supplier {supplier.get('name')} in {industry} industry",
                category=industry,
                contact_person=supplier.get("contactPerson"),
                email=supplier.get("email"),
                phone=supplier.get("phone"),
                city=supplier.get("city"),
                country=supplier.get("country"),
                company_type=supplier.get("companyType"),
                industry=supplier.get("industry"),
                credit_limit=_num(supplier["creditLimit"]) if supplier.get("creditLimit") else None,
                payment_terms=supplier.get("paymentTerms"),
                website=supplier.get("website"),
            )
        )

    def summary(self, supplier: Record) -> str:
        status = str(_get(supplier, "status", default="Active")).lower()
        industry = supplier.get("industry") or "General"
        contact = supplier.get("contactPerson") or "Not specified"
        return (
            f"{supplier.get('name')} is a {status} supplier in the {industry} industry "
            f"with contact person {contact}."
        )


class ProductEnricher(EntityEnricher):
    entity_type = "products"
    source_system = "inventory"
    synonyms = ("product", "item", "inventory", "stock", "goods", "merchandise")
    relation_rules = (
        RelationRule("category", lambda r: _get(r, "category.name", "category"), 0.8),
        RelationRule("brand", lambda r: r.get("brand"), 0.7),
    )

    def _category(self, product: Record) -> str:
        return str(_get(product, "category.name", "category", default="General"))

    def _stock(self, product: Record) -> int:
        return int(_num(_get(product, "stockQuantity", "quantity", default=0)))

    def _reorder_point(self, product: Record) -> int:
        return int(_num(_get(product, "reorderPoint", "minStockLevel", default=DEFAULT_REORDER_POINT)))

    def _stock_status(self, product: Record) -> str:
        stock = self._stock(product)
        if stock <= 0:
            return "Out of Stock"
        if stock <= self._reorder_point(product):
            return "Low Stock"
        return "In Stock"

    def content(self, product: Record) -> str:
        features = _names(product.get("features"))
        return _lines(
            f"Product Information: {product.get('name')}",
            f"  - SKU: {product.get('sku') or 'Not set'}",
            f"  - Category: {self._category(product)}",
            f"  - Brand: {product.get('brand') or 'Not specified'}",
            f"  - Model: {product.get('model') or 'Not specified'}",
            "Pricing Information:",
            f"  - Cost Price: {_money(product['costPrice']) if product.get('costPrice') else 'Not set'}",
            f"  - Selling Price: {_money(product.get('price'))}",
            f"  - Profit Margin: {profit_margin(product)}%",
            "Inventory Status:",
            f"  - Current Stock: {self._stock(product)} units",
            f"  - Stock Status: {self._stock_status(product)}",
            f"  - Reorder Point: {self._reorder_point(product)}",
            f"  - Maximum Stock: {product.get('maxStock') or 'Not set'}",
            f"Product Status: {_get(product, 'status', default='Active')}",
            f"Date Added: {_fmt_date(product.get('createdAt'))}",
            f"Description: {product.get('description') or 'No description available'}",
            f"Features: {', '.join(features)}" if features else None,
        )

    def metadata(self, product: Record) -> ProductMetadata:
        category = self._category(product)
        return ProductMetadata(
            **self.common(
                product,
                title=str(product.get("name") or product["id"]),
                description=f"{product.get('name')} - {category} product with SKU {product.get('sku')}",
                category=category,
                sku=product.get("sku"),
                brand=product.get("brand"),
                model=product.get("model"),
                price=_num(product.get("price")),
                cost_price=_num(product["costPrice"]) if product.get("costPrice") else None,
                profit_margin=profit_margin(product),
                stock_quantity=self._stock(product),
                reorder_point=self._reorder_point(product),
                stock_status=self._stock_status(product),
            )
        )

    def keyword_values(self, product: Record) -> List[Any]:
        return [
            product.get("name"),
            product.get("sku"),
            self._category(product),
            product.get("brand"),
            product.get("model"),
            *_names(product.get("features")),
        ]

    def tags(self, product: Record) -> List[str]:
        stock = self._stock(product)
        tags = ["in-stock" if stock > 0 else "out-of-stock"]
        if stock <= self._reorder_point(product):
            tags.append("low-stock")
        tags.append(_label(self._category(product)))
        if product.get("brand"):
            tags.append(_label(product["brand"]))
        return tags

    def priority(self, product: Record) -> str:
        stock = self._stock(product)
        if stock == 0:
            return "high"
        if stock <= self._reorder_point(product):
            return "medium"
        return "low"

    def summary(self, product: Record) -> str:
        stock_status = "in stock" if self._stock(product) > 0 else "out of stock"
        price = _money(product["price"]) if product.get("price") else "Not set"
        return (
            f"{product.get('name')} is a {self._category(product)} product that costs {price} "
            f"and is currently {stock_status}."
        )


class InvoiceEnricher(EntityEnricher):
    entity_type = "invoices"
    source_system = "sales"
    synonyms = ("invoice", "bill", "payment", "receipt", "transaction", "sale", "order")
    relation_rules = (RelationRule("client", lambda r: _get(r, "clientId", "client.id"), 0.9),)

    def _status(self, invoice: Record) -> str:
        return str(_get(invoice, "status", "paymentStatus", default="Pending"))

    def _client_name(self, invoice: Record) -> str:
        return str(_get(invoice, "clientName", "client.name", default="Unknown"))

    def content(self, invoice: Record) -> str:
        total = _num(invoice.get("totalAmount"))
        paid = _num(invoice.get("paidAmount"))
        return _lines(
            f"Invoice Details: {invoice.get('invoiceNumber')}",
            "Client Information:",
            f"  - Client Name: {self._client_name(invoice)}",
            f"  - Client Email: {_get(invoice, 'clientEmail', 'client.email', default='Not provided')}",
            "Financial Information:",
            f"  - Subtotal: {_money(invoice.get('subtotal'))}",
            f"  - Tax Amount: {_money(invoice.get('taxAmount'))}",
            f"  - Discount: {_money(invoice.get('discountAmount'))}",
            f"  - Total Amount: {_money(total)}",
            f"  - Amount Paid: {_money(paid)}",
            f"  - Balance Due: {_money(total - paid)}",
            "Important Dates:",
            f"  - Issue Date: {_fmt_date(invoice.get('issueDate'))}",
            f"  - Due Date: {_fmt_date(invoice.get('dueDate'))}",
            f"Payment Status: {self._status(invoice)}",
            f"Invoice Items: {len(invoice.get('items') or [])} items",
            f"Notes: {invoice.get('notes') or 'No additional notes'}",
            f"Terms and Conditions: {invoice.get('paymentTerms') or 'Standard terms apply'}",
        )

    def metadata(self, invoice: Record) -> InvoiceMetadata:
        total = _num(invoice.get("totalAmount"))
        paid = _num(invoice.get("paidAmount"))
        client_id = _get(invoice, "clientId", "client.id")
        return InvoiceMetadata(
            **self.common(
                invoice,
                status=self._status(invoice),
                is_active=True,
                title=f"Invoice {invoice.get('invoiceNumber')}",
                description=f"Invoice for {self._client_name(invoice)} totaling {_money(total)}",
                category="Sales",
                invoice_number=invoice.get("invoiceNumber"),
                client_id=str(client_id) if client_id is not None else None,
                client_name=self._client_name(invoice),
                total_amount=total,
                paid_amount=paid,
                balance_due=round(total - paid, 2),
                issue_date=_iso(invoice.get("issueDate")),
                due_date=_iso(invoice.get("dueDate")),
                item_count=len(invoice.get("items") or []),
            )
        )

    def keyword_values(self, invoice: Record) -> List[Any]:
        return [invoice.get("invoiceNumber"), self._client_name(invoice), self._status(invoice)]

    def tags(self, invoice: Record) -> List[str]:
        status = self._status(invoice).lower()
        tags = []
        if status == "paid":
            tags += ["paid", "completed"]
        elif status == "pending":
            tags += ["pending", "unpaid"]
        elif status == "overdue":
            tags += ["overdue", "late"]
        else:
            tags.append(_label(status))
        total = _num(invoice.get("totalAmount"))
        if total > 1000:
            tags.append("high-value")
        elif total < 100:
            tags.append("low-value")
        return tags

    def priority(self, invoice: Record) -> str:
        status = self._status(invoice).lower()
        if status == "overdue":
            return "high"
        if status == "pending" and _num(invoice.get("totalAmount")) > 1000:
            return "medium"
        return "low"

    def summary(self, invoice: Record) -> str:
        return (
            f"Invoice {invoice.get('invoiceNumber')} for {self._client_name(invoice)} totaling "
            f"{_money(invoice.get('totalAmount'))} with status {self._status(invoice)}."
        )


class PurchaseEnricher(EntityEnricher):
    entity_type = "purchases"
    source_system = "purchasing"
    synonyms = ("purchase", "order", "po", "procurement", "buying", "supplier")
    relation_rules = (RelationRule("supplier", lambda r: _get(r, "supplierId", "supplier.id"), 0.8),)

    def _number(self, purchase: Record) -> str:
        return str(_get(purchase, "purchaseNumber", "orderNumber", default=purchase["id"]))

    def _supplier_name(self, purchase: Record) -> str:
        return str(_get(purchase, "supplierName", "supplier.name", default="Unknown"))

    def _status(self, purchase: Record) -> str:
        return str(_get(purchase, "status", default="Pending"))

    def content(self, purchase: Record) -> str:
        return _lines(
            f"Purchase Order: {self._number(purchase)}",
            "Supplier Information:",
            f"  - Supplier Name: {self._supplier_name(purchase)}",
            f"  - Supplier Email: {_get(purchase, 'supplierEmail', 'supplier.email', default='Not provided')}",
            "Order Details:",
            f"  - Order Date: {_fmt_date(purchase.get('orderDate'))}",
            f"  - Expected Delivery: {_fmt_date(purchase.get('expectedDeliveryDate'))}",
            "Financial Information:",
            f"  - Subtotal: {_money(purchase.get('subtotal'))}",
            f"  - Tax Amount: {_money(purchase.get('taxAmount'))}",
            f"  - Shipping Cost: {_money(purchase.get('shippingCost'))}",
            f"  - Total Amount: {_money(purchase.get('totalAmount'))}",
            f"Order Status: {self._status(purchase)}",
            f"Payment Status: {purchase.get('paymentStatus') or 'Pending'}",
            f"Order Items: {len(purchase.get('items') or [])} items",
            f"Notes: {purchase.get('notes') or 'No additional notes'}",
        )

    def metadata(self, purchase: Record) -> PurchaseMetadata:
        supplier_id = _get(purchase, "supplierId", "supplier.id")
        return PurchaseMetadata(
            **self.common(
                purchase,
                status=self._status(purchase),
                title=f"Purchase Order {self._number(purchase)}",
                description=f"Purchase from {self._supplier_name(purchase)} totaling {_money(purchase.get('totalAmount'))}",
                category="Purchasing",
                purchase_number=self._number(purchase),
                supplier_id=str(supplier_id) if supplier_id is not None else None,
                supplier_name=self._supplier_name(purchase),
                total_amount=_num(purchase.get("totalAmount")),
                payment_status=purchase.get("paymentStatus"),
                order_date=_iso(purchase.get("orderDate")),
                expected_delivery=_iso(purchase.get("expectedDeliveryDate")),
                item_count=len(purchase.get("items") or []),
            )
        )

    def keyword_values(self, purchase: Record) -> List[Any]:
        return [self._number(purchase), self._supplier_name(purchase), self._status(purchase)]

    def tags(self, purchase: Record) -> List[str]:
        status = self._status(purchase).lower()
        tags = []
        if status == "completed":
            tags += ["completed", "delivered"]
        elif status == "pending":
            tags += ["pending", "processing"]
        elif status == "cancelled":
            tags.append("cancelled")
        else:
            tags.append(_label(status))
        total = _num(purchase.get("totalAmount"))
        if total > 1000:
            tags.append("high-value")
        elif total < 100:
            tags.append("low-value")
        return tags

    def priority(self, purchase: Record) -> str:
        if self._status(purchase).lower() != "pending":
            return "low"
        total = _num(purchase.get("totalAmount"))
        if total > 5000:
            return "high"
        if total > 1000:
            return "medium"
        return "low"

    def summary(self, purchase: Record) -> str:
        return (
            f"Purchase order {self._number(purchase)} from {self._supplier_name(purchase)} totaling "
            f"{_money(purchase.get('totalAmount'))} with status {self._status(purchase)}."
        )


class LedgerEnricher(EntityEnricher):
    entity_type = "ledgers"
    source_system = "accounting"
    synonyms = ("journal", "entry", "ledger", "accounting", "debit", "credit", "posting")
    relation_rules = (
        RelationRule(
            "reference prefix",
            lambda r: str(r["reference"]).split("-")[0] if r.get("reference") else None,
            0.7,
        ),
    )

    def _status(self, entry: Record) -> str:
        return str(_get(entry, "status", default="Posted"))

    def content(self, entry: Record) -> str:
        return _lines(
            f"Journal Entry: {entry.get('reference')}",
            "Entry Details:",
            f"  - Date: {_fmt_date(entry.get('date'))}",
            f"  - Description: {entry.get('description') or 'No description'}",
            f"  - Reference: {entry.get('reference')}",
            f"  - Entry Type: {entry.get('entryType') or 'General'}",
            "Financial Information:",
            f"  - Total Amount: {_money(entry.get('totalAmount'))}",
            f"  - Debit Amount: {_money(entry.get('debitAmount'))}",
            f"  - Credit Amount: {_money(entry.get('creditAmount'))}",
            f"Entry Status: {self._status(entry)}",
            f"Posting Date: {_fmt_date(entry.get('postingDate'), 'Not posted')}",
            f"Notes: {entry.get('notes') or 'No additional notes'}",
        )

    def metadata(self, entry: Record) -> LedgerMetadata:
        return LedgerMetadata(
            **self.common(
                entry,
                status=self._status(entry),
                title=f"Journal Entry {entry.get('reference')}",
                description=entry.get("description") or "Journal entry",
                category=entry.get("entryType") or "General",
                reference=entry.get("reference"),
                entry_type=entry.get("entryType") or "General",
                total_amount=_num(entry.get("totalAmount")),
                debit_amount=_num(entry.get("debitAmount")),
                credit_amount=_num(entry.get("creditAmount")),
                entry_date=_iso(entry.get("date")),
                posting_date=_iso(entry.get("postingDate")),
            )
        )

    def keyword_values(self, entry: Record) -> List[Any]:
        return [entry.get("reference"), entry.get("description"), entry.get("entryType")]

    def tags(self, entry: Record) -> List[str]:
        status = self._status(entry).lower()
        tags = []
        if status == "posted":
            tags += ["posted", "confirmed"]
        elif status == "pending":
            tags += ["pending", "draft"]
        elif status == "cancelled":
            tags.append("cancelled")
        total = _num(entry.get("totalAmount"))
        if total > 10000:
            tags.append("high-value")
        elif total < 100:
            tags.append("low-value")
        if entry.get("entryType"):
            tags.append(_label(entry["entryType"]))
        return tags

    def priority(self, entry: Record) -> str:
        total = _num(entry.get("totalAmount"))
        if total > 10000:
            return "high"
        if total > 1000:
            return "medium"
        return "low"

    def summary(self, entry: Record) -> str:
        return (
            f"Journal entry {entry.get('reference')} for {entry.get('description') or 'General'} "
            f"totaling {_money(entry.get('totalAmount'))} with status {self._status(entry)}."
        )


class BalanceEnricher(EntityEnricher):
    entity_type = "balances"
    source_system = "accounting"
    synonyms = ("account", "balance", "financial", "accounting", "ledger")
    relation_rules = (RelationRule("account type", lambda r: r.get("type"), 0.6),)

    def content(self, account: Record) -> str:
        balance = _num(account.get("balance"))
        return _lines(
            f"Account: {account.get('name')}",
            "Account Details:",
            f"  - Account Code: {account.get('code')}",
            f"  - Account Type: {account.get('type')}",
            f"  - Account Category: {account.get('category') or 'General'}",
            f"  - Account Status: {_get(account, 'status', default='Active')}",
            "Financial Information:",
            f"  - Current Balance: {_money(balance)}",
            f"  - Balance Type: {'Credit' if balance >= 0 else 'Debit'}",
            f"  - Opening Balance: {_money(account.get('openingBalance'))}",
            f"  - Currency: {account.get('currency') or 'USD'}",
            f"  - Last Transaction: {_fmt_date(account.get('lastTransaction'), 'No transactions')}",
            f"Description: {account.get('description') or 'No description'}",
        )

    def metadata(self, account: Record) -> BalanceMetadata:
        balance = _num(account.get("balance"))
        return BalanceMetadata(
            **self.common(
                account,
                title=str(account.get("name") or account["id"]),
                description=f"{account.get('type')} account {account.get('code')}",
                category=account.get("category") or "General",
                account_code=account.get("code"),
                account_type=account.get("type"),
                balance=balance,
                balance_type="Credit" if balance >= 0 else "Debit",
                opening_balance=_num(account.get("openingBalance")),
                currency=account.get("currency") or "USD",
            )
        )

    def keyword_values(self, account: Record) -> List[Any]:
        return [account.get("name"), account.get("code"), account.get("type"), account.get("category")]

    def tags(self, account: Record) -> List[str]:
        status = str(_get(account, "status", default="Active")).lower()
        tags = ["inactive" if status == "inactive" else "active"]
        if account.get("type"):
            tags.append(_label(account["type"]))
        if account.get("category"):
            tags.append(_label(account["category"]))
        balance = _num(account.get("balance"))
        if balance > 10000:
            tags.append("high-balance")
        if balance < 0:
            tags.append("negative-balance")
        return tags

    def priority(self, account: Record) -> str:
        balance = _num(account.get("balance"))
        if balance > 50000:
            return "high"
        if balance > 10000:
            return "medium"
        return "low"

    def summary(self, account: Record) -> str:
        return (
            f"{account.get('name')} is a {account.get('type')} account with balance "
            f"{_money(account.get('balance'))} and status {_get(account, 'status', default='Active')}."
        )


class SystemFeatureEnricher(EntityEnricher):
    entity_type = "system_features"
    source_system = "system_management"
    synonyms = ("system", "feature", "capability", "functionality")
    relation_rules = (RelationRule("category", lambda r: r.get("category") or "General", 0.5),)

    def content(self, feature: Record) -> str:
        capabilities = _names(feature.get("capabilities"))
        return _lines(
            f"System Feature: {feature.get('name')}",
            "Feature Details:",
            f"  - Description: {feature.get('description')}",
            f"  - Feature ID: {feature['id']}",
            f"  - Status: {_get(feature, 'status', default='Active')}",
            "Capabilities:",
            *(f"  - {c}" for c in capabilities),
            "Technical Information:",
            f"  - Version: {feature.get('version') or '1.0'}",
            f"  - Category: {feature.get('category') or 'General'}",
            f"  - Dependencies: {', '.join(_names(feature.get('dependencies'))) or 'None'}",
            f"  - Access Level: {feature.get('accessLevel') or 'Standard'}",
        )

    def metadata(self, feature: Record) -> SystemFeatureMetadata:
        return SystemFeatureMetadata(
            **self.common(
                feature,
                title=str(feature.get("name") or feature["id"]),
                description=feature.get("description") or "",
                category=feature.get("category") or "General",
                capabilities=_names(feature.get("capabilities")),
                dependencies=_names(feature.get("dependencies")),
                access_level=feature.get("accessLevel") or "Standard",
                feature_version=str(feature.get("version") or "1.0"),
            )
        )

    def keyword_values(self, feature: Record) -> List[Any]:
        return [feature.get("name"), feature.get("category"), *_names(feature.get("capabilities"))]

    def tags(self, feature: Record) -> List[str]:
        status = str(_get(feature, "status", default="Active")).lower()
        tags = ["inactive" if status == "inactive" else "active"]
        tags.append(_label(feature.get("category") or "General"))
        tags.append(_label(feature.get("accessLevel") or "Standard"))
        count = len(_names(feature.get("capabilities")))
        if count > 5:
            tags.append("complex")
        elif count <= 2:
            tags.append("simple")
        return tags

    def priority(self, feature: Record) -> str:
        count = len(_names(feature.get("capabilities")))
        if count > 10:
            return "high"
        if count > 5:
            return "medium"
        return "low"

    def summary(self, feature: Record) -> str:
        status = str(_get(feature, "status", default="Active")).lower()
        count = len(_names(feature.get("capabilities")))
        return f"{feature.get('name')} is a {status} system feature with {count} capabilities for {feature.get('description')}."


ENRICHERS: Dict[str, EntityEnricher] = {
    enricher.entity_type: enricher
    for enricher in (
        UserEnricher(),
        ClientEnricher(),
        ProductEnricher(),
        SupplierEnricher(),
        PurchaseEnricher(),
        InvoiceEnricher(),
        LedgerEnricher(),
        BalanceEnricher(),
        SystemFeatureEnricher(),
    )
}


def get_enricher(entity_type: str) -> EntityEnricher:
    try:
        return ENRICHERS[entity_type]
    except KeyError:
        raise UnknownEntityTypeError(entity_type) from None


def enrich_records(entity_type: str, records: Sequence[Record]) -> List[EnrichedDocument]:
    """Enrich a change set; relationships are computed within the batch."""
    return get_enricher(entity_type).enrich_batch(records)
