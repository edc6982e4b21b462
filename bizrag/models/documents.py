"""Enriched document types produced by the document enricher.

Metadata is a tagged union keyed on ``entity_type``: each business entity has
its own strongly-typed variant, and genuinely dynamic attributes go into the
shared ``extra`` mapping.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ENTITY_TYPES: tuple[str, ...] = (
    "users",
    "clients",
    "products",
    "suppliers",
    "purchases",
    "invoices",
    "ledgers",
    "balances",
    "system_features",
)

Priority = Literal["low", "medium", "high"]
RelationshipType = Literal["parent", "child", "related", "depends_on", "references"]


class Relationship(BaseModel):
    """Typed edge from one enriched document to another."""

    model_config = ConfigDict(frozen=True)

    type: RelationshipType
    target_entity_type: str
    target_entity_id: str
    strength: float = Field(ge=0.0, le=1.0)
    description: str = ""


class BaseDocumentMetadata(BaseModel):
    """Fields shared by every metadata variant."""

    entity_id: str
    title: str
    description: str = ""
    status: str = "Active"
    priority: Priority = "low"
    category: str = "General"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: str = "system"
    last_modified_by: str = "system"
    version: int = 1
    is_active: bool = True
    language: str = "en"
    source_system: str = ""
    confidence_score: float = Field(default=0.95, ge=0.0, le=1.0)
    extra: Dict[str, Any] = Field(default_factory=dict)


class UserMetadata(BaseDocumentMetadata):
    entity_type: Literal["users"] = "users"
    email: Optional[str] = None
    username: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    department: Optional[str] = None
    location: Optional[str] = None
    account_type: Optional[str] = None
    profile_completion: int = 0
    last_login: Optional[str] = None
    phone: Optional[str] = None
    skills: List[str] = Field(default_factory=list)


class ClientMetadata(BaseDocumentMetadata):
    entity_type: Literal["clients"] = "clients"
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    company_type: Optional[str] = None
    industry: Optional[str] = None
    tax_id: Optional[str] = None
    credit_limit: Optional[float] = None
    payment_terms: Optional[str] = None
    last_contact: Optional[str] = None


class ProductMetadata(BaseDocumentMetadata):
    entity_type: Literal["products"] = "products"
    sku: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    price: Optional[float] = None
    cost_price: Optional[float] = None
    profit_margin: float = 0.0
    stock_quantity: int = 0
    reorder_point: int = 0
    stock_status: str = "In Stock"


class SupplierMetadata(BaseDocumentMetadata):
    entity_type: Literal["suppliers"] = "suppliers"
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    company_type: Optional[str] = None
    industry: Optional[str] = None
    credit_limit: Optional[float] = None
    payment_terms: Optional[str] = None
    website: Optional[str] = None


class PurchaseMetadata(BaseDocumentMetadata):
    entity_type: Literal["purchases"] = "purchases"
    purchase_number: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    total_amount: float = 0.0
    payment_status: Optional[str] = None
    order_date: Optional[str] = None
    expected_delivery: Optional[str] = None
    item_count: int = 0


class InvoiceMetadata(BaseDocumentMetadata):
    entity_type: Literal["invoices"] = "invoices"
    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    total_amount: float = 0.0
    paid_amount: float = 0.0
    balance_due: float = 0.0
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    item_count: int = 0


class LedgerMetadata(BaseDocumentMetadata):
    entity_type: Literal["ledgers"] = "ledgers"
    reference: Optional[str] = None
    entry_type: str = "General"
    total_amount: float = 0.0
    debit_amount: float = 0.0
    credit_amount: float = 0.0
    entry_date: Optional[str] = None
    posting_date: Optional[str] = None


class BalanceMetadata(BaseDocumentMetadata):
    entity_type: Literal["balances"] = "balances"
    account_code: Optional[str] = None
    account_type: Optional[str] = None
    balance: float = 0.0
    balance_type: str = "Credit"
    opening_balance: float = 0.0
    currency: str = "USD"


class SystemFeatureMetadata(BaseDocumentMetadata):
    entity_type: Literal["system_features"] = "system_features"
    capabilities: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    access_level: str = "Standard"
    feature_version: str = "1.0"


DocumentMetadata = Annotated[
    Union[
        UserMetadata,
        ClientMetadata,
        ProductMetadata,
        SupplierMetadata,
        PurchaseMetadata,
        InvoiceMetadata,
        LedgerMetadata,
        BalanceMetadata,
        SystemFeatureMetadata,
    ],
    Field(discriminator="entity_type"),
]


class EnrichedDocument(BaseModel):
    """Business record turned into searchable knowledge."""

    id: str
    content: str
    metadata: DocumentMetadata
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    summary: str = ""

    @property
    def entity_type(self) -> str:
        return self.metadata.entity_type


class ScoredChunk(BaseModel):
    """A chunk returned by similarity search."""

    id: str
    text: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    search_rank: int = 0
