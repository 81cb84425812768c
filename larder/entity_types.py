"""
Entity type definitions for the built-in collections.

Each EntityType bundles what a repository, view, form and CSV codec need
to know about one kind of record: its collection name, create-time
defaults, the seed set installed into an empty store, which fields the
free-text search covers, which fields a form must fill, and how the
record maps onto CSV columns.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from .types import Entity, today, utc_now

# Column value kinds understood by csv_io
CSV_KINDS = ("text", "number", "integer", "list")

# Priority order shared by tasks and tickets (most urgent first)
PRIORITY_RANKS = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


@dataclass(frozen=True)
class CsvColumn:
    """One positional CSV column bound to an entity field."""
    header: str
    field: str
    kind: str = "text"

    def __post_init__(self):
        if self.kind not in CSV_KINDS:
            raise ValueError(f"Unknown CSV column kind: {self.kind!r}")


@dataclass
class EntityType:
    """
    Definition of one entity collection.

    Attributes:
        name: Public name (used by the CLI and Workspace lookups)
        collection: Collection suffix of the durable key (``<app>_<collection>``)
        defaults: Field defaults applied on create; callables are invoked
        seed: Entities installed when the collection is first found absent
        search_fields: Fields covered by free-text search
        required: Fields a pending form must fill before submit
        positive: Numeric fields that must be greater than zero
        csv_columns: Positional CSV layout
        sort_ranks: Per-field enum orderings (value -> ordinal)
    """
    name: str
    collection: str
    defaults: dict[str, Union[Any, Callable[[], Any]]] = field(default_factory=dict)
    seed: list[Entity] = field(default_factory=list)
    search_fields: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    positive: tuple[str, ...] = ()
    csv_columns: tuple[CsvColumn, ...] = ()
    sort_ranks: dict[str, dict[str, int]] = field(default_factory=dict)

    def make_defaults(self) -> Entity:
        """Evaluate the defaults for a fresh entity."""
        values = {}
        for key, value in self.defaults.items():
            if callable(value):
                value = value()
            elif isinstance(value, (list, dict)):
                value = type(value)(value)
            values[key] = value
        return values

    def ranks_for(self, key: str) -> Optional[dict[str, int]]:
        return self.sort_ranks.get(key)


TASKS = EntityType(
    name="tasks",
    collection="tasks",
    defaults={
        "title": "",
        "description": "",
        "category": "Work",
        "priority": "medium",
        "status": "todo",
        "dueDate": today,
        "createdDate": utc_now,
        "tags": [],
        "estimatedTime": 0,
        "subtasks": [],
    },
    seed=[
        {
            "id": "1",
            "title": "Complete project proposal",
            "description": "Draft and submit the Q3 project proposal to the team lead",
            "category": "Work",
            "priority": "high",
            "status": "in-progress",
            "dueDate": "2024-07-15",
            "createdDate": "2024-07-01T09:00:00",
            "tags": ["planning", "writing"],
            "estimatedTime": 120,
            "subtasks": [],
        },
        {
            "id": "2",
            "title": "Morning workout",
            "description": "30 minutes of cardio and stretching",
            "category": "Health",
            "priority": "medium",
            "status": "todo",
            "dueDate": "2024-07-10",
            "createdDate": "2024-07-01T09:05:00",
            "tags": ["fitness"],
            "estimatedTime": 30,
            "subtasks": [],
        },
        {
            "id": "3",
            "title": "Learn TypeScript generics",
            "description": "Work through the advanced types chapter",
            "category": "Learning",
            "priority": "low",
            "status": "completed",
            "dueDate": "2024-07-20",
            "createdDate": "2024-07-01T09:10:00",
            "tags": ["programming", "study"],
            "estimatedTime": 90,
            "subtasks": [],
        },
    ],
    search_fields=("title", "description", "tags"),
    required=("title",),
    csv_columns=(
        CsvColumn("Title", "title"),
        CsvColumn("Description", "description"),
        CsvColumn("Category", "category"),
        CsvColumn("Priority", "priority"),
        CsvColumn("Status", "status"),
        CsvColumn("Due Date", "dueDate"),
        CsvColumn("Estimated Time", "estimatedTime", "integer"),
        CsvColumn("Tags", "tags", "list"),
    ),
    sort_ranks={
        "priority": PRIORITY_RANKS,
        "status": {"todo": 0, "in-progress": 1, "completed": 2, "archived": 3},
    },
)

TICKETS = EntityType(
    name="tickets",
    collection="tickets",
    defaults={
        "title": "",
        "description": "",
        "category": "General",
        "priority": "medium",
        "status": "open",
        "createdBy": "",
        "assignedTo": "",
        "createdAt": utc_now,
        "updatedAt": utc_now,
        "tags": [],
        "attachments": [],
        "responses": [],
    },
    seed=[
        {
            "id": "1",
            "title": "Unable to login to dashboard",
            "description": "Getting an 'invalid credentials' error with the correct password",
            "category": "Technical Issue",
            "priority": "high",
            "status": "open",
            "createdBy": "john.doe@example.com",
            "assignedTo": "",
            "createdAt": "2024-01-15T10:30:00",
            "updatedAt": "2024-01-15T10:30:00",
            "tags": ["login", "authentication"],
            "attachments": [],
            "responses": [],
        },
        {
            "id": "2",
            "title": "Billing inquiry for enterprise plan",
            "description": "Need clarification on the enterprise pricing tiers",
            "category": "Billing",
            "priority": "medium",
            "status": "in-progress",
            "createdBy": "jane.smith@example.com",
            "assignedTo": "support@example.com",
            "createdAt": "2024-01-14T14:20:00",
            "updatedAt": "2024-01-15T09:00:00",
            "tags": ["billing", "enterprise"],
            "attachments": [],
            "responses": [],
        },
        {
            "id": "3",
            "title": "Feature request: dark mode",
            "description": "Please add a dark theme to the web application",
            "category": "Feature Request",
            "priority": "low",
            "status": "resolved",
            "createdBy": "alex.lee@example.com",
            "assignedTo": "support@example.com",
            "createdAt": "2024-01-10T08:15:00",
            "updatedAt": "2024-01-13T16:45:00",
            "tags": ["ui"],
            "attachments": [],
            "responses": [],
        },
    ],
    search_fields=("title", "description", "tags", "createdBy"),
    required=("title", "description"),
    csv_columns=(
        CsvColumn("Title", "title"),
        CsvColumn("Description", "description"),
        CsvColumn("Category", "category"),
        CsvColumn("Priority", "priority"),
        CsvColumn("Status", "status"),
        CsvColumn("Created By", "createdBy"),
        CsvColumn("Created At", "createdAt"),
        CsvColumn("Tags", "tags", "list"),
    ),
    sort_ranks={
        "priority": PRIORITY_RANKS,
        "status": {"open": 0, "in-progress": 1, "resolved": 2, "closed": 3},
    },
)

TRANSACTIONS = EntityType(
    name="transactions",
    collection="transactions",
    defaults={
        "amount": 0,
        "description": "",
        "category": "Office Supplies",
        "employee": "",
        "paymentMethod": "Corporate Card",
        "vendor": "",
        "date": today,
        "status": "pending",
        "createdAt": utc_now,
    },
    seed=[
        {
            "id": "1",
            "amount": 1250.50,
            "description": "Office Supplies and equipment",
            "category": "Office Supplies",
            "employee": "John Smith",
            "paymentMethod": "Corporate Card",
            "vendor": "Office Depot",
            "date": "2024-01-15",
            "status": "approved",
            "createdAt": "2024-01-15T10:00:00",
        },
        {
            "id": "2",
            "amount": 2800.00,
            "description": "Client dinner meeting",
            "category": "Meals & Entertainment",
            "employee": "Sarah Johnson",
            "paymentMethod": "Corporate Card",
            "vendor": "The Executive Restaurant",
            "date": "2024-01-18",
            "status": "pending",
            "createdAt": "2024-01-18T20:30:00",
        },
        {
            "id": "3",
            "amount": 450.75,
            "description": "Airport transfer",
            "category": "Travel",
            "employee": "Mike Davis",
            "paymentMethod": "Personal Card",
            "vendor": "City Cab Services",
            "date": "2024-01-20",
            "status": "rejected",
            "createdAt": "2024-01-20T07:45:00",
        },
    ],
    search_fields=("description", "vendor", "employee"),
    required=("vendor", "amount", "date"),
    positive=("amount",),
    csv_columns=(
        CsvColumn("Date", "date"),
        CsvColumn("Description", "description"),
        CsvColumn("Amount", "amount", "number"),
        CsvColumn("Category", "category"),
        CsvColumn("Employee", "employee"),
        CsvColumn("Vendor", "vendor"),
        CsvColumn("Payment Method", "paymentMethod"),
        CsvColumn("Status", "status"),
    ),
    sort_ranks={
        "status": {"pending": 0, "approved": 1, "rejected": 2},
    },
)

PRODUCTS = EntityType(
    name="products",
    collection="products",
    defaults={
        "name": "",
        "description": "",
        "price": 0,
        "originalPrice": 0,
        "category": "Electronics",
        "stock": 0,
        "sku": "",
        "supplier": "",
        "tags": [],
        "offers": [],
        "isActive": True,
        "createdAt": utc_now,
    },
    seed=[
        {
            "id": "1",
            "name": "Wireless Headphones",
            "description": "Noise-cancelling over-ear headphones with 30h battery",
            "price": 149.99,
            "originalPrice": 199.99,
            "category": "Electronics",
            "stock": 45,
            "sku": "EL-WH-001",
            "supplier": "SoundWave Inc",
            "tags": ["audio", "wireless"],
            "offers": [],
            "isActive": True,
            "createdAt": "2024-01-05T12:00:00",
        },
        {
            "id": "2",
            "name": "Cotton T-Shirt",
            "description": "Organic cotton crew neck t-shirt",
            "price": 24.99,
            "originalPrice": 24.99,
            "category": "Clothing",
            "stock": 120,
            "sku": "CL-TS-014",
            "supplier": "GreenThreads",
            "tags": ["apparel", "organic"],
            "offers": [],
            "isActive": True,
            "createdAt": "2024-01-06T12:00:00",
        },
        {
            "id": "3",
            "name": "Smart Watch",
            "description": "Fitness tracking smart watch with heart-rate monitor",
            "price": 249.00,
            "originalPrice": 299.00,
            "category": "Electronics",
            "stock": 0,
            "sku": "EL-SW-007",
            "supplier": "TechTime",
            "tags": ["wearable", "fitness"],
            "offers": [],
            "isActive": False,
            "createdAt": "2024-01-07T12:00:00",
        },
    ],
    search_fields=("name", "description", "sku", "tags"),
    required=("name", "price"),
    positive=("price",),
    csv_columns=(
        CsvColumn("Name", "name"),
        CsvColumn("Description", "description"),
        CsvColumn("Price", "price", "number"),
        CsvColumn("Category", "category"),
        CsvColumn("Stock", "stock", "integer"),
        CsvColumn("SKU", "sku"),
        CsvColumn("Supplier", "supplier"),
        CsvColumn("Tags", "tags", "list"),
    ),
)

STUDENTS = EntityType(
    name="students",
    collection="students",
    defaults={
        "name": "",
        "email": "",
        "grade": "",
        "enrollmentDate": today,
    },
    seed=[
        {
            "id": "1",
            "name": "Emma Johnson",
            "email": "emma.johnson@school.edu",
            "grade": "10th",
            "enrollmentDate": "2023-09-01",
        },
        {
            "id": "2",
            "name": "Liam Chen",
            "email": "liam.chen@school.edu",
            "grade": "10th",
            "enrollmentDate": "2023-09-01",
        },
        {
            "id": "3",
            "name": "Sofia Martinez",
            "email": "sofia.martinez@school.edu",
            "grade": "9th",
            "enrollmentDate": "2024-01-08",
        },
    ],
    search_fields=("name", "email"),
    required=("name", "email"),
    csv_columns=(
        CsvColumn("Name", "name"),
        CsvColumn("Email", "email"),
        CsvColumn("Grade", "grade"),
        CsvColumn("Enrollment Date", "enrollmentDate"),
    ),
)

INVESTMENTS = EntityType(
    name="investments",
    collection="investments",
    defaults={
        "name": "",
        "assetClass": "Private Equity",
        "region": "United Kingdom",
        "investmentDate": today,
        "investedAmount": 0,
        "currentValue": 0,
        "status": "Active",
    },
    seed=[
        {
            "id": "1",
            "name": "Nordic Logistics Holding",
            "assetClass": "Private Equity",
            "region": "Nordics",
            "investmentDate": "2021-03-15",
            "investedAmount": 5000000,
            "currentValue": 6750000,
            "status": "Active",
        },
        {
            "id": "2",
            "name": "Rhine Valley Solar Park",
            "assetClass": "Infrastructure",
            "region": "Germany",
            "investmentDate": "2020-06-01",
            "investedAmount": 12000000,
            "currentValue": 13800000,
            "status": "Active",
        },
        {
            "id": "3",
            "name": "Lisbon Office Portfolio",
            "assetClass": "Real Estate",
            "region": "Southern Europe",
            "investmentDate": "2018-11-20",
            "investedAmount": 8500000,
            "currentValue": 10200000,
            "status": "Exited",
        },
    ],
    search_fields=("name",),
    required=("name", "investedAmount"),
    positive=("investedAmount",),
    csv_columns=(
        CsvColumn("Name", "name"),
        CsvColumn("Asset Class", "assetClass"),
        CsvColumn("Region", "region"),
        CsvColumn("Investment Date", "investmentDate"),
        CsvColumn("Invested Amount", "investedAmount", "number"),
        CsvColumn("Current Value", "currentValue", "number"),
        CsvColumn("Status", "status"),
    ),
    sort_ranks={
        "status": {"Active": 0, "Pending": 1, "Exited": 2},
    },
)


ENTITY_TYPES: dict[str, EntityType] = {
    t.name: t for t in (TASKS, TICKETS, TRANSACTIONS, PRODUCTS, STUDENTS, INVESTMENTS)
}


def get_entity_type(name: str) -> EntityType:
    """Look up a built-in entity type by name."""
    try:
        return ENTITY_TYPES[name]
    except KeyError:
        available = ", ".join(ENTITY_TYPES)
        raise KeyError(f"Unknown entity type: {name!r}. Available: {available}") from None


def list_entity_types() -> list[str]:
    return list(ENTITY_TYPES)
