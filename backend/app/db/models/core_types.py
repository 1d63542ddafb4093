import enum

class Role(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    staff = "staff"

class LocationType(str, enum.Enum):
    warehouse = "warehouse"
    store = "store"
    dock = "dock"
    quarantine = "quarantine"

class POType(str, enum.Enum):
    inbound = "inbound"
    outbound = "outbound"
    transfer = "transfer"

class POStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    ordered = "ordered"
    receiving = "receiving"
    partially_received = "partially_received"
    received = "received"
    cancelled = "cancelled"

class ItemCondition(str, enum.Enum):
    good = "good"
    damaged = "damaged"
    expired = "expired"
    rejected = "rejected"

class CostSource(str, enum.Enum):
    po_at_sale = "po_at_sale"
    product_master = "product_master"
    po_any = "po_any"
