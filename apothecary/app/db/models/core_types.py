import enum

class Role(str, enum.Enum):
    admin = "admin"
    staff = "staff"

class SupplierStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"

class MovementType(str, enum.Enum):
    stock_in = "in"
    stock_out = "out"

class MovementSource(str, enum.Enum):
    manual = "manual"
    receipt = "receipt"
    distribution = "distribution"

class POStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    approved = "approved"
    shipped = "shipped"
    received = "received"
    partially_received = "partially_received"
    cancelled = "cancelled"

class ReceiptStatus(str, enum.Enum):
    complete = "complete"
    partial = "partial"

class RecipientType(str, enum.Enum):
    patient = "patient"
    pharmacy = "pharmacy"
    department = "department"
    hospital = "hospital"

class DistributionStatus(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    shipped = "shipped"
    delivered = "delivered"
    returned = "returned"
    cancelled = "cancelled"

class NotificationType(str, enum.Enum):
    expiry_warning = "expiry_warning"
    expiry_critical = "expiry_critical"
    low_stock = "low_stock"

class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

class BatchStatus(str, enum.Enum):
    active = "active"
    expired = "expired"
    recalled = "recalled"
    depleted = "depleted"
