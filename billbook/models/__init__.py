from billbook.models.product import Product
from billbook.models.billing import Bill, BillCounter, BillItem
from billbook.models.stock import StockMovement
from billbook.models.audit_log import AuditLog
