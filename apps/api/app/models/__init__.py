# Import SQLAlchemy models so they register on Base.metadata
from app.models.admin_role import AdminRole  # noqa: F401
from app.models.order import Order, OrderStatus  # noqa: F401
from app.models.order_event import OrderEvent, OrderEventSource, OrderEventType  # noqa: F401
