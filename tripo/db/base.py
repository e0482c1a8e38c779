# Import all models so Base.metadata sees every table (Alembic, create_all in tests)
from tripo.db.session import Base  # noqa: F401
from tripo.models.ride import Ride  # noqa: F401
from tripo.models.ride_seat_entry import RideSeatEntry  # noqa: F401
from tripo.models.booking import Booking  # noqa: F401
from tripo.models.payment import Payment  # noqa: F401
from tripo.models.payout import Payout  # noqa: F401
from tripo.models.payout_account import PayoutAccount  # noqa: F401
from tripo.models.audit_log import AuditLog  # noqa: F401
from tripo.models.notification_log import NotificationLog  # noqa: F401
