# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .store import Store, store_followers  # noqa: F401
from .listing import Listing  # noqa: F401
from .discount import Discount, Campaign  # noqa: F401
from .wallet import Wallet, WalletTransaction  # noqa: F401
from .notification import Notification  # noqa: F401
from .payment import Payment  # noqa: F401
