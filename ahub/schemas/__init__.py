from .user import Member
from .points import PointsBalanceResponse, PointsLedgerEntry
from .qr import QrClaims, IssuedQr
from .store import StoreItem, Order
from .kyosk import Kyosk, KyoskProduct, KyoskOrder
from .events import Event, Checkin
