from .auth import BaseRole, User, AccessRole, Permission
from .credits import CreditLogType, CreditAccount, CreditLog
from .qr import QRStatus, SerialCounter, QRCodeData
from .security import SecurityEvent

__all__ = [
    'BaseRole', 'User', 'AccessRole', 'Permission',
    'CreditLogType', 'CreditAccount', 'CreditLog',
    'QRStatus', 'SerialCounter', 'QRCodeData',
    'SecurityEvent',
]
