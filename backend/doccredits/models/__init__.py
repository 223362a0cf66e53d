from .users import User
from .credits import CreditTransaction

__all__ = [
    'User',
    'CreditTransaction',
]
