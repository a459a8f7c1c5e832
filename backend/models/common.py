from enum import Enum


class UserRole(str, Enum):
    USER  = "user"
    ADMIN = "admin"


class NotificationType(str, Enum):
    ORDER     = "order"
    PROMOTION = "promotion"
    SYSTEM    = "system"


class CampaignStatus(str, Enum):
    PENDING = "PENDING"
    SENT    = "SENT"     # terminal
