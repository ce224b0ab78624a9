"""Global enums: must match DB CHECK constraints exactly.

Loan states live with the state machine in cm_equipment.domain.states.
"""

from enum import Enum


class CreditSource(str, Enum):
    MONTHLY_RESET = "monthly_reset"
    MONTHLY_ALLOCATION = "monthly_allocation"
    UPGRADE_ADJUSTMENT = "upgrade_adjustment"
    PROMO_CODE = "promo_code"
    RESERVATION = "reservation"
    RESERVATION_CANCELLATION = "reservation_cancellation"
    STAFF_GRANT = "staff_grant"
    STAFF_DEDUCTION = "staff_deduction"


class SeriesStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    COMPED = "comped"
    REFUNDED = "refunded"
    NOT_APPLICABLE = "not_applicable"


class EquipmentStatus(str, Enum):
    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class EquipmentCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    NEEDS_REPAIR = "needs_repair"
