"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Request context / authorization
  2xxx: Credits
  3xxx: Scheduling
  4xxx: Equipment
  5xxx: Payments
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Request context ---

class MissingActorError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Acting user is required", 401)


class ForbiddenActionError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(1002, f"Forbidden: {detail}", 403)


# --- 2xxx: Credits ---

class InsufficientCreditsError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient credits: required {required}, available {available}",
            422,
        )
        self.required = required
        self.available = available


class UnknownCreditTypeError(AppError):
    def __init__(self, credit_type: str) -> None:
        super().__init__(2002, f"Unknown credit type: {credit_type}", 422)


class InvalidCreditAmountError(AppError):
    def __init__(self, amount: int) -> None:
        super().__init__(2003, f"Credit amount must be positive, got {amount}", 422)


class PromoCodeNotFoundError(AppError):
    # Inactive and expired codes are reported identically
    def __init__(self) -> None:
        super().__init__(2004, "Promo code not found", 404)


class PromoCodeAlreadyRedeemedError(AppError):
    def __init__(self, code: str) -> None:
        super().__init__(2005, f"Promo code already redeemed: {code}", 409)


class PromoCodeMaxUsesError(AppError):
    def __init__(self, code: str) -> None:
        super().__init__(2006, f"Promo code has reached its maximum uses: {code}", 409)


# --- 3xxx: Scheduling ---

class SeriesNotFoundError(AppError):
    def __init__(self, series_id: int) -> None:
        super().__init__(3001, f"Recurring series not found: {series_id}", 404)


class InvalidRecurrenceRuleError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3002, f"Invalid recurrence rule: {detail}", 422)


class SeriesNotActiveError(AppError):
    def __init__(self, series_id: int, status: str) -> None:
        super().__init__(3003, f"Recurring series {series_id} is {status}", 422)


class ReservationNotFoundError(AppError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(3004, f"Reservation not found: {reservation_id}", 404)


class ReservationConflictError(AppError):
    def __init__(self, detail: str = "Time slot overlaps an existing reservation") -> None:
        super().__init__(3005, detail, 409)


class InvalidReservationWindowError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3006, f"Invalid reservation window: {detail}", 422)


class InvalidReservationStatusError(AppError):
    def __init__(self, reservation_id: int, status: str, action: str) -> None:
        super().__init__(
            3007, f"Reservation {reservation_id} in status {status} cannot be {action}", 422
        )


# --- 4xxx: Equipment ---

class EquipmentNotFoundError(AppError):
    def __init__(self, equipment_id: int) -> None:
        super().__init__(4001, f"Equipment not found: {equipment_id}", 404)


class EquipmentUnavailableError(AppError):
    def __init__(self, equipment_id: int, detail: str = "not available for checkout") -> None:
        super().__init__(4002, f"Equipment {equipment_id} is {detail}", 409)


class LoanNotFoundError(AppError):
    def __init__(self, loan_id: int) -> None:
        super().__init__(4003, f"Equipment loan not found: {loan_id}", 404)


class InvalidTransitionError(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(4004, f"Invalid loan transition: {current} -> {target}", 409)
        self.current = current
        self.target = target


# --- 5xxx: Payments ---

class InvalidFeeInputError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5001, f"Invalid fee input: {detail}", 422)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
