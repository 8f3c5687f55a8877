from decimal import Decimal

__all__ = ["NotAuthorizedException", "AccessDenied", "RecordNotFound", "NumberOfRetriesExceeded",
           "ValidationException", "SomeItemsAreNotAvailable", "OrderNotFound",
           "MenuItemNotFound", "RestaurantNotFound", "AccountNotFound",
           "EmptyOrderError", "InvalidRatingError", "InvalidCoordinateError", "ConflictException",
           "InsufficientFundsError", "DuplicateReviewError", "InvalidTransitionError", "OrderNotDeliverableError",
           "InvariantViolation", "ImbalancedTransferError", "NegativeBalanceError", "OrderNotCompleted",
           "CourierConfigurationError", "GeocodingError"]


class NotAuthorizedException(Exception):
    LEVEL = 'warning'


# Generic Exceptions
class AccessDenied(Exception):
    LEVEL = 'warning'


# DynamoDB exceptions
class RecordNotFound(Exception):
    LEVEL = 'warning'


class OrderNotFound(RecordNotFound):
    pass


class MenuItemNotFound(RecordNotFound):
    pass


class RestaurantNotFound(RecordNotFound):
    pass


class AccountNotFound(RecordNotFound):
    pass


# DB Performance Exception
class NumberOfRetriesExceeded(Exception):
    pass


# Validations exceptions
class ValidationException(Exception):
    LEVEL = 'warning'


class EmptyOrderError(ValidationException):
    pass


class InvalidRatingError(ValidationException):
    pass


class InvalidCoordinateError(ValidationException):
    pass


# Conflicts: valid input rejected by the current state, nothing is written
class ConflictException(Exception):
    LEVEL = 'warning'

    def __init__(self, message, **details):
        super().__init__(message)
        self.details = details


class InsufficientFundsError(ConflictException):
    def __init__(self, account_id: str, requested: Decimal, available: Decimal):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f'Insufficient balance. You need €{requested:.2f} but only have €{available:.2f} '
            f'(short by €{self.shortfall:.2f})',
            account_id=account_id, requested=requested, available=available, shortfall=self.shortfall
        )


class DuplicateReviewError(ConflictException):
    pass


class InvalidTransitionError(ConflictException):
    pass


class OrderNotDeliverableError(ConflictException):
    pass


class SomeItemsAreNotAvailable(ConflictException):
    pass


# Ledger invariants, a raise means a bug in the caller
class InvariantViolation(Exception):
    LEVEL = 'error'


class ImbalancedTransferError(InvariantViolation):
    pass


class NegativeBalanceError(InvariantViolation):
    pass


class OrderNotCompleted(Exception):
    LEVEL = 'error'


class CourierConfigurationError(Exception):
    LEVEL = 'error'


# External dependencies
class GeocodingError(Exception):
    LEVEL = 'warning'
