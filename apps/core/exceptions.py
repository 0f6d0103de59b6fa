"""
Ledger exceptions.

Every caller-facing failure carries a stable ``error_code`` and the identifier
of the record it concerns so HTTP and UI layers can render specific messages
without parsing free text.
"""
from enum import Enum


class ErrorCode(str, Enum):
    NOT_FOUND = 'NOT_FOUND'
    ENROLLMENT_NOT_FOUND = 'ENROLLMENT_NOT_FOUND'
    RESERVATION_NOT_FOUND = 'RESERVATION_NOT_FOUND'
    BALANCE_NOT_FOUND = 'BALANCE_NOT_FOUND'
    BRANCH_NOT_FOUND = 'BRANCH_NOT_FOUND'

    VALIDATION_ERROR = 'VALIDATION_ERROR'
    INVALID_PURPOSE = 'INVALID_PURPOSE'
    INVALID_PAYMENT_METHOD = 'INVALID_PAYMENT_METHOD'
    MISSING_TERM_NUMBER = 'MISSING_TERM_NUMBER'
    INVALID_TERM_NUMBER = 'INVALID_TERM_NUMBER'
    NON_POSITIVE_AMOUNT = 'NON_POSITIVE_AMOUNT'
    OVERPAYMENT_REJECTED = 'OVERPAYMENT_REJECTED'
    INVALID_CONCESSION = 'INVALID_CONCESSION'
    INVALID_TRANSITION = 'INVALID_TRANSITION'
    APPLICATION_FEE_UNPAID = 'APPLICATION_FEE_UNPAID'
    PAYMENT_RULE_VIOLATION = 'PAYMENT_RULE_VIOLATION'

    CONCESSION_LOCKED = 'CONCESSION_LOCKED'
    PROMOTION_BLOCKED = 'PROMOTION_BLOCKED'
    CONCURRENT_UPDATE_CONFLICT = 'CONCURRENT_UPDATE_CONFLICT'

    PERSISTENCE_FAILURE = 'PERSISTENCE_FAILURE'


class LedgerError(Exception):
    error_code = ErrorCode.VALIDATION_ERROR
    default_message = 'Ledger operation failed.'
    retryable = False

    def __init__(self, message='', *, identifier=None, details=None):
        self.message = message or self.default_message
        self.identifier = identifier
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'code': self.error_code.value,
            'message': self.message,
            'identifier': self.identifier,
            'details': self.details,
            'retryable': self.retryable,
        }

    def __str__(self):
        return f"{self.error_code.value}: {self.message}"


# Not found

class NotFound(LedgerError):
    error_code = ErrorCode.NOT_FOUND
    default_message = 'Record not found.'


class EnrollmentNotFound(NotFound):
    error_code = ErrorCode.ENROLLMENT_NOT_FOUND
    default_message = 'Enrollment not found.'


class ReservationNotFound(NotFound):
    error_code = ErrorCode.RESERVATION_NOT_FOUND
    default_message = 'Reservation not found.'


class BalanceNotFound(NotFound):
    error_code = ErrorCode.BALANCE_NOT_FOUND
    default_message = 'Fee balance not found.'


class BranchNotFound(NotFound):
    error_code = ErrorCode.BRANCH_NOT_FOUND
    default_message = 'Branch not found.'


# Validation

class LedgerValidationError(LedgerError):
    error_code = ErrorCode.VALIDATION_ERROR
    default_message = 'Validation failed.'


class InvalidPurpose(LedgerValidationError):
    error_code = ErrorCode.INVALID_PURPOSE
    default_message = 'Unknown payment purpose.'


class InvalidPaymentMethod(LedgerValidationError):
    error_code = ErrorCode.INVALID_PAYMENT_METHOD
    default_message = 'Unknown payment method.'


class MissingTermNumber(LedgerValidationError):
    error_code = ErrorCode.MISSING_TERM_NUMBER
    default_message = 'Term number is required for tuition and transport fees.'


class InvalidTermNumber(LedgerValidationError):
    error_code = ErrorCode.INVALID_TERM_NUMBER
    default_message = 'Term number does not reference an existing term.'


class NonPositiveAmount(LedgerValidationError):
    error_code = ErrorCode.NON_POSITIVE_AMOUNT
    default_message = 'Payment amount must be greater than zero.'


class OverpaymentRejected(LedgerValidationError):
    error_code = ErrorCode.OVERPAYMENT_REJECTED
    default_message = 'Payment exceeds the outstanding balance.'


class InvalidConcession(LedgerValidationError):
    error_code = ErrorCode.INVALID_CONCESSION
    default_message = 'Invalid concession amount.'


class InvalidTransition(LedgerValidationError):
    error_code = ErrorCode.INVALID_TRANSITION
    default_message = 'Status transition is not allowed.'


class ApplicationFeeUnpaid(LedgerValidationError):
    error_code = ErrorCode.APPLICATION_FEE_UNPAID
    default_message = 'Application fee must be paid before confirmation.'


class PaymentRuleViolation(LedgerValidationError):
    error_code = ErrorCode.PAYMENT_RULE_VIOLATION
    default_message = 'Payment breaks a collection rule.'


# Business rules and contention

class ConcessionLocked(LedgerError):
    error_code = ErrorCode.CONCESSION_LOCKED
    default_message = 'Concession is locked.'


class PromotionBlocked(LedgerError):
    error_code = ErrorCode.PROMOTION_BLOCKED
    default_message = 'Enrollment is not eligible for promotion.'


class ConcurrentUpdateConflict(LedgerError):
    error_code = ErrorCode.CONCURRENT_UPDATE_CONFLICT
    default_message = 'Record was modified by another request. Retry the operation.'
    retryable = True


class PersistenceFailure(LedgerError):
    error_code = ErrorCode.PERSISTENCE_FAILURE
    default_message = 'Storage failure. Retry the operation.'
    retryable = True
