"""Ödeme/abonelik hataları: her biri sabit bir tür adı ve HTTP durum kodu taşır."""


class PaymentError(Exception):
    kind = "ServerError"
    status_code = 500

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context


class InvalidInput(PaymentError):
    kind = "InvalidInput"
    status_code = 400


class NotFound(PaymentError):
    kind = "NotFound"
    status_code = 404


class InvalidSignature(PaymentError):
    kind = "InvalidSignature"
    status_code = 400


class AmountMismatch(PaymentError):
    kind = "AmountMismatch"
    status_code = 400


class Conflict(PaymentError):
    kind = "Conflict"
    status_code = 409


class ServerError(PaymentError):
    kind = "ServerError"
    status_code = 500


class ConfigurationError(PaymentError):
    """Eksik gateway ayarı: uygulama başlarken fırlatılır."""

    kind = "ConfigurationError"
    status_code = 500
