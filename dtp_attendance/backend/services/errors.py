from typing import Optional


class ServiceError(Exception):
    """Servis katmanı için genel hata sınıfı."""
    pass


class ScanError(ServiceError):
    """
    Tarama hattının bütün hatalarının tabanı. Her hata kısa bir `code`,
    kullanıcıya gösterilebilir bir `message` ve bir HTTP durum kodu taşır.
    """
    status_code: int = 500
    default_code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_response(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class FormatError(ScanError):
    """Bozuk QR metni, bilinmeyen payload türü ya da kurala uymayan öğrenci numarası."""
    status_code = 400
    default_code = "invalid_qr"


class RequestValidationFailed(ScanError):
    status_code = 400
    default_code = "validation_error"


class AuthenticationError(ScanError):
    status_code = 401
    default_code = "authentication_required"


class AuthorizationError(ScanError):
    """Organizatör etkinliğe atanmamış, ya da etkinlik/oturum aktif değil."""
    status_code = 403
    default_code = "forbidden"


class NotFoundError(ScanError):
    status_code = 404
    default_code = "not_found"


class WindowRejectedError(ScanError):
    """Tarama herhangi bir aktif pencereye denk gelmiyor."""
    status_code = 400
    default_code = "scan_not_allowed"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def to_response(self) -> dict:
        body = super().to_response()
        body["reason"] = self.reason
        return body


class DuplicateError(ScanError):
    status_code = 409
    default_code = "duplicate_scan"

    def __init__(self, message: str, minutes_since_last_scan: Optional[int] = None):
        super().__init__(message)
        self.minutes_since_last_scan = minutes_since_last_scan

    def to_response(self) -> dict:
        body = super().to_response()
        if self.minutes_since_last_scan is not None:
            body["minutesSinceLastScan"] = self.minutes_since_last_scan
        return body


class TransientError(ScanError):
    """Veri deposu zaman aşımı ya da erişilemezlik. İstemci yeniden deneyebilir."""
    status_code = 503
    default_code = "service_unavailable"
    retryable = True

    def to_response(self) -> dict:
        body = super().to_response()
        body["retryable"] = True
        return body


class UnknownError(ScanError):
    status_code = 500
    default_code = "internal_error"


class ConflictError(ServiceError):
    """
    Depo seviyesinde benzersizlik ihlali (yarışı kaybeden yazma). HTTP'ye
    doğrudan sızmaz; hat bunu DuplicateError'a çevirir.
    """
    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint
