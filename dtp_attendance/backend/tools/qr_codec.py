import json
import logging
from typing import Literal, Optional, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..models.qr_models import QRPayload, SessionAttendancePayload, StudentAttendancePayload

logger = logging.getLogger(__name__)

QR_KINDS = ("session_attendance", "student_attendance")

_payload_adapter = TypeAdapter(QRPayload)


class DecodedQR(BaseModel):
    """Etiketli çözümleme sonucu: ya geçerli bir payload ya da bir hata nedeni."""
    valid: bool
    kind: Literal["session_attendance", "student_attendance", "invalid"]
    payload: Optional[Union[SessionAttendancePayload, StudentAttendancePayload]] = None
    error: Optional[str] = None


def _invalid(reason: str) -> DecodedQR:
    return DecodedQR(valid=False, kind="invalid", error=reason)


def _describe_validation_error(exc: ValidationError) -> str:
    # İlk hatayı kullanıcıya okunur biçimde özetle; aynı girdi hep aynı mesajı üretir.
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in QR_KINDS)
    error_type = first.get("type")
    if error_type == "missing":
        return f"Missing required field: {location}"
    if error_type == "extra_forbidden":
        return f"Unexpected field in QR code: {location}"
    return f"Invalid value for field {location}: {first.get('msg')}"


def decode(raw) -> DecodedQR:
    """
    Ham QR metnini çözer. Kapalı başarısız olur: bozuk metin, yanlış yapı ya da
    bilinmeyen `type` her zaman valid=False döner; kısmi kabul yoktur.
    Kimliklerin veritabanında var olup olmadığı burada kontrol edilmez.
    """
    if not isinstance(raw, str) or not raw.strip():
        return _invalid("QR code data is empty")

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        # Aşırı iç içe JSON da bozuk metin sayılır.
        return _invalid("Invalid JSON in QR code")

    if not isinstance(data, dict):
        return _invalid("QR code content must be a JSON object")

    qr_type = data.get("type")
    if qr_type is None:
        return _invalid("Missing QR code type")
    if qr_type not in QR_KINDS:
        return _invalid("Unknown QR code type")

    try:
        payload = _payload_adapter.validate_python(data)
    except ValidationError as e:
        reason = _describe_validation_error(e)
        logger.info(f"QR payload doğrulaması başarısız ({qr_type}): {reason}")
        return _invalid(reason)

    return DecodedQR(valid=True, kind=payload.type, payload=payload)


def encode(payload: Union[SessionAttendancePayload, StudentAttendancePayload]) -> str:
    """
    Payload'ın kanonik metin halini üretir: camelCase anahtarlar, tanım
    sırasında ve boş alanlar olmadan. Aynı payload hep aynı QR görüntüsünü verir.
    """
    return payload.model_dump_json(by_alias=True, exclude_none=True)
