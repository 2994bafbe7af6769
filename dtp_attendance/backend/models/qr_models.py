from datetime import datetime
from typing import Literal, Optional, Union, Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _QRPayload(BaseModel):
    # QR içindeki anahtarlar camelCase; bilinmeyen alanlar reddedilir.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class SessionAttendancePayload(_QRPayload):
    """
    Oturum QR'ı. Görüntüleme alanları (event_name, location...) yalnızca istemci
    içindir; yetkilendirmede sadece kimlikler kullanılır.
    """
    type: Literal["session_attendance"] = "session_attendance"
    session_id: UUID
    event_id: UUID
    timestamp: datetime
    event_name: Optional[str] = None
    session_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    organizer_id: Optional[str] = None


class StudentAttendancePayload(_QRPayload):
    """Öğrenci QR'ı."""
    type: Literal["student_attendance"] = "student_attendance"
    student_id: UUID
    student_id_number: str
    timestamp: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    program_name: Optional[str] = None
    year: Optional[int] = None


QRPayload = Annotated[
    Union[SessionAttendancePayload, StudentAttendancePayload],
    Field(discriminator="type"),
]
