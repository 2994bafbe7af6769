import logging
import re

from ..db.db_client import AsyncPostgresClient
from ..db.student_cache import StudentCache, NullStudentCache
from ..models.db_models import Student
from ..tools.student_id_validator import validate_format, validate_format_detailed
from .errors import FormatError, NotFoundError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_YEAR_LEVEL = 1
MAX_YEAR_LEVEL = 5


class StudentService:
    """
    Öğrenci numarasını doğrulayan ve öğrenciyi (önbellek üzerinden) bulan servis katmanı.
    """
    def __init__(self, db_client: AsyncPostgresClient, cache: StudentCache = None):
        self.db_client = db_client
        self.cache = cache or NullStudentCache()

    async def find_by_id_number(self, raw_student_id: str) -> Student:
        """
        Numarayı doğrular, önce önbelleğe sonra veritabanına bakar.
        Yalnızca bulunan öğrenciler önbelleğe yazılır.
        """
        validation = validate_format(raw_student_id)
        if not validation.valid:
            detailed = validate_format_detailed(raw_student_id)
            message = ", ".join(detailed.errors) if detailed.errors else validation.error
            logger.info(f"Geçersiz öğrenci numarası formatı: '{raw_student_id}'")
            raise FormatError(message, code="invalid_student_id")

        student_id_number = validation.normalized
        student = await self.cache.get(student_id_number)
        if student is not None:
            return student

        student = await self.db_client.get_student_by_id_number(student_id_number)
        if student is None:
            logger.warning(f"Öğrenci '{student_id_number}' sistemde bulunamadı.")
            raise NotFoundError("Student not found in the system", code="student_not_found")

        await self.cache.set(student)
        return student

    def check_record(self, student: Student):
        """
        Bozuk öğrenci kayıtlarını yakalayan ek kontroller: program, sınıf (1-5) ve e-posta.
        """
        if student.program_id is None and not student.program_name:
            raise FormatError("Student program information is missing", code="invalid_student_record")
        if not MIN_YEAR_LEVEL <= student.year <= MAX_YEAR_LEVEL:
            raise FormatError("Student year level is invalid", code="invalid_student_record")
        if not EMAIL_PATTERN.match(student.email or ""):
            raise FormatError("Student email format is invalid", code="invalid_student_record")

    async def resolve_student(self, raw_student_id: str) -> Student:
        student = await self.find_by_id_number(raw_student_id)
        self.check_record(student)
        return student
