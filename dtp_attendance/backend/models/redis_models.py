from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal
from uuid import UUID


class CallerIdentity(BaseModel):
    """
    Kimlik servisinin ürettiği çağıran bilgisi. Oturum açma bu serviste
    yapılmaz; burada yalnızca Redis'te tutulan oturumdan okunur.
    """
    user_id: str = Field(..., description="Organizer (or admin) identifier")
    full_name: str
    email: Optional[str] = None
    role: Literal["organizer", "admin"] = "organizer"
    is_active: bool = True


class UserSessionRedis(BaseModel):
    """
    Represents a user's session data stored in Redis under 'users:<user_id>'.
    """
    user_data: CallerIdentity = Field(..., description="The caller identity for this session.")
    session_id: UUID = Field(..., description="Unique ID for this specific session.")
    session_start_time: datetime = Field(..., description="The time this session began.")
    session_end_time: datetime = Field(..., description="The time this session will expire.")
