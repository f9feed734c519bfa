from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class AuthContextData(BaseModel):
    role: Optional[str]
    roles: List[str]
    permissions: List[str]
    source: str


class AuthContextOut(BaseModel):
    data: AuthContextData
    generated_at: datetime
