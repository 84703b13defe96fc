"""
ABOUTME: Authentication models for Supabase Auth integration
ABOUTME: The authenticated caller as resolved from a Supabase JWT
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr


class User(BaseModel):
    """User model from Supabase Auth"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: Optional[EmailStr] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
