from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

# Each class name determines collection name (lowercased)

class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="bcrypt hash, absent for Google-only accounts")
    google_id: Optional[str] = None
    school: str = ""
    whatsapp_number: str = Field("", description="Normalized, no whitespace")
    is_vendor: bool = True
    profile_complete: bool = False

class ProductImage(BaseModel):
    url: str
    public_id: str = Field(..., description="Media host deletion reference")

class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: str
    images: List[ProductImage] = Field(default_factory=list, max_length=3)
    main_image: Optional[str] = None
    school: str = Field("", description="Snapshot of the vendor's school at creation")
    vendor_id: str
    is_available: bool = True

class PasswordReset(BaseModel):
    email: EmailStr
    code_hash: bytes
    expires_at: datetime
    failed_attempts: int = 0
