from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.config import ConfigDict


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserRead(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    credits: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProfileRead(UserRead):
    generation_count: int = 0


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = Field(default=None, min_length=6, max_length=128)


class GenerateViewsRequest(BaseModel):
    frontViewBase64: str
    backViewBase64: Optional[str] = None
    garmentType: str = Field(..., min_length=1, max_length=50)


class GenerationSummary(BaseModel):
    id: int
    garment_type: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GenerationRead(GenerationSummary):
    user_id: int
    front_view_url: Optional[str] = None
    back_view_url: Optional[str] = None
    generated_front1: Optional[str] = None
    generated_front2: Optional[str] = None
    generated_front3: Optional[str] = None
    generated_side: Optional[str] = None
    generated_back: Optional[str] = None
    selected_front_index: Optional[int] = None


class GenerationCreate(BaseModel):
    garment_type: str = Field(..., min_length=1, max_length=50)
    front_view_url: Optional[str] = None
    back_view_url: Optional[str] = None
    generated_front1: Optional[str] = None
    generated_front2: Optional[str] = None
    generated_front3: Optional[str] = None
    generated_side: Optional[str] = None
    generated_back: Optional[str] = None
    selected_front_index: Optional[int] = None
    status: Optional[str] = None


class GenerationUpdate(BaseModel):
    id: Optional[int] = None
    generated_front1: Optional[str] = None
    generated_front2: Optional[str] = None
    generated_front3: Optional[str] = None
    generated_side: Optional[str] = None
    generated_back: Optional[str] = None
    selected_front_index: Optional[int] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_not_null(cls, v):
        # an omitted status is left alone; an explicit null is refused
        if v is None:
            raise ValueError("status cannot be null")
        return v


class CreateOrderRequest(BaseModel):
    plan: Optional[str] = None
    userId: int


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    userId: Optional[int] = None


class PlanRead(BaseModel):
    name: str
    title: str
    credits: int
    amount: int
    currency: str
