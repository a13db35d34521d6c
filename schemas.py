"""
Database Schemas for the Digital Goods Marketplace

Collections:
- user: Authentication, profile and seller counters
- product: Digital items listed by sellers
- purchase: A buyer's order of one product, with fee split and download token
- review: One rating per (user, product)
- upload: Stored files and their owners

Request payloads used by the API routers live at the bottom of the module.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Role = Literal["buyer", "seller", "admin"]
ProductCategory = Literal[
    "ebooks",
    "templates",
    "graphics",
    "software",
    "courses",
    "music",
    "videos",
    "photography",
    "fonts",
    "presets",
    "other",
]
ProductStatus = Literal["draft", "published", "archived"]
PurchaseStatus = Literal["pending", "completed", "refunded", "failed"]
PaymentMethod = Literal["stripe", "paypal", "manual"]

ROLES = ("buyer", "seller", "admin")


# Users
class User(BaseModel):
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    name: Optional[str] = Field(None, description="Display name")
    hashed_password: Optional[str] = Field(None, description="Password hash; None for OAuth-only accounts")
    role: Role = Field("buyer", description="User role")
    avatar_url: Optional[str] = Field(None, description="Profile image URL")
    bio: Optional[str] = Field(None, max_length=500)
    is_active: bool = Field(True, description="Is account active")

    # Seller fields
    is_verified_seller: bool = False
    is_premium: bool = False
    premium_until: Optional[datetime] = None
    seller_slug: Optional[str] = Field(None, description="Unique public handle for sellers")
    website: Optional[str] = None
    twitter: Optional[str] = None
    instagram: Optional[str] = None
    total_earnings: float = Field(0, ge=0)
    total_sales: int = Field(0, ge=0)


# Digital products
class ProductFile(BaseModel):
    key: Optional[str] = None
    url: str
    name: str
    size: int = Field(..., ge=0)
    type: str


class Product(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    slug: str = Field(..., description="Unique URL-safe identifier derived from the title")
    description: str = Field(..., min_length=20, max_length=5000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: ProductCategory
    tags: List[str] = Field(default_factory=list, max_length=10)

    price: float = Field(..., ge=0, description="Price in `currency`")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    currency: str = Field("USD", min_length=3, max_length=3)

    seller_id: str
    files: List[ProductFile] = Field(default_factory=list)
    cover_image: str
    images: List[str] = Field(default_factory=list, max_length=10)
    demo_url: Optional[str] = None

    status: ProductStatus = "draft"
    featured: bool = False
    total_sales: int = Field(0, ge=0)
    total_revenue: float = Field(0, ge=0)

    # Denormalized from approved reviews
    rating: float = Field(0, ge=0, le=5, description="Average approved rating")
    review_count: int = Field(0, ge=0)
    rating_version: int = Field(0, ge=0, description="Compare-and-set counter for rating updates")

    requirements: Optional[str] = Field(None, max_length=1000)
    includes_updates: bool = False
    includes_support: bool = False


# Purchases
class Purchase(BaseModel):
    buyer_id: str
    product_id: str
    seller_id: str
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    platform_fee: float = Field(..., ge=0)
    seller_earnings: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_session_id: str = Field(..., description="External checkout session identifier")
    transaction_id: Optional[str] = None
    status: PurchaseStatus = "pending"
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = Field(None, max_length=500)
    download_token: str = Field(..., description="Capability that authorizes file access")
    download_count: int = Field(0, ge=0)
    last_download_at: Optional[datetime] = None


# Reviews
class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    is_approved: bool = False
    is_flagged: bool = False


# Uploaded files
class Upload(BaseModel):
    key: str
    owner_id: str
    folder: str
    name: str
    size: int
    type: str
    url: str


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    role: Literal["buyer", "seller"] = "buyer"


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    website: Optional[str] = None
    twitter: Optional[str] = None
    instagram: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Role


def _clean_tags(tags):
    if tags is None:
        return tags
    return [t.strip() for t in tags if t and t.strip()]


class ProductCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=20, max_length=5000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: ProductCategory
    tags: List[str] = Field(default_factory=list, max_length=10)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    files: List[ProductFile] = Field(default_factory=list)
    cover_image: str
    images: List[str] = Field(default_factory=list, max_length=10)
    demo_url: Optional[str] = None
    requirements: Optional[str] = Field(None, max_length=1000)
    includes_updates: bool = False
    includes_support: bool = False

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Title must be at least 3 characters")
        return v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v)


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, min_length=20, max_length=5000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: Optional[ProductCategory] = None
    tags: Optional[List[str]] = Field(None, max_length=10)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    files: Optional[List[ProductFile]] = None
    cover_image: Optional[str] = None
    images: Optional[List[str]] = Field(None, max_length=10)
    demo_url: Optional[str] = None
    status: Optional[ProductStatus] = None
    featured: Optional[bool] = None
    requirements: Optional[str] = Field(None, max_length=1000)
    includes_updates: Optional[bool] = None
    includes_support: Optional[bool] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if v else v

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v)


class PurchaseCreate(BaseModel):
    product_id: str
    payment_method: PaymentMethod = "stripe"


class RefundPayload(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v):
        return v.strip() if v else v


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class DownloadUrlRequest(BaseModel):
    key: str
    expires_in: int = Field(3600, ge=60, le=7 * 24 * 3600)
