"""
Request schemas for the storefront API.

Each endpoint gets an explicit input model; partial-update models leave every
field optional so handlers can apply only the fields that were sent
(``model_dump(exclude_unset=True)``).
"""
import re
from typing import Annotated, List, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    model_validator,
)

OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"
PHONE_PATTERN = r"^\+?\d+$"
PASSWORD_RULE = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*()_\-+={}\[\]|\\:;\"'<>,.?/~`]).{8,}$"
)
PASSWORD_MESSAGE = (
    "Password must be at least 8 characters long and include an uppercase letter, "
    "a lowercase letter, a number, and a special character"
)


def check_password_strength(value: str) -> str:
    if not PASSWORD_RULE.match(value):
        raise ValueError(PASSWORD_MESSAGE)
    return value


def split_csv(value):
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list):
        items = []
        for entry in value:
            items.extend(split_csv(entry) if isinstance(entry, str) else [entry])
        return items
    return value


def strip_text(value):
    return value.strip() if isinstance(value, str) else value


Size = Literal["xs", "s", "m", "l", "xl"]
ObjectIdStr = Annotated[str, Field(pattern=OBJECT_ID_PATTERN)]
Email = Annotated[EmailStr, AfterValidator(str.lower)]
Password = Annotated[str, Field(min_length=8), AfterValidator(check_password_strength)]
Phone = Annotated[
    str, BeforeValidator(strip_text), Field(min_length=10, max_length=15, pattern=PHONE_PATTERN)
]
Username = Annotated[str, BeforeValidator(strip_text), Field(min_length=3, max_length=50)]
CategoryName = Annotated[str, BeforeValidator(strip_text), Field(min_length=1, max_length=100)]
CategorySlug = Annotated[str, BeforeValidator(strip_text), Field(min_length=1, max_length=100)]


class Image(BaseModel):
    url: str
    public_id: str


class ProductImage(BaseModel):
    url: HttpUrl
    public_id: str = Field(min_length=1)

    def as_document(self) -> dict:
        return {"url": str(self.url), "public_id": self.public_id}


# --- Auth ---


class SignupBody(BaseModel):
    username: Username
    email: Email
    phone: Phone
    password: Password
    image: Optional[Image] = None


class LoginBody(BaseModel):
    email: Email
    password: Password


# --- Categories ---


class CategoryCreateBody(BaseModel):
    name: CategoryName
    slug: Optional[CategorySlug] = None
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[Image] = None


class CategoryUpdateBody(BaseModel):
    name: Optional[CategoryName] = None
    slug: Optional[CategorySlug] = None
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[Image] = None


# --- Products ---


class ProductCreateBody(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    price: float = Field(ge=0)
    tags: Optional[List[str]] = None
    color: Optional[List[str]] = None
    thumbnail: ProductImage
    images: List[ProductImage] = Field(min_length=1, max_length=10)
    stock: int = Field(ge=0)
    category: ObjectIdStr
    size: Optional[List[Size]] = None


class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    price: Optional[float] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None
    color: Optional[List[str]] = None
    thumbnail: Optional[ProductImage] = None
    images: Optional[List[ProductImage]] = Field(default=None, min_length=1, max_length=10)
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[ObjectIdStr] = None
    size: Optional[List[Size]] = None


class PaginationQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class ProductQuery(PaginationQuery):
    categories: Annotated[Optional[List[ObjectIdStr]], BeforeValidator(split_csv)] = None
    minPrice: Optional[float] = Field(default=None, ge=0)
    maxPrice: Optional[float] = Field(default=None, ge=0)
    sizes: Annotated[Optional[List[Size]], BeforeValidator(split_csv)] = None
    inStock: Optional[bool] = None
    sort: Literal["createdAt", "price", "name"] = "createdAt"
    order: Literal["asc", "desc"] = "desc"

    @model_validator(mode="after")
    def check_price_range(self):
        if (
            self.minPrice is not None
            and self.maxPrice is not None
            and self.minPrice > self.maxPrice
        ):
            raise ValueError("minPrice cannot be greater than maxPrice")
        return self


# --- Path parameters ---


class ObjectIdParams(BaseModel):
    id: ObjectIdStr


class UserIdParams(BaseModel):
    userId: ObjectIdStr


class SlugParams(BaseModel):
    slug: str = Field(min_length=1, max_length=200)


# --- Images ---


class ImageDeleteBody(BaseModel):
    public_id: str = Field(min_length=1)


# --- Users ---


class UserUpdateBody(BaseModel):
    username: Optional[Username] = None
    phone: Optional[Phone] = None
    image: Optional[Image] = None


class PasswordChangeBody(BaseModel):
    current_password: Optional[str] = None
    new_password: Password


class UserStatusBody(BaseModel):
    isActive: bool
