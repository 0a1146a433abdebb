import os
import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from pymongo.database import Database

import database
from auth import (
    AuthService,
    check_profile_complete,
    check_vendor,
    clear_auth_cookie,
    set_auth_cookie,
)
from config import COOKIE_NAME, Settings, get_settings
from database import ProductStore, ResetCodeStore, UserStore, ensure_indexes
from errors import AppError, UpstreamError
from mailer import Mailer, ResendMailer
from media import CloudinaryMedia, MediaHost
from products import ProductService

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("unimart")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.settings = get_settings()
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="UniMart API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def current_settings(request: Request) -> Settings:
    return request.app.state.settings


# Error handlers

@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):
    body = {"message": exc.message, **exc.extra}
    if exc.detail and not current_settings(request).is_production:
        body["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else ""
    message = f"Invalid value for {field}" if field else "Invalid request body"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"message": "Something went wrong"}
    if not current_settings(request).is_production:
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# Models for requests
class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRequest(RequestModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    is_vendor: bool = True


class CompleteProfileRequest(RequestModel):
    email: Optional[EmailStr] = None
    school: Optional[str] = None
    whatsapp_number: Optional[str] = None


class LoginRequest(RequestModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    remember_me: bool = False


class ForgotPasswordRequest(RequestModel):
    email: Optional[EmailStr] = None


class ResetPasswordRequest(RequestModel):
    email: Optional[EmailStr] = None
    code: Optional[str] = None
    new_password: Optional[str] = None


class GoogleCallbackRequest(RequestModel):
    google_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class ProductCreateRequest(RequestModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, allow_inf_nan=False)
    category: Optional[str] = None
    images: Optional[List[str]] = None


class ProductUpdateRequest(RequestModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, allow_inf_nan=False)
    category: Optional[str] = None
    is_available: Optional[bool] = None
    images: Optional[List[str]] = None
    existing_images: Optional[List[Any]] = None


# Dependencies

def get_database() -> Database:
    db = database.get_database()
    if db is None:
        raise UpstreamError("Database not available")
    return db


def get_media(settings: Settings = Depends(current_settings)) -> MediaHost:
    return CloudinaryMedia.from_settings(settings)


def get_mailer(settings: Settings = Depends(current_settings)) -> Mailer:
    return ResendMailer.from_settings(settings)


def get_auth_service(
    db: Database = Depends(get_database),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(current_settings),
) -> AuthService:
    return AuthService(UserStore(db), ResetCodeStore(db), mailer, settings)


def get_product_service(
    db: Database = Depends(get_database),
    media: MediaHost = Depends(get_media),
    settings: Settings = Depends(current_settings),
) -> ProductService:
    return ProductService(ProductStore(db), UserStore(db), media, settings)


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip() or None
    return None


def authenticate(request: Request, auth: AuthService = Depends(get_auth_service)) -> dict:
    return auth.current_user(extract_token(request))


def require_vendor(user: dict = Depends(authenticate)) -> dict:
    return check_vendor(user)


def require_complete_profile(user: dict = Depends(require_vendor)) -> dict:
    return check_profile_complete(user)


@app.get("/")
def read_root():
    return {"message": "UniMart API is running"}


@app.get("/test")
def test_database():
    db = database.get_database()
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# Auth endpoints
@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest, response: Response,
           auth: AuthService = Depends(get_auth_service), settings: Settings = Depends(current_settings)):
    user, (token, ttl) = auth.sign_up(payload.name, payload.email, payload.password, payload.is_vendor)
    set_auth_cookie(response, token, ttl, settings.is_production)
    return {"message": "Account created. Please complete your profile.", "user": user}


@app.post("/auth/complete-profile")
def complete_profile(payload: CompleteProfileRequest, response: Response,
                     auth: AuthService = Depends(get_auth_service), settings: Settings = Depends(current_settings)):
    user, (token, ttl) = auth.complete_profile(payload.email, payload.school, payload.whatsapp_number)
    set_auth_cookie(response, token, ttl, settings.is_production)
    return {"message": "Profile completed successfully", "user": user}


@app.post("/auth/login")
def login(payload: LoginRequest, response: Response,
          auth: AuthService = Depends(get_auth_service), settings: Settings = Depends(current_settings)):
    user, (token, ttl) = auth.login(payload.email, payload.password, payload.remember_me)
    set_auth_cookie(response, token, ttl, settings.is_production)
    return {"message": "Login successful", "user": user}


@app.post("/auth/logout")
def logout(response: Response, settings: Settings = Depends(current_settings)):
    clear_auth_cookie(response, settings.is_production)
    return {"message": "Logout successful"}


@app.get("/auth/me")
def me(user: dict = Depends(authenticate)):
    return {"message": "User retrieved successfully", "user": user}


@app.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest,
                    auth: AuthService = Depends(get_auth_service), settings: Settings = Depends(current_settings)):
    code = auth.forgot_password(payload.email)
    body = {"message": "If the email is registered, a reset code has been sent"}
    if code and not settings.is_production:
        body["resetCode"] = code
    return body


@app.post("/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)):
    user = auth.reset_password(payload.email, payload.code, payload.new_password)
    return {"message": "Password reset successful", "user": user}


@app.post("/auth/google/callback")
def google_callback(payload: GoogleCallbackRequest, response: Response,
                    auth: AuthService = Depends(get_auth_service), settings: Settings = Depends(current_settings)):
    user, (token, ttl) = auth.google_callback(payload.google_id, payload.name, payload.email)
    set_auth_cookie(response, token, ttl, settings.is_production)
    return {
        "message": "Google authentication successful",
        "needsProfileCompletion": not user["profileComplete"],
        "user": user,
    }


# Products endpoints
@app.post("/products/create", status_code=201)
def create_product(payload: ProductCreateRequest, vendor: dict = Depends(require_complete_profile),
                   products: ProductService = Depends(get_product_service)):
    product = products.create(vendor, payload.name, payload.description, payload.price, payload.category, payload.images)
    return {"message": "Product created successfully", "product": product}


@app.get("/products/my-products")
def my_products(vendor: dict = Depends(require_vendor), products: ProductService = Depends(get_product_service)):
    docs = products.vendor_products(vendor)
    return {"message": "Vendor products retrieved successfully", "count": len(docs), "products": docs}


@app.get("/products")
def list_products(products: ProductService = Depends(get_product_service)):
    docs = products.available()
    return {"message": "All products retrieved successfully", "count": len(docs), "products": docs}


@app.get("/products/school/{school}")
def products_by_school(school: str, products: ProductService = Depends(get_product_service)):
    docs = products.by_school(school)
    return {"message": "Products retrieved successfully", "count": len(docs), "products": docs}


@app.get("/products/category/{category}")
def products_by_category(category: str, products: ProductService = Depends(get_product_service)):
    docs = products.by_category(category)
    return {"message": "Products retrieved successfully", "count": len(docs), "products": docs}


@app.get("/products/{product_id}")
def get_product(product_id: str, vendor: dict = Depends(require_vendor),
                products: ProductService = Depends(get_product_service)):
    return {"message": "Product retrieved successfully", "product": products.get(vendor, product_id)}


@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdateRequest, vendor: dict = Depends(require_vendor),
                   products: ProductService = Depends(get_product_service)):
    fields = payload.model_dump(include={"name", "description", "price", "category", "is_available"})
    product = products.update(vendor, product_id, fields, payload.existing_images, payload.images)
    return {"message": "Product updated successfully", "product": product}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, vendor: dict = Depends(require_vendor),
                   products: ProductService = Depends(get_product_service)):
    products.delete(vendor, product_id)
    return {"message": "Product and images deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
