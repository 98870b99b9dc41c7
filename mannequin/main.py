import logging
import os
from typing import List, Optional

from fastapi import FastAPI, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, models, schemas, use_cases
from .auth import hash_password, new_session_token, unwrap_token, verify_and_upgrade, verify_password, wrap_token
from .config import get_settings
from .db import get_db, init_db
from .exceptions import (
    EmailAlreadyRegistered,
    GenerationFailed,
    GenerationNotFound,
    InsufficientCredits,
    InvalidSignature,
    InvalidUpload,
    OrderNotFound,
    PaymentGatewayError,
    UnsupportedGarment,
    UserNotFound,
)
from .imaging import ImageGenerator
from .payments import PLANS, RazorpayGateway
from .utils import ImageUpload, parse_image_data_url, sanitize_input, validate_image

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables if not existing
init_db()

app = FastAPI(title="Invisible Mannequin Studio")

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), "templates"))

SESSION_COOKIE = "access_token"


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"success": False, "error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )


# -------------------- Dependencies --------------------

def get_image_generator() -> ImageGenerator:
    settings = get_settings()
    return ImageGenerator(settings.gemini_api_key, settings.gemini_image_model)


def get_payment_gateway() -> RazorpayGateway:
    settings = get_settings()
    return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret, settings.razorpay_api_url)


def resolve_session(db: Session, token: Optional[str]) -> Optional[models.UserSession]:
    if not token:
        return None
    try:
        session_token = unwrap_token(token)
    except ValueError:
        return None
    return crud.get_live_session(db, session_token)


def current_session(authorization: Optional[str] = Header(default=None), db: Session = Depends(get_db)) -> models.UserSession:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Authentication required")
    token = authorization[7:].strip()
    session = resolve_session(db, token)
    if session is None or session.user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return session


def current_user(session: models.UserSession = Depends(current_session)) -> models.User:
    return session.user


def profile_payload(db: Session, user: models.User) -> schemas.ProfileRead:
    profile = schemas.ProfileRead.model_validate(user)
    profile.generation_count = crud.count_generations(db, user.id)
    return profile


# -------------------- API --------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/plans", response_model=List[schemas.PlanRead])
async def list_plans():
    return [plan._asdict() for plan in PLANS.values()]


@app.post("/api/auth/signup", status_code=201)
async def signup(payload: schemas.SignupRequest, db: Session = Depends(get_db)):
    name = sanitize_input(payload.name) or None
    try:
        user = crud.create_user(
            db,
            payload.email,
            hash_password(payload.password),
            name=name,
            credits=get_settings().signup_credits,
        )
    except EmailAlreadyRegistered as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "user": schemas.UserRead.model_validate(user)}


def login_user(db: Session, email: str, password: str) -> tuple:
    user = crud.get_user_by_email(db, email)
    if not user:
        return None, None
    ok, upgraded = verify_and_upgrade(password, user.password_hash)
    if not ok:
        return None, None
    if upgraded:
        user = crud.update_user(db, user.id, password_hash=upgraded)
    session = crud.create_session(db, user.id, new_session_token())
    return user, wrap_token(session.access_token, user.id)


@app.post("/api/auth/login")
async def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user, token = login_user(db, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"success": True, "user": schemas.UserRead.model_validate(user), "token": token}


@app.post("/api/auth/logout")
async def logout(session: models.UserSession = Depends(current_session), db: Session = Depends(get_db)):
    crud.end_session(db, session.access_token)
    return {"success": True}


@app.get("/api/profile")
async def get_profile(user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    return {"success": True, "user": profile_payload(db, user)}


def change_profile(db: Session, user: models.User, payload: schemas.ProfileUpdate) -> models.User:
    name = sanitize_input(payload.name) if payload.name is not None else None
    password_hash = None
    if payload.newPassword:
        if not payload.currentPassword:
            raise HTTPException(status_code=400, detail="Current password is required")
        if not verify_password(payload.currentPassword, user.password_hash):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        password_hash = hash_password(payload.newPassword)
    return crud.update_user(db, user.id, name=name, password_hash=password_hash)


@app.put("/api/profile")
async def update_profile(payload: schemas.ProfileUpdate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    updated = change_profile(db, user, payload)
    return {"success": True, "user": schemas.UserRead.model_validate(updated)}


@app.post("/api/generate-views")
async def generate_views(
    payload: schemas.GenerateViewsRequest,
    user: models.User = Depends(current_user),
    db: Session = Depends(get_db),
    generator: ImageGenerator = Depends(get_image_generator),
):
    try:
        front = parse_image_data_url(payload.frontViewBase64)
        back = parse_image_data_url(payload.backViewBase64) if payload.backViewBase64 else None
    except InvalidUpload as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await run_generation(db, generator, user.id, payload.garmentType, front, back)


async def run_generation(db: Session, generator: ImageGenerator, user_id: int, garment_type: str,
                         front: ImageUpload, back: Optional[ImageUpload]) -> dict:
    try:
        return await use_cases.generate_views(db, generator, user_id, garment_type, front, back)
    except UnsupportedGarment as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InsufficientCredits:
        logger.info("User %s is out of credits", user_id)
        raise HTTPException(status_code=403, detail="Insufficient credits")
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except GenerationFailed:
        raise HTTPException(status_code=500, detail="Failed to generate views")


@app.get("/api/generations")
async def get_generations(
    id: Optional[int] = Query(default=None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: models.User = Depends(current_user),
    db: Session = Depends(get_db),
):
    if id is not None:
        try:
            generation = crud.get_generation(db, user.id, id)
        except GenerationNotFound:
            raise HTTPException(status_code=404, detail="Generation not found")
        return {"success": True, "generation": schemas.GenerationRead.model_validate(generation)}

    rows, total = crud.list_generations(db, user.id, page=page, limit=limit)
    return {
        "success": True,
        "generations": [schemas.GenerationSummary.model_validate(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@app.post("/api/generations")
async def create_generation(payload: schemas.GenerationCreate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    fields = payload.model_dump(exclude={"garment_type", "status"})
    generation = crud.create_generation(db, user.id, payload.garment_type, status=payload.status, **fields)
    return {"success": True, "generation": schemas.GenerationRead.model_validate(generation)}


@app.put("/api/generations")
async def update_generation(payload: schemas.GenerationUpdate, user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    if payload.id is None:
        raise HTTPException(status_code=400, detail="Generation ID is required")
    # only fields present in the request body are written
    changes = payload.model_dump(exclude_unset=True, exclude={"id"})
    try:
        generation = crud.update_generation(db, user.id, payload.id, **changes)
    except GenerationNotFound:
        raise HTTPException(status_code=404, detail="Generation not found")
    return {"success": True, "generation": schemas.GenerationRead.model_validate(generation)}


@app.delete("/api/generations")
async def delete_generation(id: Optional[int] = Query(default=None), user: models.User = Depends(current_user), db: Session = Depends(get_db)):
    if id is None:
        raise HTTPException(status_code=400, detail="Generation ID is required")
    try:
        crud.delete_generation(db, user.id, id)
    except GenerationNotFound:
        raise HTTPException(status_code=404, detail="Generation not found")
    return {"success": True}


@app.post("/api/create-order")
async def create_order(payload: schemas.CreateOrderRequest, db: Session = Depends(get_db),
                       gateway: RazorpayGateway = Depends(get_payment_gateway)):
    try:
        return await use_cases.start_order(db, gateway, payload.plan, payload.userId)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except PaymentGatewayError as e:
        logger.error("Error creating Razorpay order: %s", e)
        raise HTTPException(status_code=500, detail=str(e) or "Failed to create order")


@app.post("/api/verify-payment")
async def verify_payment(payload: schemas.VerifyPaymentRequest, db: Session = Depends(get_db)):
    try:
        return use_cases.confirm_checkout(
            db,
            get_settings().razorpay_key_secret,
            payload.razorpay_order_id,
            payload.razorpay_payment_id,
            payload.razorpay_signature,
            user_id=payload.userId,
        )
    except InvalidSignature as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@app.post("/api/razorpay-webhook")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("x-razorpay-signature")
    try:
        use_cases.handle_webhook(db, get_settings().razorpay_webhook_secret, body, signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ValueError, KeyError, TypeError) as e:
        logger.exception("Webhook error")
        raise HTTPException(status_code=500, detail=str(e) or "Webhook processing failed")
    return {"success": True}


# -------------------- UI Views --------------------

HISTORY_PAGE_SIZE = 10


def ui_user(request: Request, db: Session) -> Optional[models.User]:
    session = resolve_session(db, request.cookies.get(SESSION_COOKIE))
    return session.user if session else None


def ui_context(db: Session, user: Optional[models.User], **extra) -> dict:
    context = {
        "user": user,
        "profile": profile_payload(db, user) if user else None,
        "plans": list(PLANS.values()),
        "error": None,
        "message": None,
        "results": None,
    }
    context.update(extra)
    return context


def history_page(request: Request, db: Session, user: models.User, page: int = 1, status_code: int = 200, **extra):
    rows, total = crud.list_generations(db, user.id, page=page, limit=HISTORY_PAGE_SIZE)
    context = ui_context(
        db,
        user,
        generations=rows,
        page=page,
        pages=max(1, -(-total // HISTORY_PAGE_SIZE)),
        selected=None,
    )
    context.update(extra)
    return templates.TemplateResponse(request, "history.html", context, status_code=status_code)


@app.get("/ui", response_class=HTMLResponse)
async def ui_index(request: Request, db: Session = Depends(get_db)):
    return templates.TemplateResponse(request, "index.html", ui_context(db, ui_user(request, db)))


@app.post("/ui/login")
async def ui_login(request: Request, email: str = Form(...), password: str = Form(...), db: Session = Depends(get_db)):
    user, token = login_user(db, email, password)
    if user is None:
        return templates.TemplateResponse(
            request, "index.html", ui_context(db, None, error="Invalid email or password"), status_code=401,
        )
    response = RedirectResponse(url="/ui", status_code=303)
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return response


@app.post("/ui/logout")
async def ui_logout(request: Request, db: Session = Depends(get_db)):
    session = resolve_session(db, request.cookies.get(SESSION_COOKIE))
    if session:
        crud.end_session(db, session.access_token)
    response = RedirectResponse(url="/ui", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.post("/ui/generate", response_class=HTMLResponse)
async def ui_generate(
    request: Request,
    garment_type: str = Form(...),
    front: UploadFile = File(...),
    back: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    generator: ImageGenerator = Depends(get_image_generator),
):
    user = ui_user(request, db)
    if user is None:
        return RedirectResponse(url="/ui", status_code=303)

    try:
        uploads = []
        for upload in (front, back):
            if upload is None or not upload.filename:
                uploads.append(None)
                continue
            content = await upload.read()
            validate_image(upload.content_type, len(content))
            uploads.append(ImageUpload(upload.content_type.lower(), content))
        if uploads[0] is None:
            raise InvalidUpload("Front view image is required")
        result = await run_generation(db, generator, user.id, garment_type, uploads[0], uploads[1])
    except InvalidUpload as e:
        return templates.TemplateResponse(request, "index.html", ui_context(db, user, error=str(e)), status_code=400)
    except HTTPException as e:
        return templates.TemplateResponse(
            request, "index.html", ui_context(db, user, error=e.detail), status_code=e.status_code,
        )

    results = {"front": result["generatedFront"], "side": result["generatedSide"], "back": result["generatedBack"]}
    return templates.TemplateResponse(request, "index.html", ui_context(db, user, results=results))


@app.get("/ui/history", response_class=HTMLResponse)
async def ui_history(
    request: Request,
    page: int = Query(1, ge=1),
    id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
):
    user = ui_user(request, db)
    if user is None:
        return RedirectResponse(url="/ui", status_code=303)
    if id is None:
        return history_page(request, db, user, page)
    try:
        selected = crud.get_generation(db, user.id, id)
    except GenerationNotFound:
        return history_page(request, db, user, page, status_code=404, error="Generation not found")
    return history_page(request, db, user, page, selected=selected)


@app.post("/ui/history/delete")
async def ui_delete_generation(request: Request, generation_id: int = Form(...), db: Session = Depends(get_db)):
    user = ui_user(request, db)
    if user is None:
        return RedirectResponse(url="/ui", status_code=303)
    try:
        crud.delete_generation(db, user.id, generation_id)
    except GenerationNotFound:
        return history_page(request, db, user, status_code=404, error="Generation not found")
    return RedirectResponse(url="/ui/history", status_code=303)


@app.post("/ui/profile", response_class=HTMLResponse)
async def ui_update_profile(
    request: Request,
    name: Optional[str] = Form(default=None),
    current_password: Optional[str] = Form(default=None),
    new_password: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
):
    user = ui_user(request, db)
    if user is None:
        return RedirectResponse(url="/ui", status_code=303)
    try:
        payload = schemas.ProfileUpdate(
            name=name or None,
            currentPassword=current_password or None,
            newPassword=new_password or None,
        )
    except ValidationError:
        return history_page(request, db, user, status_code=400,
                            error="Name must be at most 100 characters and passwords at least 6")
    try:
        user = change_profile(db, user, payload)
    except HTTPException as e:
        return history_page(request, db, user, status_code=e.status_code, error=e.detail)
    return history_page(request, db, user, message="Profile updated")
