import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from html import escape

from fastapi import Depends, FastAPI, Form, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.orm import Session

from . import lifecycle
from .auth import (
    MIN_PASSWORD_LENGTH,
    OWNER_COOKIE,
    SUPER_ADMIN_COOKIE,
    SUPER_ADMIN_TOKEN_TTL,
    check_super_admin,
    create_token,
    current_owner,
    generate_invitation_code,
    hash_password,
    invitation_expired,
    login_owner,
    require_super_admin,
    set_auth_cookie,
    verify_password,
)
from .config import settings
from .database import Base, engine, get_db
from .email_service import (
    Mailer,
    get_mailer,
    render_cancellation_email,
    render_client_cancelled_email,
    render_confirmation_email,
    render_invitation_email,
    render_new_booking_email,
)
from .errors import BookingError, IllegalTransitionError, NotFoundError, ValidationError
from .models import Booking, Owner
from .reminders import reminder_loop, send_reminder
from .schemas import (
    BookingRead,
    DashboardBookingCreate,
    InviteCreate,
    OwnerRead,
    PublicBookingCreate,
    SettingsUpdate,
)
from .services import BLOCKED_NAME, BLOCKED_SERVICE, resolve_service
from .slots import ScheduleConfig, day_availability, reserve_slot, validate_slot

# ================== LOGGING ==================
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

logger = logging.getLogger(__name__)


# ================== APP ==================
@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(engine)

    task = None
    if settings.REMINDERS_ENABLED:
        task = asyncio.create_task(
            reminder_loop(get_mailer(), settings.REMINDER_INTERVAL_SECONDS)
        )
    yield
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Booking Dashboard", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _active_owner(db: Session, email: str) -> Owner:
    owner = db.query(Owner).filter(Owner.email == email.lower(), Owner.status == "active").first()
    if not owner:
        raise NotFoundError("Business not found")
    return owner


# ================== PUBLIC ==================
@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@app.get("/api/slots")
def slots(owner: str, date: str, db: Session = Depends(get_db)):
    business = _active_owner(db, owner)
    config = ScheduleConfig.from_owner(business)
    return {"date": date, "slots": day_availability(db, config, business.email, date)}


@app.post("/api/book", response_model=BookingRead, status_code=201)
async def book(
    data: PublicBookingCreate,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    business = _active_owner(db, data.owner)
    config = ScheduleConfig.from_owner(business)

    service = resolve_service(config.services, data.service)
    start = validate_slot(config, data.date, data.time)
    if start < datetime.now():
        raise ValidationError("Appointment is in the past")

    booking = reserve_slot(
        db, config, business.email, data.date, data.time,
        service=service,
        name=data.name,
        email=data.email,
        phone=data.phone,
        notes=data.notes,
        source="web",
    )

    await mailer.send(
        booking.email,
        "Booking confirmation",
        render_confirmation_email(booking, business.clinic_name),
    )
    await mailer.send(business.email, "New booking received", render_new_booking_email(booking))
    return booking


@app.get("/cancel/{token}", response_class=HTMLResponse)
async def cancel_booking(
    token: str,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        booking, outcome = lifecycle.cancel_by_token(db, token)
    except (NotFoundError, IllegalTransitionError):
        return "<h3>Booking not found or already cancelled.</h3>"

    logger.info("Booking %s cancelled by client (slot_freed=%s)", booking.id, outcome.slot_freed)
    business = db.query(Owner).filter(Owner.email == booking.owner_key).first()
    await mailer.send(booking.owner_key, "Booking cancelled by client", render_client_cancelled_email(booking))
    await mailer.send(
        booking.email,
        "Booking cancelled",
        render_cancellation_email(booking, business.clinic_name if business else ""),
    )
    return f"""
    <h3>Your booking for {escape(booking.service)}
    on {escape(booking.date)} at {escape(booking.time)} has been cancelled.</h3>
    """


# ================== SUPER ADMIN ==================
@app.post("/super-admin/login")
def super_admin_login(response: Response, email: str = Form(...), password: str = Form(...)):
    if not check_super_admin(email, password):
        raise HTTPException(401, "Invalid credentials")
    token = create_token({"role": "super-admin", "email": email.lower()}, SUPER_ADMIN_TOKEN_TTL)
    set_auth_cookie(response, SUPER_ADMIN_COOKIE, token, SUPER_ADMIN_TOKEN_TTL)
    return {"ok": True}


@app.get("/super-admin/logout")
def super_admin_logout(response: Response):
    response.delete_cookie(SUPER_ADMIN_COOKIE)
    return {"ok": True}


@app.get("/api/super-admin/owners", response_model=list[OwnerRead])
def list_owners(_: dict = Depends(require_super_admin), db: Session = Depends(get_db)):
    return db.query(Owner).order_by(Owner.created_at.desc(), Owner.id.desc()).all()


@app.post("/api/super-admin/invite", status_code=201)
async def invite_owner(
    data: InviteCreate,
    _: dict = Depends(require_super_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    email = data.email.lower()
    if db.query(Owner).filter(Owner.email == email).first():
        raise HTTPException(409, "Email already exists")

    owner = Owner(
        email=email,
        clinic_name=data.clinic_name,
        invitation_code=generate_invitation_code(),
        invited_at=datetime.now(),
        status="pending",
    )
    db.add(owner)
    db.commit()
    db.refresh(owner)
    logger.info("Invitation created for %s", email)

    sent = await mailer.send(
        email,
        "You're Invited to Booking Dashboard",
        render_invitation_email(owner.invitation_code, owner.clinic_name),
    )
    return {"ok": True, "id": owner.id, "email": email, "email_sent": sent}


@app.post("/api/super-admin/owners/{owner_id}/resend")
async def resend_invitation(
    owner_id: int,
    _: dict = Depends(require_super_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    owner = db.get(Owner, owner_id)
    if not owner:
        raise HTTPException(404, "Owner not found")
    if owner.status != "pending":
        raise HTTPException(409, "Owner already registered")

    owner.invitation_code = generate_invitation_code()
    owner.invited_at = datetime.now()
    db.commit()

    sent = await mailer.send(
        owner.email,
        "You're Invited to Booking Dashboard",
        render_invitation_email(owner.invitation_code, owner.clinic_name),
    )
    return {"ok": True, "email": owner.email, "email_sent": sent}


@app.delete("/api/super-admin/owners/{owner_id}")
def delete_owner(owner_id: int, _: dict = Depends(require_super_admin), db: Session = Depends(get_db)):
    owner = db.get(Owner, owner_id)
    if not owner:
        raise HTTPException(404, "Owner not found")
    # bookings are kept for the audit trail
    logger.info("Deleting owner %s", owner.email)
    db.delete(owner)
    db.commit()
    return {"ok": True}


# ================== REGISTRATION & LOGIN ==================
def _pending_owner(db: Session, code: str) -> Owner:
    owner = None
    if code:
        owner = db.query(Owner).filter(Owner.invitation_code == code, Owner.status == "pending").first()
    if not owner or invitation_expired(owner):
        raise HTTPException(400, "Invalid or expired invitation")
    return owner


@app.get("/api/register")
def registration_info(code: str = "", db: Session = Depends(get_db)):
    owner = _pending_owner(db, code)
    return {"email": owner.email, "clinic_name": owner.clinic_name}


@app.post("/register", response_model=OwnerRead)
def register(
    response: Response,
    code: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
    clinic_name: str = Form(""),
    clinic_phone: str = Form(""),
    clinic_address: str = Form(""),
    website_url: str = Form(""),
    db: Session = Depends(get_db),
):
    owner = _pending_owner(db, code)
    if password != confirm_password:
        raise HTTPException(400, "Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    owner.password_hash = hash_password(password)
    owner.status = "active"
    owner.invitation_code = None
    owner.clinic_name = clinic_name or owner.clinic_name
    owner.clinic_email = owner.email
    owner.clinic_phone = clinic_phone
    owner.clinic_address = clinic_address
    owner.website_url = website_url
    db.commit()
    db.refresh(owner)
    logger.info("Owner %s registered", owner.email)

    login_owner(response, owner)
    return owner


@app.post("/login")
def login(response: Response, email: str = Form(...), password: str = Form(...), db: Session = Depends(get_db)):
    owner = db.query(Owner).filter(Owner.email == email.lower(), Owner.status == "active").first()
    if not owner or not verify_password(password, owner.password_hash):
        raise HTTPException(401, "Invalid email or password")
    login_owner(response, owner)
    return {"ok": True}


@app.get("/logout")
def logout(response: Response):
    response.delete_cookie(OWNER_COOKIE)
    return {"ok": True}


# ================== DASHBOARD ==================
@app.get("/api/dashboard/bookings", response_model=list[BookingRead])
def dashboard_bookings(owner: Owner = Depends(current_owner), db: Session = Depends(get_db)):
    return (
        db.query(Booking)
        .filter(Booking.owner_key == owner.email)
        .order_by(Booking.date.desc(), Booking.time.desc(), Booking.id.desc())
        .all()
    )


@app.post("/api/dashboard/bookings", response_model=BookingRead, status_code=201)
async def add_booking(
    data: DashboardBookingCreate,
    owner: Owner = Depends(current_owner),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    config = ScheduleConfig.from_owner(owner)
    validate_slot(config, data.date, data.time)

    if data.kind == "blocked":
        fields = {"kind": "blocked", "name": BLOCKED_NAME, "service": BLOCKED_SERVICE, "notes": data.notes}
    else:
        if not data.service.strip():
            raise ValidationError("Service is required")
        fields = {
            "kind": "booking",
            "service": data.service.strip(),
            "name": data.name,
            "email": data.email,
            "phone": data.phone,
            "notes": data.notes,
        }

    booking = reserve_slot(db, config, owner.email, data.date, data.time, source="dashboard", **fields)
    if booking.kind == "booking":
        await mailer.send(
            booking.email,
            "Booking confirmation",
            render_confirmation_email(booking, owner.clinic_name),
        )
    return booking


@app.post("/api/dashboard/bookings/{booking_id}/cancel")
async def dashboard_cancel(
    booking_id: int,
    owner: Owner = Depends(current_owner),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    booking, outcome = lifecycle.cancel(db, booking_id, owner.email, cancelled_by="owner")
    logger.info("Booking %s cancelled by owner (slot_freed=%s)", booking.id, outcome.slot_freed)

    if booking.kind == "booking":
        await mailer.send(
            booking.email,
            "Booking cancelled",
            render_cancellation_email(booking, owner.clinic_name),
        )
    return {
        "ok": True,
        "slot_freed": outcome.slot_freed,
        "message": outcome.message,
        "booking": BookingRead.model_validate(booking),
    }


@app.post("/api/dashboard/bookings/{booking_id}/no-show", response_model=BookingRead)
def dashboard_no_show(booking_id: int, owner: Owner = Depends(current_owner), db: Session = Depends(get_db)):
    return lifecycle.mark_no_show(db, booking_id, owner.email)


@app.post("/api/dashboard/bookings/{booking_id}/complete", response_model=BookingRead)
def dashboard_complete(booking_id: int, owner: Owner = Depends(current_owner), db: Session = Depends(get_db)):
    return lifecycle.mark_complete(db, booking_id, owner.email)


@app.post("/api/dashboard/bookings/{booking_id}/remind")
async def dashboard_remind(
    booking_id: int,
    owner: Owner = Depends(current_owner),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    sent = await send_reminder(db, mailer, booking_id, owner.email)
    return {"ok": True, "sent": sent}


@app.get("/api/dashboard/settings", response_model=OwnerRead)
def get_settings(owner: Owner = Depends(current_owner)):
    return owner


@app.put("/api/dashboard/settings", response_model=OwnerRead)
def update_settings(data: SettingsUpdate, owner: Owner = Depends(current_owner), db: Session = Depends(get_db)):
    for field, value in data.model_dump().items():
        setattr(owner, field, value)
    db.commit()
    db.refresh(owner)
    logger.info("Settings updated for %s", owner.email)
    return owner
