# Standaard imports
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import List, Optional

# 3rd part
from fastapi import FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, field_validator

# Locale imports
from .allocation_engine import AllocationEngine
from .clock import SystemClock, to_local_naive
from .conflict_index import ConflictIndex
from .crypto_utils import PlateCipher, mask_value
from .DBConnection import DBConnection
from .DataAccess.AccessDiscountCodes import AccessDiscountCodes
from .DataAccess.AccessMemberships import AccessMemberships
from .DataAccess.AccessRates import AccessRates
from .DataAccess.AccessReservations import AccessReservations
from .DataAccess.AccessSpots import AccessSpots
from .DataAccess.AccessSweeperLeases import AccessSweeperLeases
from .errors import AuthorizationError, ConflictError, ReservationError
from .events import EventPublisher, LoggingEventSink
from .Models.AllocationResult import AllocationStatus
from .Models.DiscountCode import DiscountCodeCreate
from .Models.Pricing import MembershipTier, PricingContext
from .Models.Reservation import ReservationStatus
from .Models.ReservationRequest import ReservationRequest, VehicleInfo
from .Models.Spot import SpotType
from .pricing_engine import PricingEngine
from .refund_policy import RefundPolicy
from .reservation_manager import ReservationManager
from .settings import Settings, load_settings
from .sweeper import ReservationSweeper

logger = logging.getLogger(__name__)


class ReservationCreate(BaseModel):
    spot_id: Optional[int] = None
    spot_type: SpotType
    features: List[str] = []
    start_time: datetime
    end_time: datetime
    vehicle: VehicleInfo
    notes: Optional[str] = None
    allow_waitlist: bool = False
    membership_tier: Optional[MembershipTier] = None
    discount_code: Optional[str] = None

    @field_validator("spot_type", mode="before")
    @classmethod
    def parse_spot_type(cls, v):
        return SpotType.parse(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def local_times(cls, v):
        return to_local_naive(v)


class CancelRequest(BaseModel):
    reason: Optional[str] = None


def build_components(settings: Settings, clock=None, sink=None) -> SimpleNamespace:
    """Wire every component once; the app and the tests share this."""
    clock = clock or SystemClock()
    db = DBConnection(settings.db_path, timeout=settings.db_timeout)
    cipher = PlateCipher.from_b64(settings.aes_key) if settings.aes_key else None

    spots = AccessSpots(db)
    rates = AccessRates(db)
    memberships = AccessMemberships(db)
    discount_codes = AccessDiscountCodes(db)
    reservations = AccessReservations(db, cipher=cipher)
    leases = AccessSweeperLeases(db)

    publisher = EventPublisher(sink or LoggingEventSink(settings.log_dir))
    pricing = PricingEngine(spots, rates, memberships, discount_codes, clock)
    conflict_index = ConflictIndex(reservations)
    allocation = AllocationEngine(spots, reservations, conflict_index, pricing, discount_codes, publisher, clock)
    manager = ReservationManager(
        reservations, spots, allocation, RefundPolicy.from_settings(settings), publisher, clock,
        no_show_grace=timedelta(minutes=settings.no_show_grace_minutes),
        check_in_early=timedelta(minutes=settings.check_in_early_minutes),
    )
    sweeper = ReservationSweeper(
        manager, leases, clock,
        no_show_interval=settings.no_show_sweep_seconds,
        expiry_interval=settings.expiry_sweep_seconds,
        lease_seconds=settings.lease_seconds,
    )

    return SimpleNamespace(
        settings=settings,
        clock=clock,
        db=db,
        spots=spots,
        rates=rates,
        memberships=memberships,
        discount_codes=discount_codes,
        reservations=reservations,
        leases=leases,
        publisher=publisher,
        pricing=pricing,
        conflict_index=conflict_index,
        allocation=allocation,
        manager=manager,
        sweeper=sweeper,
    )


def create_app(settings: Optional[Settings] = None, clock=None, sink=None) -> FastAPI:
    settings = settings or load_settings()
    os.makedirs(settings.db_dir, exist_ok=True)
    components = build_components(settings, clock, sink)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event = asyncio.Event()
        sweeper_task = None
        if settings.sweeper_enabled:
            sweeper_task = asyncio.create_task(components.sweeper.run(stop_event))
        yield
        stop_event.set()
        if sweeper_task:
            await sweeper_task
        components.db.close_connection()

    app = FastAPI(title="ParkReserve API", version="1.0.0", lifespan=lifespan)
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ReservationError)
    async def reservation_error_handler(request: Request, exc: ReservationError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    c = components

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "ParkReserve API is running"

    @app.get("/health")
    async def health():
        return {"status": "ok", "sweeper_enabled": settings.sweeper_enabled}

    @app.post("/reservations")
    def create_reservation(body: ReservationCreate, x_user_id: str = Header(...)):
        request = ReservationRequest(user_id=x_user_id, **body.model_dump())
        result = c.allocation.allocate(request)
        status_codes = {
            AllocationStatus.CONFIRMED: status.HTTP_201_CREATED,
            AllocationStatus.WAITLISTED: status.HTTP_202_ACCEPTED,
            AllocationStatus.UNAVAILABLE: status.HTTP_409_CONFLICT,
        }
        return JSONResponse(status_code=status_codes[result.status], content=result.model_dump(mode="json"))

    @app.get("/reservations")
    def list_reservations(x_user_id: str = Header(...), status: Optional[ReservationStatus] = None):
        return [r.to_dict(mask=mask_value) for r in c.manager.user_reservations(x_user_id, status)]

    @app.get("/reservations/stats")
    def reservation_stats(timeframe: str = "day"):
        return c.manager.reservation_stats(timeframe)

    @app.get("/reservations/{reservation_id}")
    def get_reservation(reservation_id: int, x_user_id: str = Header(...)):
        reservation = c.manager.get_reservation(reservation_id)
        if reservation.user_id != x_user_id:
            raise AuthorizationError("You can only view your own reservations")
        return reservation.to_dict(mask=mask_value)

    @app.get("/reservations/{reservation_id}/waitlist-position")
    def get_waitlist_position(reservation_id: int, x_user_id: str = Header(...)):
        reservation = c.manager.get_reservation(reservation_id)
        if reservation.user_id != x_user_id:
            raise AuthorizationError("You can only view your own reservations")
        return {"reservation_id": reservation_id, "position": c.manager.waitlist_position(reservation_id)}

    @app.post("/reservations/{reservation_id}/cancel")
    def cancel_reservation(reservation_id: int, body: Optional[CancelRequest] = None, x_user_id: str = Header(...)):
        reason = body.reason if body else None
        return c.manager.cancel(reservation_id, x_user_id, reason=reason).model_dump()

    @app.post("/reservations/{reservation_id}/check-in")
    def check_in(reservation_id: int, x_user_id: str = Header(...)):
        return c.manager.check_in(reservation_id, x_user_id).to_dict(mask=mask_value)

    @app.post("/reservations/{reservation_id}/check-out")
    def check_out(reservation_id: int, x_user_id: str = Header(...)):
        return c.manager.check_out(reservation_id, x_user_id).to_dict(mask=mask_value)

    @app.get("/spots/{spot_id}/conflicts")
    def spot_conflicts(spot_id: int, start_time: datetime, end_time: datetime):
        return c.conflict_index.conflicts(spot_id, to_local_naive(start_time), to_local_naive(end_time))

    @app.post("/pricing/quote")
    def pricing_quote(ctx: PricingContext):
        return c.pricing.quote(ctx).model_dump(mode="json")

    @app.post("/pricing/options")
    def pricing_options(ctx: PricingContext):
        return [option.model_dump(mode="json") for option in c.pricing.pricing_options(ctx)]

    @app.get("/pricing/surge")
    def pricing_surge():
        return [info.model_dump() for info in c.pricing.current_surge_info()]

    @app.get("/pricing/memberships/{tier}")
    def membership_benefits(tier: MembershipTier):
        return c.pricing.membership_benefits(tier).model_dump(mode="json")

    @app.post("/discount-codes", status_code=status.HTTP_201_CREATED)
    def create_discount_code(body: DiscountCodeCreate):
        try:
            return c.discount_codes.create_discount_code(body).to_dict()
        except ValueError as e:
            raise ConflictError(str(e), "DISCOUNT_CODE_EXISTS")

    @app.get("/discount-codes/{code}/validate")
    def validate_discount_code(code: str):
        return c.pricing.validate_discount_code(code).model_dump()

    return app
