from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from lounge.config import get_settings
from lounge.database import Base, engine, get_db
from lounge.dependencies import require_admin, require_staff
from lounge.logging_middleware import add_audit_middleware
from lounge.models import Customer, User
from lounge.rate_limit import apply_rate_limiter, limiter
from lounge.schemas import CustomerCreate, CustomerRead, CustomerUpdate, normalize_phone

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Lounge Customers Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "customers")
    return fastapi_app


app = create_app()


def _get_customer_or_404(db: Session, customer_id: int) -> Customer:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "customers"}


@app.post("/customers", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_customer(request: Request, customer_in: CustomerCreate, db: Session = Depends(get_db)) -> Customer:
    """Register a customer. Open to the booking front end, keyed by phone number."""
    if db.scalars(select(Customer).where(Customer.phone == customer_in.phone)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A customer with this phone number already exists")

    customer = Customer(**customer_in.model_dump())
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


@app.get("/customers", response_model=List[CustomerRead])
@limiter.limit("30/minute")
def list_customers(
    request: Request,
    search: Optional[str] = Query(None, min_length=1),
    members_only: bool = False,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> List[Customer]:
    stmt = select(Customer)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Customer.name.ilike(pattern), Customer.phone.like(pattern)))
    if members_only:
        stmt = stmt.where(Customer.is_member.is_(True))
    return list(db.scalars(stmt.order_by(Customer.name)).all())


@app.get("/customers/by-phone/{phone}", response_model=CustomerRead)
@limiter.limit("30/minute")
def get_customer_by_phone(request: Request, phone: str, db: Session = Depends(get_db)) -> Customer:
    customer = db.scalars(select(Customer).where(Customer.phone == normalize_phone(phone))).first()
    if not customer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@app.get("/customers/{customer_id}", response_model=CustomerRead)
@limiter.limit("30/minute")
def get_customer(
    request: Request,
    customer_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> Customer:
    return _get_customer_or_404(db, customer_id)


@app.put("/customers/{customer_id}", response_model=CustomerRead)
@limiter.limit("20/minute")
def update_customer(
    request: Request,
    customer_id: int,
    customer_update: CustomerUpdate,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> Customer:
    customer = _get_customer_or_404(db, customer_id)
    for key, value in customer_update.model_dump(exclude_unset=True).items():
        setattr(customer, key, value)
    if customer_update.is_member is False:
        customer.membership_expiry_date = None
    db.commit()
    db.refresh(customer)
    return customer


@app.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
def delete_customer(
    request: Request,
    customer_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    customer = _get_customer_or_404(db, customer_id)
    if customer.bookings or customer.sessions:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Customer has bookings or sessions and cannot be deleted",
        )
    db.delete(customer)
    db.commit()
