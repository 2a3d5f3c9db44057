import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.core import config
from booking_engine.core.logging_config import configure_logging
from booking_engine.database import Base, engine, ensure_availability_schema, ensure_appointment_schema
from booking_engine.models import appointment, availability, external_calendar, tenant  # noqa: F401
from booking_engine.routes import (
    appointment_routes,
    availability_routes,
    calendar_routes,
    scheduling_routes,
    voice_routes,
)

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='Booking Engine')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Booking Engine API Running'}


app.include_router(scheduling_routes.router, prefix='/scheduling')
app.include_router(voice_routes.router, prefix='/voice')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(calendar_routes.router, prefix='/calendar')
