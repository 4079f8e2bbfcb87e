import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from bookthevisit.core import config
from bookthevisit.database import Base, engine, ensure_appointment_schema, ensure_time_off_schema
from bookthevisit.models import appointment, availability, email_template, patient, provider, service, time_off  # noqa: F401
from bookthevisit.routes import appointment_routes, availability_routes, provider_routes

app = FastAPI(title='BookTheVisit')

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
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_time_off_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'BookTheVisit API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(provider_routes.router, prefix='/providers')
