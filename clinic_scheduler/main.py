import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core import config
from clinic_scheduler.database import Base, engine, ensure_scheduling_schema
from clinic_scheduler.models import appointment, availability, consultation_note, user, waitlist  # noqa: F401
from clinic_scheduler.routes import appointment_routes, availability_routes, provider_routes, waitlist_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='Clinic Scheduler')

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
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Clinic Scheduler API Running'}


app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(provider_routes.router, prefix='/providers/me')
app.include_router(availability_routes.router, prefix='/providers')
app.include_router(waitlist_routes.router)
