import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from dentalcare.core import config
from dentalcare.database import ensure_follow_up_schema
from dentalcare.models import appointment, doctor_schedule, patient  # noqa: F401
from dentalcare.routes import follow_up_routes

logging.basicConfig(
    level=logging.DEBUG if config.APP_ENV.lower() == 'development' else logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Dental Clinic Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        ensure_follow_up_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Dental Clinic Scheduling API Running'}


app.include_router(follow_up_routes.router, prefix='/follow-up')
