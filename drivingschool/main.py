import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from drivingschool.core import config
from drivingschool.core.errors import setup_exception_handlers
from drivingschool.database import init_db
from drivingschool.routes import (
    admin_routes,
    assessment_routes,
    attendance_routes,
    auth_routes,
    certificate_routes,
    course_routes,
    dashboard_routes,
    payment_routes,
    question_routes,
    schedule_routes,
    test_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

app = FastAPI(title='Driving School API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

setup_exception_handlers(app)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        init_db()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Driving School API Running'}


for module in (
    auth_routes,
    dashboard_routes,
    course_routes,
    question_routes,
    test_routes,
    assessment_routes,
    schedule_routes,
    attendance_routes,
    payment_routes,
    certificate_routes,
    admin_routes,
):
    app.include_router(module.router, prefix='/api')
