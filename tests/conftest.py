import itertools
import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('BCRYPT_ROUNDS', '4')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')
os.environ.setdefault('SESSION_COOKIE_SECURE', 'false')

from drivingschool.database import Base, enable_sqlite_foreign_keys, import_models  # noqa: E402
from drivingschool.storage import DatabaseStorage  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    import_models()
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def storage(db) -> DatabaseStorage:
    return DatabaseStorage(db)


@pytest.fixture
def make_user(storage):
    counter = itertools.count(1)

    def factory(role: str = 'student', **overrides):
        number = next(counter)
        data = {
            'email': f'{role}{number}@example.com',
            'first_name': role.title(),
            'last_name': f'Number{number}',
            'role': role,
        }
        data.update(overrides)
        return storage.create_user(**data)

    return factory


@pytest.fixture
def make_course(storage):
    def factory(name: str = 'Beginner Driver Training', **overrides):
        data = {'name': name, 'description': 'Learn to drive', 'category': 'Beginner', 'price': 1200}
        data.update(overrides)
        return storage.create_course(**data)

    return factory


@pytest.fixture
def make_question(storage):
    counter = itertools.count(1)

    def factory(correct: str = 'A', question_type: str = 'single_choice', labels=('A', 'B', 'C'), **overrides):
        number = next(counter)
        correct_set = set(correct) if isinstance(correct, (list, tuple, set)) else {correct}
        data = {
            'question_text': f'Question {number}?',
            'explanation': f'Explanation {number}',
            'type': question_type,
            'choices': [{'label': label, 'is_correct': label in correct_set} for label in labels],
            'tags': ['road-signs'],
        }
        data.update(overrides)
        return storage.create_question(**data)

    return factory


@pytest.fixture
def make_schedule(storage):
    def factory(course, instructor, **overrides):
        start = datetime.now() + timedelta(days=7)
        data = {
            'course_id': course.id,
            'instructor_id': instructor.id,
            'title': 'Parking practice',
            'start_time': start,
            'end_time': start + timedelta(hours=2),
            'location': 'Practice Lot',
            'capacity': 2,
        }
        data.update(overrides)
        return storage.create_schedule(**data)

    return factory
