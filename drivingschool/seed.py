"""Populate a development database with sample accounts and course material.

Usage:
    python -m drivingschool.seed
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from drivingschool.auth.passwords import hash_password
from drivingschool.database import SessionLocal, init_db
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

SEED_PASSWORD = 'password123'
ADMIN_EMAIL = 'admin@drivingschool.com'

USERS = [
    {'email': ADMIN_EMAIL, 'first_name': 'Ada', 'last_name': 'Admin', 'role': 'admin'},
    {'email': 'john.doe@drivingschool.com', 'first_name': 'John', 'last_name': 'Doe', 'role': 'instructor'},
    {'email': 'jane.smith@drivingschool.com', 'first_name': 'Jane', 'last_name': 'Smith', 'role': 'instructor'},
    {'email': 'alice.johnson@email.com', 'first_name': 'Alice', 'last_name': 'Johnson', 'role': 'student'},
]

COURSES = [
    {
        'name': 'Beginner Driver Training',
        'description': 'Fundamentals of safe driving with theory lessons and practical sessions.',
        'category': 'Beginner',
        'price': Decimal('1200.00'),
        'topics': [
            ('Traffic Rules and Signs', 'theory', [
                ('Understanding Road Signs', '<h2>Road Signs</h2><p>Regulatory, warning and guide signs.</p>'),
            ]),
            ('Basic Vehicle Control', 'practice', [
                ('Steering and Braking', '<h2>Vehicle Control</h2><p>Hold the wheel at 9 and 3.</p>'),
            ]),
            ('Parking Techniques', 'practice', [
                ('Parallel Parking Step by Step', '<ol><li>Pull up alongside the front car</li></ol>'),
            ]),
        ],
    },
    {
        'name': 'Advanced Defensive Driving',
        'description': 'Hazard perception, emergency manoeuvres and defensive techniques.',
        'category': 'Advanced',
        'price': Decimal('800.00'),
        'topics': [
            ('Hazard Perception', 'theory', [
                ('Scanning for Hazards', '<p>Check mirrors every 5-8 seconds and look 12-15 seconds ahead.</p>'),
            ]),
            ('Emergency Manoeuvres', 'practice', [
                ('Skid Recovery', '<p>Steer in the direction you want the car to go.</p>'),
            ]),
        ],
    },
    {
        'name': 'Commercial License Preparation',
        'description': 'Large vehicle operation, cargo handling and transport regulations.',
        'category': 'Professional',
        'price': Decimal('2500.00'),
        'topics': [
            ('Large Vehicle Operation', 'theory', [
                ('Blind Spots on Trucks', '<p>Large vehicles have wide blind spots on every side.</p>'),
            ]),
        ],
    },
]

QUESTIONS = [
    ('What does a red octagonal sign mean?', ['Stop', 'Yield', 'Caution', 'No entry'], 'Stop', ['traffic-signs', 'easy']),
    ('What is the proper hand position on the steering wheel?', ['10 and 2', '9 and 3', '8 and 4', '12 and 6'], '9 and 3', ['vehicle-control', 'easy']),
    ('When should you check your mirrors?', ['Only when changing lanes', 'Every 5-8 seconds', 'Once per minute', 'Only when backing up'], 'Every 5-8 seconds', ['defensive-driving', 'medium']),
    ('What should you do at a yellow traffic light?', ['Speed up to get through', 'Stop if safe to do so', 'Always stop immediately', 'Honk your horn'], 'Stop if safe to do so', ['traffic-signs', 'medium']),
    ('What is the minimum following distance in good conditions?', ['1 second', '2 seconds', '3 seconds', '5 seconds'], '3 seconds', ['defensive-driving', 'easy']),
    ('When parallel parking, you should be how far from the curb?', ['6 inches', '12 inches', '18 inches', '24 inches'], '6 inches', ['parking', 'medium']),
]


def seed(storage: DatabaseStorage) -> bool:
    """Insert the sample data. Returns False when the database was already seeded."""
    if storage.get_user_by_email(ADMIN_EMAIL) is not None:
        logger.info('Seed data already present, skipping')
        return False

    password = hash_password(SEED_PASSWORD)
    users = {data['email']: storage.create_user(password=password, **data) for data in USERS}
    instructors = [user for user in users.values() if user.role == 'instructor']
    student = users['alice.johnson@email.com']

    questions = [
        storage.create_question(
            question_text=text,
            type='single_choice',
            choices=[{'label': label, 'is_correct': label == correct} for label in labels],
            tags=tags,
        )
        for text, labels, correct, tags in QUESTIONS
    ]

    random_template = storage.create_test_template(
        name='Beginner Course Final Exam',
        description='Random questions covering the beginner course',
        mode='random',
        question_count=5,
        randomize_questions=True,
        passing_percentage=80,
    )
    manual_template = storage.create_test_template(
        name='Advanced Driving Final Exam',
        description='Fixed questions on defensive driving',
        mode='manual',
        passing_percentage=85,
    )
    for order_index, question in enumerate(questions[2:5]):
        storage.add_question_to_test(manual_template.id, question.id, order_index)

    courses = []
    first_topics = []
    for course_data in COURSES:
        course = storage.create_course(
            name=course_data['name'],
            description=course_data['description'],
            category=course_data['category'],
            price=course_data['price'],
        )
        courses.append(course)
        for topic_index, (topic_name, topic_type, posts) in enumerate(course_data['topics']):
            topic = storage.create_topic(course_id=course.id, name=topic_name, type=topic_type, order_index=topic_index)
            if topic_index == 0:
                first_topics.append(topic)
            for post_index, (title, content) in enumerate(posts):
                storage.create_post(topic_id=topic.id, title=title, content=content, order_index=post_index)

    storage.add_completion_test(courses[0].id, random_template.id)
    storage.add_completion_test(courses[1].id, manual_template.id)

    storage.create_topic_assessment(
        topic_id=first_topics[0].id,
        name='Road Signs Quiz',
        mode='manual',
        passing_percentage=70,
        status='published',
        question_ids=[questions[0].id, questions[3].id],
    )

    next_week = (datetime.now() + timedelta(days=7)).replace(hour=10, minute=0, second=0, microsecond=0)
    for index, (course, topic) in enumerate(zip(courses[:2], first_topics[:2])):
        start = next_week + timedelta(days=7 * index)
        storage.create_schedule(
            course_id=course.id,
            topic_id=topic.id,
            instructor_id=instructors[index % len(instructors)].id,
            title=f'{topic.name} Session',
            start_time=start,
            end_time=start + timedelta(hours=2),
            location='Classroom A',
            capacity=12,
        )

    storage.create_enrollment(courses[0].id, student.id)
    logger.info('Seeded %s users, %s courses and %s questions', len(users), len(courses), len(questions))
    return True


def main() -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    init_db()
    db = SessionLocal()
    try:
        seed(DatabaseStorage(db))
    finally:
        db.close()


if __name__ == '__main__':
    main()
