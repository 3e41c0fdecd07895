"""Maps a federated login onto a user row."""

import logging

from drivingschool.models.user import ROLES, User

logger = logging.getLogger(__name__)


def _claim(claims: dict, *names: str):
    for name in names:
        value = claims.get(name)
        if value:
            return value
    return None


def merge_oidc_identity(storage, claims: dict) -> User:
    """Find or create the user for an OIDC login.

    An existing federated user keeps its id and role. A local account with the
    same email is linked to the subject and keeps its id, role and password.
    Anyone else becomes a new user whose role comes from the claims when valid.
    """
    subject = claims.get("sub")
    if not subject:
        raise ValueError("OIDC claims are missing the subject.")

    email = _claim(claims, "email")
    profile = {
        "first_name": _claim(claims, "first_name", "given_name"),
        "last_name": _claim(claims, "last_name", "family_name"),
        "profile_image_url": _claim(claims, "profile_image_url", "picture"),
    }
    profile = {key: value for key, value in profile.items() if value is not None}

    user = storage.get_user_by_oidc_subject(subject)
    if user is not None:
        updates = dict(profile)
        if email and email != user.email and storage.get_user_by_email(email) is None:
            updates["email"] = email
        logger.info("OIDC login for existing federated user %s", user.id)
        return storage.update_user(user, updates) if updates else user

    user = storage.get_user_by_email(email) if email else None
    if user is not None:
        logger.info("Linking OIDC subject to existing account %s", user.id)
        return storage.update_user(user, {**profile, "oidc_subject": subject})

    role = claims.get("role")
    if role not in ROLES:
        role = "student"
    user = storage.create_user(email=email, oidc_subject=subject, role=role, **profile)
    logger.info("Created user %s from OIDC login with role %s", user.id, role)
    return user
