"""
Create a test user with a family (admin + child) for manual API checks
"""
from expense_tracker.infrastructure.db.session import get_db
from expense_tracker.infrastructure.db.models import User
from expense_tracker.application.families import CreateFamilyUseCase, AddFamilyMemberUseCase

db = next(get_db())


def get_or_create(email: str, name: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        print(f"User already exists: {email} (ID: {user.id})")
        return user
    user = User(email=email, name=name)
    db.add(user)
    db.commit()
    print(f"Created user: {email} (ID: {user.id})")
    return user


try:
    parent = get_or_create("test@example.com", "Test Parent")
    child = get_or_create("child@example.com", "Test Child")

    family_id = CreateFamilyUseCase(db).execute(parent.id, "Test Family")
    AddFamilyMemberUseCase(db).execute(family_id, child.id, "child", actor_user_id=parent.id)
    print(f"Created family ID: {family_id}")
except ValueError as e:
    print(f"Family not created: {e}")
finally:
    db.close()
