"""
Dependencies and guards for FastAPI endpoints
"""
from typing import Generator
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.db.session import SessionLocal
from app.core.config import settings
from app.core.security import employee_id_from_token
from app.models.employee import Employee
from app.services.role_resolution_service import holds_any_role


security = HTTPBearer()


def get_db() -> Generator:
    """One session per request, closed when the response is sent"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Employee:
    """
    Resolve the acting employee from the bearer token

    The employee must exist in the directory and be active; an inactive
    employee can neither submit nor decide requests.
    """
    try:
        employee_id = employee_id_from_token(credentials.credentials)
    except (ValueError, TypeError):
        raise _unauthorized("Invalid authentication credentials")

    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if employee is None:
        raise _unauthorized("User not found")
    if not employee.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return employee


def require_admin(current_user: Employee = Depends(get_current_user), db: Session = Depends(get_db)) -> Employee:
    """
    Allow only holders of an administrative role (directly or by inheritance).
    """
    if not holds_any_role(db, current_user, settings.get_admin_roles()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Administrative role required."
        )
    return current_user


def require_incidence_viewer(current_user: Employee = Depends(get_current_user), db: Session = Depends(get_db)) -> Employee:
    """Payroll role holders and administrators."""
    roles = settings.get_incidence_view_roles() + settings.get_admin_roles()
    if not holds_any_role(db, current_user, roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Payroll role required."
        )
    return current_user
