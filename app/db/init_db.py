"""
Database initialization helpers
Seed the workflow configuration tables with defaults
"""
import logging
from typing import List, Tuple

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.absence_request import QuantityUnit, RequestTypeConfig
from app.models.role import (
    RoleInheritance,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_GENERAL_MANAGER,
    ROLE_HR,
    ROLE_HR_AND_PR,
    ROLE_HR_BLUE_GRAY,
    ROLE_HR_WHITE,
    ROLE_MANAGER,
    ROLE_PAYROLL,
    ROLE_SUP_AND_GM,
    ROLE_SUPERVISOR,
)
from app.services.role_resolution_service import add_inheritance_edge

logger = logging.getLogger(__name__)

# (code, name, unit, requires_shift). hr_mandatory stays off until product decides per type.
DEFAULT_REQUEST_TYPES: List[Tuple[str, str, QuantityUnit, bool]] = [
    ("PAID_LEAVE", "Permiso con goce de sueldo", QuantityUnit.DAYS, False),
    ("UNPAID_LEAVE", "Permiso sin goce de sueldo", QuantityUnit.DAYS, False),
    ("VACATION", "Vacaciones", QuantityUnit.DAYS, False),
    ("LATE_ENTRY", "Entrada tarde", QuantityUnit.HOURS, False),
    ("EARLY_EXIT", "Salida temprano", QuantityUnit.HOURS, False),
    ("SHIFT_CHANGE", "Cambio de turno", QuantityUnit.DAYS, True),
    ("TIME_FOR_TIME", "Tiempo por tiempo", QuantityUnit.HOURS, False),
    ("SICK_LEAVE", "Incapacidad", QuantityUnit.DAYS, False),
    ("PERSONAL", "Asunto personal", QuantityUnit.DAYS, False),
    ("OTHER", "Otro", QuantityUnit.DAYS, False),
]

# (child, parent, priority): holders of child also carry parent's permissions
DEFAULT_ROLE_INHERITANCE: List[Tuple[str, str, int]] = [
    (ROLE_ADMIN, ROLE_HR, 100),
    (ROLE_ADMIN, ROLE_MANAGER, 90),
    (ROLE_ADMIN, ROLE_PAYROLL, 80),
    (ROLE_ADMIN, ROLE_SUPERVISOR, 70),
    (ROLE_HR_BLUE_GRAY, ROLE_HR, 50),
    (ROLE_HR_WHITE, ROLE_HR, 50),
    (ROLE_HR_AND_PR, ROLE_HR, 60),
    (ROLE_HR_AND_PR, ROLE_PAYROLL, 60),
    (ROLE_MANAGER, ROLE_SUPERVISOR, 40),
    (ROLE_GENERAL_MANAGER, ROLE_MANAGER, 50),
    (ROLE_SUP_AND_GM, ROLE_SUPERVISOR, 50),
    (ROLE_SUP_AND_GM, ROLE_MANAGER, 50),
    (ROLE_PAYROLL, ROLE_ACCOUNTANT, 30),
]


def seed_request_types(db: Session) -> int:
    """Insert missing request types. Existing rows are left unchanged. Returns rows added."""
    added = 0
    for code, name, unit, requires_shift in DEFAULT_REQUEST_TYPES:
        if db.query(RequestTypeConfig).filter(RequestTypeConfig.code == code).first():
            continue
        db.add(RequestTypeConfig(
            code=code,
            name=name,
            unit=unit.value,
            hr_mandatory=False,
            requires_shift=requires_shift,
            required_fields=[],
            active=True,
        ))
        added += 1
    db.commit()
    logger.info("Seeded %d request type(s)", added)
    return added


def seed_role_inheritance(db: Session) -> int:
    """Insert missing default inheritance edges through the validated helper. Returns edges added."""
    added = 0
    for child, parent, priority in DEFAULT_ROLE_INHERITANCE:
        exists = db.query(RoleInheritance).filter(
            RoleInheritance.child_role == child,
            RoleInheritance.parent_role == parent,
        ).first()
        if exists:
            continue
        try:
            add_inheritance_edge(db, child, parent, priority=priority, notes="default")
            added += 1
        except ValidationError as e:
            db.rollback()
            logger.warning("Skipped inheritance %s -> %s: %s", child, parent, e.detail)
    logger.info("Seeded %d role inheritance edge(s)", added)
    return added


def init_db(db: Session) -> None:
    """
    Seed workflow configuration if missing

    This is a helper function and should NOT be auto-run on startup.
    Call manually when needed for initial setup.
    """
    seed_request_types(db)
    seed_role_inheritance(db)
