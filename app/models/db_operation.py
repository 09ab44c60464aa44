from sqlalchemy import and_, delete, select, update
from sqlalchemy.orm import Session

from app.models.schema.db_config import Databases

_OPERATORS = {
    ">": lambda column, value: column > value,
    ">=": lambda column, value: column >= value,
    "<": lambda column, value: column < value,
    "<=": lambda column, value: column <= value,
    "=": lambda column, value: column == value,
    "!=": lambda column, value: column != value,
}


def _conditions(model, filters: dict) -> list:
    conditions = []
    for field, value in filters.items():
        if not hasattr(model, field):
            raise ValueError(f"{model.__name__} has no column '{field}'")
        column = getattr(model, field)
        # A tuple is a complex condition, e.g. ("<", some_value).
        if isinstance(value, tuple):
            operator, condition_value = value
            if operator not in _OPERATORS:
                raise ValueError(f"Unsupported operator '{operator}'")
            conditions.append(_OPERATORS[operator](column, condition_value))
        elif value is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == value)
    return conditions


def _select_one_or_none(session: Session, db: str, **filters):
    model = getattr(Databases, db)
    return session.execute(
        select(model).where(and_(*_conditions(model, filters)))
    ).scalar_one_or_none()


def _add_record(session: Session, db: str, **kwargs):
    model = getattr(Databases, db)
    instance = model(**kwargs)
    session.add(instance)
    session.flush()
    return instance


def _delete_records(session: Session, db: str, **filters) -> int:
    """Delete matching rows; the row count tells the caller whether its guard held."""
    model = getattr(Databases, db)
    result = session.execute(
        delete(model)
        .where(*_conditions(model, filters))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _update_records(session: Session, db: str, *, values: dict, **filters) -> int:
    """Single-statement conditional update (compare-and-swap on the filters)."""
    model = getattr(Databases, db)
    result = session.execute(
        update(model)
        .where(*_conditions(model, filters))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
