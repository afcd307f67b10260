from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from app.models.schema.db_config import Databases


def _model(db: str):
    return getattr(Databases, db)


def _conditions(model, filters: dict) -> list:
    conditions = []
    for field, value in filters.items():
        if not hasattr(model, field):
            raise ValueError(f"{model.__name__} has no column '{field}'")
        column = getattr(model, field)
        if value is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == value)
    return conditions


def add_record(session: Session, db: str, **kwargs):
    instance = _model(db)(**kwargs)
    session.add(instance)
    session.flush()
    return instance


def select_records(
    session: Session, db: str, *, order_by=None, descending=False, limit=None, **filters
):
    model = _model(db)
    stmt = select(model).where(*_conditions(model, filters))
    if order_by is not None:
        column = getattr(model, order_by)
        stmt = stmt.order_by(column.desc() if descending else column)
    if limit is not None:
        stmt = stmt.limit(limit)
    return session.execute(stmt).scalars().all()


def select_one_or_none(session: Session, db: str, **filters):
    model = _model(db)
    return session.execute(
        select(model).where(and_(*_conditions(model, filters)))
    ).scalar_one_or_none()


def delete_records(session: Session, db: str, **filters) -> int:
    model = _model(db)
    result = session.execute(delete(model).where(*_conditions(model, filters)))
    return result.rowcount
