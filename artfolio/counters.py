"""
Denormalized counter maintenance.

All follower/artwork/like/view counters are changed here and nowhere else.
Each bump is a single ``UPDATE ... SET col = col + delta`` evaluated by the
database, so concurrent likes or follows never lose updates, and it is issued
on the caller's session so it commits in the same transaction as the row
mutation that caused it.
"""

import logging

from sqlalchemy import case, update
from sqlmodel import Session, SQLModel, select

logger = logging.getLogger(__name__)


def bump(session: Session, model: type[SQLModel], row_id: str, **deltas: int) -> int:
    """
    Add ``deltas`` to the named counter columns of one row.

    Counters are clamped at zero. Returns the number of rows matched
    (0 when ``row_id`` does not exist).
    """
    deltas = {name: delta for name, delta in deltas.items() if delta}
    if not deltas:
        return 0

    values = {}
    for name, delta in deltas.items():
        column = getattr(model, name)
        values[name] = case((column + delta < 0, 0), else_=column + delta)

    stmt = update(model).where(model.id == row_id).values(**values)
    result = session.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        logger.warning("Counter bump on missing %s %s: %s", model.__name__, row_id, deltas)
    return result.rowcount


def read(session: Session, model: type[SQLModel], row_id: str, name: str) -> int:
    """Fetch the current committed-or-pending value of one counter."""
    value = session.exec(select(getattr(model, name)).where(model.id == row_id)).first()
    return int(value or 0)
