"""Database session helpers."""

from sqlalchemy.orm import Session


def commit_and_refresh(db: Session, *instances) -> None:
    """
    Commit the transaction, then reload each given instance from the database.

    Every session/conversation write in the agent is durable before the next
    step runs; None entries are skipped.
    """
    db.commit()
    for obj in instances:
        if obj is not None:
            db.refresh(obj)
