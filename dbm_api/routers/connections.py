from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from typing import List

from ..models import Connection, Schedule, utcnow
from ..schemas import ConnectionCreate, ConnectionDetail, BackupResult
from ..dependencies import get_session, get_backup_scheduler, get_executor
from ..executor import BackupExecutor
from ..scheduler import BackupScheduler
from ..logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _get_active_connection(session: Session, connection_id: str) -> Connection:
    connection = session.get(Connection, connection_id)
    if not connection or not connection.is_active:
        logger.warning(f"Connection with id {connection_id} not found.")
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


@router.post("", response_model=ConnectionDetail)
def register_connection(conn: ConnectionCreate, session: Session = Depends(get_session)):
    logger.info("Registering a new connection.")
    # Exclude password from debug log
    logger.debug(f"Received connection data: {conn.model_dump(exclude={'password'})}")

    new_conn = Connection.model_validate(conn)
    session.add(new_conn)
    session.commit()
    session.refresh(new_conn)
    logger.info(f"Successfully registered connection with id: {new_conn.id}")
    return new_conn


@router.get("", response_model=List[ConnectionDetail])
def list_connections(session: Session = Depends(get_session)):
    return session.exec(select(Connection).where(Connection.is_active == True)).all()  # noqa: E712


@router.get("/{connection_id}", response_model=ConnectionDetail)
def get_connection(connection_id: str, session: Session = Depends(get_session)):
    return _get_active_connection(session, connection_id)


@router.put("/{connection_id}", response_model=ConnectionDetail)
def update_connection(connection_id: str, conn: ConnectionCreate, session: Session = Depends(get_session)):
    connection = _get_active_connection(session, connection_id)
    logger.debug(f"Updating connection {connection_id}: {conn.model_dump(exclude={'password'})}")

    # A detected version is kept unless the caller sets one
    for key, value in conn.model_dump(exclude_unset=True).items():
        setattr(connection, key, value)
    connection.updated_at = utcnow()
    session.add(connection)
    session.commit()
    session.refresh(connection)
    logger.info(f"Updated connection {connection_id}.")
    return connection


@router.delete("/{connection_id}", status_code=204)
def delete_connection(
    connection_id: str,
    session: Session = Depends(get_session),
    backup_scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    connection = _get_active_connection(session, connection_id)

    schedules = session.exec(select(Schedule).where(Schedule.connection_id == connection_id)).all()
    for schedule in schedules:
        backup_scheduler.cancel_schedule(schedule.id)

    connection.is_active = False
    connection.updated_at = utcnow()
    session.add(connection)
    session.commit()
    logger.info(f"Deactivated connection {connection_id} and {len(schedules)} schedule(s).")
    return


@router.post("/{connection_id}/test", response_model=BackupResult)
def test_connection(
    connection_id: str,
    session: Session = Depends(get_session),
    executor: BackupExecutor = Depends(get_executor),
):
    connection = _get_active_connection(session, connection_id)
    result = executor.test_backup(connection)

    # Picks the postgres:<version> image used for later dumps
    if result.server_version and result.server_version != connection.postgresql_version:
        logger.info(f"Updating connection {connection_id} to PostgreSQL {result.server_version}.")
        connection.postgresql_version = result.server_version
        connection.updated_at = utcnow()
        session.add(connection)
        session.commit()

    # The artifact is gone already
    return result.model_copy(update={"file_path": None})
