from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import get_db

router = APIRouter(prefix='/api', tags=['health'])
logger = logging.getLogger(__name__)


@router.get('/health')
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text('SELECT 1'))
        database = 'ok'
    except SQLAlchemyError:
        logger.warning('Health check could not reach the database', exc_info=True)
        database = 'error'
    return {'status': 'ok', 'database': database}
