# routes/sync.py

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from models.roll_log import RollLog
from rollsync.config import validate_settings
from rollsync.errors import SettingsError
from rollsync.sync_manager import SyncEngine
from routes.deps import get_db, get_engine
from schemas.actor import Actor
from schemas.api import DiceModeUpdate, MappingUpdate, RollLogView, SyncStatus

logger = logging.getLogger(__name__)

sync_router = APIRouter()


@sync_router.get("/sync/status", response_model=SyncStatus)
async def sync_status(engine: SyncEngine = Depends(get_engine)):
    return SyncStatus(
        enabled=engine.settings.enabled,
        connected=engine.connected,
        pending_subscriptions=engine.bridge.subscription_count,
        cached_rolls=engine.bridge.cached_count,
        processed_messages=engine.deduplicator.processed_count,
        pending_prompts=len(engine.broker.pending()),
    )


@sync_router.post("/sync/connect")
async def sync_connect(engine: SyncEngine = Depends(get_engine)):
    """Open the remote connection; 400 lists any missing settings."""
    if not await engine.connect():
        validation = validate_settings(engine.settings)
        raise SettingsError(validation.missing, validation.message)
    return {"status": "connecting"}


@sync_router.post("/sync/disconnect")
async def sync_disconnect(engine: SyncEngine = Depends(get_engine)):
    await engine.disconnect()
    return {"status": "disconnected"}


@sync_router.get("/actors", response_model=List[Actor])
async def list_actors(engine: SyncEngine = Depends(get_engine)):
    return engine.actors.all()


@sync_router.put("/actors/{actor_id}/dice-mode", response_model=Actor)
async def set_dice_mode(actor_id: str, update: DiceModeUpdate, engine: SyncEngine = Depends(get_engine)):
    actor = engine.actors.set_dice_mode(actor_id, update.dice_mode)
    if actor is None:
        raise HTTPException(status_code=404, detail="Actor not found")
    return actor


@sync_router.put("/actors/{actor_id}/mapping", response_model=Actor)
async def set_mapping(actor_id: str, update: MappingUpdate, engine: SyncEngine = Depends(get_engine)):
    if update.remote_id:
        actor = engine.actors.set_mapping(actor_id, update.remote_id)
    else:
        actor = engine.actors.remove_mapping(actor_id)
    if actor is None:
        raise HTTPException(status_code=404, detail="Actor not found")
    return actor


@sync_router.get("/rolls", response_model=List[RollLogView])
def list_rolls(
    actor: str = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent journaled rolls first."""
    if db is None:
        return []
    query = db.query(RollLog)
    if actor:
        query = query.filter(RollLog.actor == actor)
    return query.order_by(RollLog.id.desc()).limit(limit).all()
