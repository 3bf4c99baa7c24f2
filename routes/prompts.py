# routes/prompts.py

from typing import List

from fastapi import APIRouter, Depends

from rollsync.prompts import PendingPrompt
from rollsync.sync_manager import SyncEngine
from routes.deps import get_engine
from schemas.api import DieSpec, PromptSubmission, PromptView

prompts_router = APIRouter(prefix="/prompts")


def to_view(prompt: PendingPrompt) -> PromptView:
    return PromptView(
        id=prompt.id,
        kind=prompt.kind,
        status=prompt.status,
        formula=prompt.formula,
        dice=[DieSpec(faces=slot.faces, number=slot.number) for slot in prompt.dice],
        values=prompt.values,
        actor_id=prompt.actor_id,
    )


@prompts_router.get("", response_model=List[PromptView])
async def list_prompts(engine: SyncEngine = Depends(get_engine)):
    return [to_view(p) for p in engine.broker.pending()]


@prompts_router.post("/{prompt_id}/submit", response_model=PromptView)
async def submit_prompt(prompt_id: str, submission: PromptSubmission, engine: SyncEngine = Depends(get_engine)):
    """Resolve a prompt; values outside a die's range are clamped, not rejected."""
    return to_view(engine.broker.submit(prompt_id, submission.values))


@prompts_router.post("/{prompt_id}/cancel", response_model=PromptView)
async def cancel_prompt(prompt_id: str, engine: SyncEngine = Depends(get_engine)):
    return to_view(engine.broker.cancel(prompt_id))
