from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from markovgen.config import settings
from markovgen.services.markov import (
    InvalidModel,
    MarkovError,
    MarkovModelRegistry,
    NoValidTransition,
    get_markov_registry,
)
from markovgen.utils.logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter(prefix="/markov", tags=["markov"])

MODEL_NAME_PATTERN = r"^[A-Za-z0-9_-]+$"

Token = Union[str, int, float]


class TrainRequest(BaseModel):
    tokens: List[Token]
    model_name: str = Field(default="default", pattern=MODEL_NAME_PATTERN)
    seed: Optional[int] = None


class NextRequest(BaseModel):
    model_name: str = Field(default="default", pattern=MODEL_NAME_PATTERN)
    count: int = Field(default=1, ge=1, le=settings.MARKOV_MAX_GENERATE)


class ResetRequest(BaseModel):
    model_name: str = Field(default="default", pattern=MODEL_NAME_PATTERN)


def _not_found(name: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"model '{name}' not found, train first")


@router.post("/train")
async def train(req: TrainRequest, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    if not req.tokens:
        raise HTTPException(status_code=400, detail="tokens is empty")
    try:
        model = registry.train(req.model_name, req.tokens, seed=req.seed)
    except InvalidModel as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "ok": True,
        "data": {
            "model": req.model_name,
            "states": len(model),
            "live_states": len(model.live_states()),
        },
    }


@router.post("/next")
async def next_tokens(req: NextRequest, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        tokens = registry.next(req.model_name, req.count)
    except KeyError:
        raise _not_found(req.model_name)
    except NoValidTransition as e:
        logger.warning(f"[Markov] '{req.model_name}' has no valid transition: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "data": {"model": req.model_name, "tokens": tokens}}


@router.post("/reset")
async def reset(req: ResetRequest, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        registry.reset(req.model_name)
    except KeyError:
        raise _not_found(req.model_name)
    return {"ok": True, "data": {"model": req.model_name, "fresh": True}}


@router.get("/models")
async def list_models(registry: MarkovModelRegistry = Depends(get_markov_registry)):
    return {"ok": True, "data": {"models": registry.names()}}


@router.get("/models/{name}")
async def export_model(name: str, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        record = registry.export(name)
    except KeyError:
        raise _not_found(name)
    return {"ok": True, "data": record}


@router.post("/models/{name}/save")
async def save_model(name: str, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        path = registry.save(name)
    except KeyError:
        raise _not_found(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MarkovError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"ok": True, "data": {"model": name, "path": str(path)}}


@router.post("/models/{name}/load")
async def load_model(name: str, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        model = registry.load(name)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"no saved model '{name}'")
    except InvalidModel as e:
        logger.error(f"[ERR] Saved model '{name}' is corrupt: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MarkovError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"ok": True, "data": {"model": name, "states": len(model)}}


@router.delete("/models/{name}")
async def delete_model(name: str, registry: MarkovModelRegistry = Depends(get_markov_registry)):
    try:
        registry.remove(name)
    except KeyError:
        raise _not_found(name)
    return {"ok": True, "data": {"model": name, "deleted": True}}
