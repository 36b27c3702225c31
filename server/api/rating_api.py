# backend/api/rating_api.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.common import get_actor_id, pick, read_json, to_http
from services.errors import TradeError

router = APIRouter(prefix="/ratings")


def _engine(request: Request):
    return request.app.state.reputation_engine


@router.post("/{user_id}")
async def rate_user(user_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    """
    给用户评分

    前端必须提供：
    - score
    可选：comment, tradeId
    """
    data = await read_json(request)

    if "score" not in data:
        raise HTTPException(status_code=400, detail="Missing field: score")

    try:
        rating = _engine(request).rate(
            rater_id=actor_id,
            rated_user_id=user_id,
            score=data["score"],
            comment=data.get("comment"),
            # 空字符串等同于没带交易
            trade_id=pick(data, "tradeId", "trade_id") or None,
        )
    except TradeError as e:
        raise to_http(e)

    return JSONResponse(
        status_code=201,
        content={"message": "Rating submitted successfully", "rating": rating.to_dict()},
    )


@router.get("/user/{user_id}")
async def get_user_ratings(user_id: str, request: Request, page: int = 1, limit: int = 10,
                           actor_id: str = Depends(get_actor_id)):
    try:
        result = _engine(request).list_ratings(user_id, page=page, limit=limit)
    except TradeError as e:
        raise to_http(e)

    result["ratings"] = [rating.to_dict() for rating in result["ratings"]]
    return result


@router.get("/stats/{user_id}")
async def get_user_rating_stats(user_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    try:
        return _engine(request).get_stats(user_id)
    except TradeError as e:
        raise to_http(e)
