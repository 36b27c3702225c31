# backend/api/trade_api.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.common import get_actor_id, parse_datetime, pick, read_json, to_http
from models.trade import ChainLink
from services.errors import TradeError

router = APIRouter(prefix="/trades")


def _engine(request: Request):
    return request.app.state.trade_engine


# GET —— 获取我的交易列表


@router.get("")
async def get_trade_list(
    request: Request,
    status: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    actor_id: str = Depends(get_actor_id),
):
    try:
        result = _engine(request).list_trades(actor_id, status=status, role=role, page=page, limit=limit)
    except TradeError as e:
        raise to_http(e)

    result["trades"] = [trade.to_dict() for trade in result["trades"]]
    return result


# PROPOSE —— 发起直接交易


@router.post("/propose")
async def propose_trade(request: Request, actor_id: str = Depends(get_actor_id)):
    """
    前端必须提供：
    - receiverId
    - proposerListingId
    - receiverListingId
    """
    data = await read_json(request)

    required_fields = {
        "receiverId": pick(data, "receiverId", "receiver_id"),
        "proposerListingId": pick(data, "proposerListingId", "proposer_listing_id"),
        "receiverListingId": pick(data, "receiverListingId", "receiver_listing_id"),
    }

    for field, value in required_fields.items():
        if value is None:
            raise HTTPException(
                status_code=400,
                detail=f"Missing field: {field}",
            )

    try:
        trade = _engine(request).propose(
            proposer_id=actor_id,
            receiver_id=required_fields["receiverId"],
            proposer_listing_id=required_fields["proposerListingId"],
            receiver_listing_id=required_fields["receiverListingId"],
            trade_coin_amount=pick(data, "tradeCoinAmount", "trade_coin_amount", 0),
            notes=data.get("notes"),
        )
    except TradeError as e:
        raise to_http(e)

    return JSONResponse(
        status_code=201,
        content={"message": "Trade proposed successfully", "trade": trade.to_dict()},
    )


# MULTI-PARTY —— 发起多方交易


@router.post("/multi-party")
async def propose_multi_party_trade(request: Request, actor_id: str = Depends(get_actor_id)):
    """
    chain / tradeChain: [{userId, listingId, declaredReceiverId | receiverId}, ...]
    """
    data = await read_json(request)

    raw_chain = data.get("chain", data.get("tradeChain"))
    if not isinstance(raw_chain, list) or not all(isinstance(item, dict) for item in raw_chain):
        raise HTTPException(status_code=400, detail="Missing field: chain")

    chain = [ChainLink.from_dict(item) for item in raw_chain]

    try:
        trade = _engine(request).propose_chain(actor_id, chain, notes=data.get("notes"))
    except TradeError as e:
        raise to_http(e)

    return JSONResponse(
        status_code=201,
        content={"message": "Multi-party trade proposed successfully", "trade": trade.to_dict()},
    )


# MATCH —— 寻找可交换物品


@router.post("/match")
async def find_trade_matches(request: Request, actor_id: str = Depends(get_actor_id)):
    data = await read_json(request)

    listing_id = pick(data, "listingId", "listing_id")
    if not listing_id:
        raise HTTPException(status_code=400, detail="Missing field: listingId")

    try:
        result = _engine(request).find_matches(
            listing_id,
            actor_id,
            category=data.get("category"),
            min_value=pick(data, "minValue", "min_value"),
            max_value=pick(data, "maxValue", "max_value"),
        )
    except TradeError as e:
        raise to_http(e)

    return {
        "userListing": result["userListing"].to_dict(),
        "potentialMatches": [listing.to_dict() for listing in result["potentialMatches"]],
    }


# GET —— 获取单个交易 /id


@router.get("/{trade_id}")
async def get_single_trade(trade_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    try:
        trade = _engine(request).get_trade(trade_id, actor_id)
    except TradeError as e:
        raise to_http(e)

    return {"trade": trade.to_dict()}


# ACCEPT —— 接收人接受


@router.put("/{trade_id}/accept")
async def accept_trade(trade_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    data = await read_json(request, allow_empty=True)

    # 只接受 JSON 布尔值，"false" 之类的字符串直接 400
    is_escrow = pick(data, "isEscrow", "is_escrow")
    if is_escrow is None:
        is_escrow = False
    if not isinstance(is_escrow, bool):
        raise HTTPException(status_code=400, detail="isEscrow must be a boolean")

    try:
        trade = _engine(request).accept(
            trade_id,
            actor_id,
            meetup_location=pick(data, "meetupLocation", "meetup_location"),
            meetup_time=parse_datetime(pick(data, "meetupTime", "meetup_time"), "meetupTime"),
            is_escrow=is_escrow,
        )
    except TradeError as e:
        raise to_http(e)

    return {"message": "Trade accepted successfully", "trade": trade.to_dict()}


# REJECT —— 参与者拒绝


@router.put("/{trade_id}/reject")
async def reject_trade(trade_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    data = await read_json(request, allow_empty=True)

    try:
        trade = _engine(request).reject(trade_id, actor_id, data.get("reason"))
    except TradeError as e:
        raise to_http(e)

    return {"message": "Trade rejected successfully", "trade": trade.to_dict()}


# CANCEL —— 发起人撤回


@router.put("/{trade_id}/cancel")
async def cancel_trade(trade_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    try:
        trade = _engine(request).cancel(trade_id, actor_id)
    except TradeError as e:
        raise to_http(e)

    return {"message": "Trade cancelled successfully", "trade": trade.to_dict()}


# COMPLETE —— 完成交易


@router.put("/{trade_id}/complete")
async def complete_trade(trade_id: str, request: Request, actor_id: str = Depends(get_actor_id)):
    try:
        trade = _engine(request).complete(trade_id, actor_id)
    except TradeError as e:
        raise to_http(e)

    return {"message": "Trade completed successfully", "trade": trade.to_dict()}
