from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.models.friendship import FriendshipStatus
from steam_social.schemas import UserOut
from steam_social.services import friendships as friendship_service

router = APIRouter()


class FriendRequestIn(BaseModel):
    requester_id: int
    addressee_id: int


class FriendshipActionIn(BaseModel):
    acting_user_id: int


class BlockIn(BaseModel):
    blocker_id: int
    blocked_id: int


class FriendshipOut(BaseModel):
    id: int
    requester_id: int
    addressee_id: int
    status: FriendshipStatus
    created_at: datetime | None
    updated_at: datetime | None

    class Config:
        from_attributes = True


class FriendshipStatusOut(BaseModel):
    status: FriendshipStatus | None


class FriendCountOut(BaseModel):
    user_id: int
    friend_count: int


@router.post("/friendships/requests", response_model=FriendshipOut, status_code=201)
def send_request(payload: FriendRequestIn, db: Session = Depends(get_db)):
    return friendship_service.send_request(db, payload.requester_id, payload.addressee_id)


@router.post("/friendships/{friendship_id}/accept", response_model=FriendshipOut)
def accept_request(friendship_id: int, payload: FriendshipActionIn, db: Session = Depends(get_db)):
    return friendship_service.accept(db, friendship_id, payload.acting_user_id)


@router.post("/friendships/{friendship_id}/decline", response_model=FriendshipOut)
def decline_request(friendship_id: int, payload: FriendshipActionIn, db: Session = Depends(get_db)):
    return friendship_service.decline(db, friendship_id, payload.acting_user_id)


@router.post("/friendships/block", response_model=FriendshipOut)
def block_user(payload: BlockIn, db: Session = Depends(get_db)):
    return friendship_service.block(db, payload.blocker_id, payload.blocked_id)


@router.delete("/friendships/{user_id}/{other_user_id}")
def remove_friendship(user_id: int, other_user_id: int, db: Session = Depends(get_db)):
    friendship_service.remove(db, user_id, other_user_id)
    return {"ok": True}


@router.post("/friendships/cleanup")
def cleanup_friendships(max_age_days: int = Query(30, ge=0), db: Session = Depends(get_db)):
    return {"removed": friendship_service.cleanup(db, max_age_days)}


@router.get("/friendships/leaderboard", response_model=list[FriendCountOut])
def friend_leaderboard(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    return [
        FriendCountOut(user_id=uid, friend_count=n)
        for uid, n in friendship_service.users_with_most_friends(db, limit)
    ]


@router.get("/friendships/{friendship_id}", response_model=FriendshipOut)
def get_friendship(friendship_id: int, db: Session = Depends(get_db)):
    return friendship_service.get_friendship(db, friendship_id)


@router.get("/friendships/users/{user_id}/friends", response_model=list[UserOut])
def list_friends(user_id: int, db: Session = Depends(get_db)):
    return friendship_service.find_friends(db, user_id)


@router.get("/friendships/users/{user_id}/friends/ids", response_model=list[int])
def list_friend_ids(user_id: int, db: Session = Depends(get_db)):
    return friendship_service.find_accepted_friend_ids(db, user_id)


@router.get("/friendships/users/{user_id}/friends/requests/received", response_model=list[FriendshipOut])
def pending_received(user_id: int, db: Session = Depends(get_db)):
    return friendship_service.find_pending_received(db, user_id)


@router.get("/friendships/users/{user_id}/friends/requests/sent", response_model=list[FriendshipOut])
def pending_sent(user_id: int, db: Session = Depends(get_db)):
    return friendship_service.find_pending_sent(db, user_id)


@router.get("/friendships/users/{user_id}/friendships", response_model=list[FriendshipOut])
def all_friendships(
    user_id: int,
    status: FriendshipStatus | None = None,
    db: Session = Depends(get_db),
):
    if status is None:
        return friendship_service.find_all_for_user(db, user_id)
    return friendship_service.find_by_status(db, user_id, status)


@router.get("/friendships/users/{user_id}/friends/stats")
def friendship_stats(user_id: int, db: Session = Depends(get_db)):
    return friendship_service.get_friendship_stats(db, user_id)


@router.get("/friendships/users/{user_id}/friends/mutual/{other_user_id}", response_model=list[int])
def mutual_friends(user_id: int, other_user_id: int, db: Session = Depends(get_db)):
    return friendship_service.find_mutual_friend_ids(db, user_id, other_user_id)


@router.get("/friendships/users/{user_id}/friends/status/{other_user_id}", response_model=FriendshipStatusOut)
def friendship_status(user_id: int, other_user_id: int, db: Session = Depends(get_db)):
    return FriendshipStatusOut(status=friendship_service.get_status(db, user_id, other_user_id))


@router.get("/friendships/users/{user_id}/friends/check/{other_user_id}")
def check_friendship(user_id: int, other_user_id: int, db: Session = Depends(get_db)):
    return {
        "exists": friendship_service.exists_between(db, user_id, other_user_id),
        "are_friends": friendship_service.are_friends(db, user_id, other_user_id),
        "can_send_request": friendship_service.can_send_request(db, user_id, other_user_id),
    }
