from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.schemas import (
    CommonGamesOut,
    DashboardData,
    GameRecommendation,
    UserComparison,
    UserInsights,
    UserStatistics,
    UserStatsSummary,
)
from steam_social.services import analytics as analytics_service
from steam_social.services import dashboard as dashboard_service
from steam_social.services import recommendations as recommendation_service
from steam_social.services import statistics as statistics_service

router = APIRouter()


class BulkStatsIn(BaseModel):
    user_ids: list[int] = Field(max_length=100)


@router.get("/analytics/dashboard/{user_id}", response_model=DashboardData)
def get_dashboard(user_id: int, db: Session = Depends(get_db)):
    return dashboard_service.build_dashboard(db, user_id)


@router.get("/analytics/statistics/{user_id}", response_model=UserStatistics)
def get_statistics(user_id: int, db: Session = Depends(get_db)):
    return statistics_service.get_user_statistics(db, user_id)


@router.get("/analytics/common-games/{user_id}/{friend_id}", response_model=CommonGamesOut)
def get_common_games(user_id: int, friend_id: int, db: Session = Depends(get_db)):
    return analytics_service.find_common_games(db, user_id, friend_id)


@router.get("/analytics/recommendations/{user_id}", response_model=list[GameRecommendation])
def get_recommendations(user_id: int, db: Session = Depends(get_db)):
    return recommendation_service.generate_recommendations(db, user_id)


@router.get("/analytics/recommendations/{user_id}/top", response_model=list[GameRecommendation])
def get_top_recommendations(
    user_id: int, limit: int = Query(5, ge=1, le=10), db: Session = Depends(get_db)
):
    return recommendation_service.generate_recommendations(db, user_id)[:limit]


@router.get("/analytics/compare/{user_id_1}/{user_id_2}", response_model=UserComparison)
def compare_users(user_id_1: int, user_id_2: int, db: Session = Depends(get_db)):
    return analytics_service.compare_users(db, user_id_1, user_id_2)


@router.post("/analytics/bulk-stats", response_model=list[UserStatsSummary])
def bulk_stats(payload: BulkStatsIn, db: Session = Depends(get_db)):
    return analytics_service.bulk_stats(db, payload.user_ids)


@router.get("/analytics/insights/{user_id}", response_model=UserInsights)
def get_insights(user_id: int, db: Session = Depends(get_db)):
    return analytics_service.user_insights(db, user_id)
