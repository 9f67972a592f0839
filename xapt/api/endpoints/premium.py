# xapt/api/endpoints/premium.py
"""
Paid endpoints. Payment is enforced by PaymentGateMiddleware before a
request reaches any handler here; handlers only produce content.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter
import logging

from xapt.api.models.premium import AnalysisRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/premium/data")
async def get_premium_data():
    """ Premium market data. """
    logger.info("Premium data accessed")
    return {
        "message": "Premium data accessed successfully!",
        "data": {
            "marketAnalysis": {
                "trend": "bullish",
                "confidence": 0.85,
                "recommendations": ["Buy APT", "Hold USDC", "Monitor BTC"],
            },
            "userStats": {
                "totalTransactions": 156,
                "averageAmount": 2.5,
                "successRate": 0.98,
            },
            "timestamp": _now(),
        },
    }


@router.post("/premium/analysis")
async def run_premium_analysis(body: Optional[AnalysisRequest] = None):
    """ Premium analysis of a free-text query. """
    query = body.query if body else None
    logger.info(f"Premium analysis requested: {query!r}")
    return {
        "message": "Premium analysis completed!",
        "query": query,
        "analysis": {
            "sentiment": "positive",
            "score": 0.78,
            "insights": [
                "Strong market fundamentals",
                "Technical indicators favorable",
                "Risk level: moderate",
            ],
            "timestamp": _now(),
        },
    }


@router.get("/premium/reports")
async def get_premium_reports():
    """ List of downloadable premium reports. """
    return {
        "message": "Premium reports generated!",
        "reports": [
            {
                "id": "report-001",
                "title": "Market Analysis",
                "summary": "Comprehensive analysis of market performance",
            },
            {
                "id": "report-002",
                "title": "Risk Assessment Report",
                "summary": "Detailed risk analysis and mitigation strategies",
            },
            {
                "id": "report-003",
                "title": "Portfolio Optimization Guide",
                "summary": "Advanced portfolio optimization techniques",
            },
        ],
        "timestamp": _now(),
    }


@router.get("/subscription/feed")
async def get_subscription_feed():
    """ Real-time subscription feed. """
    now = datetime.now(timezone.utc)
    return {
        "message": "Real-time subscription feed!",
        "feed": [
            {
                "id": "feed-001",
                "type": "market_update",
                "title": "APT Price Surge",
                "content": "APT has increased by 15% in the last hour",
                "timestamp": now.isoformat(),
            },
            {
                "id": "feed-002",
                "type": "news_alert",
                "title": "New DeFi Protocol Launch",
                "content": "Major DeFi protocol launching on Aptos",
                "timestamp": now.isoformat(),
            },
        ],
        "nextUpdate": (now + timedelta(minutes=5)).isoformat(),
    }
