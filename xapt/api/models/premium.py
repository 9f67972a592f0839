# xapt/api/models/premium.py
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class AnalysisRequest(BaseModel):
    """
    Request model for the premium analysis endpoint.
    """
    query: Optional[str] = None


class InfoResponse(BaseModel):
    """
    Response model for the public info endpoint.
    """
    message: str
    version: str
    network: str
    features: List[str]
    protectedPaths: Dict[str, Dict[str, Any]]
