"""
Merchant analyzer - negotiation and risk verdict on the top-ranked listings.
"""
import asyncio
import json
import logging
from typing import Optional

from openai import OpenAIError
from pydantic import ValidationError

from ..errors import AIAnalysisError
from ..models.analysis import ClientProfile, MerchantAIResult
from ..models.criteria import SearchCriteria
from ..models.scoring import ScoredListing
from .llm_client import LLMClient


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an experienced used-car buyer's agent in France.
Given a buyer profile and a ranked shortlist of listings, advise the buyer.

Return a JSON object with exactly these keys:
- "recommendations": list of short actionable recommendations, best listing first
- "insights": list of market observations about the shortlist
- "negotiation_angle": one paragraph on how to approach sellers on price
- "risk_level": "low", "medium" or "high" for the shortlist as a whole
- "risk_flags": list of concrete risk indicators you noticed
- "confidence": number between 0 and 1, how sure you are given the data

Only use facts present in the input. Be concise."""


def _listing_line(scored: ScoredListing) -> dict:
    listing = scored.listing
    return {
        "rank": scored.rank,
        "title": listing.title,
        "price_eur": listing.price,
        "year": listing.year,
        "mileage_km": listing.mileage,
        "fuel": listing.fuel_type,
        "gearbox": listing.gearbox,
        "seller": listing.seller_type,
        "city": listing.city,
        "source": listing.source_id,
        "score": scored.score,
        "market_median_eur": scored.market_stats.median if scored.market_stats and scored.market_stats.n else None,
        "deal_delta_percent": scored.breakdown.price.deal_delta_percent,
        "flags": scored.risk_flags,
    }


def build_user_prompt(
    listings: list[ScoredListing],
    criteria: SearchCriteria,
    profile: Optional[ClientProfile],
) -> str:
    """Prompt body: buyer profile, criteria and the shortlist as JSON."""
    profile_data = profile.model_dump(exclude_none=True) if profile else {}
    criteria_data = criteria.model_dump(exclude_none=True)

    return f"""Buyer profile:
{json.dumps(profile_data, ensure_ascii=False, indent=2, default=str)}

Search criteria:
{json.dumps(criteria_data, ensure_ascii=False, indent=2, default=str)}

Shortlist ({len(listings)} listings, best first):
{json.dumps([_listing_line(s) for s in listings], ensure_ascii=False, indent=2, default=str)}

Return JSON:"""


class MerchantAnalyzer:
    """
    Runs the merchant analysis through the LLM client. Blocking inference
    is moved off the event loop; the caller owns the deadline.
    """

    def __init__(self, llm_client: Optional[LLMClient] = None, timeout: Optional[float] = None):
        self.llm = llm_client or LLMClient(timeout=timeout)

    def is_available(self) -> bool:
        return self.llm.is_available()

    def analyze_sync(
        self,
        listings: list[ScoredListing],
        criteria: SearchCriteria,
        profile: Optional[ClientProfile] = None,
    ) -> MerchantAIResult:
        """
        Raises:
            AIAnalysisError: Inference failed or returned an unusable payload
        """
        if not listings:
            raise AIAnalysisError("No listings to analyze", reason="error")

        try:
            return self.llm.call_with_schema(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_user_prompt(listings, criteria, profile),
                response_model=MerchantAIResult,
            )
        except (ValidationError, json.JSONDecodeError) as e:
            raise AIAnalysisError(f"Unusable analysis payload: {e}", reason="invalid_response") from e
        except OpenAIError as e:
            raise AIAnalysisError(f"Inference failed: {e}", reason="error") from e

    async def analyze(
        self,
        listings: list[ScoredListing],
        criteria: SearchCriteria,
        profile: Optional[ClientProfile] = None,
    ) -> MerchantAIResult:
        return await asyncio.to_thread(self.analyze_sync, listings, criteria, profile)
