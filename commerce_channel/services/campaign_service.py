from typing import Mapping

from commerce_channel.logging_config import get_logger

logger = get_logger("campaign_service")

CAMPAIGN_UTM_MARKERS = ("utm_source=ultim", "utm_medium=meta")


def is_from_campaign(form: Mapping[str, str]) -> bool:
    """Click-to-WhatsApp ads carry a referral of type `ad`; wa.me links carry UTM params in the text."""
    referral_url = form.get("ReferralSourceUrl") or ""
    referral_type = form.get("ReferralSourceType") or ""
    body = form.get("Body") or ""

    if referral_type == "ad" and "utm_source=ultim" in referral_url:
        return True
    if any(marker in body for marker in CAMPAIGN_UTM_MARKERS):
        return True
    return referral_type == "ad"


def get_campaign_origin(form: Mapping[str, str]) -> str:
    origin = "campaign" if is_from_campaign(form) else "organic"
    logger.debug(f"Campaign origin detected: {origin}")
    return origin
