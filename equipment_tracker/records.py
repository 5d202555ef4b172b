from datetime import datetime
from typing import Any, Dict

PLACEMENT = 'placement'
PURCHASE = 'purchase'
MAINTENANCE = 'maintenance'

RECOMMENDATION_TYPES = (PLACEMENT, PURCHASE, MAINTENANCE)


def make_recommendation(rec_type: str, title: str, description: str,
                        savings_text: str, **fields: Any) -> Dict[str, Any]:
    """Build an unsaved recommendation document."""
    if rec_type not in RECOMMENDATION_TYPES:
        raise ValueError(f"Unknown recommendation type: {rec_type}")
    recommendation = {
        'type': rec_type,
        'title': title,
        'description': description,
        'savings_text': savings_text,
        'implemented': False,
        'created_at': datetime.now().isoformat(),
    }
    recommendation.update(fields)
    return recommendation
