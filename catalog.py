"""Static catalog of the service categories offered on the marketplace."""
from typing import Dict, List, Optional

from schemas import Service

PLACEHOLDER_IMAGE = "https://placehold.co/600x400.png"

SERVICES: List[Service] = [
    Service(
        id="plumbing",
        name="Plumbing Services",
        description="Expert solutions for all your plumbing needs, from leaky faucets to pipe installations.",
        category="Home Repair",
        icon_name="Wrench",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="plumbing tools",
        common_tasks=["Fix leaky faucets and toilets", "Unclog drains", "Water heater repair/install", "Pipe repair"],
    ),
    Service(
        id="electrical",
        name="Electrical Works",
        description="Safe and reliable electrical services, including wiring, fixture installation, and troubleshooting.",
        category="Home Repair",
        icon_name="PlugZap",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="electrical panel",
        common_tasks=[
            "Install light fixtures and ceiling fans",
            "Outlet and switch repair/install",
            "Electrical panel upgrades",
            "Troubleshoot electrical issues",
        ],
    ),
    Service(
        id="painting",
        name="Painting Services",
        description="Professional interior and exterior painting services to refresh your home.",
        category="Home Improvement",
        icon_name="PaintRoller",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="painting wall",
        common_tasks=[
            "Interior painting (walls, ceilings)",
            "Exterior painting",
            "Trim and door painting",
            "Drywall repair and texturing",
        ],
    ),
    Service(
        id="carpentry",
        name="Carpentry",
        description="Custom carpentry work, repairs, and installations for furniture, cabinetry, and structures.",
        category="Home Improvement",
        icon_name="Hammer",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="carpentry wood",
        common_tasks=["Custom shelving and cabinets", "Door and window frame repair", "Deck and fence repair", "Furniture assembly"],
    ),
    Service(
        id="cleaning",
        name="Home Cleaning",
        description="Thorough and reliable home cleaning services tailored to your needs.",
        category="Home Services",
        icon_name="Sparkles",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="cleaning supplies",
        common_tasks=["Regular house cleaning", "Deep cleaning", "Move-in/move-out cleaning", "Window cleaning"],
    ),
    Service(
        id="gardening",
        name="Gardening & Landscaping",
        description="Lawn care, planting and garden design to keep your outdoor spaces healthy.",
        category="Outdoor Services",
        icon_name="Leaf",
        image_url=PLACEHOLDER_IMAGE,
        data_ai_hint="garden landscaping",
        common_tasks=["Lawn mowing and maintenance", "Planting and weeding", "Hedge trimming", "Garden design"],
    ),
]

_BY_ID: Dict[str, Service] = {svc.id: svc for svc in SERVICES}


def list_services(category: Optional[str] = None) -> List[Service]:
    return [s for s in SERVICES if s.is_active and (category is None or s.category == category)]


def get_service(service_id: str) -> Optional[Service]:
    svc = _BY_ID.get(service_id)
    if svc is None or not svc.is_active:
        return None
    return svc
