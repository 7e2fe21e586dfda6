from __future__ import annotations

from dataclasses import dataclass, field

PRINT_ON_DEMAND = "Print on Demand"
DROPSHIPPING = "Dropshipping"
MARKETPLACE = "Marketplace"
BRANDED_ECOMMERCE = "Branded Ecommerce"

# Highest priority first; decides the primary tag when several categories are detected.
CATEGORY_PRIORITY = (PRINT_ON_DEMAND, DROPSHIPPING, MARKETPLACE, BRANDED_ECOMMERCE)
DETECTION_THRESHOLD = 0.7

POD_APPS = (
    "printify",
    "printful",
    "gelato",
    "spod",
    "customcat",
    "jetprint",
    "inkedjoy",
    "printy6",
    "gooten",
    "teespring",
    "apliiq",
    "printaura",
    "contrado",
    "teelaunch",
    "shineon",
)
POD_KEYWORDS = (
    "made to order",
    "printed just for you",
    "custom printed",
    "made when you order",
    "printed on demand",
    "made on demand",
    "print on demand",
    "printed when ordered",
)
DROPSHIPPING_APPS = (
    "oberlo",
    "dsers",
    "spocket",
    "zendrop",
    "cj dropshipping",
    "cjdropshipping",
    "aliexpress",
    "ali-express",
    "autods",
    "syncee",
)
SHIPPING_CLUES = (
    "ships from overseas",
    "delivery: 7-15 business days",
    "ships from china",
    "ships from asia",
    "shipping from supplier",
    "ships from warehouse",
    "tracking number will be provided",
)
POLICY_FLAGS = (
    "supplier delays",
    "we are not responsible for customs",
    "multiple warehouse locations",
    "third-party supplier",
)
BRAND_INDICATORS = (
    "our story",
    "our mission",
    "brand story",
    "founded in",
    "established in",
    "handcrafted",
    "designed in",
    "lifetime warranty",
    "quality guarantee",
)
MARKETPLACE_INDICATORS = (
    "multiple sellers",
    "sell on our platform",
    "become a seller",
    "become a vendor",
    "seller dashboard",
    "multi-vendor",
)


@dataclass(slots=True)
class BusinessModelAssessment:
    scores: dict[str, float]
    signals: list[str] = field(default_factory=list)
    detected: list[str] = field(default_factory=list)

    @property
    def primary(self) -> str | None:
        return self.detected[0] if self.detected else None

    @property
    def confidence(self) -> float:
        if self.primary is not None:
            return self.scores[self.primary]
        return max(self.scores.values(), default=0.0)


def assess_business_model(html: str) -> BusinessModelAssessment:
    """Score the storefront markup against each business model.

    ``detected`` lists the categories at or above the detection threshold in
    priority order; ``signals`` names every indicator that matched.
    """
    markup = html.lower()
    signals: list[str] = []

    pod = 0.0
    pod_apps = _matches(markup, POD_APPS)
    if pod_apps:
        pod += 0.8
        signals.extend(f"pod_app:{app}" for app in pod_apps)
    pod_keywords = _matches(markup, POD_KEYWORDS)[:2]
    pod += 0.2 * len(pod_keywords)
    signals.extend(f"pod_keyword:{keyword}" for keyword in pod_keywords)

    dropshipping = 0.0
    dropshipping_apps = _matches(markup, DROPSHIPPING_APPS)
    if dropshipping_apps:
        dropshipping += 0.6
        signals.extend(f"dropshipping_app:{app}" for app in dropshipping_apps)
    shipping_clues = _matches(markup, SHIPPING_CLUES)[:2]
    dropshipping += 0.2 * len(shipping_clues)
    signals.extend(f"shipping_clue:{clue}" for clue in shipping_clues)
    policy_flags = _matches(markup, POLICY_FLAGS)[:2]
    dropshipping += 0.15 * len(policy_flags)
    signals.extend(f"policy_flag:{flag}" for flag in policy_flags)

    brand_indicators = _matches(markup, BRAND_INDICATORS)
    branded = min(0.6, 0.15 * len(brand_indicators))
    signals.extend(f"brand:{indicator}" for indicator in brand_indicators)
    if brand_indicators and pod < 0.3 and dropshipping < 0.3:
        branded = min(0.7, branded + 0.4)

    marketplace_indicators = _matches(markup, MARKETPLACE_INDICATORS)
    marketplace = min(0.9, 0.3 * len(marketplace_indicators))
    signals.extend(f"marketplace:{indicator}" for indicator in marketplace_indicators)

    scores = {
        PRINT_ON_DEMAND: round(min(1.0, pod), 4),
        DROPSHIPPING: round(min(1.0, dropshipping), 4),
        MARKETPLACE: round(marketplace, 4),
        BRANDED_ECOMMERCE: round(branded, 4),
    }
    detected = [category for category in CATEGORY_PRIORITY if scores[category] >= DETECTION_THRESHOLD]
    return BusinessModelAssessment(scores=scores, signals=signals, detected=detected)


def _matches(markup: str, needles: tuple[str, ...]) -> list[str]:
    return [needle for needle in needles if needle in markup]
