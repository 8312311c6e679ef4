"""
Carrier and merchant catalog.

Static lookup tables that map free-text aliases and sender domains to
canonical carrier/merchant names, plus per-carrier tracking number shapes
and tracking URL templates.
"""

import re
from email.utils import parseaddr
from typing import NamedTuple

# Known carrier canonical names mapped from common variations
# Keys are lowercase variations, values are canonical names
CARRIER_ALIASES: dict[str, str] = {
    # Delhivery
    "delhivery": "Delhivery",
    "delhivery.com": "Delhivery",
    # Blue Dart
    "bluedart": "BlueDart",
    "blue dart": "BlueDart",
    "bluedart.com": "BlueDart",
    # DTDC
    "dtdc": "DTDC",
    "dtdc.com": "DTDC",
    "dtdc.in": "DTDC",
    # Ekart
    "ekart": "Ekart",
    "ekart logistics": "Ekart",
    "ekartlogistics.com": "Ekart",
    # Ecom Express
    "ecom express": "Ecom Express",
    "ecomexpress": "Ecom Express",
    "ecomexpress.in": "Ecom Express",
    # Xpressbees
    "xpressbees": "Xpressbees",
    "xpress bees": "Xpressbees",
    "xpressbees.com": "Xpressbees",
    # Shiprocket
    "shiprocket": "Shiprocket",
    "shiprocket.in": "Shiprocket",
    # Shadowfax
    "shadowfax": "Shadowfax",
    "shadowfax.in": "Shadowfax",
    # Amazon Logistics
    "amazon logistics": "Amazon Logistics",
    "amazonindia": "Amazon Logistics",
    "amazon shipping": "Amazon Logistics",
    "amazon transportation services": "Amazon Logistics",
    "amzl": "Amazon Logistics",
    # Gati
    "gati": "Gati",
    "gati.com": "Gati",
    # Professional Couriers
    "professional couriers": "Professional Couriers",
    "the professional couriers": "Professional Couriers",
    # India Post
    "india post": "India Post",
    "speed post": "India Post",
    "speedpost": "India Post",
    "indiapost.gov.in": "India Post",
    # International
    "fedex": "FedEx",
    "fedex.com": "FedEx",
    "federal express": "FedEx",
    "dhl": "DHL",
    "dhl express": "DHL",
    "dhl.com": "DHL",
    "ups": "UPS",
    "ups.com": "UPS",
    "usps": "USPS",
    "usps.com": "USPS",
    "united states postal service": "USPS",
}

# Sender domains that identify the delivering carrier
CARRIER_SENDER_DOMAINS: dict[str, str] = {
    "delhivery.com": "Delhivery",
    "bluedart.com": "BlueDart",
    "dtdc.com": "DTDC",
    "dtdc.in": "DTDC",
    "ekartlogistics.com": "Ekart",
    "ecomexpress.in": "Ecom Express",
    "xpressbees.com": "Xpressbees",
    "shiprocket.in": "Shiprocket",
    "shadowfax.in": "Shadowfax",
    "gati.com": "Gati",
    "indiapost.gov.in": "India Post",
    # Amazon ships its own shipment-tracking mail
    "amazon.in": "Amazon Logistics",
    "amazon.com": "Amazon Logistics",
    "fedex.com": "FedEx",
    "dhl.com": "DHL",
    "ups.com": "UPS",
    "usps.com": "USPS",
}

# Known merchant canonical names mapped from common variations
MERCHANT_ALIASES: dict[str, str] = {
    # Amazon
    "amazon": "Amazon",
    "amazon.in": "Amazon",
    "amazon.com": "Amazon",
    "amazon india": "Amazon",
    "amzn": "Amazon",
    # Flipkart
    "flipkart": "Flipkart",
    "flipkart.com": "Flipkart",
    # Myntra
    "myntra": "Myntra",
    "myntra.com": "Myntra",
    # Nykaa
    "nykaa": "Nykaa",
    "nykaa.com": "Nykaa",
    # Meesho
    "meesho": "Meesho",
    "meesho.com": "Meesho",
    # AJIO
    "ajio": "AJIO",
    "ajio.com": "AJIO",
    # Snapdeal
    "snapdeal": "Snapdeal",
    "snapdeal.com": "Snapdeal",
    # Tata CLiQ
    "tata cliq": "Tata CLiQ",
    "tatacliq": "Tata CLiQ",
    "tatacliq.com": "Tata CLiQ",
    # Reliance Digital
    "reliance digital": "Reliance Digital",
    "reliancedigital.in": "Reliance Digital",
    # Croma
    "croma": "Croma",
    "croma.com": "Croma",
    # BigBasket
    "bigbasket": "BigBasket",
    "big basket": "BigBasket",
    "bigbasket.com": "BigBasket",
    # Quick commerce
    "blinkit": "Blinkit",
    "zepto": "Zepto",
    "swiggy instamart": "Swiggy Instamart",
    "instamart": "Swiggy Instamart",
    # JioMart
    "jiomart": "JioMart",
    "jiomart.com": "JioMart",
    # FirstCry
    "firstcry": "FirstCry",
    "firstcry.com": "FirstCry",
    # Bewakoof
    "bewakoof": "Bewakoof",
    "bewakoof.com": "Bewakoof",
    # The Souled Store
    "the souled store": "The Souled Store",
    "souled store": "The Souled Store",
    "thesouledstore.com": "The Souled Store",
    # International
    "apple": "Apple",
    "apple.com": "Apple",
    "nike": "Nike",
    "nike.com": "Nike",
    "walmart": "Walmart",
    "walmart.com": "Walmart",
    "ebay": "eBay",
    "ebay.com": "eBay",
    "ikea": "IKEA",
    "ikea.com": "IKEA",
}

MERCHANT_SENDER_DOMAINS: dict[str, str] = {
    "amazon.in": "Amazon",
    "amazon.com": "Amazon",
    "flipkart.com": "Flipkart",
    "myntra.com": "Myntra",
    "nykaa.com": "Nykaa",
    "meesho.com": "Meesho",
    "ajio.com": "AJIO",
    "snapdeal.com": "Snapdeal",
    "tatacliq.com": "Tata CLiQ",
    "reliancedigital.in": "Reliance Digital",
    "croma.com": "Croma",
    "bigbasket.com": "BigBasket",
    "blinkit.com": "Blinkit",
    "zeptonow.com": "Zepto",
    "swiggy.in": "Swiggy Instamart",
    "jiomart.com": "JioMart",
    "firstcry.com": "FirstCry",
    "bewakoof.com": "Bewakoof",
    "thesouledstore.com": "The Souled Store",
    "apple.com": "Apple",
    "nike.com": "Nike",
    "walmart.com": "Walmart",
    "ebay.com": "eBay",
    "ikea.com": "IKEA",
}

# Storefront platforms that send mail on behalf of a store; the sender
# display name carries the store name
STORE_PLATFORM_DOMAINS = {"shopify.com", "shopifymail.com", "myshopify.com"}

# Personal mailbox providers; their domain never names a merchant
PERSONAL_MAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "yahoo.co.in",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "icloud.com",
    "rediffmail.com",
    "proton.me",
}

# Common prefixes to remove
COMMON_PREFIXES = [
    "www.",
    "mail.",
    "email.",
    "emails.",
    "e.",
    "em.",
    "info.",
    "shop.",
    "store.",
    "order.",
    "orders.",
    "noreply.",
    "notifications.",
]

# Labels that never name a merchant on their own
_DOMAIN_NOISE_LABELS = {
    "com",
    "in",
    "co",
    "net",
    "org",
    "io",
    "gov",
    "shop",
    "store",
    "uk",
}


class TrackingPattern(NamedTuple):
    """A tracking number shape, optionally tied to a carrier."""

    name: str
    regex: re.Pattern[str]
    carrier: str | None = None
    labeled: bool = False


# Ordered by specificity: explicit labels first, structured carrier codes
# next, the generic long number last
TRACKING_PATTERNS: list[TrackingPattern] = [
    TrackingPattern(
        "awb_label",
        re.compile(r"\bAWB\s*(?:no\.?|number|#)?\s*[:#\-]?\s*(\d{10,16})\b", re.I),
        labeled=True,
    ),
    TrackingPattern(
        "tracking_label",
        re.compile(
            r"\btracking\s*(?:number|id|no\.?|#)?\s*(?:is\s*)?[:#\-]?\s*"
            r"((?=[A-Z0-9]*\d)[A-Z0-9]{10,20})\b",
            re.I,
        ),
        labeled=True,
    ),
    TrackingPattern("ups", re.compile(r"\b(1Z[0-9A-Z]{16})\b"), "UPS"),
    TrackingPattern("india_post", re.compile(r"\b([A-Z]{2}\d{9}IN)\b"), "India Post"),
    TrackingPattern("ekart", re.compile(r"\b(FMP[CP]\d{10})\b"), "Ekart"),
    TrackingPattern(
        "amazon_logistics", re.compile(r"\b(TBA\d{12})\b"), "Amazon Logistics"
    ),
    TrackingPattern("shadowfax", re.compile(r"\b(SF\d{9,12}[A-Z]{0,3})\b"), "Shadowfax"),
    TrackingPattern("bluedart", re.compile(r"\b([A-Z]{2}\d{9})\b"), "BlueDart"),
    TrackingPattern("dtdc", re.compile(r"\b([A-Z]\d{8})\b"), "DTDC"),
    TrackingPattern("generic_numeric", re.compile(r"\b(\d{13,16})\b")),
]

TRACKING_URL_TEMPLATES: dict[str, str] = {
    "Delhivery": "https://www.delhivery.com/track/package/{tracking_number}",
    "BlueDart": "https://www.bluedart.com/tracking/{tracking_number}",
    "DTDC": "https://www.dtdc.in/trace.asp?strAwb={tracking_number}",
    "Ekart": "https://www.ekartlogistics.com/track/{tracking_number}",
    "Xpressbees": "https://www.xpressbees.com/track?awb={tracking_number}",
    "Shiprocket": "https://www.shiprocket.in/shipment-tracking/{tracking_number}",
    "Ecom Express": "https://www.ecomexpress.in/tracking/?awb_field={tracking_number}",
    "Shadowfax": "https://tracker.shadowfax.in/#/track/{tracking_number}",
    "Amazon Logistics": "https://www.amazon.in/gp/your-account/order-history",
    "India Post": "https://www.indiapost.gov.in/_layouts/15/dop.portal.tracking/trackconsignment.aspx",
    "FedEx": "https://www.fedex.com/fedextrack/?trknbr={tracking_number}",
    "DHL": "https://www.dhl.com/in-en/home/tracking.html?tracking-id={tracking_number}",
    "UPS": "https://www.ups.com/track?tracknum={tracking_number}",
    "USPS": "https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}",
}

# Word-boundary alias matchers, longest alias first so "blue dart" wins
# over any shorter overlapping alias
_CARRIER_ALIAS_RE = re.compile(
    r"\b("
    + "|".join(
        re.escape(alias)
        for alias in sorted(CARRIER_ALIASES, key=len, reverse=True)
        if "." not in alias
    )
    + r")\b",
    re.I,
)
_MERCHANT_ALIAS_RE = re.compile(
    r"\b("
    + "|".join(
        re.escape(alias)
        for alias in sorted(MERCHANT_ALIASES, key=len, reverse=True)
        if "." not in alias
    )
    + r")\b",
    re.I,
)


def normalize_domain(domain: str | None) -> str | None:
    """
    Normalize a domain to its canonical form.

    Lower-cases and strips common mail/web subdomain prefixes.

    Args:
        domain: Domain to normalize (e.g., "Mail.Nykaa.com")

    Returns:
        Normalized domain (e.g., "nykaa.com") or None if input is empty
    """
    if not domain:
        return None

    domain = domain.lower().strip().strip(".")

    stripped = True
    while stripped:
        stripped = False
        for prefix in COMMON_PREFIXES:
            if domain.startswith(prefix) and domain.count(".") > 1:
                domain = domain[len(prefix) :]
                stripped = True
                break

    return domain or None


def sender_domain(sender: str | None) -> str | None:
    """Extract the normalized domain from a sender header or address."""
    if not sender:
        return None
    _, address = parseaddr(sender)
    address = address or sender
    if "@" not in address:
        return None
    return normalize_domain(address.rsplit("@", 1)[1].strip(" >"))


def sender_display_name(sender: str | None) -> str | None:
    """Return the display name of a sender header, if it has one."""
    if not sender:
        return None
    name, _ = parseaddr(sender)
    name = name.strip().strip('"')
    return name or None


def _lookup_domain(domain: str | None, table: dict[str, str]) -> str | None:
    """Look up a domain and its parent domains in `table`."""
    while domain:
        if domain in table:
            return table[domain]
        if "." not in domain:
            return None
        domain = domain.split(".", 1)[1]
    return None


def carrier_for_sender(sender: str | None) -> str | None:
    """Canonical carrier for a sender address, if the domain is a carrier's."""
    return _lookup_domain(sender_domain(sender), CARRIER_SENDER_DOMAINS)


def merchant_for_sender(sender: str | None) -> str | None:
    """Canonical merchant for a sender address, if the domain is known."""
    return _lookup_domain(sender_domain(sender), MERCHANT_SENDER_DOMAINS)


def is_store_platform_sender(sender: str | None) -> bool:
    """Whether the sender is a storefront platform mailing for a store."""
    domain = sender_domain(sender)
    while domain:
        if domain in STORE_PLATFORM_DOMAINS:
            return True
        if "." not in domain:
            break
        domain = domain.split(".", 1)[1]
    return False


def merchant_from_domain(domain: str | None) -> str | None:
    """
    Derive a merchant name from an unknown sender domain.

    Takes the last meaningful label ("mail.acmestore.co.in" -> "Acmestore").
    """
    if not domain or domain in PERSONAL_MAIL_DOMAINS:
        return None
    labels = [
        label
        for label in domain.split(".")
        if label and label not in _DOMAIN_NOISE_LABELS
    ]
    if not labels:
        return None
    name = labels[-1]
    return name[0].upper() + name[1:]


def match_carrier_in_text(text: str | None) -> str | None:
    """Find the first known carrier alias mentioned in `text`."""
    if not text:
        return None
    match = _CARRIER_ALIAS_RE.search(text)
    if match is None:
        return None
    return CARRIER_ALIASES[match.group(1).lower()]


def match_merchant_in_text(text: str | None) -> str | None:
    """Find the first known merchant alias mentioned in `text`."""
    if not text:
        return None
    match = _MERCHANT_ALIAS_RE.search(text)
    if match is None:
        return None
    return MERCHANT_ALIASES[match.group(1).lower()]


def normalize_carrier_name(name: str | None) -> str | None:
    """
    Normalize a carrier name to its canonical form.

    Unknown carriers pass through trimmed; they are never discarded.

    Examples:
        >>> normalize_carrier_name("blue dart")
        'BlueDart'
        >>> normalize_carrier_name("  Acme Couriers ")
        'Acme Couriers'
    """
    if name is None:
        return None
    cleaned = " ".join(name.split())
    if not cleaned:
        return None
    return CARRIER_ALIASES.get(cleaned.lower(), cleaned)


def normalize_merchant_name(name: str | None) -> str | None:
    """
    Normalize a merchant name to its canonical form.

    Checks the alias table, then a domain-shaped name against the sender
    domain table; anything else passes through trimmed.
    """
    if name is None:
        return None
    cleaned = " ".join(name.split())
    if not cleaned:
        return None

    lookup_key = cleaned.lower()
    if lookup_key in MERCHANT_ALIASES:
        return MERCHANT_ALIASES[lookup_key]

    if "." in lookup_key and " " not in lookup_key:
        known = _lookup_domain(normalize_domain(lookup_key), MERCHANT_SENDER_DOMAINS)
        if known:
            return known

    return cleaned


def tracking_url_for(carrier: str | None, tracking_number: str | None) -> str | None:
    """Build the public tracking URL for a carrier, if one is known."""
    if not carrier or not tracking_number:
        return None
    template = TRACKING_URL_TEMPLATES.get(carrier)
    if template is None:
        return None
    return template.format(tracking_number=tracking_number)
