"""
merchant_normalizer.py
-----------------------
Canonicalizes raw bank descriptions into a stable merchant key + display name.

The key is what detection groups on, so the same recurring charge must land
on the same key regardless of the dates, reference numbers and card suffixes
the bank appends to each statement line.

Steps:
    1. Lower-case and strip leading transaction markers ("purchase authorized
       on", ...).
    2. Strip embedded dates, long numeric references, short alphanumeric
       reference tokens and card-number suffixes.
    3. Keep the first segment delimited by a run of 2+ spaces.
    4. Walk the ordered override chain; first match wins.
    5. Otherwise title-case, truncate, and derive the key.

Prefixes and overrides are read from config.yaml — new well-known merchants
need no code changes.
"""

import re
from typing import Callable, List, Tuple

from core.models import MerchantIdentity
from config.config_loader import get_normalizer_config


# Noise stripped from the lower-cased description, applied in order.
NOISE_PATTERNS = [
    (re.compile(r"\d{2}/\d{2}(/\d{4})?\s*"), ""),     # MM/DD[/YYYY]
    (re.compile(r"\s+\d{10,}\s*"), " "),               # Long numeric references
    (re.compile(r"\s+[a-z]\d+\w*\s*"), " "),           # Short reference tokens, e.g. "p3f2a1"
    (re.compile(r"\s+s\d{12,}\s*"), " "),              # s-prefixed reference codes
    (re.compile(r"card\s+\d{4}"), ""),                 # Card-number suffixes
]

SEGMENT_SEPARATOR = re.compile(r"\s{2,}")
NON_KEY_CHARS = re.compile(r"[^a-z0-9]")

UNKNOWN_MERCHANT = MerchantIdentity(key="unknown", display="Unknown")

MerchantRule = Tuple[Callable[[str], bool], MerchantIdentity]


class MerchantNormalizer:
    """
    Pure, deterministic description → MerchantIdentity mapping.

    Usage:
        normalizer = MerchantNormalizer()
        identity = normalizer.normalize("PURCHASE AUTHORIZED ON 03/14 NETFLIX.COM ...")
    """

    def __init__(self):
        cfg = get_normalizer_config()
        self.max_length = cfg["max_name_length"]
        prefixes = "|".join(re.escape(p.lower()) for p in cfg["strip_prefixes"])
        self._prefix_pattern = re.compile(rf"^({prefixes})\s+")
        self._rules = self._build_rules(cfg["overrides"])

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def normalize(self, description: str | None) -> MerchantIdentity:
        """
        Normalize a raw description.

        Idempotent: normalize(normalize(x).display).key == normalize(x).key.
        """
        if not isinstance(description, str):
            return UNKNOWN_MERCHANT

        cleaned = self._clean(description)
        merchant = SEGMENT_SEPARATOR.split(cleaned)[0].strip()

        if not merchant:
            return UNKNOWN_MERCHANT

        for predicate, identity in self._rules:
            if predicate(merchant):
                return identity

        truncated = merchant[: self.max_length].rstrip()
        return MerchantIdentity(
            key=NON_KEY_CHARS.sub("_", truncated),
            display=_title_case(truncated),
        )

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _clean(self, description: str) -> str:
        """
        Strips prefixes and noise. Repeats until nothing changes so that
        stacked prefixes and adjacent reference codes are all removed.
        """
        text = description.lower().strip()
        previous = None
        while text != previous:
            previous = text
            text = self._prefix_pattern.sub("", text)
            for pattern, replacement in NOISE_PATTERNS:
                text = pattern.sub(replacement, text)
            text = text.strip()
        return text

    @staticmethod
    def _build_rules(overrides: list[dict]) -> List[MerchantRule]:
        """Turns the config override table into an ordered (predicate, result) chain."""
        rules: List[MerchantRule] = []
        for entry in overrides:
            needles = tuple(m.lower() for m in entry["match"])
            identity = MerchantIdentity(key=entry["key"], display=entry["display"])
            rules.append((lambda merchant, needles=needles: any(n in merchant for n in needles), identity))
        return rules


def _title_case(text: str) -> str:
    """Upper-cases the first letter of each space-separated word."""
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))
