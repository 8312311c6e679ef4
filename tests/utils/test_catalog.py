"""
Tests for the carrier and merchant catalog.
"""

import pytest

from shipwatch.utils.catalog import (
    carrier_for_sender,
    is_store_platform_sender,
    match_carrier_in_text,
    match_merchant_in_text,
    merchant_for_sender,
    merchant_from_domain,
    normalize_carrier_name,
    normalize_domain,
    normalize_merchant_name,
    sender_display_name,
    sender_domain,
    tracking_url_for,
)


class TestNormalizeDomain:
    """Tests for normalize_domain function."""

    def test_none_input(self):
        assert normalize_domain(None) is None

    def test_empty_string(self):
        assert normalize_domain("") is None

    def test_uppercase_domain(self):
        assert normalize_domain("FLIPKART.COM") == "flipkart.com"

    def test_mail_prefix(self):
        assert normalize_domain("mail.nykaa.com") == "nykaa.com"

    def test_stacked_prefixes(self):
        assert normalize_domain("www.mail.myntra.com") == "myntra.com"

    def test_bare_domain_keeps_prefix_like_label(self):
        assert normalize_domain("shop.com") == "shop.com"


class TestSenderParsing:
    def test_sender_domain_from_header(self):
        assert sender_domain('"Amazon.in" <shipment-tracking@amazon.in>') == "amazon.in"

    def test_sender_domain_plain_address(self):
        assert sender_domain("no-reply@Mail.Flipkart.com") == "flipkart.com"

    def test_sender_domain_without_address(self):
        assert sender_domain("Flipkart") is None

    def test_display_name(self):
        assert sender_display_name('"Acme Store" <store@shopifymail.com>') == "Acme Store"

    def test_display_name_missing(self):
        assert sender_display_name("store@shopifymail.com") is None


class TestSenderLookups:
    def test_carrier_sender(self):
        assert carrier_for_sender("alerts@delhivery.com") == "Delhivery"

    def test_carrier_sender_subdomain(self):
        assert carrier_for_sender("track@notify.bluedart.com") == "BlueDart"

    def test_amazon_is_carrier_and_merchant(self):
        assert carrier_for_sender("shipment-tracking@amazon.in") == "Amazon Logistics"
        assert merchant_for_sender("shipment-tracking@amazon.in") == "Amazon"

    def test_unknown_sender(self):
        assert carrier_for_sender("hello@acmestore.com") is None
        assert merchant_for_sender("hello@acmestore.com") is None

    def test_store_platform(self):
        assert is_store_platform_sender("store+123@shopifymail.com")
        assert is_store_platform_sender("orders@acme.myshopify.com")
        assert not is_store_platform_sender("orders@flipkart.com")


class TestMerchantFromDomain:
    def test_simple(self):
        assert merchant_from_domain("acmestore.com") == "Acmestore"

    def test_country_suffix(self):
        assert merchant_from_domain("acmestore.co.in") == "Acmestore"

    def test_personal_mail(self):
        assert merchant_from_domain("gmail.com") is None

    def test_none(self):
        assert merchant_from_domain(None) is None


class TestTextMatching:
    def test_carrier_alias_in_text(self):
        assert match_carrier_in_text("Shipped with Blue Dart Express") == "BlueDart"

    def test_carrier_alias_word_boundary(self):
        # "ups" inside a word is not UPS
        assert match_carrier_in_text("We had some setups delayed") is None

    def test_merchant_alias_in_text(self):
        assert match_merchant_in_text("Your Myntra order has shipped") == "Myntra"

    def test_longest_alias_first(self):
        assert match_merchant_in_text("Thanks from The Souled Store") == "The Souled Store"

    def test_empty_text(self):
        assert match_carrier_in_text(None) is None
        assert match_merchant_in_text("") is None


class TestNormalizeNames:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("blue dart", "BlueDart"),
            ("DELHIVERY", "Delhivery"),
            ("  xpress   bees ", "Xpressbees"),
            ("Acme Couriers", "Acme Couriers"),
        ],
    )
    def test_carrier(self, raw, expected):
        assert normalize_carrier_name(raw) == expected

    def test_carrier_blank(self):
        assert normalize_carrier_name("   ") is None
        assert normalize_carrier_name(None) is None

    def test_merchant_alias(self):
        assert normalize_merchant_name("amazon india") == "Amazon"

    def test_merchant_domain_shape(self):
        assert normalize_merchant_name("www.flipkart.com") == "Flipkart"

    def test_merchant_unknown_passthrough(self):
        assert normalize_merchant_name(" Acme  Store ") == "Acme Store"


class TestTrackingUrl:
    def test_known_carrier(self):
        assert (
            tracking_url_for("Delhivery", "1490812345678")
            == "https://www.delhivery.com/track/package/1490812345678"
        )

    def test_unknown_carrier(self):
        assert tracking_url_for("Acme Couriers", "123") is None

    def test_missing_tracking(self):
        assert tracking_url_for("Delhivery", None) is None
