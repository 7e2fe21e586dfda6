from bs4 import BeautifulSoup

from storescout.detectors.ads import detect_ad_networks, is_advertising
from storescout.detectors.business_model import (
    BRANDED_ECOMMERCE,
    DROPSHIPPING,
    PRINT_ON_DEMAND,
    assess_business_model,
)
from storescout.detectors.locale import detect_locale
from storescout.detectors.names import detect_display_name
from storescout.detectors.theme import detect_theme, match_known_theme


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def test_display_name_prefers_site_name_meta() -> None:
    html = '<html><head><meta property="og:site_name" content=" Brand  Co "><title>Home</title></head></html>'
    assert detect_display_name(_soup(html)) == "Brand Co"


def test_display_name_cleans_generic_title_segments() -> None:
    assert detect_display_name(_soup("<title>Home – Brand Co</title>")) == "Brand Co"
    assert detect_display_name(_soup("<title>Brand Co | Shirts</title>")) == "Brand Co"


def test_display_name_falls_back_to_headings() -> None:
    assert detect_display_name(_soup('<div class="hero"><h1>Summer Sale</h1></div>')) == "Summer Sale"
    assert detect_display_name(_soup("<main><h1>Mugs &amp; More</h1></main>")) == "Mugs & More"
    assert detect_display_name(_soup("<p>nothing here</p>")) is None


def test_locale_from_storefront_country() -> None:
    html = '<script>Shopify.country = "uk";</script>'
    assert detect_locale(_soup(html), html, "https://example.test") == "GB"


def test_locale_from_html_lang_region() -> None:
    html = '<html lang="en-AU"><body></body></html>'
    assert detect_locale(_soup(html), html, "https://example.test") == "AU"


def test_locale_from_country_tld_then_currency() -> None:
    plain = "<html lang='en'></html>"
    assert detect_locale(_soup(plain), plain, "https://example.de") == "DE"

    priced = '<meta property="og:price:currency" content="cad">'
    assert detect_locale(_soup(priced), priced, "https://example.test") == "CA"

    euro = '<script>Shopify.currency = {"active":"EUR","rate":"1.0"};</script>'
    assert detect_locale(_soup(euro), euro, "https://example.test") is None


def test_theme_from_storefront_declaration() -> None:
    html = '<script>Shopify.theme = {"name":"Dawn","id":1234,"role":"main"};</script>'
    assert detect_theme(_soup(html), html) == "Dawn"

    custom = '<script>Shopify.theme = {"name":"Northwind Custom","id":9};</script>'
    assert detect_theme(_soup(custom), custom) == "Northwind Custom"


def test_theme_from_assets_and_body_classes() -> None:
    assets = '<link rel="stylesheet" href="//cdn.example.test/themes/palo-alto/assets/theme.css">'
    assert detect_theme(_soup(assets), assets) == "Palo Alto"

    body = '<body class="template-index theme-prestige"></body>'
    assert detect_theme(_soup(body), body) == "Prestige"

    assert detect_theme(_soup("<body></body>"), "<body></body>") is None


def test_theme_matching() -> None:
    assert match_known_theme("Dawn 2.0 copy") == "Dawn"
    assert match_known_theme("Northwind") is None
    assert match_known_theme("Prestige theme") == "Prestige"


def test_print_on_demand_outranks_dropshipping() -> None:
    html = """
    <script src="https://cdn.printify.example/widget.js"></script>
    <script>window.dsers = {};</script>
    <p>Ships from China. Delivery: 7-15 business days.</p>
    """
    assessment = assess_business_model(html)

    assert assessment.detected == [PRINT_ON_DEMAND, DROPSHIPPING]
    assert assessment.primary == PRINT_ON_DEMAND
    assert assessment.confidence == 0.8
    assert assessment.scores[DROPSHIPPING] == 1.0


def test_weak_signals_are_not_detected() -> None:
    assessment = assess_business_model("<p>Our story began in a garage.</p>")

    assert assessment.detected == []
    assert assessment.primary is None
    assert assessment.signals == ["brand:our story"]
    assert assessment.scores[BRANDED_ECOMMERCE] == 0.55


def test_branded_store_with_several_indicators_is_detected() -> None:
    assessment = assess_business_model("Our story. Our mission. Handcrafted goods.")
    assert assessment.primary == BRANDED_ECOMMERCE
    assert assessment.confidence == 0.7


def test_no_signals_at_all() -> None:
    assessment = assess_business_model("<html><body>Hello</body></html>")
    assert assessment.signals == []
    assert assessment.confidence == 0.0


def test_ad_pixel_detection() -> None:
    html = "<script>!function(f){fbq('init','1')}(window);</script><script src='https://analytics.tiktok.com/i18n/pixel'></script>"
    assert detect_ad_networks(html) == ["meta", "tiktok"]
    assert is_advertising(html)
    assert not is_advertising("<script>console.log('hi')</script>")
