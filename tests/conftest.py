"""Shared fixtures for the market_feed test suite."""

import io
import logging
from contextlib import contextmanager

import pytest

from market_feed import ParserConfig, parse_feed


SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE yml_catalog SYSTEM "shops.dtd">
<yml_catalog date="2024-03-01 12:00">
  <shop>
    <name>BestSeller</name>
    <company>The Best inc.</company>
    <url>http://best.seller.ru</url>
    <platform>CMS</platform>
    <currencies>
      <currency id="RUR" rate="1"/>
      <currency id="USD" rate="CBRF" plus="3"/>
    </currencies>
    <categories>
      <category id="1">Бытовая техника</category>
      <category id="10" parentId="1">Мелкая техника для кухни</category>
    </categories>
    <delivery-options>
      <option cost="200" days="1" order-before="18"/>
    </delivery-options>
    <offers>
      <offer id="9012" available="true" bid="80">
        <name>Мороженица Brand 3811</name>
        <vendor>Brand</vendor>
        <vendorCode>A1234567B</vendorCode>
        <url>http://best.seller.ru/product_page.asp?pid=12345&amp;ref=feed</url>
        <price from="true">8990</price>
        <oldprice>9990</oldprice>
        <currencyId>RUR</currencyId>
        <categoryId>10</categoryId>
        <picture>http://best.seller.ru/img/large_12345.jpg</picture>
        <picture>http://best.seller.ru/img/large_12346.jpg</picture>
        <delivery>true</delivery>
        <pickup>false</pickup>
        <delivery-options>
          <option cost="300" days="0" order-before="12"/>
        </delivery-options>
        <description><![CDATA[<p>Отличный подарок</p>]]></description>
        <sales_notes>Необходима предоплата.</sales_notes>
        <manufacturer_warranty>true</manufacturer_warranty>
        <country_of_origin>Китай</country_of_origin>
        <barcode>4601546021298</barcode>
        <param name="Цвет">белый</param>
        <param name="Вес" unit="кг">1.2</param>
        <condition type="likenew">
          <reason>Повреждена упаковка</reason>
        </condition>
        <weight>3.6</weight>
        <dimensions>20.1/20.551/22.5</dimensions>
        <age unit="year">6</age>
      </offer>
      <offer id="9013" available="false">
        <name>Second</name>
        <price>100.50</price>
        <currencyId>RUR</currencyId>
        <categoryId>1</categoryId>
      </offer>
    </offers>
  </shop>
</yml_catalog>
"""

SHOP_HEADER = "<name>Shop</name><company>Co</company><url>https://shop.example</url>"


def build_feed(offers: str = '', shop_fields: str = SHOP_HEADER, date: str = '2024-01-01 10:00') -> str:
    """Wrap offer markup into a complete feed with offers nested in the shop."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<yml_catalog date="{date}">\n'
        f'<shop>{shop_fields}\n'
        '<offers>\n'
        f'{offers}\n'
        '</offers>\n'
        '</shop>\n'
        '</yml_catalog>\n'
    )


def locate(text: str, needle: str):
    """Return the (line, column) of the first occurrence of ``needle``."""
    index = text.index(needle)
    line = text.count('\n', 0, index) + 1
    column = index - text.rfind('\n', 0, index)
    return line, column


@pytest.fixture
def sample_feed() -> str:
    return SAMPLE_FEED


@pytest.fixture
def make_feed():
    return build_feed


@pytest.fixture
def parse():
    """Parse feed text eagerly, optionally with parser config overrides."""
    def _parse(text: str, **config):
        parser_config = ParserConfig(**config) if config else None
        return parse_feed(io.BytesIO(text.encode('utf-8')), parser_config)
    return _parse


@contextmanager
def root_logger_restored():
    """Keep setup_logging() from leaking handlers into other tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield root
    finally:
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)


@pytest.fixture
def isolated_logging():
    """Context manager factory; use inside the test body."""
    return root_logger_restored


@pytest.fixture
def position_of():
    return locate
