"""
Tests for extraction, crawling and import adapters.
"""

import base64
from decimal import Decimal
from unittest.mock import patch, MagicMock

import requests
from django.test import TestCase

from core.throttle import Pacer
from scrapers.base import (
    DuplicateExternalId,
    ExtractionFailed,
    FetchFailed,
    FetchedPage,
    InsufficientContent,
    InvalidImage,
    PageFetcher,
    ServiceUnavailable,
    SourceBlocked,
    UnparsableResponse,
)
from scrapers.config import CrawlSettings
from scrapers.dedup import DeduplicationIndex
from scrapers.drafts import PropertyType, compute_discount, coerce_property_type
from scrapers.extractor import Document, FieldExtractor
from scrapers.importers import ScreenshotImporter, UrlImporter
from scrapers.listing_scraper import ListingCrawler
from scrapers.rules import first_match, regex_rule
from scrapers.utils import (
    extract_city_state_from_url,
    extract_id_from_url,
    filter_images,
    normalize_url,
    parse_brl_number,
)
from scrapers.vision import VisionExtractionClient

SEED = 'https://www.leilaoimovel.com.br/imoveis/caixa'
PADDING = '<p>' + 'Imóveis da Caixa com desconto em todo o Nordeste. ' * 40 + '</p>'


def detail_url(n, city='fortaleza', state='ce'):
    return f"https://www.leilaoimovel.com.br/imovel/casa-em-{city}-{state}/casa-caixa-{1444000 + n}-{n}-venda"


def external_id(n):
    return f"{1444000 + n}-{n}"


def listing_html(numbers, next_page=None, state='ce'):
    anchors = ''.join(f'<a href="{detail_url(n, state=state)}">Imóvel {n}</a>' for n in numbers)
    pager = f'<a href="{SEED}?pag={next_page}">{next_page}</a>' if next_page else ''
    return f'<html><body>{anchors}{pager}{PADDING}</body></html>'


def detail_html(n):
    return (
        f'<html><body><h1>Casa {n} em Fortaleza</h1>'
        '<p>Valor de Venda R$ 235.000,00</p>'
        '<p>Valor de Avaliação R$ 310.000,00</p>'
        f'<p>2 quartos</p>{PADDING}</body></html>'
    )


def crawl_settings(**overrides):
    values = dict(seed_urls=[SEED], request_delay=0)
    values.update(overrides)
    return CrawlSettings(**values)


class FakeFetcher:
    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    def fetch_html(self, url, timeout=None):
        self.requested.append(url)
        content = self.pages.get(url)
        if content is None:
            raise FetchFailed(f"Failed to fetch {url}: 404", url=url, status_code=404)
        return FetchedPage(url=url, content=content, content_type='html')

    def fetch_document(self, url, timeout=None):
        self.requested.append(url)
        content = self.pages.get(url)
        if content is None:
            raise FetchFailed(f"Failed to fetch {url}: 404", url=url, status_code=404)
        return FetchedPage(url=url, content=content, content_type='markdown')


class FakeStore:
    def __init__(self, known=()):
        self.known = set(known)
        self.staged = []
        self.runs = {}
        self.lookups = 0

    def find_by_external_ids(self, ids):
        self.lookups += 1
        return {external_id for external_id in ids if external_id in self.known}

    def insert_staging(self, draft):
        self.staged.append(draft)
        self.known.add(draft.external_id)
        return len(self.staged)

    def log_run_start(self, config_id):
        run_id = len(self.runs) + 1
        self.runs[run_id] = {'status': 'running'}
        return run_id

    def log_run_finish(self, run_id, status, found, new, error=None):
        if self.runs[run_id]['status'] != 'running':
            raise AssertionError(f"run {run_id} finished twice")
        self.runs[run_id] = {'status': status, 'found': found, 'new': new, 'error': error}


class UtilsTests(TestCase):
    """Tests for number parsing and URL helpers."""

    def test_parse_brl_number(self):
        self.assertEqual(parse_brl_number('235.000,00'), Decimal('235000.00'))
        self.assertEqual(parse_brl_number('R$ 1.500.000'), Decimal('1500000'))
        self.assertEqual(parse_brl_number('72,5 m²'), Decimal('72.5'))
        self.assertEqual(parse_brl_number('120'), Decimal('120'))
        self.assertIsNone(parse_brl_number('sem valor'))

    def test_extract_id_from_url(self):
        self.assertEqual(extract_id_from_url(detail_url(1)), '1444001-1')
        self.assertEqual(extract_id_from_url('https://example.com/imovel/codigo/98765432'), '98765432')
        self.assertIsNone(extract_id_from_url('https://example.com/imovel/casa'))

    def test_extract_city_state_from_url(self):
        self.assertEqual(extract_city_state_from_url(detail_url(1)), ('Fortaleza', 'CE'))
        url = detail_url(2, city='juazeiro-do-norte')
        self.assertEqual(extract_city_state_from_url(url), ('Juazeiro do Norte', 'CE'))
        url = 'https://www.leilaoimovel.com.br/imovel/ce/fortaleza/casa-em-fortaleza-1444412345-46789-caixa-ce/'
        self.assertEqual(extract_city_state_from_url(url), ('Fortaleza', 'CE'))
        url = 'https://www.leilaoimovel.com.br/imovel/casa-em-rio-de-janeiro-rj/casa-caixa-1444001-1-venda'
        self.assertEqual(extract_city_state_from_url(url), ('Rio de Janeiro', 'RJ'))
        self.assertEqual(extract_city_state_from_url('https://example.com/casa'), ('', ''))

    def test_normalize_url(self):
        self.assertEqual(normalize_url('www.example.com/casa'), 'https://www.example.com/casa')
        self.assertEqual(normalize_url('http://example.com'), 'http://example.com')

    def test_denylisted_images_are_dropped(self):
        images = filter_images([
            'https://cdn.example.com/fotos/casa-1.jpg',
            'https://cdn.example.com/static/logo-site.png',
            'https://cdn.example.com/fotos/thumb-150x100.jpg',
            'https://cdn.example.com/fotos/sala-800x600.jpg',
            'https://cdn.example.com/fotos/casa-1.jpg',
            'data:image/png;base64,AAAA',
            'https://cdn.example.com/marca-dagua.png',
        ])
        self.assertEqual(images, [
            'https://cdn.example.com/fotos/casa-1.jpg',
            'https://cdn.example.com/fotos/sala-800x600.jpg',
        ])

    def test_images_capped_and_upgraded(self):
        urls = [f'https://image.leilaoimovel.com.br/images/foto-{n}-m.webp' for n in range(15)]
        images = filter_images(urls, upgrade=True)
        self.assertEqual(len(images), 10)
        self.assertEqual(images[0], 'https://image.leilaoimovel.com.br/images/foto-0-g.webp')

    def test_relative_images_resolved(self):
        images = filter_images(['/fotos/casa.jpg'], base_url='https://example.com/imovel/1')
        self.assertEqual(images, ['https://example.com/fotos/casa.jpg'])

    def test_malformed_images_skipped(self):
        urls = ['http://[broken/foto.jpg', '/fotos/casa.jpg']
        self.assertEqual(
            filter_images(urls, base_url='https://example.com/imovel/1'),
            ['https://example.com/fotos/casa.jpg'],
        )
        self.assertEqual(filter_images(['http://[broken/foto-100x100.jpg']), [])


class DraftTests(TestCase):
    """Tests for discount and type normalization."""

    def test_compute_discount(self):
        self.assertEqual(compute_discount(Decimal(235000), Decimal(310000)), 24)
        self.assertEqual(compute_discount(Decimal(995), Decimal(1000)), 1)
        self.assertIsNone(compute_discount(Decimal(100000), Decimal(100000)))
        self.assertIsNone(compute_discount(Decimal(120000), Decimal(100000)))
        self.assertIsNone(compute_discount(None, Decimal(100000)))

    def test_coerce_property_type(self):
        self.assertEqual(coerce_property_type('apartamento'), PropertyType.APARTMENT)
        self.assertEqual(coerce_property_type('Terreno'), PropertyType.LAND)
        self.assertEqual(coerce_property_type('commercial'), PropertyType.COMMERCIAL)
        self.assertEqual(coerce_property_type(None), PropertyType.HOUSE)
        self.assertEqual(coerce_property_type('castelo'), PropertyType.HOUSE)


class RuleTests(TestCase):
    """Tests for ranked rule evaluation."""

    def test_first_rule_wins(self):
        doc = Document.from_text('Valor de Venda R$ 100.000,00 Preço: R$ 200.000,00')
        rules = [
            regex_rule('sale', r'Venda\s+R\$\s*([\d.,]+)'),
            regex_rule('price', r'Pre[çc]o:\s*R\$\s*([\d.,]+)'),
        ]
        match = first_match(rules, doc)
        self.assertEqual(match.rule, 'sale')
        self.assertEqual(match.value, '100.000,00')

        match = first_match(list(reversed(rules)), doc)
        self.assertEqual(match.rule, 'price')

    def test_rejected_occurrence_continues_scan(self):
        doc = Document.from_text('R$ 500 de condomínio, imóvel por R$ 150.000')
        rule = regex_rule(
            'price', r'R\$\s*([\d.,]+)',
            convert=lambda value: parse_brl_number(value) if parse_brl_number(value) >= 10000 else None,
        )
        self.assertEqual(first_match([rule], doc).value, Decimal('150000'))

    def test_no_match(self):
        self.assertIsNone(first_match([regex_rule('x', r'(nada)')], Document.from_text('texto')))


class FieldExtractorTests(TestCase):
    """Tests for the field extractor."""

    def setUp(self):
        self.extractor = FieldExtractor()

    def test_sale_and_appraisal_values(self):
        html = (
            '<html><head><title>Imóvel à venda</title></head><body>'
            '<h1>Casa 3 quartos no Centro</h1>'
            '<p>Valor de Venda R$ 235.000,00</p>'
            '<p>Valor de Avaliação R$ 310.000,00</p>'
            '<p>3 quartos</p>'
            '<p>Fortaleza - CE</p>'
            '</body></html>'
        )
        draft = self.extractor.extract(Document.from_html(html), 'abc')

        self.assertEqual(draft.price, Decimal(235000))
        self.assertEqual(draft.original_price, Decimal(310000))
        self.assertEqual(draft.discount, 24)
        self.assertEqual(draft.bedrooms, 3)
        self.assertEqual(draft.address.city, 'Fortaleza')
        self.assertEqual(draft.address.state, 'CE')
        self.assertEqual(draft.title, 'Casa 3 quartos no Centro')
        self.assertEqual(draft.type, PropertyType.HOUSE)

    def test_values_inside_inline_markup(self):
        html = (
            '<html><body><h1>Casa em Fortaleza</h1>'
            '<p>Valor de Avaliação: <b>R$ 310.000,00</b></p>'
            '<p>Valor de Venda: <strong>R$ 235.000,00</strong></p>'
            '<div><span>Fortaleza</span> - <span>CE</span></div>'
            '</body></html>'
        )
        draft = self.extractor.extract(Document.from_html(html), 'abc')

        self.assertEqual(draft.price, Decimal('235000.00'))
        self.assertEqual(draft.original_price, Decimal('310000.00'))
        self.assertEqual(draft.discount, 24)
        self.assertEqual(draft.address.city, 'Fortaleza')
        self.assertEqual(draft.address.state, 'CE')

    def test_html_text_one_line_per_block(self):
        doc = Document.from_html(
            '<div><p>Valor de Venda: <b>R$ 1,00</b></p><ul><li>2 quartos</li><li>1 vaga</li></ul>'
            'Linha<br>seguinte</div>'
        )
        self.assertEqual(doc.text.splitlines(), [
            'Valor de Venda: R$ 1,00', '2 quartos', '1 vaga', 'Linha', 'seguinte',
        ])

    def test_explicit_discount_wins(self):
        text = 'Valor de Venda R$ 235.000,00\nValor de Avaliação R$ 310.000,00\n30% de desconto'
        draft = self.extractor.extract(Document.from_text(text), 'abc')
        self.assertEqual(draft.discount, 30)

    def test_no_price_raises_with_partial_draft(self):
        text = 'Casa com 3 quartos em Fortaleza - CE, condomínio R$ 450'
        with self.assertRaises(ExtractionFailed) as ctx:
            self.extractor.extract(Document.from_text(text), 'abc')
        self.assertIsNone(ctx.exception.draft.price)
        self.assertEqual(ctx.exception.draft.bedrooms, 3)

    def test_only_appraisal_value_becomes_price(self):
        text = 'Valor de Avaliação R$ 310.000,00'
        draft = self.extractor.extract(Document.from_text(text), 'abc')
        self.assertEqual(draft.price, Decimal(310000))
        self.assertIsNone(draft.original_price)
        self.assertIsNone(draft.discount)

    def test_markdown_document(self):
        markdown = (
            '# Apartamento 2 quartos em Recife\n\n'
            '![foto](https://cdn.example.com/fotos/apto-1.jpg)\n'
            '![logo](https://cdn.example.com/logo.png)\n\n'
            '**Preço:** R$ 180.000\n\n'
            'Apartamento amplo com 2 quartos, 1 banheiro e 1 vaga de garagem, '
            'perto do metrô e com área de lazer completa.\n\n'
            'Área útil: 65,5 m²\n'
            'Bairro: Boa Viagem\n'
            'Aceita FGTS e financiamento.\n'
        )
        draft = self.extractor.extract(Document.from_markdown(markdown, 'https://example.com/apto'), 'url-1')

        self.assertEqual(draft.title, 'Apartamento 2 quartos em Recife')
        self.assertEqual(draft.type, PropertyType.APARTMENT)
        self.assertEqual(draft.price, Decimal(180000))
        self.assertEqual(draft.bedrooms, 2)
        self.assertEqual(draft.bathrooms, 1)
        self.assertEqual(draft.parking_spaces, 1)
        self.assertEqual(draft.area, Decimal('65.5'))
        self.assertEqual(draft.address.city, 'Recife')
        self.assertEqual(draft.address.state, 'PE')
        self.assertEqual(draft.address.neighborhood, 'Boa Viagem')
        self.assertTrue(draft.accepts_fgts)
        self.assertTrue(draft.accepts_financing)
        self.assertTrue(draft.description.startswith('Apartamento amplo'))
        self.assertEqual(draft.images, ['https://cdn.example.com/fotos/apto-1.jpg'])

    def test_land_area_fallback_and_synthesized_title(self):
        text = 'Terreno à venda\nValor: R$ 90.000\nÁrea do terreno: 250 m²'
        draft = self.extractor.extract(
            Document.from_text(text), 'abc', hints={'city': 'Natal', 'state': 'RN'}
        )
        self.assertEqual(draft.type, PropertyType.LAND)
        self.assertEqual(draft.area, Decimal(250))
        self.assertEqual(draft.title, 'Terreno em Natal')

    def test_modality_most_specific_first(self):
        text = 'Valor: R$ 90.000\nModalidade: Venda Direta Online'
        draft = self.extractor.extract(Document.from_text(text), 'abc')
        self.assertEqual(draft.modality, 'Venda Direta Online')

    def test_auction_date(self):
        text = 'Valor: R$ 90.000\nData do leilão: 15/03/2025'
        draft = self.extractor.extract(Document.from_text(text), 'abc')
        self.assertEqual(draft.auction_date, '2025-03-15')
        self.assertEqual(draft.modality, 'Leilão')

    def test_html_images_filtered(self):
        html = (
            '<html><body><h1>Casa</h1><p>Valor de Venda R$ 120.000,00</p>'
            '<img src="https://image.leilaoimovel.com.br/images/casa-1-m.webp">'
            '<img src="https://image.leilaoimovel.com.br/logo.png">'
            '<img src="https://image.leilaoimovel.com.br/images/casa-2-p.jpg">'
            '</body></html>'
        )
        extractor = FieldExtractor(upgrade_thumbnails=True)
        draft = extractor.extract(Document.from_html(html), 'abc')
        self.assertEqual(draft.images, [
            'https://image.leilaoimovel.com.br/images/casa-1-g.webp',
            'https://image.leilaoimovel.com.br/images/casa-2-g.jpg',
        ])

    def test_extract_from_json_coerces_fields(self):
        payload = {
            'title': None,
            'type': 'apartamento',
            'price': '68585',
            'original_price': '',
            'address_city': 'Fortaleza',
            'address_state': 'ce',
            'bedrooms': '2',
            'images': None,
            'accepts_fgts': None,
            'accepts_financing': 'true',
        }
        draft = self.extractor.extract_from_json(payload, 'shot-1')

        self.assertEqual(draft.type, PropertyType.APARTMENT)
        self.assertEqual(draft.price, Decimal(68585))
        self.assertIsNone(draft.original_price)
        self.assertEqual(draft.address.state, 'CE')
        self.assertEqual(draft.images, [])
        self.assertFalse(draft.accepts_fgts)
        self.assertTrue(draft.accepts_financing)
        self.assertEqual(draft.description, '')
        self.assertEqual(draft.title, 'Apartamento 2 Quartos em Fortaleza')

    def test_extract_from_json_fits_columns(self):
        payload = {
            'price': '120000',
            'address_city': 'Fortaleza ' * 30,
            'address_zipcode': '60000000',
            'modality': 'Venda Direta ' * 20,
            'discount': '150',
            'auction_date': '15/03/2025',
        }
        draft = self.extractor.extract_from_json(payload, 'shot-1')

        self.assertLessEqual(len(draft.address.city), 120)
        self.assertLessEqual(len(draft.modality), 100)
        self.assertEqual(draft.address.zipcode, '60000-000')
        self.assertIsNone(draft.discount)
        self.assertEqual(draft.auction_date, '2025-03-15')

        draft = self.extractor.extract_from_json(
            {'price': '120000', 'address_zipcode': 'Centro, Fortaleza', 'discount': '24',
             'auction_date': '2025-03-15T10:00:00'},
            'shot-2',
        )
        self.assertEqual(draft.address.zipcode, '')
        self.assertEqual(draft.discount, 24)
        self.assertEqual(draft.auction_date, '2025-03-15')

    def test_extract_from_json_without_price(self):
        with self.assertRaises(ExtractionFailed):
            self.extractor.extract_from_json({'title': 'Casa'}, 'shot-1')


class DeduplicationIndexTests(TestCase):
    """Tests for the dedup index."""

    def test_single_lookup_and_order(self):
        store = FakeStore(known={'b'})
        index = DeduplicationIndex.load(store, ['a', 'b', 'c'])

        fresh = index.filter_new(['a', 'b', 'c'], key=lambda value: value)

        self.assertEqual(fresh, ['a', 'c'])
        self.assertEqual(store.lookups, 1)

    def test_add_marks_known(self):
        index = DeduplicationIndex()
        index.add('a')
        self.assertTrue(index.is_known('a'))
        self.assertIn('a', index)


class ListingCrawlerTests(TestCase):
    """Tests for pagination, filtering and staging."""

    def make_crawler(self, pages, store=None, **overrides):
        fetcher = FakeFetcher(pages)
        store = store or FakeStore()
        crawler = ListingCrawler(
            store, fetcher=fetcher, crawl_settings=crawl_settings(**overrides), pacer=Pacer(0)
        )
        return crawler, fetcher, store

    def details(self, numbers):
        return {detail_url(n): detail_html(n) for n in numbers}

    def test_short_page_without_next_stops(self):
        crawler, fetcher, _ = self.make_crawler({SEED: listing_html(range(1, 8))})

        candidates, pages = crawler.collect_links([SEED])

        self.assertEqual(len(candidates), 7)
        self.assertEqual(fetcher.requested, [SEED])
        self.assertEqual(pages, 1)

    def test_short_page_with_next_continues(self):
        pages = {
            SEED: listing_html(range(1, 8), next_page=2),
            f'{SEED}?pag=2': listing_html(range(8, 10)),
        }
        crawler, fetcher, _ = self.make_crawler(pages)

        candidates, _ = crawler.collect_links([SEED])

        self.assertEqual(len(candidates), 9)
        self.assertEqual(fetcher.requested, [SEED, f'{SEED}?pag=2'])

    def test_two_empty_pages_stop(self):
        pages = {
            SEED: listing_html(range(1, 11), next_page=2),
            f'{SEED}?pag=2': '<html>404-naoencontrado</html>',
        }
        crawler, fetcher, _ = self.make_crawler(pages)

        crawler.collect_links([SEED])

        self.assertEqual(fetcher.requested, [SEED, f'{SEED}?pag=2', f'{SEED}?pag=3'])

    def test_max_pages(self):
        pages = {SEED: listing_html(range(1, 11), next_page=2)}
        for page in range(2, 6):
            start = page * 100
            pages[f'{SEED}?pag={page}'] = listing_html(range(start, start + 10), next_page=page + 1)
        crawler, fetcher, _ = self.make_crawler(pages, max_pages=3)

        candidates, _ = crawler.collect_links([SEED])

        self.assertEqual(len(fetcher.requested), 3)
        self.assertEqual(len(candidates), 30)

    def test_duplicate_links_across_pages(self):
        pages = {
            SEED: listing_html(range(1, 11), next_page=2),
            f'{SEED}?pag=2': listing_html(range(5, 9)),
        }
        crawler, _, _ = self.make_crawler(pages)

        candidates, _ = crawler.collect_links([SEED])

        self.assertEqual(list(candidates), [external_id(n) for n in range(1, 11)])

    def test_state_filter_skips_detail_fetch(self):
        html = listing_html(range(1, 4)).replace('</body>', listing_html(range(4, 6), state='pe'))
        pages = {SEED: html}
        pages.update(self.details(range(1, 6)))
        crawler, fetcher, store = self.make_crawler(pages)

        result = crawler.crawl(config_id=1, states=['CE'])

        self.assertEqual(result.found, 3)
        self.assertEqual(result.new, 3)
        self.assertNotIn(detail_url(4, state='pe'), fetcher.requested)

    def test_crawl_stages_and_logs_run(self):
        pages = {SEED: listing_html(range(1, 6))}
        pages.update(self.details(range(1, 6)))
        crawler, _, store = self.make_crawler(pages)

        result = crawler.crawl(config_id=1, states=['CE'])

        self.assertEqual(result.status, 'completed')
        self.assertEqual((result.found, result.new), (5, 5))
        self.assertEqual(store.runs[result.run_id], {'status': 'completed', 'found': 5, 'new': 5, 'error': None})
        draft = store.staged[0]
        self.assertEqual(draft.address.city, 'Fortaleza')
        self.assertEqual(draft.discount, 24)

    def test_second_run_stages_nothing(self):
        pages = {SEED: listing_html(range(1, 6))}
        pages.update(self.details(range(1, 6)))
        crawler, _, store = self.make_crawler(pages)

        first = crawler.crawl(config_id=1)
        second = crawler.crawl(config_id=1)

        self.assertEqual(first.new, 5)
        self.assertEqual(second.found, 5)
        self.assertEqual(second.new, 0)
        self.assertEqual(len(store.staged), 5)

    def test_overlapping_runs(self):
        store = FakeStore()
        first_pages = {SEED: listing_html(range(1, 11))}
        first_pages.update(self.details(range(1, 11)))
        second_pages = {SEED: listing_html(range(5, 13))}
        second_pages.update(self.details(range(5, 13)))

        first, _, _ = self.make_crawler(first_pages, store=store)
        second, fetcher, _ = self.make_crawler(second_pages, store=store)
        first.crawl(config_id=1)
        result = second.crawl(config_id=1)

        self.assertEqual(result.found, 8)
        self.assertEqual(result.new, 2)
        self.assertEqual(len({draft.external_id for draft in store.staged}), 12)
        self.assertNotIn(detail_url(5), fetcher.requested)

    def test_failed_detail_is_skipped(self):
        pages = {SEED: listing_html(range(1, 5))}
        pages.update(self.details([1, 2, 4]))
        crawler, _, _ = self.make_crawler(pages)

        result = crawler.crawl(config_id=1)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.new, 3)
        self.assertEqual(result.failed, 1)

    def test_malformed_image_does_not_abort_run(self):
        pages = {SEED: listing_html(range(1, 4))}
        pages.update(self.details(range(1, 4)))
        pages[detail_url(2)] = detail_html(2).replace('</body>', '<img src="http://[broken/foto.jpg"></body>')
        crawler, _, store = self.make_crawler(pages)

        result = crawler.crawl(config_id=1)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.new, 3)
        self.assertEqual(store.runs[result.run_id]['status'], 'completed')

    def test_unexpected_item_error_is_skipped(self):
        pages = {SEED: listing_html(range(1, 4))}
        pages.update(self.details(range(1, 4)))
        crawler, _, store = self.make_crawler(pages)
        extract = crawler.extractor.extract

        def flaky_extract(doc, external_id_, **kwargs):
            if external_id_ == external_id(2):
                raise ValueError('unexpected markup')
            return extract(doc, external_id_, **kwargs)

        with patch.object(crawler.extractor, 'extract', side_effect=flaky_extract):
            result = crawler.crawl(config_id=1)

        self.assertEqual(result.status, 'completed')
        self.assertEqual((result.new, result.failed), (2, 1))
        self.assertEqual(store.runs[result.run_id], {'status': 'completed', 'found': 3, 'new': 2, 'error': None})

    def test_crash_logs_drafts_already_staged(self):
        pages = {SEED: listing_html(range(1, 4))}
        pages.update(self.details(range(1, 4)))
        pacer = MagicMock()
        # Listing page, first detail batch, then the second batch crashes
        pacer.wait.side_effect = [None, None, RuntimeError('worker lost')]
        store = FakeStore()
        crawler = ListingCrawler(
            store, fetcher=FakeFetcher(pages), crawl_settings=crawl_settings(detail_concurrency=1), pacer=pacer
        )

        with self.assertRaises(RuntimeError):
            crawler.crawl(config_id=1)

        run = store.runs[1]
        self.assertEqual(run['status'], 'failed')
        self.assertEqual((run['found'], run['new']), (3, 1))
        self.assertEqual(len(store.staged), 1)

    def test_detail_batch_limit(self):
        pages = {SEED: listing_html(range(1, 11))}
        pages.update(self.details(range(1, 11)))
        crawler, _, _ = self.make_crawler(pages, max_detail_batch=4)

        result = crawler.crawl(config_id=1)

        self.assertEqual(result.found, 10)
        self.assertEqual(result.new, 4)

    def test_unreachable_source_fails_run(self):
        crawler, _, store = self.make_crawler({})

        result = crawler.crawl(config_id=1)

        self.assertEqual(result.status, 'failed')
        self.assertIn('Could not fetch', result.error_message)
        self.assertEqual(store.runs[result.run_id]['status'], 'failed')

    def test_manual_detail_url(self):
        crawler, _, store = self.make_crawler(self.details([1]))

        result = crawler.crawl_url(config_id=1, url=detail_url(1))

        self.assertEqual(result.outcome, 'detail')
        self.assertEqual((result.found, result.new), (1, 1))
        self.assertEqual(store.staged[0].external_id, external_id(1))

    def test_manual_index_url(self):
        index = 'https://www.leilaoimovel.com.br/busca?cidade=fortaleza'
        pages = {index: listing_html(range(1, 4))}
        pages.update(self.details(range(1, 4)))
        crawler, _, _ = self.make_crawler(pages)

        result = crawler.crawl_url(config_id=1, url=index)

        self.assertEqual(result.outcome, 'index')
        self.assertEqual(result.new, 3)

    def test_manual_unrecognized_url_fails(self):
        url = 'https://www.leilaoimovel.com.br/sobre'
        crawler, _, store = self.make_crawler({url: '<html><body>Quem somos</body></html>'})

        result = crawler.crawl_url(config_id=1, url=url)

        self.assertEqual(result.status, 'failed')
        self.assertEqual(result.outcome, 'unrecognized')
        self.assertEqual(store.runs[result.run_id]['status'], 'failed')
        self.assertEqual(store.staged, [])


class PageFetcherTests(TestCase):
    """Tests for the page fetcher."""

    def response(self, status_code=200, text='', json_data=None):
        response = MagicMock(status_code=status_code, text=text)
        response.json.return_value = json_data
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
        return response

    @patch('scrapers.base.requests.request')
    def test_blocked(self, mock_request):
        mock_request.return_value = self.response(403)
        with self.assertRaises(SourceBlocked):
            PageFetcher(crawl_settings()).fetch_html(SEED)

    @patch('scrapers.base.requests.request')
    def test_timeout_is_fetch_failed_without_retry(self, mock_request):
        mock_request.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(FetchFailed):
            PageFetcher(crawl_settings()).fetch_html(SEED, timeout=5)
        self.assertEqual(mock_request.call_count, 1)

    @patch('scrapers.base.time.sleep')
    @patch('scrapers.base.requests.request')
    def test_retry_when_enabled(self, mock_request, mock_sleep):
        mock_request.side_effect = [requests.exceptions.ConnectionError(), self.response(text='<html></html>')]
        page = PageFetcher(crawl_settings(max_retries=1)).fetch_html(SEED)
        self.assertEqual(page.content, '<html></html>')
        self.assertEqual(mock_request.call_count, 2)

    @patch('scrapers.base.requests.request')
    def test_render_service(self, mock_request):
        mock_request.return_value = self.response(json_data={'success': True, 'data': {'markdown': '# Casa'}})
        fetcher = PageFetcher(crawl_settings(render_api_key='key'))

        page = fetcher.fetch_document('https://example.com/casa')

        self.assertEqual(page.content, '# Casa')
        self.assertEqual(page.content_type, 'markdown')
        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs['method'], 'POST')
        self.assertEqual(kwargs['json']['waitFor'], 2000)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer key')


class PacerTests(TestCase):
    """Tests for inter-request pacing."""

    def test_waits_remaining_delay(self):
        now = [100.0]
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        pacer = Pacer(0.5, sleep=sleep, clock=lambda: now[0])
        pacer.wait()
        now[0] += 0.2
        pacer.wait()

        self.assertEqual(len(sleeps), 1)
        self.assertAlmostEqual(sleeps[0], 0.3)


class UrlImporterTests(TestCase):
    """Tests for URL import."""

    MARKDOWN = (
        '# Casa 3 quartos em Caucaia\n\n'
        'Valor: R$ 150.000\n\n'
        'Casa ampla com 3 quartos, quintal grande e garagem para dois carros, em rua calma.\n'
    )

    def make_importer(self, pages, vision=None):
        vision = vision or MagicMock(configured=False)
        return UrlImporter(fetcher=FakeFetcher(pages), vision=vision, crawl_settings=crawl_settings())

    def test_import_normalizes_url(self):
        importer = self.make_importer({'https://example.com/casa-1': self.MARKDOWN})

        result = importer.import_url('example.com/casa-1')

        self.assertEqual(result.method, 'heuristic')
        self.assertEqual(result.draft.price, Decimal(150000))
        self.assertEqual(result.draft.source_url, 'https://example.com/casa-1')
        self.assertTrue(result.draft.external_id.startswith('url-'))
        self.assertTrue(result.content_preview.startswith('# Casa'))

    def test_insufficient_content(self):
        importer = self.make_importer({'https://example.com/casa-1': 'Acesso negado'})
        with self.assertRaises(InsufficientContent):
            importer.import_url('https://example.com/casa-1')

    def test_fetch_failed(self):
        with self.assertRaises(FetchFailed):
            self.make_importer({}).import_url('https://example.com/casa-1')

    def test_ai_fallback(self):
        text = 'Imóvel residencial. ' * 10
        vision = MagicMock(configured=True)
        vision.extract_from_document.return_value = {'title': 'Casa', 'price': '99000'}
        importer = self.make_importer({'https://example.com/casa-1': text}, vision=vision)

        result = importer.import_url('https://example.com/casa-1')

        self.assertEqual(result.method, 'ai_document')
        self.assertEqual(result.draft.price, Decimal(99000))

    def test_no_ai_raises_extraction_failed(self):
        importer = self.make_importer({'https://example.com/casa-1': 'Imóvel residencial. ' * 10})
        with self.assertRaises(ExtractionFailed):
            importer.import_url('https://example.com/casa-1')

    def test_stage_rejects_known_listing(self):
        importer = self.make_importer({'https://example.com/casa-1': self.MARKDOWN})
        draft = importer.import_url('https://example.com/casa-1').draft
        store = FakeStore(known={draft.external_id})

        with self.assertRaises(DuplicateExternalId):
            importer.import_url('https://example.com/casa-1', store=store)
        self.assertEqual(store.staged, [])


class ScreenshotImporterTests(TestCase):
    """Tests for screenshot import."""

    IMAGE = 'data:image/png;base64,' + base64.b64encode(b'\x89PNG fake screenshot').decode()

    def test_import(self):
        vision = MagicMock()
        vision.extract_from_image.return_value = {'type': 'terreno', 'price': '75000', 'address_state': 'RN'}
        importer = ScreenshotImporter(vision=vision, crawl_settings=crawl_settings())

        result = importer.import_screenshot(self.IMAGE)

        self.assertEqual(result.method, 'ai_image')
        self.assertEqual(result.draft.type, PropertyType.LAND)
        self.assertTrue(result.draft.external_id.startswith('shot-'))
        vision.extract_from_image.assert_called_once()

    def test_external_id_from_source_url(self):
        vision = MagicMock()
        vision.extract_from_image.return_value = {'price': '75000'}
        importer = ScreenshotImporter(vision=vision, crawl_settings=crawl_settings())

        result = importer.import_screenshot(self.IMAGE, source_url=detail_url(7))

        self.assertEqual(result.draft.external_id, external_id(7))

    def test_rejects_non_image(self):
        importer = ScreenshotImporter(vision=MagicMock(), crawl_settings=crawl_settings())
        with self.assertRaises(InvalidImage):
            importer.import_screenshot('data:text/plain;base64,aGVsbG8=')

    def test_rejects_large_image(self):
        importer = ScreenshotImporter(vision=MagicMock(), crawl_settings=crawl_settings(), max_bytes=4)
        with self.assertRaises(InvalidImage):
            importer.import_screenshot(self.IMAGE)


class VisionClientTests(TestCase):
    """Tests for the AI extraction client."""

    def make_client(self, content):
        client = MagicMock()
        message = MagicMock(content=content)
        client.chat.completions.create.return_value = MagicMock(choices=[MagicMock(message=message)])
        return VisionExtractionClient(crawl_settings(), client=client), client

    def test_json_object_request(self):
        vision, client = self.make_client('{"price": "100000"}')

        data = vision.extract_from_image('data:image/png;base64,AAAA')

        self.assertEqual(data, {'price': '100000'})
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs['temperature'], 0.2)
        self.assertEqual(kwargs['response_format'], {'type': 'json_object'})

    def test_fenced_json(self):
        vision, _ = self.make_client('```json\n{"price": "100000"}\n```')
        self.assertEqual(vision.extract_from_document('texto'), {'price': '100000'})

    def test_unparsable_reply(self):
        vision, _ = self.make_client('Não consegui ler o anúncio.')
        with self.assertRaises(UnparsableResponse):
            vision.extract_from_image('data:image/png;base64,AAAA')

    def test_non_object_reply(self):
        vision, _ = self.make_client('[1, 2]')
        with self.assertRaises(UnparsableResponse):
            vision.extract_from_image('data:image/png;base64,AAAA')

    def test_not_configured(self):
        vision = VisionExtractionClient(crawl_settings())
        self.assertFalse(vision.configured)
        with self.assertRaises(ServiceUnavailable):
            vision.extract_from_image('data:image/png;base64,AAAA')


class CrawlSettingsTests(TestCase):
    def test_from_mapping_ignores_unknown_keys(self):
        values = CrawlSettings.from_mapping({'MAX_PAGES': 3, 'SOMETHING_ELSE': 1})
        self.assertEqual(values.max_pages, 3)
        self.assertEqual(values.last_page_threshold, 8)
